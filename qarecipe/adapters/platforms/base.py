"""Base interface for collaboration-platform API clients."""
from abc import ABC, abstractmethod
from typing import Any

from qarecipe.core.models import ChangedFile, Installation, Revision, TargetDetails, TargetRef


class ReviewPlatform(ABC):
    """Abstract platform client, constructed once per Installation.

    Per-installation state (cached tokens, simulated mode) lives on the
    instance rather than in module globals.
    """

    #: ``markdown`` or ``adf``; selects the comment formatter.
    comment_format = "markdown"

    def __init__(self, installation: Installation):
        self.installation = installation

    @property
    @abstractmethod
    def name(self) -> str:
        pass

    @abstractmethod
    async def fetch_details(self, target: TargetRef) -> TargetDetails:
        """Fetch title/description and the current head revision."""
        pass

    @abstractmethod
    async def fetch_diff(self, target: TargetRef) -> str:
        """Return the target's full unified diff (empty for tickets)."""
        pass

    @abstractmethod
    async def list_revisions(self, target: TargetRef) -> list[Revision]:
        """Return the target's revision history, newest first."""
        pass

    async def fetch_revision_detail(self, target: TargetRef, revision: Revision) -> Revision:
        """Return *revision* enriched with its own diff. Default: unchanged."""
        return revision

    async def list_changed_files(self, target: TargetRef) -> list[ChangedFile]:
        return []

    async def fetch_file(self, target: TargetRef, path: str, ref: str | None = None) -> str | None:
        return None

    @abstractmethod
    async def post_comment(self, target: TargetRef, body: Any) -> str:
        """Post a rendered comment; return its platform id or raise."""
        pass

    async def mark_reviewed(self, target: TargetRef) -> None:
        """Optional post-success marker (e.g. a label). Default: no-op."""
        return None

    async def aclose(self) -> None:
        return None
