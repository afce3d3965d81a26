"""Base interface for installation, cursor and run-log storage."""
from abc import ABC, abstractmethod

from qarecipe.core.models import Installation, Platform, RevisionCursor, RunRecord, RunStatus


class StateStore(ABC):
    """Abstract store for the only shared mutable state: installations,
    revision cursors and the append-only run log.
    """

    # Installations

    @abstractmethod
    async def get_installation(self, platform: Platform, account_id: str) -> Installation | None:
        pass

    @abstractmethod
    async def save_installation(self, installation: Installation) -> Installation:
        """Create or refresh an installation; returns it with ``id`` set."""
        pass

    @abstractmethod
    async def disable_installation(self, platform: Platform, account_id: str) -> bool:
        """Mark an installation disabled (never purged). Returns False if unknown."""
        pass

    # Revision cursors

    @abstractmethod
    async def get_cursor(self, installation_id: int, target: str) -> RevisionCursor | None:
        pass

    @abstractmethod
    async def compare_and_set_cursor(
        self,
        installation_id: int,
        target: str,
        expected: str | None,
        new: str,
    ) -> bool:
        """Atomically set the cursor to *new* only if it currently equals *expected*.

        ``expected=None`` means "no cursor stored yet".
        """
        pass

    # Run log

    @abstractmethod
    async def append_run(self, record: RunRecord) -> int:
        pass

    @abstractmethod
    async def finish_run(
        self, run_id: int, status: RunStatus, result_ref: str | None = None
    ) -> None:
        """Move a pending run to completed/failed. Other transitions raise ``ValueError``."""
        pass

    @abstractmethod
    async def list_runs(self, target: str | None = None, limit: int = 100) -> list[RunRecord]:
        pass
