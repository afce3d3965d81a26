"""Core data models for qarecipe analysis runs."""
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any


class Platform(Enum):
    """Collaboration platforms with a webhook ingress."""

    GITHUB = "github"
    BITBUCKET = "bitbucket"
    JIRA = "jira"
    LINEAR = "linear"


class RunStatus(Enum):
    """Run lifecycle state. Only pending -> completed|failed is allowed."""

    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"


class AnalysisType(Enum):
    FULL = "full"
    SHORT = "short"


SCENARIO_PRIORITIES = (
    "Happy Path",
    "Critical Path",
    "Edge Case",
    "Regression",
    "Negative",
)
DEFAULT_PRIORITY = "Happy Path"


@dataclass
class Installation:
    """A tenant's link to one platform account.

    ``credentials`` holds the platform-specific secret material (API token,
    Connect shared secret, webhook secret, base URL).
    """

    platform: Platform
    account_id: str
    credentials: dict[str, Any] = field(default_factory=dict)
    enabled: bool = True
    display_name: str | None = None
    id: int | None = None

    def secret(self, key: str) -> str | None:
        value = self.credentials.get(key)
        return str(value) if value else None


@dataclass(frozen=True)
class TargetRef:
    """The (repository, PR) or ticket under analysis."""

    platform: Platform
    container: str  # "owner/repo", "workspace/repo_slug", or the site/org id
    number: str  # PR number or ticket key

    @property
    def key(self) -> str:
        return f"{self.platform.value}:{self.container}#{self.number}"


@dataclass
class Revision:
    """One immutable change unit (commit) as reported by the platform."""

    id: str
    message: str = ""
    author: str = ""
    date: str = ""
    diff: str = ""

    @property
    def short_id(self) -> str:
        return self.id[:7]

    @property
    def title(self) -> str:
        return self.message.split("\n", 1)[0]


@dataclass
class RevisionCursor:
    installation_id: int
    target: str
    revision_id: str
    updated_at: datetime = field(default_factory=lambda: datetime.now(tz=UTC))


@dataclass
class RunRecord:
    """Append-only log entry for one triggered analysis."""

    target: str
    requested_by: str
    requested_at: datetime = field(default_factory=lambda: datetime.now(tz=UTC))
    revisions_analyzed: list[str] = field(default_factory=list)
    status: RunStatus = RunStatus.PENDING
    result_ref: str | None = None
    id: int | None = None


@dataclass
class TriggerCommand:
    """A detected trigger command plus its parsed flags."""

    name: str  # "/qa" or "/short"
    text: str
    flags: dict[str, Any] = field(default_factory=dict)
    details: dict[str, str] = field(default_factory=dict)

    @property
    def analysis_type(self) -> AnalysisType:
        return AnalysisType.SHORT if self.name == "/short" else AnalysisType.FULL


@dataclass
class Scenario:
    name: str
    priority: str = DEFAULT_PRIORITY
    steps: list[str] = field(default_factory=list)
    expected_result: str = ""
    automation_hint: str | None = None


@dataclass
class CanonicalAnalysis:
    """Platform-agnostic normalized analysis.

    ``markdown`` is set only for trusted markdown responses that are rendered
    near-unchanged. ``diagnostics`` carries normalizer notes (e.g. raw keys
    observed when a fallback was produced).
    """

    risk_summary: str = ""
    score: int | None = None
    risks: list[str] = field(default_factory=list)
    test_scenarios: list[Scenario] = field(default_factory=list)
    questions: list[str] = field(default_factory=list)
    score_level: str | None = None
    markdown: str | None = None
    provenance: str = "remote"
    diagnostics: list[str] = field(default_factory=list)

    @property
    def needs_manual_review(self) -> bool:
        if self.score_level == "Needs Manual Review":
            return True
        return self.provenance in ("local", "ultimate-fallback")


@dataclass
class AnalysisResult:
    """What the invoker hands back: always success, provenance in metadata."""

    data: Any
    success: bool = True
    metadata: dict[str, Any] = field(default_factory=dict)

    @property
    def source(self) -> str:
        return str(self.metadata.get("source") or "unknown")

    def to_dict(self) -> dict[str, Any]:
        return {"success": self.success, "data": self.data, "metadata": dict(self.metadata)}


@dataclass
class ChangedFile:
    path: str
    status: str = "modified"


@dataclass
class TargetDetails:
    """Description-level information fetched for a target."""

    title: str
    body: str = ""
    head_revision: str | None = None
    url: str | None = None
    extra: dict[str, Any] = field(default_factory=dict)
