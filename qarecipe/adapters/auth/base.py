"""Base interface for inbound webhook verification."""
from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass, field
from typing import Any

from qarecipe.core.models import Installation

# Resolves an account id (client key, organization id, ...) to its Installation.
InstallationResolver = Callable[[str], Awaitable[Installation | None]]


@dataclass
class InboundRequest:
    """The parts of an HTTP request a verifier may bind to.

    ``raw_body`` must be the exact bytes received, never a re-serialized body.
    """

    raw_body: bytes
    headers: Mapping[str, str]
    method: str = "POST"
    path: str = "/"
    query: dict[str, list[str]] = field(default_factory=dict)

    def header(self, name: str) -> str | None:
        """Case-insensitive header lookup."""
        wanted = name.lower()
        for key, value in self.headers.items():
            if str(key).lower() == wanted:
                return value
        return None

    def query_value(self, name: str) -> str | None:
        values = self.query.get(name) or []
        return values[0] if values else None


@dataclass
class VerificationResult:
    valid: bool
    installation: Installation | None = None
    reason: str | None = None
    claims: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def reject(cls, reason: str) -> "VerificationResult":
        return cls(valid=False, reason=reason)


class WebhookVerifier(ABC):
    """Validates that an inbound webhook really came from the platform."""

    @property
    @abstractmethod
    def scheme(self) -> str:
        pass

    @abstractmethod
    async def verify(
        self,
        request: InboundRequest,
        resolve_installation: InstallationResolver | None = None,
    ) -> VerificationResult:
        """Verify *request*; never raise for a bad signature, return ``valid=False``."""
        pass
