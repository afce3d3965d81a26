"""Base interface for reasoning strategies."""
from abc import ABC, abstractmethod
from typing import Any


class AnalysisStrategy(ABC):
    """One way of turning an analysis payload into analysis data.

    Implementations raise on failure; the invoker owns fallback and timeouts.
    """

    @property
    @abstractmethod
    def name(self) -> str:
        pass

    @abstractmethod
    async def generate(self, payload: dict[str, Any]) -> Any:
        """Return analysis data (markdown string or structured dict)."""
        pass

    async def aclose(self) -> None:
        return None
