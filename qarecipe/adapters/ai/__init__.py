"""Reasoning strategies used by the analysis invoker."""
from qarecipe.adapters.ai.base import AnalysisStrategy
from qarecipe.adapters.ai.local import LocalHeuristicGenerator
from qarecipe.adapters.ai.remote import RemoteReasoningClient

__all__ = ["AnalysisStrategy", "LocalHeuristicGenerator", "RemoteReasoningClient"]
