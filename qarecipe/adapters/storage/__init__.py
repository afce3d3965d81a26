"""Storage adapters for installations, cursors and run records."""

from qarecipe.adapters.storage.base import StateStore
from qarecipe.adapters.storage.sql import SQLStateStore

__all__ = [
    "StateStore",
    "SQLStateStore",
]
