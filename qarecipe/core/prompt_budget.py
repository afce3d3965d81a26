"""Deterministic, logged truncation for payload artifacts."""

from __future__ import annotations

import logging
from typing import Any

logger = logging.getLogger(__name__)

ELLIPSIS = "…"


def clip(text: Any, max_chars: int = 800) -> str:
    """Short inline clip used for comment cells; appends an ellipsis."""
    value = "" if text is None else str(text)
    if len(value) <= max_chars:
        return value
    return value[:max_chars] + ELLIPSIS


def cap_artifact(text: str, *, name: str, max_chars: int, marker: str | None = None) -> dict[str, Any]:
    """Cap one payload artifact and log when it was cut.

    Returns ``{"text", "original_chars", "final_chars", "truncated"}`` so the
    caller can surface truncation to the reasoning service as well.
    """
    value = str(text or "")
    original_chars = len(value)
    if original_chars <= max_chars:
        return {
            "text": value,
            "original_chars": original_chars,
            "final_chars": original_chars,
            "truncated": False,
        }

    dropped = original_chars - max_chars
    suffix = marker if marker is not None else f"\n... [{dropped} more chars truncated]"
    capped = value[:max_chars] + suffix
    logger.info(
        "✂️ Truncated %s from %d to %d chars (%d dropped)",
        name,
        original_chars,
        max_chars,
        dropped,
    )
    return {
        "text": capped,
        "original_chars": original_chars,
        "final_chars": len(capped),
        "truncated": True,
    }
