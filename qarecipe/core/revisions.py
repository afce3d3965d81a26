"""Incremental revision tracking against a per-target cursor."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Any

from qarecipe.core.models import Revision, TargetRef

logger = logging.getLogger(__name__)

SHORT_ID_LENGTH = 7
DEFAULT_MAX_REVISIONS = 250

_ABBREVIATED_ID_RE = re.compile(r"[0-9a-f]{7,40}")


@dataclass
class RevisionDelta:
    """Chronological (oldest-first) revisions newer than the cursor.

    ``mode`` is one of ``first`` (no cursor), ``incremental`` (cursor found)
    or ``rewritten`` (cursor not in current history, full history returned).
    """

    revisions: list[Revision] = field(default_factory=list)
    mode: str = "first"
    cursor: str | None = None
    head: str | None = None
    warnings: list[str] = field(default_factory=list)

    @property
    def is_update(self) -> bool:
        return self.mode == "incremental" and bool(self.revisions)


def find_cursor_index(history: list[Revision], cursor: str) -> int:
    """Index of *cursor* in newest-first *history*, or -1.

    Exact id match first, then a short-id prefix match for hex commit ids.
    Ticket revisions are timestamps and only ever match exactly.
    """
    for index, revision in enumerate(history):
        if revision.id == cursor:
            return index
    if not _is_commit_id(cursor):
        return -1
    short = cursor[:SHORT_ID_LENGTH]
    if len(short) < SHORT_ID_LENGTH:
        return -1
    for index, revision in enumerate(history):
        if revision.id.startswith(short):
            logger.info("🔍 Found cursor by short match: %s -> %s", short, revision.short_id)
            return index
    return -1


def select_new_revisions(
    history_newest_first: list[Revision],
    cursor: str | None,
    *,
    head: str | None = None,
    max_revisions: int = DEFAULT_MAX_REVISIONS,
) -> RevisionDelta:
    """Compute the delta of *history_newest_first* since *cursor*.

    Never raises and never returns an empty list for a non-empty history
    unless the cursor is genuinely the newest revision.
    """
    history = list(history_newest_first or [])
    if max_revisions and len(history) > max_revisions:
        logger.info(
            "✂️ Revision history bounded to %d of %d revisions", max_revisions, len(history)
        )
        history = history[:max_revisions]

    resolved_head = head or (history[0].id if history else None)

    if not cursor:
        logger.info("🆕 First analysis: using full history (%d revisions)", len(history))
        return RevisionDelta(
            revisions=list(reversed(history)), mode="first", cursor=None, head=resolved_head
        )

    index = find_cursor_index(history, cursor)
    if index < 0:
        logger.warning(
            "⚠️ Cursor %s not found in current history (rewritten or force-pushed) - "
            "falling back to full history (%d revisions)",
            cursor[:SHORT_ID_LENGTH],
            len(history),
        )
        return RevisionDelta(
            revisions=list(reversed(history)),
            mode="rewritten",
            cursor=cursor,
            head=resolved_head,
            warnings=["cursor not found in history"],
        )

    delta = RevisionDelta(
        revisions=list(reversed(history[:index])),
        mode="incremental",
        cursor=cursor,
        head=resolved_head,
    )
    if not delta.revisions and resolved_head and not _same_revision(resolved_head, cursor):
        message = (
            f"head {resolved_head[:SHORT_ID_LENGTH]} differs from cursor "
            f"{cursor[:SHORT_ID_LENGTH]} but no new revisions were found"
        )
        logger.warning("⚠️ %s - proceeding with empty delta", message)
        delta.warnings.append(message)
    return delta


def _is_commit_id(value: str) -> bool:
    return bool(_ABBREVIATED_ID_RE.fullmatch(value.lower()))


def _same_revision(a: str, b: str) -> bool:
    if a == b:
        return True
    if not (_is_commit_id(a) and _is_commit_id(b)):
        return False
    short = min(len(a), len(b), SHORT_ID_LENGTH)
    return short >= SHORT_ID_LENGTH and a[:short] == b[:short]


class RevisionTracker:
    """Fetches revision history for a target and diffs it against a cursor.

    Args:
        client: Platform client exposing ``list_revisions(target)`` (newest-first).
        max_revisions: Upper bound on the history considered.
    """

    def __init__(self, client: Any, max_revisions: int = DEFAULT_MAX_REVISIONS):
        self._client = client
        self._max_revisions = max_revisions

    async def compute_delta(
        self, target: TargetRef, cursor: str | None, head: str | None = None
    ) -> RevisionDelta:
        history = await self._client.list_revisions(target)
        return select_new_revisions(
            history, cursor, head=head, max_revisions=self._max_revisions
        )

    async def new_revisions_since(self, target: TargetRef, cursor: str | None) -> list[Revision]:
        delta = await self.compute_delta(target, cursor)
        return delta.revisions
