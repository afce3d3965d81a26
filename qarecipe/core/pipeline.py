"""End-to-end analysis run for one detected trigger.

Order of operations:

1. Read the target's cursor and compute the revision delta.
2. Append a pending :class:`RunRecord` naming the revisions covered.
3. Assemble the size-bounded payload and invoke the strategy chain.
4. Normalize, render for the platform and post the comment.
5. Only after a confirmed post: advance the cursor (compare-and-set) and mark
   the run completed. A failed post marks the run failed and leaves the
   cursor untouched, so the same revisions are picked up next time.
   Store errors after a confirmed post are logged and reported on the
   outcome; the run still counts as completed because the comment exists.

``AnalysisPipeline.run`` never raises; every outcome ends in a logged
:class:`RunOutcome`.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

from qarecipe.core.context import ContextAssembler
from qarecipe.core.errors import CursorConflictError
from qarecipe.core.invoker import AnalysisInvoker
from qarecipe.core.models import (
    AnalysisType,
    Installation,
    RunRecord,
    RunStatus,
    TargetRef,
    TriggerCommand,
)
from qarecipe.core.normalizer import normalize_analysis
from qarecipe.core.revisions import DEFAULT_MAX_REVISIONS, RevisionTracker
from qarecipe.formatters import render_for

logger = logging.getLogger(__name__)


@dataclass
class TriggerEvent:
    """A verified, loop-guarded trigger ready to be analyzed."""

    installation: Installation
    target: TargetRef
    command: TriggerCommand
    requested_by: str


@dataclass
class RunOutcome:
    run_id: int | None
    status: RunStatus
    comment_id: str | None = None
    revisions: list[str] = field(default_factory=list)
    source: str | None = None
    cursor_advanced: bool = False
    error: str | None = None


class AnalysisPipeline:
    """Args:
        store: :class:`StateStore` holding cursors and the run log.
        invoker: :class:`AnalysisInvoker` with the ordered strategy chain.
        client_factory: Builds a platform client for an Installation.
        max_revisions: Upper bound on history fetched per run.
        include_files: Fetch full file contents for code-review targets.
    """

    def __init__(
        self,
        *,
        store: Any,
        invoker: AnalysisInvoker,
        client_factory: Callable[[Installation], Any],
        max_revisions: int = DEFAULT_MAX_REVISIONS,
        include_files: bool = True,
    ):
        self._store = store
        self._invoker = invoker
        self._client_factory = client_factory
        self._max_revisions = max_revisions
        self._include_files = include_files

    async def run(self, event: TriggerEvent) -> RunOutcome:
        target = event.target
        logger.info(
            "🚀 Starting %s run for %s (requested by %s)",
            event.command.name,
            target.key,
            event.requested_by,
        )
        try:
            client = self._client_factory(event.installation)
        except Exception as exc:
            logger.error("❌ Could not build %s client: %s", target.platform.value, exc)
            return await self._fail(event, None, str(exc))
        try:
            return await self._run(event, client)
        finally:
            try:
                await client.aclose()
            except Exception as exc:
                logger.debug("Ignoring client close error for %s: %s", target.key, exc)

    async def _run(self, event: TriggerEvent, client: Any) -> RunOutcome:
        target = event.target
        installation_id = event.installation.id
        run_id: int | None = None
        try:
            cursor = await self._store.get_cursor(installation_id, target.key)
            cursor_id = cursor.revision_id if cursor else None

            details = await client.fetch_details(target)
            tracker = RevisionTracker(client, max_revisions=self._max_revisions)
            delta = await tracker.compute_delta(target, cursor_id, head=details.head_revision)
            head = details.head_revision or (
                delta.revisions[-1].id if delta.revisions else cursor_id
            )
            revision_ids = [revision.id for revision in delta.revisions]
            logger.info(
                "📜 %s: %d revision(s) to analyze (mode=%s, cursor=%s, head=%s)",
                target.key,
                len(revision_ids),
                delta.mode,
                (cursor_id or "none")[:7],
                (head or "none")[:7],
            )

            run_id = await self._store.append_run(
                RunRecord(
                    target=target.key,
                    requested_by=event.requested_by,
                    revisions_analyzed=revision_ids,
                )
            )

            payload = await ContextAssembler(client, include_files=self._include_files).assemble(
                target, details, delta, event.command
            )
            result = await self._invoker.invoke(payload.to_request())
            if result.source != "remote":
                logger.warning("⚠️ Analysis for %s came from fallback: %s", target.key, result.source)

            analysis = normalize_analysis(result.data, provenance=result.source)
            body = render_for(
                client.comment_format,
                analysis,
                new_revisions=delta.revisions,
                is_update=delta.is_update,
                short=event.command.analysis_type == AnalysisType.SHORT,
            )
        except Exception as exc:
            logger.error("❌ Run for %s failed before posting: %s", target.key, exc, exc_info=True)
            return await self._fail(event, run_id, str(exc))

        try:
            comment_id = await client.post_comment(target, body)
        except Exception as exc:
            logger.error("❌ Failed to post analysis to %s: %s", target.key, exc, exc_info=True)
            return await self._fail(event, run_id, str(exc), revision_ids)

        cursor_advanced = False
        bookkeeping_error: str | None = None
        if head:
            try:
                await self._advance_cursor(installation_id, target.key, cursor_id, head)
                cursor_advanced = True
            except CursorConflictError as exc:
                logger.warning("⚠️ %s - keeping the newer cursor", exc)
            except Exception as exc:
                logger.error("❌ Could not advance cursor for %s after posting: %s", target.key, exc)
                bookkeeping_error = str(exc)

        try:
            await self._store.finish_run(run_id, RunStatus.COMPLETED, result_ref=comment_id)
        except Exception as exc:
            logger.error("❌ Could not record completed run %s for %s: %s", run_id, target.key, exc)
            bookkeeping_error = bookkeeping_error or str(exc)
        try:
            await client.mark_reviewed(target)
        except Exception as exc:
            logger.warning("⚠️ Could not mark %s as reviewed: %s", target.key, exc)

        logger.info(
            "✅ Run %s for %s completed (source=%s, comment=%s)",
            run_id,
            target.key,
            result.source,
            comment_id,
        )
        return RunOutcome(
            run_id=run_id,
            status=RunStatus.COMPLETED,
            comment_id=comment_id,
            revisions=revision_ids,
            source=result.source,
            cursor_advanced=cursor_advanced,
            error=bookkeeping_error,
        )

    async def _advance_cursor(
        self, installation_id: int, target: str, expected: str | None, new: str
    ) -> None:
        if await self._store.compare_and_set_cursor(installation_id, target, expected, new):
            logger.info("📌 Cursor for %s advanced to %s", target, new[:7])
            return
        current = await self._store.get_cursor(installation_id, target)
        raise CursorConflictError(target, expected, current.revision_id if current else None)

    async def _fail(
        self,
        event: TriggerEvent,
        run_id: int | None,
        error: str,
        revisions: list[str] | None = None,
    ) -> RunOutcome:
        try:
            if run_id is None:
                run_id = await self._store.append_run(
                    RunRecord(target=event.target.key, requested_by=event.requested_by)
                )
            await self._store.finish_run(run_id, RunStatus.FAILED)
        except Exception as exc:
            logger.error("❌ Could not record failed run for %s: %s", event.target.key, exc)
        return RunOutcome(
            run_id=run_id,
            status=RunStatus.FAILED,
            revisions=list(revisions or []),
            error=error,
        )
