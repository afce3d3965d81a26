"""Size-bounded analysis payload assembly.

Collects description, diff, chronological commits (with heuristic change
categories) and optionally a few full file contents plus selector hints, then
caps every artifact. Truncation is always logged and reported in the payload.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Any

from qarecipe.core.models import (
    AnalysisType,
    ChangedFile,
    Revision,
    TargetDetails,
    TargetRef,
    TriggerCommand,
)
from qarecipe.core.prompt_budget import cap_artifact
from qarecipe.core.revisions import RevisionDelta

logger = logging.getLogger(__name__)

MAX_DESCRIPTION_CHARS = 4000
MAX_DIFF_CHARS = 60000
MAX_SHORT_DIFF_CHARS = 15000
MAX_COMMIT_DIFF_CHARS = 2000
MAX_FILES_TO_FETCH = 12
MAX_FILE_CONTENT_CHARS = 8000
MAX_SELECTOR_HINTS = 200
MAX_TICKET_COMMENTS_CHARS = 6000

CODE_FILE_RE = re.compile(r"\.(js|ts|jsx|tsx|vue|svelte|py|java|go|rb|c|cs|php)$", re.IGNORECASE)
# Front-end sources; everything else in CODE_FILE_RE ranks below them.
PRIORITY_EXTENSIONS = (".tsx", ".jsx", ".ts", ".js", ".vue", ".svelte")
_IGNORED_PATH_PARTS = ("node_modules", "dist")

SELECTOR_PATTERNS: tuple[tuple[str, re.Pattern[str]], ...] = (
    ("data-testid", re.compile(r"data-testid=[\"']([^\"']+)[\"']")),
    ("aria-label", re.compile(r"aria-label=[\"']([^\"']+)[\"']")),
    ("id", re.compile(r"\bid=[\"']([^\"']+)[\"']")),
    ("name", re.compile(r"\bname=[\"']([^\"']+)[\"']")),
    ("data-cy", re.compile(r"data-cy=[\"']([^\"']+)[\"']")),
    ("testId", re.compile(r"testId[\"'\s:=]+[\"']?([a-zA-Z0-9_-]+)[\"']?", re.IGNORECASE)),
)

# Verb patterns whose object describes what a commit actually did.
FIX_PATTERNS = tuple(
    re.compile(rf"{verb}\s+([^,\.:]+)", re.IGNORECASE)
    for verb in (
        "prevent",
        "remove",
        "fix",
        "handle",
        "resolve",
        "avoid",
        "stop",
        "correct",
        "add",
        "improve",
        "ensure",
    )
)
_STOP_WORDS = {"the", "a", "an", "and", "or", "but", "to", "from", "for", "with", "without", "by"}

_FIX_KEYWORDS = ("fix", "bug", "issue", "resolve")
_ADD_KEYWORDS = ("add", "implement", "create", "introduce")
_REMOVE_KEYWORDS = ("remove", "delete", "drop")
_CHANGE_KEYWORDS = ("update", "modify", "change", "improve", "refactor", "enhance")
_UI_KEYWORDS = ("ui", "view", "component", "button", "navigation", "toast", "notification")
_UI_CHANGE_KEYWORDS = _UI_KEYWORDS + ("visible", "flow")


@dataclass
class ChangeSummary:
    added: list[str] = field(default_factory=list)
    removed: list[str] = field(default_factory=list)
    fixed: list[dict[str, Any]] = field(default_factory=list)
    changed: list[str] = field(default_factory=list)
    user_facing: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "added": list(self.added),
            "removed": list(self.removed),
            "fixed": [dict(item) for item in self.fixed],
            "changed": list(self.changed),
            "userFacing": list(self.user_facing),
        }


@dataclass
class AnalysisPayload:
    """Request body for the reasoning endpoint."""

    target_id: str
    title: str
    body: str
    diff: str
    commits: list[dict[str, Any]] = field(default_factory=list)
    analysis_type: AnalysisType = AnalysisType.FULL
    platform: str = ""
    is_update: bool = False
    commits_context: str = ""
    changes_summary: dict[str, Any] = field(default_factory=dict)
    file_contents: dict[str, str] = field(default_factory=dict)
    selector_hints: list[dict[str, str]] = field(default_factory=list)
    ticket: dict[str, Any] = field(default_factory=dict)
    request_details: dict[str, Any] = field(default_factory=dict)
    truncated: list[str] = field(default_factory=list)

    def to_request(self) -> dict[str, Any]:
        request: dict[str, Any] = {
            "targetId": self.target_id,
            "platform": self.platform,
            "title": self.title,
            "body": self.body,
            "diff": self.diff,
            "commits": self.commits,
            "analysisType": self.analysis_type.value,
            "isUpdate": self.is_update,
            "commitsContext": self.commits_context,
            "changesSummary": self.changes_summary,
            "requestDetails": self.request_details,
        }
        if self.file_contents:
            request["fileContents"] = self.file_contents
        if self.selector_hints:
            request["selectorHints"] = self.selector_hints
        if self.ticket:
            request["ticket"] = self.ticket
        if self.truncated:
            request["truncated"] = list(self.truncated)
        return request


# ---------------------------------------------------------------------------
# Commit categorization
# ---------------------------------------------------------------------------


def extract_fix_descriptions(message: str) -> list[str]:
    """Best-effort objects of fix-like verbs in a commit message."""
    fixes: list[str] = []
    first_line = message.split("\n", 1)[0]

    for pattern in FIX_PATTERNS:
        for match in pattern.finditer(message):
            description = match.group(1).strip()
            if 3 < len(description) < 100 and description.lower() not in _STOP_WORDS:
                if description not in fixes:
                    fixes.append(description)

    if ":" in message and "://" not in message:
        after_colon = message.split(":", 1)[1]
        for part in re.split(r"[,;\.]", after_colon):
            part = part.strip()
            if 5 < len(part) < 150 and part not in fixes:
                fixes.append(part)

    if not fixes:
        cleaned = re.sub(r"^(fix|fixes|fixing)\s*:?\s*", "", first_line, flags=re.IGNORECASE).strip()
        if len(cleaned) > 10:
            fixes.append(cleaned)
    return fixes


def _mentions(text: str, keywords: tuple[str, ...]) -> bool:
    return any(keyword in text for keyword in keywords)


def categorize_commits(revisions: list[Revision]) -> ChangeSummary:
    """Heuristic added/removed/fixed/changed/user-facing buckets."""
    summary = ChangeSummary()
    for revision in revisions:
        lowered = revision.message.lower()
        first_line = revision.title

        if _mentions(lowered, _FIX_KEYWORDS):
            summary.fixed.append(
                {"commit": first_line, "fixes": extract_fix_descriptions(revision.message)}
            )
        if _mentions(lowered, _ADD_KEYWORDS):
            summary.added.append(first_line)
            if _mentions(lowered, _UI_KEYWORDS):
                summary.user_facing.append(first_line)
        if _mentions(lowered, _REMOVE_KEYWORDS):
            summary.removed.append(first_line)
        if _mentions(lowered, _CHANGE_KEYWORDS):
            summary.changed.append(first_line)
            if _mentions(lowered, _UI_CHANGE_KEYWORDS) and first_line not in summary.user_facing:
                summary.user_facing.append(first_line)
    return summary


def focus_commit_diff(revision: Revision, max_chars: int = MAX_COMMIT_DIFF_CHARS) -> str:
    """Keep the parts of a long commit diff that mention the commit's keywords."""
    diff = revision.diff or ""
    if not diff.strip():
        return ""

    relevant = diff
    if len(diff) > max_chars:
        keywords = [word for word in revision.message.lower().split() if len(word) > 4]
        lines = diff.split("\n")
        kept: list[str] = []
        found = False
        for index, line in enumerate(lines):
            lowered = line.lower()
            matches = any(keyword in lowered for keyword in keywords)
            if matches or (not found and index < 100):
                kept.append(line)
                found = found or matches
            elif found and index < 150:
                kept.append(line)
        if len(kept) > 50:
            relevant = "\n".join(kept[:100])

    capped = cap_artifact(
        relevant,
        name=f"commit {revision.short_id} diff",
        max_chars=max_chars,
        marker=f"\n... [{max(0, len(relevant) - max_chars)} more chars in full diff]",
    )
    return capped["text"]


def render_commit_section(
    revisions: list[Revision], *, is_update: bool, summary: ChangeSummary | None = None
) -> str:
    """Human-readable commit listing sent alongside the diff."""
    if not revisions:
        return ""
    if is_update:
        lines = [
            "## 🔄 ANALYSIS UPDATE - NEW COMMITS DETECTED",
            "",
            f"**{len(revisions)} new commit(s) have been added since the last analysis.** "
            "Regenerate a complete analysis considering all commits as one change set.",
        ]
    else:
        lines = [
            "## 🔄 COMPLETE ANALYSIS - ALL COMMITS",
            "",
            f"**This change contains {len(revisions)} commit(s).** Analyze them together.",
        ]
    lines.append("")
    for index, revision in enumerate(revisions, 1):
        lines.append(f"{index}. `{revision.short_id}` - {revision.title}")

    if summary is not None:
        fixed = [
            f"{item['commit']} ({'; '.join(item['fixes'])})" if item["fixes"] else item["commit"]
            for item in summary.fixed
        ]
        for label, items in (
            ("Fixed", fixed),
            ("Added", summary.added),
            ("Removed", summary.removed),
            ("Changed", summary.changed),
            ("User-facing", summary.user_facing),
        ):
            if items:
                lines.append("")
                lines.append(f"**{label}:**")
                lines.extend(f"- {item}" for item in items)

    for revision in revisions:
        focused = focus_commit_diff(revision)
        if focused:
            lines.append("")
            lines.append(f"**Commit `{revision.short_id}`:** {revision.title}")
            lines.append(f"```diff\n{focused}\n```")
    return "\n".join(lines)


# ---------------------------------------------------------------------------
# File contents and selector hints
# ---------------------------------------------------------------------------


def score_file(path: str) -> int:
    """Priority of a changed file for full-content fetching (UI files first)."""
    match = re.search(r"\.[^./]+$", path)
    extension = match.group(0) if match else ""
    if extension in PRIORITY_EXTENSIONS:
        return 10
    if "component" in path or "Button" in path or "Form" in path:
        return 5
    return 1


def select_code_files(files: list[ChangedFile]) -> list[ChangedFile]:
    candidates = [
        item
        for item in files
        if item.path
        and item.status != "removed"
        and not any(part in item.path for part in _IGNORED_PATH_PARTS)
        and CODE_FILE_RE.search(item.path)
    ]
    return sorted(candidates, key=lambda item: score_file(item.path), reverse=True)


def extract_selector_hints(path: str, content: str) -> list[dict[str, str]]:
    hints = []
    for kind, pattern in SELECTOR_PATTERNS:
        for match in pattern.finditer(content):
            hints.append({"file": path, "type": kind, "value": match.group(1)})
    return hints


# ---------------------------------------------------------------------------
# Assembler
# ---------------------------------------------------------------------------


class ContextAssembler:
    """Builds an :class:`AnalysisPayload` for one run.

    Args:
        client: The target's platform client.
        include_files: Fetch full contents of a few changed files.
    """

    def __init__(self, client: Any, include_files: bool = True):
        self._client = client
        self._include_files = include_files

    async def assemble(
        self,
        target: TargetRef,
        details: TargetDetails,
        delta: RevisionDelta,
        command: TriggerCommand | None = None,
    ) -> AnalysisPayload:
        analysis_type = command.analysis_type if command else AnalysisType.FULL
        truncated: list[str] = []

        description = cap_artifact(
            details.body, name="description", max_chars=MAX_DESCRIPTION_CHARS
        )
        if description["truncated"]:
            truncated.append("description")

        raw_diff = await self._client.fetch_diff(target)
        diff_limit = MAX_SHORT_DIFF_CHARS if analysis_type == AnalysisType.SHORT else MAX_DIFF_CHARS
        diff = cap_artifact(raw_diff, name="diff", max_chars=diff_limit)
        if diff["truncated"]:
            truncated.append("diff")

        revisions = [
            await self._client.fetch_revision_detail(target, revision)
            for revision in delta.revisions
        ]
        summary = categorize_commits(revisions)
        commits = [
            {
                "sha": revision.id,
                "message": revision.message,
                "author": revision.author,
                "date": revision.date,
            }
            for revision in revisions
        ]

        payload = AnalysisPayload(
            target_id=target.key,
            title=details.title,
            body=description["text"],
            diff=diff["text"],
            commits=commits,
            analysis_type=analysis_type,
            platform=target.platform.value,
            is_update=delta.is_update,
            commits_context=render_commit_section(
                revisions, is_update=delta.is_update, summary=summary
            ),
            changes_summary=summary.to_dict(),
            request_details=dict(command.details) if command else {},
            truncated=truncated,
        )
        if command is not None:
            payload.request_details.update(
                {key: value for key, value in command.flags.items() if value}
            )

        ticket = self._ticket_context(details, truncated)
        if ticket:
            payload.ticket = ticket

        if self._include_files and analysis_type == AnalysisType.FULL:
            contents, hints = await self._collect_file_contents(target, details.head_revision)
            payload.file_contents = contents
            if len(hints) > MAX_SELECTOR_HINTS:
                logger.info(
                    "✂️ Truncated selector hints from %d to %d", len(hints), MAX_SELECTOR_HINTS
                )
                truncated.append("selectorHints")
                hints = hints[:MAX_SELECTOR_HINTS]
            payload.selector_hints = hints

        logger.info(
            "📦 Assembled payload for %s: %d commits, %d diff chars, %d files, %d hints",
            target.key,
            len(commits),
            len(payload.diff),
            len(payload.file_contents),
            len(payload.selector_hints),
        )
        return payload

    @staticmethod
    def _ticket_context(details: TargetDetails, truncated: list[str]) -> dict[str, Any]:
        extra = details.extra or {}
        if "comments" not in extra:
            return {}
        comment_text = "\n\n".join(
            f"{item.get('author', 'Unknown')}: {item.get('body', '')}"
            for item in extra.get("comments") or []
        )
        capped = cap_artifact(comment_text, name="ticket comments", max_chars=MAX_TICKET_COMMENTS_CHARS)
        if capped["truncated"]:
            truncated.append("ticketComments")
        return {
            "type": extra.get("type"),
            "priority": extra.get("priority"),
            "status": extra.get("status"),
            "labels": list(extra.get("labels") or []),
            "comments": capped["text"],
        }

    async def _collect_file_contents(
        self, target: TargetRef, ref: str | None
    ) -> tuple[dict[str, str], list[dict[str, str]]]:
        contents: dict[str, str] = {}
        hints: list[dict[str, str]] = []
        try:
            files = select_code_files(await self._client.list_changed_files(target))
        except Exception as exc:
            logger.warning("Could not list changed files for %s: %s", target.key, exc)
            return contents, hints

        for item in files:
            if len(contents) >= MAX_FILES_TO_FETCH:
                break
            try:
                content = await self._client.fetch_file(target, item.path, ref)
            except Exception as exc:
                logger.warning("Could not fetch %s: %s", item.path, exc)
                continue
            if not content:
                continue
            if len(content) > MAX_FILE_CONTENT_CHARS:
                logger.info(
                    "✂️ Skipped %s (%d chars > %d cap)", item.path, len(content), MAX_FILE_CONTENT_CHARS
                )
                continue
            contents[item.path] = content
            hints.extend(extract_selector_hints(item.path, content))

        logger.info(
            "📂 Fetched full contents for %d files, %d selector hints", len(contents), len(hints)
        )
        return contents, hints
