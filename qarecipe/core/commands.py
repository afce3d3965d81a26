"""Trigger command detection for inbound comments.

Comment bodies arrive either as plain strings or as rich-document trees
(nested ``{"type", "text", "content": [...]}`` nodes). Both are flattened to
plain text before matching the command vocabulary.
"""

from __future__ import annotations

import logging
import re
from typing import Any

from qarecipe.core.models import TriggerCommand

logger = logging.getLogger(__name__)

COMMANDS = ("/qa", "/short")

# Automated actors whose display name contains one of these are our own bot.
BRAND_TOKENS = ("Ovi", "FirstQA")

# Phrases that only ever appear in comments this service posts.
SIGNATURE_PHRASES = (
    "🤖 Ovi QA Assistant",
    "With Quality By Ovi",
    "QA Analysis by **Ovi**",
    "🤖 **FirstQA Analysis**",
)

_BOOLEAN_FLAGS: dict[str, tuple[str, ...]] = {
    "testrun": ("testrun",),
    "index": ("index", "reindex", "analyze_codebase", "setup"),
}

_VALUE_FLAGS: dict[str, re.Pattern[str]] = {
    "env_url": re.compile(r"(?<![\w-])-env=(\S+)", re.IGNORECASE),
}

# "key: value" request details a reviewer may add under the command line.
_DETAIL_PATTERNS: dict[str, re.Pattern[str]] = {
    "environment": re.compile(r"(?:environment|env):\s*([^\n]+)", re.IGNORECASE),
    "browsers": re.compile(r"(?:browsers?):\s*([^\n]+)", re.IGNORECASE),
    "devices": re.compile(r"(?:devices?):\s*([^\n]+)", re.IGNORECASE),
    "scope": re.compile(r"(?:scope|focus area|test area):\s*([^\n]+)", re.IGNORECASE),
    "priority": re.compile(r"(?:priority):\s*([^\n]+)", re.IGNORECASE),
    "instructions": re.compile(r"(?:instructions|notes):\s*([^\n]+(?:\n[^\n]+)*)", re.IGNORECASE),
}

# Node types that end a line when flattened.
_BLOCK_NODES = frozenset(
    {"paragraph", "heading", "listItem", "blockquote", "codeBlock", "rule", "hardBreak"}
)


def flatten_document(body: Any) -> str:
    """Return the plain text of *body*.

    Plain strings pass through unchanged. Rich-document trees are walked
    depth-first and their ``text`` leaves concatenated in document order,
    with a newline after each block node so paragraphs stay separate lines.
    """
    if body is None:
        return ""
    if isinstance(body, str):
        return body

    parts: list[str] = []

    def _walk(node: Any) -> None:
        if isinstance(node, list):
            for child in node:
                _walk(child)
            return
        if not isinstance(node, dict):
            return
        if node.get("type") == "text" and isinstance(node.get("text"), str):
            parts.append(node["text"])
        children = node.get("content")
        if isinstance(children, list):
            for child in children:
                _walk(child)
        if node.get("type") in _BLOCK_NODES and parts and not parts[-1].endswith("\n"):
            parts.append("\n")

    _walk(body)
    return "".join(parts).strip()


def parse_flags(text: str) -> dict[str, Any]:
    """Parse trailing ``-flag`` and ``-key=value`` options independently."""
    body = str(text or "").strip()
    flags: dict[str, Any] = {}
    for name, aliases in _BOOLEAN_FLAGS.items():
        flags[name] = any(
            re.search(rf"(?<![\w-])-{re.escape(alias)}\b", body, re.IGNORECASE) for alias in aliases
        )
    for name, pattern in _VALUE_FLAGS.items():
        match = pattern.search(body)
        flags[name] = match.group(1).strip() if match else None
    return flags


def parse_request_details(text: str) -> dict[str, str]:
    """Extract optional ``environment: ...``-style details after the command."""
    content = re.sub(r"^/\w+\s*", "", str(text or "").strip()).strip()
    details: dict[str, str] = {}
    for name, pattern in _DETAIL_PATTERNS.items():
        match = pattern.search(content)
        if match:
            details[name] = match.group(1).strip()
    if content:
        details["full_content"] = content
    return details


def detect_command(text: str) -> TriggerCommand | None:
    """Return the trigger command *text* starts with, or ``None``."""
    stripped = str(text or "").strip()
    lowered = stripped.lower()
    for command in COMMANDS:
        if not lowered.startswith(command):
            continue
        rest = stripped[len(command):]
        if rest and not rest[0].isspace():
            continue
        return TriggerCommand(
            name=command,
            text=stripped,
            flags=parse_flags(rest),
            details=parse_request_details(stripped),
        )
    return None


def _contains_brand_token(name: str) -> str | None:
    for token in BRAND_TOKENS:
        if token.lower() == "ovi":
            if re.search(r"\bOvi\b", name):
                return token
        elif token.lower() in name.lower():
            return token
    return None


def loop_guard_reason(
    *,
    author_name: str | None,
    body_text: str | None,
    author_is_bot: bool = False,
) -> str | None:
    """Return why a comment must not trigger a run, or ``None`` when it may.

    Checked before any platform fetch so our own comments never re-trigger.
    """
    if author_is_bot:
        return "automated actor"
    token = _contains_brand_token(str(author_name or ""))
    if token:
        return f"author name contains brand token {token!r}"
    text = str(body_text or "")
    for phrase in SIGNATURE_PHRASES:
        if phrase in text:
            return "body contains our signature phrase"
    return None


def detect_trigger(
    body: Any,
    *,
    author_name: str | None,
    author_is_bot: bool = False,
) -> tuple[TriggerCommand | None, str | None]:
    """Flatten *body*, apply the loop guard, then match the command vocabulary.

    Returns ``(command, None)`` on a trigger, ``(None, reason)`` otherwise.
    """
    text = flatten_document(body)
    reason = loop_guard_reason(author_name=author_name, body_text=text, author_is_bot=author_is_bot)
    if reason:
        logger.info("⏭️ Skipping comment by %s: %s", author_name or "unknown", reason)
        return None, reason

    command = detect_command(text)
    if command is None:
        return None, "no trigger command"
    logger.info("🧪 %s command detected (author: %s)", command.name, author_name or "unknown")
    return command, None
