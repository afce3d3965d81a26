"""Atlassian Document Format rendering for Jira comments."""

from collections.abc import Sequence
from typing import Any

from qarecipe.core.models import CanonicalAnalysis, Revision
from qarecipe.formatters.markdown import format_markdown


def markdown_to_adf(markdown: str) -> dict[str, Any]:
    """Wrap each markdown line in its own paragraph node.

    Jira rejects empty text nodes, so blank lines become a single space.
    """
    content = []
    for line in (markdown or "").split("\n"):
        content.append(
            {
                "type": "paragraph",
                "content": [{"type": "text", "text": line if line.strip() else " "}],
            }
        )
    return {"type": "doc", "version": 1, "content": content}


def format_adf(
    analysis: CanonicalAnalysis,
    *,
    new_revisions: Sequence[Revision] | None = None,
    is_update: bool = False,
    short: bool = False,
) -> dict[str, Any]:
    return markdown_to_adf(
        format_markdown(analysis, new_revisions=new_revisions, is_update=is_update, short=short)
    )
