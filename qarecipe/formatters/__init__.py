"""Platform-native comment renderers."""
from typing import Any

from qarecipe.formatters.adf import format_adf, markdown_to_adf
from qarecipe.formatters.markdown import FOOTER, MANUAL_REVIEW_MARKER, format_markdown


def render_for(comment_format: str, analysis, **kwargs: Any) -> Any:
    """Dispatch on a client's ``comment_format`` (``"markdown"`` or ``"adf"``)."""
    if comment_format == "adf":
        return format_adf(analysis, **kwargs)
    return format_markdown(analysis, **kwargs)


__all__ = [
    "FOOTER",
    "MANUAL_REVIEW_MARKER",
    "format_adf",
    "format_markdown",
    "markdown_to_adf",
    "render_for",
]
