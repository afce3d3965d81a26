"""
CanonicalAnalysis -> Markdown comment renderer.

Used for GitHub, Bitbucket and Linear comments. The rendering is a pure
function of the analysis and the revisions it covered.
"""

import re
from collections.abc import Sequence

from qarecipe.core.models import CanonicalAnalysis, Revision, Scenario
from qarecipe.core.prompt_budget import clip

MAX_CELL_CHARS = 800
MANUAL_REVIEW_MARKER = "⚠️ Needs Manual Review"
UPDATE_HEADER = "🔄 Analysis Update - New Commits Detected"
FOOTER = "*🤖 **With Quality By Ovi** - AI-powered QA analysis by FirstQA*"


def escape_cell(text: str, max_chars: int = MAX_CELL_CHARS) -> str:
    """Make *text* safe for one markdown table cell."""
    value = clip(str(text or "").strip(), max_chars)
    value = value.replace("|", "\\|")
    return re.sub(r"\s*\n\s*", " ", value)


def render_steps(steps: Sequence[str]) -> str:
    return "<br>".join(
        f"{index}. {escape_cell(step)}" for index, step in enumerate(steps, start=1)
    )


def render_scenario_table(scenarios: Sequence[Scenario]) -> str:
    md = "| Scenario | Steps | Expected Result | Priority |\n"
    md += "|----------|-------|-----------------|----------|\n"
    for scenario in scenarios:
        md += (
            f"| {escape_cell(scenario.name)} "
            f"| {clip(render_steps(scenario.steps), MAX_CELL_CHARS)} "
            f"| {escape_cell(scenario.expected_result)} "
            f"| {scenario.priority} |\n"
        )
    return md.rstrip("\n")


def render_update_header(revisions: Sequence[Revision]) -> str:
    lines = [f"## {UPDATE_HEADER}", ""]
    for index, revision in enumerate(revisions, start=1):
        lines.append(f"{index}. `{revision.short_id}` - {revision.title}")
    return "\n".join(lines)


def _render_structured(analysis: CanonicalAnalysis, short: bool) -> str:
    lines = ["### 🫀 Pulse", ""]
    if analysis.score is not None:
        score_line = f"**Ready for Dev: {analysis.score}/10**"
        if analysis.score_level:
            score_line += f" • {analysis.score_level}"
        lines.append(score_line)
        lines.append("")
    if analysis.risk_summary:
        lines.extend([analysis.risk_summary, ""])

    lines.append("### ⚠️ Risks")
    if analysis.risks:
        lines.extend(f"- {risk}" for risk in analysis.risks)
    else:
        lines.append("- ✅ No critical risks identified")
    lines.append("")

    if analysis.questions and not short:
        lines.append("### 🧠 Review Focus")
        lines.extend(f"{i}. {q}" for i, q in enumerate(analysis.questions[:5], start=1))
        lines.append("")

    lines.append("### 🧪 Test Recipe")
    if analysis.test_scenarios:
        lines.append(render_scenario_table(analysis.test_scenarios))
    else:
        lines.append("_No test scenarios were produced._")
    return "\n".join(lines)


def format_markdown(
    analysis: CanonicalAnalysis,
    *,
    new_revisions: Sequence[Revision] | None = None,
    is_update: bool = False,
    short: bool = False,
) -> str:
    """Render *analysis* as a complete markdown comment.

    When *is_update* is set the comment starts with the update header and
    lists every revision in *new_revisions*. Degraded analyses carry the
    manual review marker.
    """
    sections = []
    if is_update:
        sections.append(render_update_header(new_revisions or []))
    if analysis.needs_manual_review:
        sections.append(
            f"> **{MANUAL_REVIEW_MARKER}** - automated analysis was degraded "
            f"(source: {analysis.provenance}); verify these scenarios manually."
        )
    if analysis.markdown:
        sections.append(re.sub(r"\n{3,}", "\n\n", analysis.markdown).strip())
    else:
        sections.append(_render_structured(analysis, short))
    sections.append(f"---\n\n{FOOTER}")
    return "\n\n".join(sections)
