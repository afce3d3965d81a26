"""Tests for markdown and ADF comment rendering."""
from qarecipe.core.models import CanonicalAnalysis, Revision, Scenario
from qarecipe.formatters import (
    FOOTER,
    MANUAL_REVIEW_MARKER,
    format_adf,
    format_markdown,
    markdown_to_adf,
    render_for,
)
from qarecipe.formatters.markdown import (
    MAX_CELL_CHARS,
    UPDATE_HEADER,
    escape_cell,
    render_scenario_table,
    render_steps,
)


def _analysis(**overrides) -> CanonicalAnalysis:
    values = {
        "risk_summary": "Checkout flow changed",
        "score": 8,
        "risks": ["Payment retries"],
        "questions": ["Are refunds affected?"],
        "test_scenarios": [
            Scenario(
                name="Pay with card",
                priority="Critical Path",
                steps=["Add item", "Pay"],
                expected_result="Order confirmed",
            )
        ],
    }
    values.update(overrides)
    return CanonicalAnalysis(**values)


class TestCells:
    def test_escape_pipes_and_newlines(self):
        assert escape_cell("a | b\nc") == "a \\| b c"

    def test_long_cell_is_clipped(self):
        cell = escape_cell("x" * 2000)
        assert cell == "x" * MAX_CELL_CHARS + "…"

    def test_steps_are_numbered_with_breaks(self):
        assert render_steps(["Open", "Close"]) == "1. Open<br>2. Close"

    def test_table_rows(self):
        table = render_scenario_table(_analysis().test_scenarios)
        lines = table.split("\n")
        assert lines[0] == "| Scenario | Steps | Expected Result | Priority |"
        assert lines[2] == "| Pay with card | 1. Add item<br>2. Pay | Order confirmed | Critical Path |"

    def test_steps_cell_is_bounded(self):
        scenario = Scenario(name="Long", steps=["y" * 300] * 5)
        row = render_scenario_table([scenario]).split("\n")[2]
        steps_cell = row.split(" | ")[1]
        assert len(steps_cell) == MAX_CELL_CHARS + 1


class TestFormatMarkdown:
    def test_structured_comment(self):
        comment = format_markdown(_analysis())
        assert "### 🫀 Pulse" in comment
        assert "**Ready for Dev: 8/10**" in comment
        assert "- Payment retries" in comment
        assert "### 🧠 Review Focus" in comment
        assert "| Pay with card |" in comment
        assert comment.endswith(FOOTER)
        assert MANUAL_REVIEW_MARKER not in comment

    def test_short_skips_review_focus(self):
        assert "Review Focus" not in format_markdown(_analysis(), short=True)

    def test_no_risks_and_no_scenarios(self):
        comment = format_markdown(CanonicalAnalysis())
        assert "No critical risks identified" in comment
        assert "_No test scenarios were produced._" in comment

    def test_degraded_analysis_carries_marker(self):
        comment = format_markdown(_analysis(provenance="local"))
        assert MANUAL_REVIEW_MARKER in comment
        assert "source: local" in comment

    def test_manual_review_level_carries_marker(self):
        comment = format_markdown(_analysis(score_level="Needs Manual Review"))
        assert MANUAL_REVIEW_MARKER in comment
        assert "**Ready for Dev: 8/10** • Needs Manual Review" in comment

    def test_update_lists_every_new_revision(self):
        revisions = [
            Revision(id="1111111aaaa", message="Fix cart\n\ndetails"),
            Revision(id="2222222bbbb", message="Add coupon field"),
        ]
        comment = format_markdown(_analysis(), new_revisions=revisions, is_update=True)
        assert comment.startswith(f"## {UPDATE_HEADER}")
        assert "1. `1111111` - Fix cart" in comment
        assert "2. `2222222` - Add coupon field" in comment
        assert "details" not in comment

    def test_markdown_passthrough_is_near_unchanged(self):
        markdown = "## 📊 Release Pulse\n\n\n\n**Ship Score:** 7/10"
        comment = format_markdown(CanonicalAnalysis(markdown=markdown))
        assert comment.startswith("## 📊 Release Pulse\n\n**Ship Score:** 7/10")
        assert "### 🫀 Pulse" not in comment

    def test_rendering_is_deterministic(self):
        assert format_markdown(_analysis()) == format_markdown(_analysis())


class TestAdf:
    def test_document_structure(self):
        doc = markdown_to_adf("line one\n\nline two")
        assert doc["type"] == "doc"
        assert doc["version"] == 1
        texts = [node["content"][0]["text"] for node in doc["content"]]
        assert texts == ["line one", " ", "line two"]
        assert all(node["type"] == "paragraph" for node in doc["content"])

    def test_adf_comment_matches_markdown(self):
        analysis = _analysis()
        doc = format_adf(analysis)
        texts = [node["content"][0]["text"] for node in doc["content"]]
        assert "\n".join(t if t != " " else "" for t in texts) == format_markdown(analysis)

    def test_render_for_dispatches_on_format(self):
        assert isinstance(render_for("adf", _analysis()), dict)
        assert isinstance(render_for("markdown", _analysis()), str)
