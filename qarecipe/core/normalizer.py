"""Projection of heterogeneous reasoning output onto :class:`CanonicalAnalysis`.

A shape probe classifies the raw data as one of three variants, each handled by
its own converter:

* :class:`MarkdownPassthrough` - trusted markdown with recognized section headers
* :class:`StructuredKnown` - an object carrying known analysis keys, or a bare
  list of scenario objects
* :class:`StructuredUnknown` - anything else (partial objects, plain strings)

Every scalar goes through :func:`as_string`, which never raises.
:func:`normalize_analysis` itself never raises either. Internal faults become a
minimal fallback analysis with a diagnostic listing the raw keys observed.
"""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass
from typing import Any, Union

from qarecipe.core.errors import NormalizationError
from qarecipe.core.models import (
    DEFAULT_PRIORITY,
    SCENARIO_PRIORITIES,
    CanonicalAnalysis,
    Scenario,
)

logger = logging.getLogger(__name__)

MARKDOWN_HEADERS = (
    "📊 Release Pulse",
    "🎯 QA Analysis",
    "### 🫀 Pulse",
    "## Test Recipe",
    "## 🧪 Test Recipe",
)
_TABLE_HEADER_RE = re.compile(
    r"\|\s*Scenario\s*\|\s*Steps\s*\|\s*Expected Result\s*\|\s*Priority\s*\|", re.IGNORECASE
)
_KNOWN_KEYS = {
    "testRecipe",
    "featureTestRecipe",
    "technicalTestRecipe",
    "testScenarios",
    "productionReadinessScore",
    "readyForDevelopmentScore",
    "riskAreas",
    "risks",
    "summary",
}
_RECIPE_BUCKETS = {
    "criticalPath": "Critical Path",
    "happyPath": "Happy Path",
    "general": "Happy Path",
    "edgeCases": "Edge Case",
    "regression": "Regression",
    "negative": "Negative",
}
_NUMBERED_SPLIT_RE = re.compile(r"(?<!\S)(?=\d+[\).]\s+)")
_SENTENCE_SPLIT_RE = re.compile(r"\.\s+(?=[A-Z])")
_STEP_PREFIX_RE = re.compile(r"^(?:\d+[.)]\s+|[-•*]\s+)")
_FALLBACK_SCENARIO_NAME = "Review analysis output"


# ---------------------------------------------------------------------------
# Shape variants
# ---------------------------------------------------------------------------


@dataclass
class MarkdownPassthrough:
    text: str


@dataclass
class StructuredKnown:
    data: dict[str, Any]


@dataclass
class StructuredUnknown:
    data: Any


AnalysisShape = Union[MarkdownPassthrough, StructuredKnown, StructuredUnknown]


# ---------------------------------------------------------------------------
# Total coercion helpers
# ---------------------------------------------------------------------------


def as_string(value: Any) -> str:
    """Coerce anything to text without raising."""
    if value is None:
        return ""
    if isinstance(value, str):
        return value
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (int, float)):
        return str(value)
    if isinstance(value, (dict, list, tuple)):
        try:
            return json.dumps(value, ensure_ascii=False, default=str)
        except (TypeError, ValueError):
            return ""
    try:
        return str(value)
    except Exception:
        return ""


def as_string_array(value: Any) -> list[str]:
    if isinstance(value, (list, tuple)):
        return [text for text in (as_string(item).strip() for item in value) if text]
    if isinstance(value, str):
        return [line.strip() for line in value.split("\n") if line.strip()]
    return []


def clean_step_number(step: str) -> str:
    """Strip a leading ordinal (``1.``, ``2)``) or bullet (``-``, ``•``, ``*``)."""
    return _STEP_PREFIX_RE.sub("", as_string(step).strip()).strip()


def _split_step_text(text: str) -> list[str]:
    stripped = text.strip()
    if not stripped:
        return []
    for splitter in (
        lambda t: t.split("\n"),
        lambda t: _NUMBERED_SPLIT_RE.split(t),
        lambda t: _SENTENCE_SPLIT_RE.split(t),
    ):
        parts = [part.strip() for part in splitter(stripped) if part and part.strip()]
        if len(parts) > 1:
            return parts
    return [stripped]


def as_steps(value: Any) -> list[str]:
    """Ordered, prefix-free steps from arrays, newline, numbered or sentence text."""
    if isinstance(value, (list, tuple)):
        raw = [as_string(item) for item in value]
    elif isinstance(value, str):
        raw = _split_step_text(value)
    elif isinstance(value, dict):
        if "steps" in value:
            return as_steps(value["steps"])
        text = as_string(value)
        raw = [text] if text else []
    elif value is None:
        raw = []
    else:
        raw = [as_string(value)]
    return [step for step in (clean_step_number(item) for item in raw) if step]


def normalize_priority(value: Any) -> str:
    """Map a free-form priority onto the enumerated set; default Happy Path."""
    text = as_string(value).strip().lower()
    for priority in SCENARIO_PRIORITIES:
        if text == priority.lower():
            return priority
    for token, priority in (
        ("critical", "Critical Path"),
        ("edge", "Edge Case"),
        ("regression", "Regression"),
        ("negative", "Negative"),
        ("happy", "Happy Path"),
    ):
        if token in text:
            return priority
    if text:
        logger.debug("Unrecognized scenario priority %r -> %s", text, DEFAULT_PRIORITY)
    return DEFAULT_PRIORITY


def parse_score(value: Any) -> int | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return int(value)
    match = re.search(r"-?\d+", as_string(value))
    return int(match.group(0)) if match else None


# ---------------------------------------------------------------------------
# Shape probe
# ---------------------------------------------------------------------------


def _parse_json_text(text: str) -> Any:
    """Parse JSON from raw text, a fenced block, or the outermost braces."""
    candidates = [text.strip()]
    candidates.extend(
        block.strip()
        for block in re.findall(r"```(?:json)?\s*([\s\S]*?)\s*```", text, flags=re.IGNORECASE)
        if block.strip()
    )
    first, last = text.find("{"), text.rfind("}")
    if first != -1 and last > first:
        candidates.append(text[first : last + 1])
    for candidate in candidates:
        try:
            parsed = json.loads(candidate)
        except ValueError:
            continue
        if isinstance(parsed, dict) or _is_scenario_list(parsed):
            return parsed
    return None


def _is_scenario_list(data: Any) -> bool:
    return isinstance(data, list) and bool(data) and all(isinstance(item, dict) for item in data)


def probe_shape(data: Any) -> AnalysisShape:
    if isinstance(data, str):
        if any(header in data for header in MARKDOWN_HEADERS) or _TABLE_HEADER_RE.search(data):
            return MarkdownPassthrough(data)
        if "{" in data:
            parsed = _parse_json_text(data)
            if parsed is not None:
                return probe_shape(parsed)
        return StructuredUnknown(data)
    if _is_scenario_list(data):
        return StructuredKnown({"testScenarios": list(data)})
    if isinstance(data, dict):
        for key in ("markdown", "analysis", "content"):
            nested = data.get(key)
            if isinstance(nested, str) and any(h in nested for h in MARKDOWN_HEADERS):
                return MarkdownPassthrough(nested)
        if _KNOWN_KEYS & set(data.keys()):
            return StructuredKnown(data)
    return StructuredUnknown(data)


# ---------------------------------------------------------------------------
# Converters
# ---------------------------------------------------------------------------


def _scenario_from_object(index: int, item: Any, default_priority: str | None = None) -> Scenario:
    if not isinstance(item, dict):
        text = as_string(item).strip()
        return Scenario(
            name=text.split("\n", 1)[0][:200] or f"Scenario {index + 1}",
            priority=normalize_priority(default_priority),
            steps=as_steps(text),
        )
    name = (
        item.get("name")
        or item.get("title")
        or item.get("scenario")
        or item.get("description")
        or f"Scenario {index + 1}"
    )
    priority = item.get("priority") or item.get("severity") or item.get("type") or default_priority
    steps = item.get("steps") or item.get("step") or item.get("instructions") or item.get("testSteps")
    expected = (
        item.get("expectedResult")
        or item.get("expected")
        or item.get("assertion")
        or item.get("expected_result")
        or ""
    )
    hint = item.get("automationHint") or item.get("automation") or item.get("selector")
    return Scenario(
        name=as_string(name).strip(),
        priority=normalize_priority(priority),
        steps=as_steps(steps),
        expected_result=as_string(expected).strip(),
        automation_hint=as_string(hint).strip() or None,
    )


def _bucket_items(value: Any) -> list[Any]:
    """Items of one recipe bucket; a lone string or object is a single scenario."""
    if isinstance(value, (list, tuple)):
        return list(value)
    if isinstance(value, str):
        return [{"name": value.strip().split("\n", 1)[0][:200], "steps": value}] if value.strip() else []
    if isinstance(value, dict):
        return [value]
    return []


def _scenarios_from_recipe(recipe: Any) -> list[Scenario]:
    if recipe is None:
        return []
    if isinstance(recipe, str):
        return [Scenario(name="Test Scenario", steps=as_steps(recipe))] if recipe.strip() else []
    if isinstance(recipe, (list, tuple)):
        return [_scenario_from_object(i, item) for i, item in enumerate(recipe)]
    if isinstance(recipe, dict):
        if any(key in recipe for key in _RECIPE_BUCKETS):
            scenarios = []
            for key, priority in _RECIPE_BUCKETS.items():
                for item in _bucket_items(recipe.get(key)):
                    scenarios.append(_scenario_from_object(len(scenarios), item, priority))
            return scenarios
        return [_scenario_from_object(0, recipe)]
    return [_scenario_from_object(0, recipe)]


def convert_known(data: dict[str, Any]) -> CanonicalAnalysis:
    summary = data.get("summary")
    readiness = data.get("productionReadinessScore")
    if isinstance(summary, dict):
        risk_summary = as_string(summary.get("reasoning") or summary.get("description"))
        summary_score = summary.get("shipScore")
    else:
        risk_summary = as_string(summary or data.get("riskSummary"))
        summary_score = None

    score_level = None
    score = None
    if isinstance(readiness, dict):
        score = parse_score(readiness.get("score"))
        score_level = as_string(readiness.get("level")).strip() or None
    elif readiness is not None:
        score = parse_score(readiness)
    if score is None:
        for candidate in (summary_score, data.get("readyForDevelopmentScore"), data.get("shipScore"), data.get("score")):
            if candidate is not None:
                score = parse_score(candidate)
                if score is not None:
                    break

    scenarios = _scenarios_from_recipe(data.get("testRecipe"))
    scenarios.extend(_scenarios_from_recipe(data.get("testScenarios")))
    for key in ("featureTestRecipe", "technicalTestRecipe"):
        scenarios.extend(_scenarios_from_recipe(data.get(key)))
    if data.get("testRecipe") and not scenarios:
        logger.info("⚠️ Analysis had a test recipe but it normalized to zero scenarios")

    return CanonicalAnalysis(
        risk_summary=risk_summary.strip(),
        score=score,
        score_level=score_level,
        risks=as_string_array(data.get("risks") or data.get("riskAreas")),
        questions=as_string_array(data.get("questions") or data.get("smartQuestions")),
        test_scenarios=scenarios,
    )


def _parse_markdown_table(text: str) -> list[Scenario]:
    match = _TABLE_HEADER_RE.search(text)
    if not match:
        return []
    scenarios = []
    for line in text[match.end():].split("\n")[1:]:
        stripped = line.strip()
        if not stripped.startswith("|"):
            if scenarios:
                break
            continue
        cells = [cell.strip() for cell in stripped.strip("|").split("|")]
        if len(cells) < 4 or not cells[0] or re.fullmatch(r"[\s\-:]+", cells[0]):
            continue
        scenarios.append(
            Scenario(
                name=cells[0],
                steps=as_steps(cells[1].replace("<br>", "\n")),
                expected_result=cells[2],
                priority=normalize_priority(cells[3]),
            )
        )
    return scenarios


def convert_markdown(text: str) -> CanonicalAnalysis:
    collapsed = re.sub(r"\n{3,}", "\n\n", text).strip()
    score_match = re.search(r"(?:Ship Score|Ready for Dev)[^\d]{0,20}(\d+)\s*/\s*10", collapsed)
    return CanonicalAnalysis(
        markdown=collapsed,
        score=int(score_match.group(1)) if score_match else None,
        score_level="Needs Manual Review" if "Needs Manual Review" in collapsed else None,
        test_scenarios=_parse_markdown_table(collapsed),
    )


def convert_unknown(data: Any) -> CanonicalAnalysis:
    """Best effort for unknown shapes: find scenario-like lists, else wrap as one scenario."""
    diagnostics = []
    if isinstance(data, dict):
        diagnostics.append(f"Unrecognized analysis shape. Raw keys: {', '.join(map(str, data.keys())) or 'none'}")
        for value in data.values():
            if isinstance(value, list) and value and all(isinstance(item, dict) for item in value):
                if any({"steps", "step", "instructions"} & set(item.keys()) for item in value):
                    return CanonicalAnalysis(
                        test_scenarios=_scenarios_from_recipe(value), diagnostics=diagnostics
                    )
    text = as_string(data).strip()
    steps = as_steps(text) if text else []
    scenarios = [Scenario(name=_FALLBACK_SCENARIO_NAME, steps=steps)] if steps else []
    return CanonicalAnalysis(risk_summary=text[:500], test_scenarios=scenarios, diagnostics=diagnostics)


def _raw_keys(data: Any) -> str:
    if isinstance(data, dict):
        return ", ".join(map(str, data.keys())) or "none"
    return type(data).__name__


def fallback_analysis(data: Any, error: Exception | None = None) -> CanonicalAnalysis:
    """Minimal analysis used when normalization itself failed."""
    diagnostics = [f"Analysis generated, but normalization failed. Raw keys: {_raw_keys(data)}"]
    if error is not None:
        diagnostics.append(f"{type(error).__name__}: {error}")
    return CanonicalAnalysis(
        risk_summary="Analysis could not be fully processed - manual review recommended",
        score_level="Needs Manual Review",
        diagnostics=diagnostics,
    )


def _convert(shape: AnalysisShape) -> CanonicalAnalysis:
    try:
        if isinstance(shape, MarkdownPassthrough):
            return convert_markdown(shape.text)
        if isinstance(shape, StructuredKnown):
            return convert_known(shape.data)
        return convert_unknown(shape.data)
    except Exception as exc:
        raise NormalizationError(f"{type(shape).__name__} conversion failed: {exc}") from exc


def normalize_analysis(data: Any, provenance: str = "remote") -> CanonicalAnalysis:
    """Normalize raw analysis *data*; never raises."""
    try:
        analysis = _convert(probe_shape(data))
    except Exception as exc:
        logger.error("❌ Error normalizing analysis (raw keys: %s): %s", _raw_keys(data), exc)
        analysis = fallback_analysis(data, exc)
    analysis.provenance = provenance
    return analysis
