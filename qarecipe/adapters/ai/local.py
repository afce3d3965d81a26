"""Local heuristic analysis generator.

Runs in-process with no network access. It reads changed files and risky
patterns straight out of the payload's diff and builds a structured analysis
with the same shape the remote service returns.
"""

import logging
import re
from typing import Any

from qarecipe.adapters.ai.base import AnalysisStrategy
from qarecipe.core.errors import UpstreamAnalysisError

logger = logging.getLogger(__name__)

_DIFF_HEADER_RE = re.compile(r"^diff --git a/(\S+) b/(\S+)", re.MULTILINE)
LARGE_DIFF_CHARS = 20000

# (category, needle(s) in lower-cased diff, risk text)
RISK_PATTERNS: tuple[tuple[str, tuple[str, ...], str], ...] = (
    ("security", ("innerhtml", "dangerouslysetinnerhtml"), "Potential XSS with raw HTML injection"),
    ("security", ("eval(",), "Dynamic code evaluation detected - verify inputs are trusted"),
    ("security", ("password", "token", "secret"), "Credential handling changed - verify nothing is logged or exposed"),
    ("auth", ("auth", "login", "session", "permission"), "Authentication or authorization flow touched"),
    ("payment", ("payment", "checkout", "invoice", "billing"), "Payment flow touched - verify amounts and failure paths"),
    ("database", ("migration", "alter table", "create table", "schema"), "Schema or migration change - verify upgrade on existing data"),
    ("api", ("router.", "@app.route", "app.get(", "app.post(", "endpoint"), "API surface changed - verify request validation and error codes"),
    ("config", (".env", "config", "settings"), "Configuration changed - verify defaults in every environment"),
    ("reliability", ("settimeout", "setinterval", "addeventlistener"), "Timers or listeners added - verify cleanup"),
)


def extract_changed_files(diff: str) -> list[str]:
    files: list[str] = []
    for match in _DIFF_HEADER_RE.finditer(diff or ""):
        path = match.group(2)
        if path not in files:
            files.append(path)
    return files


def detect_risks(diff: str, changed_files: list[str]) -> list[tuple[str, str]]:
    lowered = (diff or "").lower() + "\n" + "\n".join(changed_files).lower()
    risks: list[tuple[str, str]] = []
    for category, needles, text in RISK_PATTERNS:
        if any(needle in lowered for needle in needles):
            risks.append((category, text))
    if len(diff or "") > LARGE_DIFF_CHARS:
        risks.append(("scope", f"Large change ({len(diff)} diff chars) - consider splitting the review"))
    return risks


def _area_name(path: str) -> str:
    parts = [part for part in path.split("/") if part]
    if len(parts) >= 2:
        return f"{parts[-2]}/{parts[-1]}"
    return parts[-1] if parts else path


class LocalHeuristicGenerator(AnalysisStrategy):
    """Deterministic analysis derived from the diff and description only."""

    def __init__(self, max_areas: int = 5):
        self._max_areas = max_areas

    @property
    def name(self) -> str:
        return "local"

    async def generate(self, payload: dict[str, Any]) -> dict[str, Any]:
        title = str(payload.get("title") or "").strip()
        if not title and not payload.get("diff") and not payload.get("body"):
            raise UpstreamAnalysisError("Nothing to analyze locally: empty title, body and diff")

        diff = str(payload.get("diff") or "")
        changed_files = extract_changed_files(diff)
        risks = detect_risks(diff, changed_files)
        logger.info(
            "🔄 Generating local analysis: %d changed files, %d risk patterns",
            len(changed_files),
            len(risks),
        )

        scenarios: list[dict[str, Any]] = []
        sensitive = any(category in ("auth", "payment") for category, _ in risks)
        for path in changed_files[: self._max_areas]:
            area = _area_name(path)
            scenarios.append(
                {
                    "name": f"Verify behaviour changed in {area}",
                    "priority": "Critical Path" if sensitive else "Happy Path",
                    "steps": [
                        f"Open the feature backed by {path}",
                        "Exercise the main flow touched by this change",
                        "Compare the result with the description of the change",
                    ],
                    "expectedResult": f"{area} behaves as described with no regressions",
                }
            )
        if not scenarios:
            scenarios.append(
                {
                    "name": title or "Verify the requested change",
                    "priority": "Happy Path",
                    "steps": [
                        "Reproduce the scenario described in the request",
                        "Apply the change under test",
                        "Confirm the described outcome",
                    ],
                    "expectedResult": "The described behaviour is observed",
                }
            )
        scenarios.append(
            {
                "name": "Invalid and empty input handling",
                "priority": "Edge Case",
                "steps": [
                    "Submit empty, oversized and malformed input to the changed flow",
                    "Observe validation messages and server responses",
                ],
                "expectedResult": "Input is rejected gracefully with clear errors",
            }
        )
        for category, text in risks:
            if category in ("database", "api", "auth"):
                scenarios.append(
                    {
                        "name": f"Regression check: {category}",
                        "priority": "Regression",
                        "steps": [text, "Re-run the existing flows that depend on it"],
                        "expectedResult": "Existing behaviour is unchanged",
                    }
                )

        score = max(3, 8 - len(risks))
        return {
            "summary": {
                "description": title or "Local analysis",
                "riskLevel": "HIGH" if score <= 4 else "MEDIUM" if score <= 6 else "LOW",
                "shipScore": score,
                "reasoning": "Generated locally from the diff because the reasoning service was unavailable",
            },
            "productionReadinessScore": {
                "score": score,
                "level": "Needs Manual Review",
                "reasoning": "Heuristic analysis only",
            },
            "risks": [text for _, text in risks]
            or ["No specific risk patterns detected - review the change manually"],
            "questions": [
                "What are the key user workflows affected by this change?",
                "Are there breaking changes for existing data or integrations?",
            ],
            "testRecipe": scenarios,
        }
