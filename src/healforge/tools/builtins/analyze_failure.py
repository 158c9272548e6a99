"""AI root-cause classification for a flaky test."""

from __future__ import annotations

from enum import Enum
from typing import Any

from pydantic import Field, ValidationError

from healforge.ai.base import AIGateway, AIRequest
from healforge.core.actions import AgentActionType
from healforge.core.cancellation import CancellationToken
from healforge.tools.base import AgentTool, ToolCategory, ToolInput, failure, success
from healforge.tools.builtins.stability import StabilityAnalysisResult
from healforge.util.ai_json import parse_ai_json
from healforge.util.logging import get_logger

logger = get_logger(__name__)

OPERATION = "FAILURE_ANALYSIS"


class FlakyRootCause(str, Enum):
    TIMING_ISSUE = "TIMING_ISSUE"
    DATA_DEPENDENCY = "DATA_DEPENDENCY"
    ENVIRONMENT_DEPENDENCY = "ENVIRONMENT_DEPENDENCY"
    LOCATOR_BRITTLENESS = "LOCATOR_BRITTLENESS"
    UNKNOWN = "UNKNOWN"

    @property
    def display_name(self) -> str:
        return _DISPLAY_NAMES[self]

    @classmethod
    def parse(cls, value: Any) -> "FlakyRootCause":
        try:
            return cls(str(value).strip().upper())
        except ValueError:
            return cls.UNKNOWN


_DISPLAY_NAMES = {
    FlakyRootCause.TIMING_ISSUE: "timing",
    FlakyRootCause.DATA_DEPENDENCY: "data dependency",
    FlakyRootCause.ENVIRONMENT_DEPENDENCY: "environment dependency",
    FlakyRootCause.LOCATOR_BRITTLENESS: "locator brittleness",
    FlakyRootCause.UNKNOWN: "unknown",
}

_PROMPT = """You are a QA automation expert analyzing a flaky test.

TEST INFORMATION:
- Test Name: {name}
- Total Runs: {total}
- Passed: {passed}
- Failed: {failed}
- Pattern: {pattern} (P=Pass, F=Fail)

FAILURE MESSAGES:
{errors}

TEST CODE:
{code}

TASK:
Analyze this flaky test and identify the root cause category.

ROOT CAUSE CATEGORIES:
1. TIMING_ISSUE - Race conditions, async operations, insufficient waits
2. DATA_DEPENDENCY - Test data conflicts, cleanup issues, shared state
3. ENVIRONMENT_DEPENDENCY - External services, network issues, environment-specific failures
4. LOCATOR_BRITTLENESS - Unreliable element locators, dynamic IDs, DOM changes
5. UNKNOWN - Multiple causes or unable to determine

RESPONSE FORMAT (JSON only, no markdown):
{{
  "rootCause": "TIMING_ISSUE",
  "explanation": "Brief explanation of why you categorized it this way",
  "recommendedFix": "Specific fix strategy for this root cause"
}}
"""


def load_stability_result(payload: str) -> StabilityAnalysisResult | None:
    try:
        return StabilityAnalysisResult.model_validate_json(payload)
    except ValidationError as exc:
        logger.warning("Unreadable stability result: %s", exc)
        return None


class AnalyzeFailureInput(ToolInput):
    stability_result: str = Field(min_length=1, description="StabilityAnalysisResult JSON")
    test_code: str = Field(default="Not provided", description="Test content for context")


class AnalyzeFailureTool(AgentTool):
    action_type = AgentActionType.ANALYZE_FAILURE
    name = "Flaky Failure Analyzer"
    description = "Classifies the root cause of a flaky test with the AI gateway."
    category = ToolCategory.AI
    input_schema = AnalyzeFailureInput

    def __init__(self, gateway: AIGateway) -> None:
        self.gateway = gateway

    def run(self, payload: AnalyzeFailureInput, cancel: CancellationToken) -> dict[str, Any]:
        result = load_stability_result(payload.stability_result)
        if result is None:
            return failure("stabilityResult is not a valid stability analysis")
        prompt = _PROMPT.format(
            name=result.test_name,
            total=result.total_runs,
            passed=result.passed_runs,
            failed=result.failed_runs,
            pattern=result.pattern,
            errors="\n".join(result.error_messages),
            code=payload.test_code,
        )
        response = self.gateway.complete(AIRequest(content=prompt, operation=OPERATION))
        if not response.success:
            return failure(f"AI analysis failed: {response.error}", aiCost=response.cost)
        analysis = parse_ai_json(response.content)
        if analysis is None:
            return failure("AI analysis failed: response was not JSON", aiCost=response.cost)
        root_cause = FlakyRootCause.parse(analysis.get("rootCause"))
        result.root_cause = root_cause.value
        result.root_cause_explanation = analysis.get("explanation")
        result.recommended_fix = analysis.get("recommendedFix")
        logger.info("Root cause of %s: %s", result.test_name, root_cause.value)
        return success(
            stabilityResult=result.to_json(),
            rootCause=root_cause.value,
            explanation=result.root_cause_explanation,
            recommendedFix=result.recommended_fix,
            aiCost=response.cost,
        )
