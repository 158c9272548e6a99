"""Repeated execution of a test to measure how flaky it is."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from healforge.core.actions import AgentActionType
from healforge.core.cancellation import CancellationToken
from healforge.integrations.runner import TestRunner, run_repeatedly
from healforge.integrations.tests_repo import TestRepository
from healforge.tools.base import AgentTool, ToolCategory, ToolInput, failure, success
from healforge.util.logging import get_logger

logger = get_logger(__name__)


class StabilityAnalysisResult(BaseModel):
    """Outcome of N runs; serialized with camelCase keys between tools."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    test_id: str
    test_name: str
    total_runs: int
    passed_runs: int
    failed_runs: int
    pattern: str
    is_flaky: bool
    flakiness_score: float
    error_messages: list[str] = Field(default_factory=list)
    execution_ids: list[str] = Field(default_factory=list)
    root_cause: str | None = None
    root_cause_explanation: str | None = None
    recommended_fix: str | None = None

    def to_json(self) -> str:
        return self.model_dump_json(by_alias=True)


def compute_flakiness(passed_runs: int, failed_runs: int) -> tuple[bool, float]:
    """``(is_flaky, score)``; the score peaks at 1.0 for a 50% failure rate."""
    total = passed_runs + failed_runs
    is_flaky = passed_runs > 0 and failed_runs > 0
    if not is_flaky:
        return False, 0.0
    rate = failed_runs / total
    return True, round(4 * rate * (1 - rate), 2)


class AnalyzeTestStabilityInput(ToolInput):
    test_id: str = Field(description="Test to analyze")
    run_count: int = Field(default=5, ge=1, description="How many times to run it")


class AnalyzeTestStabilityTool(AgentTool):
    action_type = AgentActionType.ANALYZE_TEST_STABILITY
    name = "Test Stability Analyzer"
    description = (
        "Runs a test repeatedly and reports its pass/fail pattern and flakiness score."
    )
    category = ToolCategory.EXECUTION
    input_schema = AnalyzeTestStabilityInput

    def __init__(self, tests: TestRepository, runner: TestRunner) -> None:
        self.tests = tests
        self.runner = runner

    def run(self, payload: AnalyzeTestStabilityInput, cancel: CancellationToken) -> dict[str, Any]:
        test = self.tests.find(payload.test_id)
        if test is None:
            return failure(f"Test not found: {payload.test_id}")
        report = run_repeatedly(self.runner, test, payload.run_count, cancel)
        if report.cancelled and not report.outcomes:
            return failure("Stability analysis cancelled before any run")
        is_flaky, score = compute_flakiness(report.passed_runs, report.failed_runs)
        result = StabilityAnalysisResult(
            test_id=test.id,
            test_name=test.name,
            total_runs=len(report.outcomes),
            passed_runs=report.passed_runs,
            failed_runs=report.failed_runs,
            pattern=report.pattern,
            is_flaky=is_flaky,
            flakiness_score=score,
            error_messages=report.error_messages,
            execution_ids=[outcome.execution_id for outcome in report.outcomes],
        )
        logger.info(
            "Stability of %s: %s (%s, score %.2f)",
            test.name,
            "FLAKY" if is_flaky else "CONSISTENT",
            report.pattern,
            score,
        )
        return success(
            stabilityResult=result.to_json(),
            pattern=result.pattern,
            isFlaky=is_flaky,
            flakinessScore=score,
            passedRuns=result.passed_runs,
            failedRuns=result.failed_runs,
            cancelled=report.cancelled,
        )
