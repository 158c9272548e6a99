"""Re-run a test to confirm a fix holds."""

from __future__ import annotations

from typing import Any

from pydantic import Field

from healforge.core.actions import AgentActionType
from healforge.core.cancellation import CancellationToken
from healforge.integrations.runner import TestRunner, run_repeatedly
from healforge.integrations.tests_repo import TestRepository
from healforge.tools.base import AgentTool, ToolCategory, ToolInput, failure, success
from healforge.util.logging import get_logger

logger = get_logger(__name__)


class VerifyFixInput(ToolInput):
    test_id: str = Field(description="Test to run")
    run_count: int = Field(default=3, ge=1, description="How many times to run it")


class VerifyFixTool(AgentTool):
    """A fix counts as stable only when every run passes."""

    action_type = AgentActionType.EXECUTE_TEST
    name = "Fix Verifier"
    description = "Runs a test several times and reports whether every run passed."
    category = ToolCategory.EXECUTION
    input_schema = VerifyFixInput

    def __init__(self, tests: TestRepository, runner: TestRunner) -> None:
        self.tests = tests
        self.runner = runner

    def run(self, payload: VerifyFixInput, cancel: CancellationToken) -> dict[str, Any]:
        test = self.tests.find(payload.test_id)
        if test is None:
            return failure(f"Test not found: {payload.test_id}")
        report = run_repeatedly(self.runner, test, payload.run_count, cancel)
        is_stable = (
            not report.cancelled and bool(report.outcomes) and report.failed_runs == 0
        )
        first = report.first_failure
        logger.info(
            "%s verification of %s: %s",
            "STABLE" if is_stable else "UNSTABLE",
            test.name,
            report.pattern,
        )
        return success(
            testName=test.name,
            isStable=is_stable,
            totalRuns=len(report.outcomes),
            passedRuns=report.passed_runs,
            failedRuns=report.failed_runs,
            pattern=report.pattern,
            errorMessages=report.error_messages,
            cancelled=report.cancelled,
            failedStepIndex=first.failed_step_index if first else None,
            failedStepLocator=first.failed_step_locator if first else None,
            firstErrorMessage=first.error_message if first else None,
        )
