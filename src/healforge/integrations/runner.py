"""Single test runs against a browser."""

from __future__ import annotations

from abc import ABC, abstractmethod
import time
from uuid import uuid4

from playwright.sync_api import Error as PlaywrightError
from pydantic import BaseModel, Field

from healforge.content.test_content import base_url, get_steps
from healforge.core.cancellation import CancellationToken
from healforge.errors import StepFailure
from healforge.integrations.browser import BrowserDriver, StepExecutor
from healforge.integrations.tests_repo import TestRecord
from healforge.util.logging import get_logger

logger = get_logger(__name__)


class TestRunOutcome(BaseModel):
    __test__ = False

    execution_id: str
    passed: bool
    error_message: str | None = None
    failed_step_index: int | None = None
    failed_step_locator: str | None = None
    duration_ms: int = 0


class TestRunner(ABC):
    __test__ = False

    @abstractmethod
    def run(self, test: TestRecord) -> TestRunOutcome:
        """Execute the test once; failures are reported, not raised."""
        raise NotImplementedError


class BrowserTestRunner(TestRunner):
    """Replays the test's steps on a fresh page per run."""

    __test__ = False

    def __init__(
        self, driver: BrowserDriver, executor: StepExecutor, default_base_url: str | None = None
    ) -> None:
        self.driver = driver
        self.executor = executor
        self.default_base_url = default_base_url

    def run(self, test: TestRecord) -> TestRunOutcome:
        execution_id = str(uuid4())
        start = time.perf_counter()
        try:
            steps = get_steps(test.content)
        except ValueError as exc:
            logger.warning("Test %s has unreadable content: %s", test.name, exc)
            return TestRunOutcome(
                execution_id=execution_id,
                passed=False,
                error_message=f"Test content is invalid: {exc}",
            )
        if not steps:
            return TestRunOutcome(
                execution_id=execution_id,
                passed=False,
                error_message="Test content has no executable steps",
            )
        url = base_url(test.content) or self.default_base_url
        try:
            with self.driver.open_page() as page:
                for index, step in enumerate(steps):
                    self.executor.execute(page, step, index, url)
        except StepFailure as exc:
            logger.info("Test %s failed at step %s: %s", test.name, exc.step_index, exc)
            return TestRunOutcome(
                execution_id=execution_id,
                passed=False,
                error_message=str(exc),
                failed_step_index=exc.step_index,
                failed_step_locator=exc.locator,
                duration_ms=int((time.perf_counter() - start) * 1000),
            )
        except PlaywrightError as exc:
            logger.warning("Browser error while running %s: %s", test.name, exc)
            return TestRunOutcome(
                execution_id=execution_id,
                passed=False,
                error_message=f"Browser error: {exc}",
                duration_ms=int((time.perf_counter() - start) * 1000),
            )
        return TestRunOutcome(
            execution_id=execution_id,
            passed=True,
            duration_ms=int((time.perf_counter() - start) * 1000),
        )


class RepeatedRunReport(BaseModel):
    outcomes: list[TestRunOutcome] = Field(default_factory=list)
    cancelled: bool = False

    @property
    def pattern(self) -> str:
        return "".join("P" if outcome.passed else "F" for outcome in self.outcomes)

    @property
    def passed_runs(self) -> int:
        return sum(1 for outcome in self.outcomes if outcome.passed)

    @property
    def failed_runs(self) -> int:
        return len(self.outcomes) - self.passed_runs

    @property
    def error_messages(self) -> list[str]:
        return [
            f"Run {number}: {outcome.error_message}"
            for number, outcome in enumerate(self.outcomes, start=1)
            if not outcome.passed
        ]

    @property
    def first_failure(self) -> TestRunOutcome | None:
        return next((outcome for outcome in self.outcomes if not outcome.passed), None)


def run_repeatedly(
    runner: TestRunner, test: TestRecord, run_count: int, cancel: CancellationToken
) -> RepeatedRunReport:
    """Run ``test`` up to ``run_count`` times, checking ``cancel`` before each run."""
    report = RepeatedRunReport()
    for number in range(1, run_count + 1):
        if cancel.cancelled:
            logger.info("Stop requested, aborting at run %d/%d of %s", number, run_count, test.name)
            report.cancelled = True
            break
        outcome = runner.run(test)
        logger.info(
            "Run %d/%d of %s: %s", number, run_count, test.name, "PASS" if outcome.passed else "FAIL"
        )
        report.outcomes.append(outcome)
    return report
