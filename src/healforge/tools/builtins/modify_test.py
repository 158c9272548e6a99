"""Write new content into a test."""

from __future__ import annotations

from typing import Any

from pydantic import Field

from healforge.core.actions import AgentActionType
from healforge.core.cancellation import CancellationToken
from healforge.integrations.tests_repo import TestRepository
from healforge.tools.base import AgentTool, ToolCategory, ToolInput, failure, success
from healforge.util.logging import get_logger

logger = get_logger(__name__)


class ApplyFixInput(ToolInput):
    test_id: str = Field(description="Test to update")
    fixed_test_code: str | None = Field(default=None, description="Complete new test content")


class ApplyFixTool(AgentTool):
    """Replaces test content and hands back the previous version for rollback."""

    action_type = AgentActionType.MODIFY_FILE
    name = "Test Content Writer"
    description = "Replaces a test's content with fixed content, returning the previous content."
    category = ToolCategory.CONTENT
    input_schema = ApplyFixInput

    def __init__(self, tests: TestRepository) -> None:
        self.tests = tests

    def run(self, payload: ApplyFixInput, cancel: CancellationToken) -> dict[str, Any]:
        test = self.tests.find(payload.test_id)
        if test is None:
            return failure(f"Test not found: {payload.test_id}")
        if not payload.fixed_test_code or not payload.fixed_test_code.strip():
            return failure("fixedTestCode is null or blank")
        previous = test.content
        self.tests.update_content(test.id, payload.fixed_test_code)
        logger.info("Applied new content to %s (%d chars)", test.name, len(payload.fixed_test_code))
        return success(
            testId=test.id,
            testName=test.name,
            previousContent=previous,
            newContent=payload.fixed_test_code,
            contentLength=len(payload.fixed_test_code),
        )
