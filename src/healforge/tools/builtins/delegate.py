"""Hand a test over to the self-healing agent."""

from __future__ import annotations

from typing import Any, Callable

from pydantic import Field

from healforge.core.actions import AgentActionType
from healforge.core.cancellation import CancellationToken
from healforge.core.models import AgentGoal
from healforge.tools.base import AgentTool, ToolCategory, ToolInput, success
from healforge.util.logging import get_logger

logger = get_logger(__name__)

FIX_BROKEN_LOCATOR = "FIX_BROKEN_LOCATOR"

# Starts a self-healing execution for the goal and returns its id.
SelfHealingStarter = Callable[[AgentGoal, str], str]


class DelegateSelfHealingInput(ToolInput):
    test_id: str
    error_message: str = Field(default="Element not found")
    source_test_name: str | None = None
    triggered_by: str = "FlakyTestAgent"


class DelegateSelfHealingTool(AgentTool):
    action_type = AgentActionType.DELEGATE_SELF_HEALING
    name = "Self-Healing Delegator"
    description = "Starts a self-healing execution for a test whose flakiness comes from brittle locators."
    category = ToolCategory.ORCHESTRATION
    input_schema = DelegateSelfHealingInput

    def __init__(self, starter: SelfHealingStarter) -> None:
        self.starter = starter

    def run(self, payload: DelegateSelfHealingInput, cancel: CancellationToken) -> dict[str, Any]:
        goal = AgentGoal(
            goal_type=FIX_BROKEN_LOCATOR,
            parameters={
                "testId": payload.test_id,
                "errorMessage": payload.error_message,
                "triggeredBy": payload.triggered_by,
                "sourceTestName": payload.source_test_name,
            },
            success_criteria="Broken locator replaced and verified",
        )
        execution_id = self.starter(goal, payload.triggered_by)
        logger.info("Delegated %s to self-healing execution %s", payload.test_id, execution_id)
        return success(delegatedExecutionId=execution_id, goalType=FIX_BROKEN_LOCATOR)
