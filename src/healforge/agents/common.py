"""Helpers shared by the concrete agents."""

from __future__ import annotations

import re
from typing import Any

from healforge.core.actions import AgentActionType
from healforge.core.context import AgentContext
from healforge.core.models import AgentHistoryEntry
from healforge.integrations.approvals import ApprovalRequestType
from healforge.integrations.tests_repo import TestRepository
from healforge.util.logging import get_logger

logger = get_logger(__name__)

OUTCOMES_KEY = "testOutcomes"
MAX_CONSECUTIVE_FAILURES = 3

# Actions that land a verified fix; a failure in any of them escalates to review.
LANDING_ACTIONS = frozenset(
    {
        AgentActionType.UPDATE_ELEMENT_REGISTRY,
        AgentActionType.WRITE_FILE,
        AgentActionType.CREATE_BRANCH,
        AgentActionType.COMMIT_CHANGES,
        AgentActionType.CREATE_PULL_REQUEST,
    }
)
FIX_APPROVAL_TYPES = frozenset(
    {ApprovalRequestType.SELF_HEALING_FIX.value, ApprovalRequestType.FLAKY_FIX.value}
)


def branch_slug(name: str) -> str:
    return re.sub(r"[^a-zA-Z0-9]+", "-", name).strip("-") or "test"


def goal_test_ids(parameters: dict[str, Any]) -> list[str]:
    """Worklist from ``testId`` and/or ``testIds`` goal parameters, order kept, no repeats."""
    ids: list[str] = []
    single = parameters.get("testId")
    if single:
        ids.append(str(single))
    many = parameters.get("testIds") or []
    if isinstance(many, str):
        many = [item.strip() for item in many.split(",")]
    for item in many:
        if item and str(item) not in ids:
            ids.append(str(item))
    return ids


def consecutive_failures(context: AgentContext, since_iteration: int) -> tuple[AgentActionType | None, int]:
    """Most recent action and how many times in a row it has just failed."""
    history = context.history_since(since_iteration)
    if not history:
        return None, 0
    action = history[-1].action_type
    count = 0
    for entry in reversed(history):
        if entry.action_type != action or entry.success:
            break
        count += 1
    return action, count


def _is_fix_approval(entry: AgentHistoryEntry) -> bool:
    return (
        entry.action_type == AgentActionType.REQUEST_APPROVAL
        and entry.input.get("requestType") in FIX_APPROVAL_TYPES
    )


def landing_failure(context: AgentContext, since_iteration: int) -> str | None:
    """First failed landing step, fix approval included, since ``since_iteration``."""
    for entry in context.history_since(since_iteration):
        if entry.success:
            continue
        if entry.action_type in LANDING_ACTIONS or _is_fix_approval(entry):
            return f"{entry.action_type.value} failed: {entry.error or 'unknown error'}"
    return None


def escalation_failure(context: AgentContext, since_iteration: int) -> str | None:
    """Error of the manual-review request once it has failed too often in a row."""
    history = context.history_since(since_iteration)
    failed = []
    for entry in reversed(history):
        if entry.action_type != AgentActionType.REQUEST_APPROVAL or entry.success:
            break
        if _is_fix_approval(entry):
            break
        failed.append(entry)
    if len(failed) < MAX_CONSECUTIVE_FAILURES:
        return None
    return failed[0].error or "unknown error"


def record_outcome(context: AgentContext, outcome: dict[str, Any]) -> None:
    outcomes = list(context.get_work_product(OUTCOMES_KEY, []))
    outcomes.append(outcome)
    context.put_work_product(OUTCOMES_KEY, outcomes)


def restore_content(tests: TestRepository, test_id: str, original: str | None) -> bool:
    """Put the snapshot back if the stored content differs from it."""
    if original is None:
        return False
    test = tests.find(test_id)
    if test is None or test.content == original:
        return False
    tests.update_content(test_id, original)
    logger.info("Rolled back content of %s to its original snapshot", test.name)
    return True
