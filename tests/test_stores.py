from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from healforge.core.actions import AgentActionType
from healforge.core.context import AgentContext
from healforge.core.models import AgentExecution, AgentGoal, AgentHistoryEntry, AgentStatus, AgentType
from healforge.core.store import SqliteExecutionStore
from healforge.errors import TestNotFoundError
from healforge.integrations.approvals import (
    ApprovalRequest,
    ApprovalRequestType,
    ApprovalStatus,
    SqliteApprovalService,
)
from healforge.integrations.failure_patterns import FailurePattern, SqliteFailurePatternStore
from healforge.integrations.tests_repo import SqliteTestRepository, TestRecord


def test_execution_store_filters_by_status(tmp_path):
    store = SqliteExecutionStore(tmp_path / "agent.db")
    goal = AgentGoal(goal_type="FIX_BROKEN_LOCATOR", parameters={"testId": "t1"})
    running = AgentExecution(agent_type=AgentType.SELF_HEALING_TEST_FIXER, goal=goal)
    failed = AgentExecution(
        agent_type=AgentType.FLAKY_TEST_FIXER, goal=goal, status=AgentStatus.FAILED
    )
    store.save_execution(running)
    store.save_execution(failed)

    assert store.get_execution(running.id) == running
    assert store.get_execution("missing") is None
    assert {execution.id for execution in store.list_executions()} == {running.id, failed.id}
    assert [execution.id for execution in store.list_executions([AgentStatus.FAILED])] == [failed.id]
    assert store.list_executions([]) == []


def test_context_survives_persistence(tmp_path):
    store = SqliteExecutionStore(tmp_path / "agent.db")
    context = AgentContext(execution_id="exec-1", goal=AgentGoal(goal_type="FIX_FLAKY_TEST"))
    context.put_state("flaky.currentTestIndex", 1)
    context.put_work_product("testOutcomes", [{"testId": "t1", "outcome": "FIXED"}])
    context.add_history(
        AgentHistoryEntry(iteration=0, action_type=AgentActionType.ANALYZE_TEST_STABILITY, success=True)
    )
    context.current_iteration = 1
    store.save_context(context)

    loaded = store.load_context("exec-1")
    assert loaded is not None
    assert loaded.get_state("flaky.currentTestIndex") == 1
    assert loaded.get_work_product("testOutcomes")[0]["outcome"] == "FIXED"
    assert loaded.has_succeeded_since(AgentActionType.ANALYZE_TEST_STABILITY, 0)
    assert not loaded.has_succeeded_since(AgentActionType.ANALYZE_TEST_STABILITY, 1)
    assert store.load_context("missing") is None


def test_approval_lifecycle(tmp_path):
    approvals = SqliteApprovalService(tmp_path / "agent.db")
    request = approvals.create(
        ApprovalRequest(
            request_type=ApprovalRequestType.SELF_HEALING_FIX,
            test_name="Login",
            metadata={"testId": "t1"},
        )
    )
    assert approvals.list_requests(ApprovalStatus.PENDING_APPROVAL) == [request]

    decided = approvals.decide(request.id, approved=True, reviewer="qa-lead", notes="looks right")
    assert decided.status == ApprovalStatus.APPROVED
    assert decided.reviewed_by == "qa-lead"
    with pytest.raises(ValueError):
        approvals.decide(request.id, approved=False, reviewer="someone")
    with pytest.raises(LookupError):
        approvals.decide("missing", approved=True, reviewer="qa-lead")

    stale = approvals.create(
        ApprovalRequest(
            request_type=ApprovalRequestType.FLAKY_MANUAL,
            test_name="Cart",
            expires_at=datetime.now(timezone.utc) - timedelta(minutes=1),
        )
    )
    assert approvals.expire_stale() == 1
    assert approvals.get(stale.id).status == ApprovalStatus.EXPIRED
    assert approvals.attach_git("missing", pr_url="x") is None


def test_failure_patterns_count_occurrences(tmp_path):
    store = SqliteFailurePatternStore(tmp_path / "agent.db")
    pattern = FailurePattern(
        signature="TIMING_ISSUE_PFPFP_0123456789ab",
        test_id="t1",
        test_name="Checkout",
        root_cause="TIMING_ISSUE",
        pattern="PFPFP",
        flakiness_score=0.96,
        impact_score=96,
    )
    store.record(pattern)
    again = store.record(pattern.model_copy(update={"flakiness_score": 0.64, "impact_score": 64}))

    assert again.occurrences == 2
    (stored,) = store.list_patterns()
    assert stored.occurrences == 2
    assert stored.flakiness_score == 0.64
    assert store.find("other", "t1") is None


def test_sqlite_test_repository(tmp_path):
    tests = SqliteTestRepository(tmp_path / "agent.db")
    tests.save(TestRecord(id="t1", name="Login", content='{"steps": []}', jira_key="QA-1"))

    updated = tests.update_content("t1", '{"steps": [{"action": "navigate", "value": "/"}]}')
    assert updated.content.startswith('{"steps": [{')
    assert tests.get("t1").jira_key == "QA-1"
    assert tests.find("missing") is None
    with pytest.raises(TestNotFoundError):
        tests.get("missing")
