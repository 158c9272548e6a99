from __future__ import annotations

import json
import threading
import time

import pytest

from healforge.ai.mock import MockAIGateway
from healforge.core.models import AgentExecution, AgentGoal, AgentStatus, AgentType
from healforge.core.store import SqliteExecutionStore
from healforge.errors import AgentTypeNotRegisteredError, ExecutionNotFoundError
from healforge.factory import build_orchestrator
from healforge.integrations.tests_repo import TestRecord
from healforge.orchestrator import ORPHANED_MESSAGE, AgentOrchestrator

CONTENT = json.dumps(
    {
        "steps": [
            {"action": "navigate", "value": "/checkout"},
            {"action": "click", "locator": "#old-id"},
        ]
    }
)
ERROR = 'Timeout 30000ms exceeded.\n  - waiting for locator("#old-id")'
REGISTRY_PAGES = [
    {
        "name": "CartPage",
        "elements": [
            {"name": "pay_button", "primarySelector": "button.pay", "description": "Pay element"},
            {"name": "submit_order", "primarySelector": "[data-test='submit']", "description": "Submit element"},
        ],
    }
]


def _orchestrator(env) -> AgentOrchestrator:
    return build_orchestrator(
        env.settings,
        tests=env.tests,
        gateway=env.gateway,
        runner=env.runner,
        driver=env.driver,
        git=env.git,
    )


def test_flaky_locator_test_is_handed_to_a_real_self_healing_execution(make_env):
    env = make_env(TestRecord(id="test-0001", name="Pay", content=CONTENT))
    env.write_registry(REGISTRY_PAGES)
    env.gateway = MockAIGateway([json.dumps({"rootCause": "LOCATOR_BRITTLENESS"})])
    env.runner.decide = lambda test, number: (
        "data-test='submit'" in test.content or number % 2 == 1,
        ERROR,
    )
    orchestrator = _orchestrator(env)
    try:
        parent = orchestrator.start(
            AgentType.FLAKY_TEST_FIXER,
            AgentGoal(goal_type="FIX_FLAKY_TEST", parameters={"testId": "test-0001"}),
            triggered_by="pytest",
        )
        parent_result = orchestrator.wait(parent.id, timeout=30)
        assert parent_result is not None
        assert parent_result.status == AgentStatus.COMPLETED
        (outcome,) = parent_result.outputs["testOutcomes"]
        assert outcome["outcome"] == "DELEGATED"

        child_result = orchestrator.wait(outcome["delegatedExecutionId"], timeout=30)
        assert child_result is not None
        assert child_result.status == AgentStatus.COMPLETED
        assert child_result.goal.parameters["triggeredBy"] == "FlakyTestAgent"
        assert "[data-test='submit']" in env.tests.get("test-0001").content

        child = orchestrator.get_status(outcome["delegatedExecutionId"])
        assert child.agent_type == AgentType.SELF_HEALING_TEST_FIXER
        assert child.triggered_by == "FlakyTestAgent"
    finally:
        orchestrator.shutdown()


def test_stop_cancels_between_test_runs(make_env):
    env = make_env(TestRecord(id="test-0001", name="Slow", content=CONTENT))
    started = threading.Event()
    release = threading.Event()

    def slow(test, number):
        started.set()
        release.wait(5)
        return True, None

    env.runner.decide = slow
    orchestrator = _orchestrator(env)
    try:
        execution = orchestrator.start(
            AgentType.FLAKY_TEST_FIXER,
            AgentGoal(goal_type="FIX_FLAKY_TEST", parameters={"testId": "test-0001"}),
        )
        assert started.wait(5)
        assert orchestrator.is_running(execution.id)
        assert orchestrator.stop(execution.id) is True
        release.set()

        result = orchestrator.wait(execution.id, timeout=10)
        assert result is not None
        assert result.status == AgentStatus.STOPPED
        assert len(env.runner.runs) == 1
        assert orchestrator.get_status(execution.id).status == AgentStatus.STOPPED
        _until_idle(orchestrator, execution.id)
        assert orchestrator.stop(execution.id) is False
    finally:
        release.set()
        orchestrator.shutdown()


def test_wait_times_out_while_execution_runs(make_env):
    env = make_env(TestRecord(id="test-0001", name="Slow", content=CONTENT))
    release = threading.Event()
    env.runner.decide = lambda test, number: (release.wait(5), None)
    orchestrator = _orchestrator(env)
    try:
        execution = orchestrator.start(
            AgentType.FLAKY_TEST_FIXER,
            AgentGoal(goal_type="FIX_FLAKY_TEST", parameters={"testId": "test-0001"}),
        )
        assert orchestrator.wait(execution.id, timeout=0.05) is None
        release.set()
        assert orchestrator.wait(execution.id, timeout=10) is not None
    finally:
        release.set()
        orchestrator.shutdown()


def test_finished_executions_leave_the_index_but_stay_waitable(make_env):
    env = make_env(TestRecord(id="test-0001", name="Stable", content=CONTENT))
    orchestrator = _orchestrator(env)
    try:
        execution = orchestrator.start(
            AgentType.FLAKY_TEST_FIXER,
            AgentGoal(goal_type="FIX_FLAKY_TEST", parameters={"testId": "test-0001"}),
        )
        first = orchestrator.wait(execution.id, timeout=30)
        assert first is not None
        _until_idle(orchestrator, execution.id)
        assert orchestrator.list_running() == []
        assert orchestrator._running == {}

        again = orchestrator.wait(execution.id, timeout=0.01)
        assert again is not None
        assert again.execution_id == execution.id
        assert again.status == first.status
        assert again.iterations_completed == first.iterations_completed
        assert [o["outcome"] for o in again.outputs["testOutcomes"]] == [
            o["outcome"] for o in first.outputs["testOutcomes"]
        ]
    finally:
        orchestrator.shutdown()


def _until_idle(orchestrator: AgentOrchestrator, execution_id: str) -> None:
    deadline = time.monotonic() + 5
    while orchestrator.is_running(execution_id) and time.monotonic() < deadline:
        time.sleep(0.01)


def test_cleanup_marks_orphans_stopped(tmp_path):
    store = SqliteExecutionStore(tmp_path / "agent.db")
    orphan = AgentExecution(
        agent_type=AgentType.SELF_HEALING_TEST_FIXER,
        goal=AgentGoal(goal_type="FIX_BROKEN_LOCATOR"),
        status=AgentStatus.WAITING_FOR_APPROVAL,
    )
    done = AgentExecution(
        agent_type=AgentType.FLAKY_TEST_FIXER,
        goal=AgentGoal(goal_type="FIX_FLAKY_TEST"),
        status=AgentStatus.COMPLETED,
    )
    store.save_execution(orphan)
    store.save_execution(done)
    orchestrator = AgentOrchestrator(store)
    try:
        assert orchestrator.cleanup_orphaned_executions() == 1
        updated = orchestrator.get_status(orphan.id)
        assert updated.status == AgentStatus.STOPPED
        assert updated.error_message == ORPHANED_MESSAGE
        assert orchestrator.get_status(done.id).status == AgentStatus.COMPLETED
        assert orchestrator.cleanup_orphaned_executions() == 0
        stopped = orchestrator.list_executions([AgentStatus.STOPPED])
        assert [execution.id for execution in stopped] == [orphan.id]
    finally:
        orchestrator.shutdown()


def test_unknown_ids_and_agent_types(tmp_path):
    orchestrator = AgentOrchestrator(SqliteExecutionStore(tmp_path / "agent.db"))
    try:
        with pytest.raises(ExecutionNotFoundError):
            orchestrator.get_status("nope")
        with pytest.raises(AgentTypeNotRegisteredError):
            orchestrator.start(AgentType.FLAKY_TEST_FIXER, AgentGoal(goal_type="FIX_FLAKY_TEST"))
        assert orchestrator.wait("nope") is None
        assert orchestrator.stop("nope") is False
        assert orchestrator.available_agent_types() == []
    finally:
        orchestrator.shutdown()


def test_failed_initialization_is_visible_in_status(make_env):
    env = make_env()
    orchestrator = _orchestrator(env)
    try:
        assert orchestrator.available_agent_types() == [
            AgentType.FLAKY_TEST_FIXER,
            AgentType.SELF_HEALING_TEST_FIXER,
        ]
        execution = orchestrator.start(
            AgentType.SELF_HEALING_TEST_FIXER, AgentGoal(goal_type="FIX_BROKEN_LOCATOR")
        )
        result = orchestrator.wait(execution.id, timeout=10)
        assert result is not None
        deadline = time.monotonic() + 5
        while orchestrator.is_running(execution.id) and time.monotonic() < deadline:
            time.sleep(0.01)
        status = orchestrator.get_status(execution.id)
        assert status.status == AgentStatus.FAILED
        assert status.completed_at is not None
    finally:
        orchestrator.shutdown()
