"""Runs agent executions in the background and tracks them."""

from __future__ import annotations

from concurrent.futures import Future, ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
import threading

from healforge.core.agent import BaseAgent
from healforge.core.cancellation import CancellationToken
from healforge.core.models import (
    AgentConfig,
    AgentExecution,
    AgentGoal,
    AgentResult,
    AgentStatus,
    AgentType,
    utcnow,
)
from healforge.core.store import ExecutionStore
from healforge.errors import AgentTypeNotRegisteredError, ExecutionNotFoundError
from healforge.util.logging import get_logger

logger = get_logger(__name__)

ORPHANED_MESSAGE = (
    "Execution interrupted: process restarted while agent was running. "
    "Trigger a new execution to retry."
)


class AgentOrchestrator:
    """Owns the running-executions index; each execution runs on a worker thread.

    The index is the only state shared between executions and every access
    goes through ``_lock``. Stopping is cooperative: the execution's token is
    cancelled and its loop ends at the next check.
    """

    def __init__(
        self,
        store: ExecutionStore,
        default_config: AgentConfig | None = None,
        max_workers: int = 4,
    ) -> None:
        self.store = store
        self.default_config = default_config or AgentConfig()
        self._agents: dict[AgentType, BaseAgent] = {}
        self._running: dict[str, tuple[Future[AgentResult], CancellationToken]] = {}
        self._lock = threading.Lock()
        self._pool = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="healforge-agent")

    def register_agent(self, agent: BaseAgent) -> None:
        self._agents[agent.agent_type] = agent
        logger.info("Registered agent %s", agent.agent_type.value)

    def available_agent_types(self) -> list[AgentType]:
        return sorted(self._agents, key=lambda agent_type: agent_type.value)

    def get_agent(self, agent_type: AgentType) -> BaseAgent:
        agent = self._agents.get(agent_type)
        if agent is None:
            raise AgentTypeNotRegisteredError(f"No agent registered for {agent_type.value}")
        return agent

    def start(
        self,
        agent_type: AgentType,
        goal: AgentGoal,
        config: AgentConfig | None = None,
        triggered_by: str | None = None,
    ) -> AgentExecution:
        agent = self.get_agent(agent_type)
        config = config or self.default_config
        execution = AgentExecution(
            agent_type=agent_type,
            goal=goal,
            max_iterations=config.max_iterations,
            triggered_by=triggered_by,
        )
        self.store.save_execution(execution)
        cancel = CancellationToken()
        with self._lock:
            future = self._pool.submit(agent.run, goal, config, execution, cancel)
            self._running[execution.id] = (future, cancel)
        future.add_done_callback(lambda done, execution_id=execution.id: self._on_done(execution_id, done))
        logger.info(
            "Started %s execution %s (triggered by %s)",
            agent_type.value,
            execution.id,
            triggered_by or "user",
        )
        return execution

    def start_self_healing(self, goal: AgentGoal, triggered_by: str) -> str:
        """Entry point for agents that hand tests over to self-healing."""
        return self.start(AgentType.SELF_HEALING_TEST_FIXER, goal, triggered_by=triggered_by).id

    def resume(self, execution_id: str, config: AgentConfig | None = None) -> AgentExecution:
        execution = self.get_status(execution_id)
        if self.is_running(execution_id):
            return execution
        if execution.status == AgentStatus.COMPLETED:
            raise ValueError(f"Execution {execution_id} already completed")
        agent = self.get_agent(execution.agent_type)
        config = config or self.default_config
        execution.error_message = None
        execution.completed_at = None
        cancel = CancellationToken()
        with self._lock:
            future = self._pool.submit(agent.resume, execution, config, cancel)
            self._running[execution.id] = (future, cancel)
        future.add_done_callback(lambda done, execution_id=execution.id: self._on_done(execution_id, done))
        logger.info("Resumed execution %s", execution_id)
        return execution

    def _on_done(self, execution_id: str, future: Future[AgentResult]) -> None:
        try:
            exc = future.exception()
            if exc is not None:
                logger.error("Execution %s crashed: %s", execution_id, exc)
                execution = self.store.get_execution(execution_id)
                if execution is not None and not execution.status.is_terminal:
                    execution.status = AgentStatus.FAILED
                    execution.error_message = str(exc)
                    execution.completed_at = utcnow()
                    self.store.save_execution(execution)
        finally:
            # final status is stored before the index drops the execution
            with self._lock:
                self._running.pop(execution_id, None)

    def stop(self, execution_id: str) -> bool:
        with self._lock:
            entry = self._running.get(execution_id)
        if entry is None:
            logger.info("Execution %s is not running", execution_id)
            return False
        entry[1].cancel()
        logger.info("Stop requested for execution %s", execution_id)
        return True

    def is_running(self, execution_id: str) -> bool:
        with self._lock:
            return execution_id in self._running

    def list_running(self) -> list[str]:
        with self._lock:
            return list(self._running)

    def get_status(self, execution_id: str) -> AgentExecution:
        execution = self.store.get_execution(execution_id)
        if execution is None:
            raise ExecutionNotFoundError(f"Execution not found: {execution_id}")
        return execution

    def list_executions(self, statuses: list[AgentStatus] | None = None) -> list[AgentExecution]:
        return self.store.list_executions(statuses)

    def wait(self, execution_id: str, timeout: float | None = None) -> AgentResult | None:
        """Block until an execution finishes; ``None`` on timeout or if unknown.

        Finished executions are no longer indexed, so their result is rebuilt
        from the store.
        """
        with self._lock:
            entry = self._running.get(execution_id)
        if entry is not None:
            try:
                return entry[0].result(timeout=timeout)
            except FutureTimeoutError:
                return None
        execution = self.store.get_execution(execution_id)
        if execution is None or not execution.status.is_terminal:
            return None
        return _result_from_execution(execution)

    def cleanup_orphaned_executions(self) -> int:
        """Mark executions left active by a previous process as STOPPED."""
        active = self.store.list_executions(
            [AgentStatus.RUNNING, AgentStatus.WAITING_FOR_APPROVAL]
        )
        count = 0
        for execution in active:
            if self.is_running(execution.id):
                continue
            execution.status = AgentStatus.STOPPED
            execution.error_message = ORPHANED_MESSAGE
            execution.completed_at = utcnow()
            execution.updated_at = utcnow()
            self.store.save_execution(execution)
            count += 1
        if count:
            logger.warning("Marked %d orphaned execution(s) as STOPPED", count)
        return count

    def shutdown(self, wait: bool = True) -> None:
        with self._lock:
            tokens = [token for _, token in self._running.values()]
        for token in tokens:
            token.cancel()
        self._pool.shutdown(wait=wait)


def _result_from_execution(execution: AgentExecution) -> AgentResult:
    return AgentResult(
        execution_id=execution.id,
        status=execution.status,
        goal=execution.goal,
        iterations_completed=execution.current_iteration,
        total_ai_cost=execution.total_ai_cost,
        outputs=execution.outputs,
        error_message=execution.error_message,
        started_at=execution.started_at,
        completed_at=execution.completed_at or execution.updated_at,
    )
