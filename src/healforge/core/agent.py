"""Generic plan -> execute -> observe loop shared by all agents."""

from __future__ import annotations

from abc import ABC, abstractmethod
import json
from pathlib import Path
import time
from typing import Any

from healforge.core.actions import AgentActionType
from healforge.core.cancellation import CancellationToken
from healforge.core.context import AgentContext
from healforge.core.models import (
    ActionResult,
    AgentConfig,
    AgentExecution,
    AgentGoal,
    AgentHistoryEntry,
    AgentPlan,
    AgentResult,
    AgentStatus,
    AgentType,
    utcnow,
)
from healforge.core.store import ExecutionStore
from healforge.integrations.approvals import (
    ApprovalRequest,
    ApprovalRequestType,
    ApprovalService,
    ApprovalStatus,
)
from healforge.runtime.audit import AuditLogger
from healforge.runtime.observability import MetricsCollector
from healforge.tools.registry import ToolRegistry
from healforge.util.logging import get_logger

logger = get_logger(__name__)

ITERATION_BUDGET_EXHAUSTED = "iteration budget exhausted"
COST_BUDGET_EXCEEDED = "AI cost budget exceeded"
PENDING_APPROVAL_KEY = "loop.pendingApproval"


class BaseAgent(ABC):
    """Drives one execution at a time per call; holds no per-execution state.

    Subclasses supply the planning policy. Everything that varies per
    execution lives in the :class:`AgentContext`, which is persisted before
    every iteration so a different worker can resume it.
    """

    agent_type: AgentType

    def __init__(
        self,
        tools: ToolRegistry,
        store: ExecutionStore,
        approvals: ApprovalService | None = None,
        audit: AuditLogger | None = None,
        metrics_dir: Path | None = None,
        approval_poll_seconds: float = 5.0,
    ) -> None:
        self.tools = tools
        self.store = store
        self.approvals = approvals
        self.audit = audit
        self.metrics_dir = metrics_dir
        self.approval_poll_seconds = approval_poll_seconds

    @abstractmethod
    def initialize_context(self, context: AgentContext) -> None:
        """Seed namespaced state from the goal parameters."""

    @abstractmethod
    def plan(self, context: AgentContext) -> AgentPlan:
        """Decide the next action from context state and history only."""

    @abstractmethod
    def update_state_from_result(
        self, context: AgentContext, plan: AgentPlan, result: ActionResult
    ) -> None:
        """Fold an action's outcome back into context state."""

    @abstractmethod
    def is_goal_achieved(self, context: AgentContext) -> bool:
        raise NotImplementedError

    def build_outputs(self, context: AgentContext) -> dict[str, Any]:
        return dict(context.work_products)

    def run(
        self,
        goal: AgentGoal,
        config: AgentConfig,
        execution: AgentExecution | None = None,
        cancel: CancellationToken | None = None,
    ) -> AgentResult:
        execution = execution or AgentExecution(
            agent_type=self.agent_type, goal=goal, max_iterations=config.max_iterations
        )
        context = AgentContext(
            execution_id=execution.id, goal=goal, max_iterations=config.max_iterations
        )
        logger.info(
            "Starting %s execution %s (goal=%s)", self.agent_type.value, execution.id, goal.goal_type
        )
        try:
            self.initialize_context(context)
        except Exception as exc:
            logger.exception("Initialization of execution %s failed", execution.id)
            return self._finish(execution, context, AgentStatus.FAILED, str(exc), None)
        self._persist(execution, context, AgentStatus.RUNNING)
        return self._loop(execution, context, config, cancel or CancellationToken())

    def resume(
        self,
        execution: AgentExecution,
        config: AgentConfig,
        cancel: CancellationToken | None = None,
    ) -> AgentResult:
        context = self.store.load_context(execution.id)
        if context is None:
            raise LookupError(f"No persisted context for execution {execution.id}")
        logger.info(
            "Resuming execution %s at iteration %d", execution.id, context.current_iteration
        )
        self._persist(execution, context, AgentStatus.RUNNING)
        return self._loop(execution, context, config, cancel or CancellationToken())

    def _loop(
        self,
        execution: AgentExecution,
        context: AgentContext,
        config: AgentConfig,
        cancel: CancellationToken,
    ) -> AgentResult:
        metrics = MetricsCollector(
            self.metrics_dir,
            labels={"execution_id": execution.id, "agent_type": self.agent_type.value},
        )
        while True:
            if cancel.cancelled:
                return self._finish(execution, context, AgentStatus.STOPPED, "Stopped by request", metrics)
            self.store.save_context(context)
            if self.is_goal_achieved(context):
                return self._finish(execution, context, AgentStatus.COMPLETED, None, metrics)
            if context.current_iteration >= config.max_iterations:
                logger.warning("Execution %s hit max iterations %d", execution.id, config.max_iterations)
                return self._finish(
                    execution, context, AgentStatus.FAILED, ITERATION_BUDGET_EXHAUSTED, metrics
                )

            action = AgentActionType.ABORT
            try:
                plan = self.plan(context)
                action = plan.next_action
                logger.info(
                    "Iteration %d: %s (%s)", context.current_iteration, action.value, plan.reasoning
                )
                if action == AgentActionType.COMPLETE:
                    return self._finish(execution, context, AgentStatus.COMPLETED, None, metrics)
                if action == AgentActionType.ABORT:
                    return self._finish(
                        execution, context, AgentStatus.FAILED, plan.reasoning or "Aborted", metrics
                    )
                if plan.requires_approval or config.requires_approval(action):
                    halted = self._await_approval(execution, context, config, plan, cancel)
                    if halted is not None:
                        status, message = halted
                        return self._finish(execution, context, status, message, metrics)
                with metrics.measure(f"action.{action.value}"):
                    result = self.execute_action(plan, context, cancel)
            except Exception as exc:
                logger.exception("Iteration %d of %s failed", context.current_iteration, execution.id)
                context.add_history(
                    AgentHistoryEntry(
                        iteration=context.current_iteration,
                        action_type=action,
                        success=False,
                        error=f"{type(exc).__name__}: {exc}",
                    )
                )
                metrics.inc("action_exceptions")
                return self._finish(execution, context, AgentStatus.FAILED, str(exc), metrics)

            metrics.inc("tool_calls")
            if not result.success:
                metrics.inc("tool_failures")
            context.add_history(
                AgentHistoryEntry(
                    iteration=context.current_iteration,
                    action_type=action,
                    success=result.success,
                    input=_history_safe(plan.action_params),
                    output=_history_safe(result.output),
                    error=result.error,
                    duration_ms=result.duration_ms,
                    ai_cost=result.ai_cost,
                )
            )
            if self.audit:
                self.audit.emit(
                    execution.id,
                    "action_executed",
                    {
                        "iteration": context.current_iteration,
                        "action": action.value,
                        "success": result.success,
                        "error": result.error,
                        "params": plan.action_params,
                    },
                )
            try:
                self.update_state_from_result(context, plan, result)
            except Exception as exc:
                logger.exception("State update after %s failed", action.value)
                return self._finish(execution, context, AgentStatus.FAILED, str(exc), metrics)
            context.add_ai_cost(result.ai_cost)
            context.current_iteration += 1
            self._persist(execution, context, AgentStatus.RUNNING)
            if context.total_ai_cost >= config.max_ai_cost:
                logger.warning(
                    "Execution %s spent %.4f of %.4f AI budget",
                    execution.id,
                    context.total_ai_cost,
                    config.max_ai_cost,
                )
                return self._finish(execution, context, AgentStatus.FAILED, COST_BUDGET_EXCEEDED, metrics)

    def execute_action(
        self, plan: AgentPlan, context: AgentContext, cancel: CancellationToken
    ) -> ActionResult:
        action = plan.next_action
        if action.is_meta:
            return ActionResult(action_type=action, success=True)
        start = time.perf_counter()
        output = self.tools.execute_tool(action, plan.action_params, cancel)
        duration_ms = int((time.perf_counter() - start) * 1000)
        success = output.get("success") is True
        error = output.get("error")
        return ActionResult(
            action_type=action,
            success=success,
            output=output,
            error=str(error) if error is not None else None,
            ai_cost=float(output.get("aiCost") or 0.0),
            duration_ms=duration_ms,
        )

    def _await_approval(
        self,
        execution: AgentExecution,
        context: AgentContext,
        config: AgentConfig,
        plan: AgentPlan,
        cancel: CancellationToken,
    ) -> tuple[AgentStatus, str] | None:
        """Block on a human decision; return a terminal status unless approved."""
        action = plan.next_action
        if self.approvals is None:
            return AgentStatus.FAILED, f"{action.value} requires approval but no approval service is configured"
        pending = context.get_state(PENDING_APPROVAL_KEY) or {}
        request = None
        if pending.get("iteration") == context.current_iteration and pending.get("action") == action.value:
            request = self.approvals.get(pending["requestId"])
        if request is None:
            request = self.approvals.create(
                ApprovalRequest(
                    request_type=ApprovalRequestType.AGENT_ACTION,
                    test_name=f"{self.agent_type.value}: {action.value}",
                    generated_content=json.dumps(plan.action_params, default=str, indent=2),
                    requested_by=execution.triggered_by or "agent",
                    agent_execution_id=execution.id,
                    metadata={"action": action.value, "reasoning": plan.reasoning},
                )
            )
            context.put_state(
                PENDING_APPROVAL_KEY,
                {"iteration": context.current_iteration, "action": action.value, "requestId": request.id},
            )
        self._persist(execution, context, AgentStatus.WAITING_FOR_APPROVAL)
        self.store.save_context(context)
        logger.info("Execution %s waiting for approval %s", execution.id, request.id)
        status = self.approvals.wait_for_decision(
            request.id, config.approval_timeout_seconds, self.approval_poll_seconds, cancel
        )
        context.remove_state(PENDING_APPROVAL_KEY)
        if status == ApprovalStatus.APPROVED:
            self._persist(execution, context, AgentStatus.RUNNING)
            return None
        if status == ApprovalStatus.PENDING_APPROVAL:
            return AgentStatus.STOPPED, "Stopped while waiting for approval"
        if status == ApprovalStatus.REJECTED:
            return AgentStatus.FAILED, f"Approval rejected for {action.value}"
        return AgentStatus.FAILED, f"Approval timed out for {action.value}"

    def _persist(self, execution: AgentExecution, context: AgentContext, status: AgentStatus) -> None:
        execution.status = status
        execution.current_iteration = context.current_iteration
        execution.total_ai_cost = context.total_ai_cost
        execution.updated_at = utcnow()
        self.store.save_execution(execution)

    def _finish(
        self,
        execution: AgentExecution,
        context: AgentContext,
        status: AgentStatus,
        error: str | None,
        metrics: MetricsCollector | None,
    ) -> AgentResult:
        outputs = self.build_outputs(context)
        execution.outputs = _history_safe(outputs)
        execution.error_message = error
        execution.completed_at = utcnow()
        self._persist(execution, context, status)
        self.store.save_context(context)
        if self.audit:
            self.audit.emit(execution.id, "execution_finished", {"status": status.value, "error": error})
        if metrics is not None:
            metrics.export_json(status=status.value, iterations=context.current_iteration)
        log = logger.info if status == AgentStatus.COMPLETED else logger.warning
        log(
            "Execution %s finished %s after %d iterations%s",
            execution.id,
            status.value,
            context.current_iteration,
            f": {error}" if error else "",
        )
        return AgentResult(
            execution_id=execution.id,
            status=status,
            goal=context.goal,
            iterations_completed=context.current_iteration,
            total_ai_cost=context.total_ai_cost,
            outputs=outputs,
            error_message=error,
            started_at=execution.started_at,
        )


_MAX_HISTORY_CHARS = 2000


def _history_safe(payload: dict[str, Any]) -> dict[str, Any]:
    """Trim long strings (page HTML, test content) before they enter history."""
    trimmed: dict[str, Any] = {}
    for key, value in payload.items():
        if isinstance(value, str) and len(value) > _MAX_HISTORY_CHARS:
            trimmed[key] = value[:_MAX_HISTORY_CHARS] + "...[truncated]"
        else:
            trimmed[key] = value
    return trimmed
