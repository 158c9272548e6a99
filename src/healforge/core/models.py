"""Typed records exchanged between the loop, planners, tools and stores."""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any
from uuid import uuid4

from pydantic import BaseModel, Field

from healforge.core.actions import AgentActionType


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class AgentType(str, Enum):
    SELF_HEALING_TEST_FIXER = "SELF_HEALING_TEST_FIXER"
    FLAKY_TEST_FIXER = "FLAKY_TEST_FIXER"


class AgentStatus(str, Enum):
    RUNNING = "RUNNING"
    WAITING_FOR_APPROVAL = "WAITING_FOR_APPROVAL"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    STOPPED = "STOPPED"

    @property
    def is_terminal(self) -> bool:
        return self in {AgentStatus.COMPLETED, AgentStatus.FAILED, AgentStatus.STOPPED}


class AgentGoal(BaseModel, frozen=True):
    goal_type: str
    parameters: dict[str, Any] = Field(default_factory=dict)
    success_criteria: str | None = None


class AgentConfig(BaseModel, frozen=True):
    max_iterations: int = 20
    max_ai_cost: float = 5.0
    approval_timeout_seconds: int = 3600
    actions_requiring_approval: frozenset[AgentActionType] = frozenset()
    actions_never_requiring_approval: frozenset[AgentActionType] = frozenset(
        {AgentActionType.QUERY_ELEMENT_REGISTRY, AgentActionType.CAPTURE_PAGE_HTML}
    )

    def requires_approval(self, action: AgentActionType) -> bool:
        if action in self.actions_never_requiring_approval:
            return False
        return action in self.actions_requiring_approval


class AgentPlan(BaseModel):
    next_action: AgentActionType
    action_params: dict[str, Any] = Field(default_factory=dict)
    reasoning: str = ""
    confidence: float = Field(default=1.0, ge=0.0, le=1.0)
    requires_approval: bool = False


class ActionResult(BaseModel):
    action_type: AgentActionType
    success: bool
    output: dict[str, Any] = Field(default_factory=dict)
    error: str | None = None
    ai_cost: float = 0.0
    duration_ms: int = 0


class AgentHistoryEntry(BaseModel, frozen=True):
    iteration: int
    action_type: AgentActionType
    success: bool
    input: dict[str, Any] = Field(default_factory=dict)
    output: dict[str, Any] = Field(default_factory=dict)
    error: str | None = None
    duration_ms: int = 0
    ai_cost: float = 0.0
    timestamp: datetime = Field(default_factory=utcnow)


class AgentExecution(BaseModel):
    id: str = Field(default_factory=lambda: str(uuid4()))
    agent_type: AgentType
    status: AgentStatus = AgentStatus.RUNNING
    goal: AgentGoal
    current_iteration: int = 0
    max_iterations: int = 20
    started_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
    completed_at: datetime | None = None
    total_ai_cost: float = 0.0
    outputs: dict[str, Any] = Field(default_factory=dict)
    error_message: str | None = None
    triggered_by: str | None = None


class AgentResult(BaseModel):
    execution_id: str
    status: AgentStatus
    goal: AgentGoal
    iterations_completed: int
    total_ai_cost: float = 0.0
    outputs: dict[str, Any] = Field(default_factory=dict)
    error_message: str | None = None
    started_at: datetime
    completed_at: datetime = Field(default_factory=utcnow)

    @property
    def succeeded(self) -> bool:
        return self.status == AgentStatus.COMPLETED
