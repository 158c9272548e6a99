"""Per-execution agent state."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field

from healforge.core.actions import AgentActionType
from healforge.core.models import AgentGoal, AgentHistoryEntry, utcnow


class AgentContext(BaseModel):
    """Mutable state owned by exactly one execution.

    ``state`` holds control values under namespaced keys (``heal.*``,
    ``flaky.*``); ``work_products`` holds artifacts read by later phases or
    surfaced in the result. Both must stay JSON-serializable so the context can
    be persisted between iterations and resumed elsewhere.
    """

    execution_id: str
    goal: AgentGoal
    current_iteration: int = 0
    max_iterations: int = 20
    action_history: list[AgentHistoryEntry] = Field(default_factory=list)
    state: dict[str, Any] = Field(default_factory=dict)
    work_products: dict[str, Any] = Field(default_factory=dict)
    total_ai_cost: float = 0.0
    started_at: datetime = Field(default_factory=utcnow)
    last_updated_at: datetime = Field(default_factory=utcnow)

    def get_state(self, key: str, default: Any = None) -> Any:
        return self.state.get(key, default)

    def put_state(self, key: str, value: Any) -> None:
        self.state[key] = value
        self.last_updated_at = utcnow()

    def remove_state(self, key: str) -> None:
        self.state.pop(key, None)

    def get_work_product(self, key: str, default: Any = None) -> Any:
        return self.work_products.get(key, default)

    def put_work_product(self, key: str, value: Any) -> None:
        self.work_products[key] = value
        self.last_updated_at = utcnow()

    def remove_work_product(self, key: str) -> None:
        self.work_products.pop(key, None)

    def add_history(self, entry: AgentHistoryEntry) -> None:
        self.action_history.append(entry)
        self.last_updated_at = utcnow()

    def add_ai_cost(self, cost: float) -> None:
        self.total_ai_cost += cost

    @property
    def last_action(self) -> AgentHistoryEntry | None:
        return self.action_history[-1] if self.action_history else None

    def history_since(self, iteration: int) -> list[AgentHistoryEntry]:
        return [entry for entry in self.action_history if entry.iteration >= iteration]

    def has_succeeded_since(self, action: AgentActionType, iteration: int) -> bool:
        return any(
            entry.action_type == action and entry.success
            for entry in self.history_since(iteration)
        )

    def to_json(self) -> str:
        return self.model_dump_json()

    @classmethod
    def from_json(cls, payload: str) -> "AgentContext":
        return cls.model_validate_json(payload)
