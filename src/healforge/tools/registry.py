"""Tool registry keyed by action type."""

from __future__ import annotations

from typing import Any, Iterable

from healforge.core.actions import AgentActionType
from healforge.core.cancellation import CancellationToken
from healforge.errors import ToolNotRegisteredError
from healforge.tools.base import AgentTool, ToolCategory, failure
from healforge.tools.circuit_breaker import CircuitBreaker, CircuitState
from healforge.util.logging import get_logger

logger = get_logger(__name__)


class ToolRegistry:
    """Maps each action type to the single tool that performs it."""

    def __init__(self, breaker: CircuitBreaker | None = None) -> None:
        self._tools: dict[AgentActionType, AgentTool] = {}
        self.breaker = breaker or CircuitBreaker()

    def register(self, tool: AgentTool) -> None:
        if tool.action_type in self._tools:
            logger.warning("Tool for %s already registered, overwriting", tool.action_type.value)
        self._tools[tool.action_type] = tool
        logger.debug("Registered tool %s -> %s", tool.action_type.value, tool.name)

    def register_all(self, tools: Iterable[AgentTool]) -> None:
        for tool in tools:
            self.register(tool)

    def has_tool(self, action: AgentActionType) -> bool:
        return action in self._tools

    def get(self, action: AgentActionType) -> AgentTool:
        tool = self._tools.get(action)
        if tool is None:
            raise ToolNotRegisteredError(f"No tool registered for action: {action.value}")
        return tool

    def list(self) -> list[AgentTool]:
        return list(self._tools.values())

    def action_types(self) -> set[AgentActionType]:
        return set(self._tools)

    def circuit_state(self, action: AgentActionType) -> CircuitState:
        return self.breaker.state(self.get(action).name)

    def execute_tool(
        self,
        action: AgentActionType,
        parameters: dict[str, Any],
        cancel: CancellationToken | None = None,
    ) -> dict[str, Any]:
        """Run the tool for ``action`` behind its circuit breaker.

        Unexpected exceptions count against the breaker and propagate to the
        agent loop, which fails the execution.
        """
        tool = self.get(action)
        if not self.breaker.allow_request(tool.name):
            logger.warning("Circuit open for %s, rejecting request", tool.name)
            return failure(f"Circuit breaker OPEN for {tool.name}", circuitBreakerOpen=True)
        try:
            result = tool.execute(parameters, cancel)
        except Exception:
            self.breaker.record_failure(tool.name)
            raise
        if result.get("success") is True:
            self.breaker.record_success(tool.name)
        else:
            self.breaker.record_failure(tool.name)
        return result

    def tools_by_category(self) -> dict[ToolCategory, list[AgentTool]]:
        grouped: dict[ToolCategory, list[AgentTool]] = {}
        for tool in self._tools.values():
            grouped.setdefault(tool.category, []).append(tool)
        return grouped

    def catalog(self) -> str:
        lines = ["=== AVAILABLE TOOLS ===", ""]
        for tool in sorted(self._tools.values(), key=lambda item: item.name):
            lines.append(f"Tool: {tool.name}")
            lines.append(f"  Action: {tool.action_type.value}")
            lines.append(f"  Category: {tool.category.value}")
            lines.append(f"  Description: {tool.description}")
            lines.append("  Parameters:")
            for param, desc in tool.parameter_schema().items():
                lines.append(f"    - {param}: {desc}")
            lines.append("")
        return "\n".join(lines)
