from __future__ import annotations

from typing import Any

import pytest

from healforge.core.actions import AgentActionType
from healforge.core.cancellation import CancellationToken
from healforge.errors import ToolNotRegisteredError
from healforge.tools.base import AgentTool, ToolCategory, ToolInput, failure, success
from healforge.tools.circuit_breaker import CircuitBreaker, CircuitState
from healforge.tools.registry import ToolRegistry


class FlipInput(ToolInput):
    test_id: str
    fail: bool = False


class FlipTool(AgentTool):
    action_type = AgentActionType.EXECUTE_TEST
    name = "Flip"
    description = "Succeeds or fails on request."
    category = ToolCategory.EXECUTION
    input_schema = FlipInput

    def __init__(self) -> None:
        self.calls = 0

    def run(self, payload: FlipInput, cancel: CancellationToken) -> dict[str, Any]:
        self.calls += 1
        if payload.fail:
            return failure("flipped", testId=payload.test_id)
        return success(testId=payload.test_id)


class FakeClock:
    def __init__(self) -> None:
        self.now = 100.0

    def __call__(self) -> float:
        return self.now


def test_missing_tool_raises():
    registry = ToolRegistry()
    with pytest.raises(ToolNotRegisteredError):
        registry.execute_tool(AgentActionType.DISCOVER_LOCATOR, {})
    assert not registry.has_tool(AgentActionType.DISCOVER_LOCATOR)


def test_parameters_are_validated_with_camel_case_keys():
    tool = FlipTool()
    assert tool.validate_parameters({"testId": "t-1"})
    assert tool.validate_parameters({"test_id": "t-1"})
    assert not tool.validate_parameters({})
    result = tool.execute({"fail": True})
    assert result["success"] is False
    assert result["error"].startswith("Invalid parameters: testId")
    assert tool.calls == 0
    assert tool.parameter_schema() == {"testId": "(required)", "fail": "(optional)"}


def test_registry_opens_circuit_after_repeated_failures():
    clock = FakeClock()
    registry = ToolRegistry(CircuitBreaker(failure_threshold=2, open_timeout_seconds=30, clock=clock))
    tool = FlipTool()
    registry.register(tool)

    for _ in range(2):
        assert registry.execute_tool(AgentActionType.EXECUTE_TEST, {"testId": "t", "fail": True})["success"] is False
    assert registry.circuit_state(AgentActionType.EXECUTE_TEST) == CircuitState.OPEN

    rejected = registry.execute_tool(AgentActionType.EXECUTE_TEST, {"testId": "t"})
    assert rejected["circuitBreakerOpen"] is True
    assert tool.calls == 2

    clock.now += 31
    trial = registry.execute_tool(AgentActionType.EXECUTE_TEST, {"testId": "t"})
    assert trial["success"] is True
    assert registry.circuit_state(AgentActionType.EXECUTE_TEST) == CircuitState.CLOSED


def test_half_open_trial_failure_reopens():
    clock = FakeClock()
    breaker = CircuitBreaker(failure_threshold=1, open_timeout_seconds=10, clock=clock)
    breaker.record_failure("git")
    assert not breaker.allow_request("git")
    clock.now += 10
    assert breaker.allow_request("git")
    assert breaker.state("git") == CircuitState.HALF_OPEN
    breaker.record_failure("git")
    assert breaker.state("git") == CircuitState.OPEN
    assert not breaker.allow_request("git")
    breaker.reset("git")
    assert breaker.state("git") == CircuitState.CLOSED


def test_unexpected_exception_propagates_and_counts():
    class Boom(FlipTool):
        def run(self, payload, cancel):
            raise OSError("disk gone")

    breaker = CircuitBreaker(failure_threshold=1)
    registry = ToolRegistry(breaker)
    registry.register(Boom())
    with pytest.raises(OSError):
        registry.execute_tool(AgentActionType.EXECUTE_TEST, {"testId": "t"})
    assert breaker.state("Flip") == CircuitState.OPEN


def test_catalog_lists_tools():
    registry = ToolRegistry()
    registry.register(FlipTool())
    catalog = registry.catalog()
    assert "Tool: Flip" in catalog
    assert "Action: EXECUTE_TEST" in catalog
    assert "    - testId: (required)" in catalog
    assert registry.tools_by_category()[ToolCategory.EXECUTION][0].name == "Flip"
