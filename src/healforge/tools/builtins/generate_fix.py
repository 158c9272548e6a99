"""AI fix generation for flaky tests, diversified by attempt number."""

from __future__ import annotations

import json
from typing import Any

from pydantic import Field

from healforge.ai.base import AIGateway, AIRequest
from healforge.content.test_content import normalize_action
from healforge.core.actions import AgentActionType
from healforge.core.cancellation import CancellationToken
from healforge.tools.base import AgentTool, ToolCategory, ToolInput, failure, success
from healforge.tools.builtins.analyze_failure import FlakyRootCause, load_stability_result
from healforge.util.ai_json import parse_ai_json
from healforge.util.logging import get_logger

logger = get_logger(__name__)

OPERATION = "FIX_SUGGESTION"

_TIMING = {
    1: """ATTEMPT 1 - Add a wait ONLY before the step that failed:
- Read the failure messages to find which step failed
- Insert ONE wait immediately before that step: {"action": "wait", "locator": "css=.element", "timeout": 5000}
- Do not add waits before steps that already have one
- Do not pair a wait and assertVisible on the same locator
- Do not change any other steps""",
    2: """ATTEMPT 2 - Add waitForLoadState after every navigate step:
- Insert {"action": "waitForLoadState"} immediately after each navigate step
- Increase the timeout used in attempt 1 from 5000 to 10000
- No other changes""",
    3: """ATTEMPT 3 - Maximum stability, still targeted:
- Add {"action": "wait", "value": "2000"} before the failing step
- Set all existing timeout values to 15000
- Add waitForLoadState after every navigate step if not already present
- Keep all other steps unchanged""",
}

_DATA = {
    1: """ATTEMPT 1 - Add unique identifiers:
- Append a timestamp or random suffix to test data values
- Example: "testuser" becomes "testuser_12345\"""",
    2: """ATTEMPT 2 - Add cleanup steps:
- Add steps at the end to clean up test data
- Clear form fields after use
- Add logout/reset steps""",
    3: """ATTEMPT 3 - Isolate test data:
- Use completely unique values for all data fields
- Add clear/reset steps before critical actions
- Ensure no data dependencies between steps""",
}

_ENVIRONMENT = {
    1: """ATTEMPT 1 - Add health checks:
- Wait for the page to load before critical actions
- Wait for network idle before critical actions""",
    2: """ATTEMPT 2 - Add retries:
- Add extra wait steps with longer timeouts
- Reload the page before flaky sections""",
    3: """ATTEMPT 3 - Maximum resilience:
- Add waits before every action
- Reload the page at strategic points
- Use the longest timeouts""",
}

_LOCATOR = {
    1: """ATTEMPT 1 - Use stable locators:
- Replace CSS/XPath with role-based locators
- Example: "css=#dynamic-id" becomes "role=button[name='Submit']"
- Use test id attributes if available: "[data-testid='button']\"""",
    2: """ATTEMPT 2 - Add fallback locators:
- If role does not work, try text-based: "text=Submit"
- Try multiple locator strategies in sequence""",
    3: """ATTEMPT 3 - Most generic locators:
- Use text content: "text=Button Text"
- Use partial matches if needed
- Add waits before all click/type actions""",
}

_GENERIC = """UNKNOWN ROOT CAUSE - Apply general stability improvements:
- Add waits before all actions
- Increase all timeout values
- Wait for page load and network idle
- Use more stable locators where possible"""

_STRATEGIES = {
    FlakyRootCause.TIMING_ISSUE: _TIMING,
    FlakyRootCause.DATA_DEPENDENCY: _DATA,
    FlakyRootCause.ENVIRONMENT_DEPENDENCY: _ENVIRONMENT,
    FlakyRootCause.LOCATOR_BRITTLENESS: _LOCATOR,
}

_PROMPT = """You are a QA automation expert fixing a flaky test.

TEST INFORMATION:
- Test Name: {name}
- Root Cause: {root_cause}
- Flakiness Pattern: {pattern}
- Failed Runs: {failed}/{total}
- This is fix attempt #{attempt}

CURRENT TEST CODE:
```json
{code}
```

FAILURE MESSAGES:
{errors}

FIX STRATEGY GUIDANCE:
{guidance}

TASK:
Generate a fixed version of the test code that addresses the {display} issue.

REQUIREMENTS:
1. Keep the same JSON structure as the current test code
2. Each step must have: action, locator (if applicable), value (if applicable)
3. If this is attempt #{attempt}, use a DIFFERENT strategy than previous attempts
4. Keep changes minimal

SUPPORTED ACTIONS ONLY: navigate, type, click, clear, select, check, uncheck,
wait, waitForLoadState, assertVisible, assertText, assertUrl.
For locators use css=[data-test='x'], css=#id, css=.class or role=button[name='Submit'].

RESPONSE FORMAT (JSON only, no markdown):
{{
  "fixedTestCode": "...complete test JSON...",
  "fixStrategy": "Brief description of what was changed and why",
  "confidence": 0.85
}}
"""


def strategy_guidance(root_cause: FlakyRootCause, attempt: int) -> str:
    strategies = _STRATEGIES.get(root_cause)
    if strategies is None:
        return _GENERIC
    return strategies[min(max(attempt, 1), 3)]


def _same_step(left: dict[str, Any], right: dict[str, Any]) -> bool:
    return (
        normalize_action(left.get("action")) == normalize_action(right.get("action"))
        and left.get("locator") == right.get("locator")
        and left.get("value") == right.get("value")
    )


def dedupe_steps(steps: list[Any]) -> list[Any]:
    """Drop a wait right before assertVisible on the same locator, and repeated steps."""
    deduped: list[Any] = []
    for index, step in enumerate(steps):
        if not isinstance(step, dict):
            deduped.append(step)
            continue
        following = steps[index + 1] if index + 1 < len(steps) else None
        if (
            isinstance(following, dict)
            and normalize_action(step.get("action")) == "WAIT"
            and normalize_action(following.get("action")) == "ASSERT_VISIBLE"
            and step.get("locator") is not None
            and step.get("locator") == following.get("locator")
        ):
            logger.debug("Dropped redundant wait before assertVisible on %s", step.get("locator"))
            continue
        if deduped and isinstance(deduped[-1], dict) and _same_step(deduped[-1], step):
            logger.debug("Dropped duplicate %s step", step.get("action"))
            continue
        deduped.append(step)
    return deduped


def normalize_fixed_code(raw: Any) -> str | None:
    """Fixed content as a JSON string with redundant steps removed."""
    if isinstance(raw, (dict, list)):
        document: Any = raw
    elif isinstance(raw, str) and raw.strip():
        try:
            document = json.loads(raw)
        except json.JSONDecodeError:
            return raw
    else:
        return None
    if not isinstance(document, dict):
        return json.dumps(document, indent=2)
    changed = False
    lists = [document] + [
        scenario for scenario in document.get("scenarios") or [] if isinstance(scenario, dict)
    ]
    for holder in lists:
        steps = holder.get("steps")
        if isinstance(steps, list) and len(steps) > 1:
            deduped = dedupe_steps(steps)
            if len(deduped) != len(steps):
                holder["steps"] = deduped
                changed = True
    if changed:
        logger.info("Removed redundant steps from generated fix")
    if changed or not isinstance(raw, str):
        return json.dumps(document, indent=2)
    return raw


class GenerateFixInput(ToolInput):
    stability_result: str = Field(min_length=1, description="StabilityAnalysisResult JSON with root cause")
    test_code: str = Field(description="Current test content")
    attempt_number: int = Field(default=1, ge=1, description="Fix attempt number")


class GenerateFixTool(AgentTool):
    action_type = AgentActionType.SUGGEST_FIX
    name = "Flaky Fix Generator"
    description = (
        "Generates fixed test content for a flaky test; the strategy depends on the "
        "root cause and changes with each attempt."
    )
    category = ToolCategory.AI
    input_schema = GenerateFixInput

    def __init__(self, gateway: AIGateway) -> None:
        self.gateway = gateway

    def run(self, payload: GenerateFixInput, cancel: CancellationToken) -> dict[str, Any]:
        result = load_stability_result(payload.stability_result)
        if result is None:
            return failure("stabilityResult is not a valid stability analysis")
        root_cause = FlakyRootCause.parse(result.root_cause)
        prompt = _PROMPT.format(
            name=result.test_name,
            root_cause=root_cause.value,
            pattern=result.pattern,
            failed=result.failed_runs,
            total=result.total_runs,
            attempt=payload.attempt_number,
            code=payload.test_code,
            errors="\n".join(result.error_messages),
            guidance=strategy_guidance(root_cause, payload.attempt_number),
            display=root_cause.display_name,
        )
        logger.info(
            "Generating fix attempt %d for %s (%s)",
            payload.attempt_number,
            result.test_name,
            root_cause.value,
        )
        response = self.gateway.complete(AIRequest(content=prompt, operation=OPERATION))
        if not response.success:
            return failure(f"AI fix generation failed: {response.error}", aiCost=response.cost)
        parsed = parse_ai_json(response.content) or {}
        raw = parsed.get("fixedTestCode")
        if raw is None and isinstance(parsed.get("recommendedFixes"), dict):
            raw = parsed["recommendedFixes"].get("fixedTestCode")
        fixed = normalize_fixed_code(raw)
        if fixed is None:
            return failure("AI response did not contain fixedTestCode", aiCost=response.cost)
        return success(
            fixedTestCode=fixed,
            fixStrategy=parsed.get("fixStrategy"),
            confidence=parsed.get("confidence"),
            attemptNumber=payload.attempt_number,
            aiCost=response.cost,
        )
