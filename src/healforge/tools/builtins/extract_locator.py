"""Identify the broken locator behind a test failure."""

from __future__ import annotations

from typing import Any

from pydantic import Field

from healforge.content.locators import (
    UNKNOWN,
    UNKNOWN_LOCATOR,
    extract_locator_from_error,
    infer_element_purpose,
    infer_page_from_url,
    infer_page_from_url_pattern,
    parse_locator,
    strip_locator_prefix,
)
from healforge.content.test_content import TestStep, get_steps
from healforge.core.actions import AgentActionType
from healforge.core.cancellation import CancellationToken
from healforge.tools.base import AgentTool, ToolCategory, ToolInput, success
from healforge.util.logging import get_logger

logger = get_logger(__name__)


class ExtractBrokenLocatorInput(ToolInput):
    error_message: str = Field(default="", description="Failure message of the test run")
    test_content: str = Field(description="Test content JSON")
    known_broken_locator: str | None = Field(
        default=None, description="Locator reported by a previous verification run"
    )
    failed_step_index: int | None = Field(default=None, description="Index of the failed step")


def _unknown_context() -> dict[str, str]:
    return {"pageName": UNKNOWN, "elementPurpose": UNKNOWN, "actionType": UNKNOWN}


def _find_failed_step(
    steps: list[TestStep], broken_locator: str, failed_step_index: int | None
) -> int | None:
    if failed_step_index is not None and 0 <= failed_step_index < len(steps):
        return failed_step_index
    if broken_locator == UNKNOWN_LOCATOR:
        return None
    normalized = strip_locator_prefix(broken_locator)
    for index, step in enumerate(steps):
        if step.locator and strip_locator_prefix(step.locator) == normalized:
            return index
    return None


def infer_test_context(
    test_content: str, broken_locator: str, failed_step_index: int | None = None
) -> dict[str, str]:
    """Page name, element purpose and action of the failing step.

    The page is taken from the nearest preceding ``assertUrl`` when one names a
    known page; a ``navigate`` is only used if no assertion does, since the
    browser may have been redirected since.
    """
    steps = get_steps(test_content)
    index = _find_failed_step(steps, broken_locator, failed_step_index)
    if index is None:
        logger.warning("Cannot identify the failing step for %s", broken_locator)
        return _unknown_context()
    page_name = UNKNOWN
    for step in reversed(steps[:index]):
        if step.action_key == "ASSERT_URL" and step.value:
            candidate = infer_page_from_url_pattern(step.value)
            if candidate != UNKNOWN:
                page_name = candidate
                break
        if step.action_key == "NAVIGATE" and step.value and page_name == UNKNOWN:
            page_name = infer_page_from_url(step.value)
    failed = steps[index]
    action = failed.action_key or UNKNOWN
    return {
        "pageName": page_name,
        "elementPurpose": infer_element_purpose(action, failed.locator),
        "actionType": action,
    }


class ExtractBrokenLocatorTool(AgentTool):
    action_type = AgentActionType.EXTRACT_BROKEN_LOCATOR
    name = "Broken Locator Extractor"
    description = (
        "Finds the locator that broke from the failure message and infers the page "
        "and purpose of the element from the test steps."
    )
    category = ToolCategory.ANALYSIS
    input_schema = ExtractBrokenLocatorInput

    def run(self, payload: ExtractBrokenLocatorInput, cancel: CancellationToken) -> dict[str, Any]:
        if payload.known_broken_locator and payload.known_broken_locator.strip():
            broken = payload.known_broken_locator.strip()
            source = "verification run"
        else:
            broken = extract_locator_from_error(payload.error_message) or UNKNOWN_LOCATOR
            source = "error message"
        if broken == UNKNOWN_LOCATOR:
            logger.warning("No locator found in error message: %s", payload.error_message[:200])
            strategy, value = UNKNOWN, UNKNOWN
        else:
            strategy, value = parse_locator(broken)
        extra: dict[str, Any] = {}
        try:
            context = infer_test_context(payload.test_content, broken, payload.failed_step_index)
        except ValueError as exc:
            logger.warning("Page context for %s degraded to unknown: %s", broken, exc)
            context = _unknown_context()
            extra["error"] = str(exc)
        logger.info(
            "Broken locator %s (from %s) on page %s", broken, source, context["pageName"]
        )
        return success(
            brokenLocator=broken,
            locatorStrategy=strategy,
            locatorValue=value,
            originalErrorMessage=payload.error_message,
            **context,
            **extra,
        )
