"""Ask the AI gateway for replacement locators given the page HTML."""

from __future__ import annotations

from typing import Any

from pydantic import Field

from healforge.ai.base import AIGateway, AIRequest
from healforge.content.locators import UNKNOWN
from healforge.core.actions import AgentActionType
from healforge.core.cancellation import CancellationToken
from healforge.tools.base import AgentTool, ToolCategory, ToolInput, success
from healforge.util.ai_json import parse_ai_json
from healforge.util.logging import get_logger

logger = get_logger(__name__)

OPERATION = "LOCATOR_DISCOVERY"

_PROMPT = """You are analyzing a broken UI test locator and need to suggest alternatives.

BROKEN LOCATOR: {broken}
ELEMENT PURPOSE: {purpose}
PAGE: {page}
FAILING ACTION: {action}

PAGE HTML:
{html}

Return ONLY CSS or XPath selector strings, never automation code.

Wrong (code):
page.get_by_role("textbox", name="Username")
page.getByPlaceholder("Username")

Right (selector strings):
[data-test="username"]
#username
input[name="user-name"]
//input[@data-test='username']

Return JSON with exactly this structure:
{{
  "suggestions": [
    {{"locator": "[data-test='username']", "strategy": "attribute", "confidence": 0.95, "reasoning": "data-test attribute is stable"}},
    {{"locator": "#user-name", "strategy": "id", "confidence": 0.90, "reasoning": "ID selector as fallback"}},
    {{"locator": "input[placeholder='Username']", "strategy": "attribute", "confidence": 0.85, "reasoning": "placeholder text"}}
  ]
}}

Requirements:
1. Return exactly 3 suggestions, most stable first.
2. Each "locator" must be a CSS or XPath selector string with no method calls.
3. Valid strategies: "attribute", "id", "class", "xpath", "text".
"""


class DiscoverLocatorInput(ToolInput):
    page_html: str = Field(default="", description="HTML of the page")
    broken_locator: str = Field(description="Locator that failed")
    element_purpose: str = Field(default=UNKNOWN, description="What the element does")
    page_name: str = Field(default=UNKNOWN, description="Page the element lives on")
    action_type: str | None = Field(default=None, description="Step action that failed")


def build_discovery_prompt(payload: DiscoverLocatorInput) -> str:
    return _PROMPT.format(
        broken=payload.broken_locator,
        purpose=payload.element_purpose,
        page=payload.page_name,
        action=payload.action_type or UNKNOWN,
        html=payload.page_html,
    )


def parse_suggestions(content: str | None) -> list[dict[str, Any]]:
    """Suggestions from an AI reply; empty when the reply holds none."""
    parsed = parse_ai_json(content)
    if parsed is None:
        return []
    raw = parsed.get("suggestions")
    if raw is None:
        raw = parsed.get("recommended_fixes")
    if not isinstance(raw, list):
        return []
    suggestions: list[dict[str, Any]] = []
    for item in raw:
        if isinstance(item, str):
            item = {"locator": item}
        if isinstance(item, dict) and isinstance(item.get("locator"), str) and item["locator"].strip():
            suggestions.append({**item, "locator": item["locator"].strip()})
    return suggestions


class DiscoverLocatorTool(AgentTool):
    """AI fallback once the registry has nothing left to try.

    An unusable reply is reported as ``success`` with no suggestions so the
    planner can tell "tried and found nothing" from "not attempted".
    """

    action_type = AgentActionType.DISCOVER_LOCATOR
    name = "AI Locator Discovery"
    description = (
        "Suggests replacement selectors from the page HTML using the AI gateway. "
        "Fallback when the element registry has no alternatives."
    )
    category = ToolCategory.AI
    input_schema = DiscoverLocatorInput

    def __init__(self, gateway: AIGateway) -> None:
        self.gateway = gateway

    def run(self, payload: DiscoverLocatorInput, cancel: CancellationToken) -> dict[str, Any]:
        logger.info(
            "Asking AI for locators for %s on %s", payload.element_purpose, payload.page_name
        )
        response = self.gateway.complete(
            AIRequest(content=build_discovery_prompt(payload), operation=OPERATION)
        )
        if not response.success:
            logger.warning("AI discovery failed: %s", response.error)
            return success(
                suggestions=[],
                totalSuggestions=0,
                primarySuggestion=None,
                aiError=response.error,
                aiCost=response.cost,
            )
        suggestions = parse_suggestions(response.content)
        if not suggestions:
            logger.warning("AI reply contained no usable suggestions")
        else:
            logger.info("AI suggested %d locators", len(suggestions))
        return success(
            suggestions=suggestions,
            totalSuggestions=len(suggestions),
            primarySuggestion=suggestions[0] if suggestions else None,
            aiCost=response.cost,
        )
