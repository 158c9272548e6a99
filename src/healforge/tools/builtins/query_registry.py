"""Look up known alternative locators in the element registry."""

from __future__ import annotations

import re
from typing import Any

from pydantic import Field

from healforge.content.locators import UNKNOWN, locators_match, strategy_priority
from healforge.core.actions import AgentActionType
from healforge.core.cancellation import CancellationToken
from healforge.integrations.element_registry import ElementRegistry, RegistryElement, RegistryPage
from healforge.tools.base import AgentTool, ToolCategory, ToolInput, failure, success
from healforge.util.logging import get_logger

logger = get_logger(__name__)


class QueryElementRegistryInput(ToolInput):
    page_name: str = Field(default=UNKNOWN, description="Page the element lives on")
    element_purpose: str = Field(default=UNKNOWN, description="What the element is for")
    broken_locator: str | None = Field(default=None, description="Locator to exclude")


def _words(text: str) -> list[str]:
    return [word for word in re.split(r"[^a-z0-9]+", text.lower()) if len(word) > 3]


def matches_purpose(element: RegistryElement, purpose: str) -> bool:
    lower = purpose.lower()
    name = element.name.lower()
    if lower in name or lower in (element.description or "").lower():
        return True
    return any(word in name for word in _words(purpose))


def _keyword_hit(page: RegistryPage, element: RegistryElement, keyword: str) -> bool:
    haystack = " ".join(
        [element.name, page.name, element.description or "", element.primary_selector]
    ).lower()
    return keyword in haystack


class QueryElementRegistryTool(AgentTool):
    action_type = AgentActionType.QUERY_ELEMENT_REGISTRY
    name = "Element Registry Query"
    description = (
        "Searches the element registry by page and element purpose and returns "
        "alternative locators, most stable strategy first."
    )
    category = ToolCategory.REGISTRY
    input_schema = QueryElementRegistryInput

    def __init__(self, registry: ElementRegistry) -> None:
        self.registry = registry

    def search(self, page_name: str, purpose: str) -> list[tuple[RegistryPage, RegistryElement]]:
        matches: list[tuple[RegistryPage, RegistryElement]] = []
        if page_name != UNKNOWN:
            page = self.registry.find_page(page_name)
            if page is not None:
                matches = [(page, element) for element in page.elements if matches_purpose(element, purpose)]
        if matches:
            return matches
        seen: set[tuple[str, str]] = set()
        for keyword in _words(purpose):
            for page, element in self.registry.all_elements():
                key = (page.name, element.name)
                if key not in seen and _keyword_hit(page, element, keyword):
                    seen.add(key)
                    matches.append((page, element))
        return matches

    def run(self, payload: QueryElementRegistryInput, cancel: CancellationToken) -> dict[str, Any]:
        try:
            matches = self.search(payload.page_name, payload.element_purpose)
        except (OSError, ValueError) as exc:
            logger.warning("Element registry unreadable: %s", exc)
            return failure(f"Element registry unreadable: {exc}")
        if payload.broken_locator:
            matches = [
                (page, element)
                for page, element in matches
                if not locators_match(element.primary_selector, payload.broken_locator)
            ]
        matches.sort(key=lambda item: strategy_priority(item[1].strategy))
        alternatives = [
            {
                "locator": element.primary_selector,
                "strategy": element.strategy,
                "elementName": element.name,
                "description": element.description,
                "pageName": page.name,
                "priority": strategy_priority(element.strategy),
            }
            for page, element in matches
        ]
        if alternatives:
            logger.info(
                "Found %d registry alternatives for %s on %s",
                len(alternatives),
                payload.element_purpose,
                payload.page_name,
            )
        else:
            logger.warning(
                "No registry alternatives for %s on %s", payload.element_purpose, payload.page_name
            )
        return success(
            alternatives=alternatives,
            totalFound=len(alternatives),
            primaryRecommendation=alternatives[0] if alternatives else None,
        )
