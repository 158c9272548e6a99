"""Record a verified locator in the element registry."""

from __future__ import annotations

from typing import Any

from pydantic import Field

from healforge.content.locators import UNKNOWN
from healforge.core.actions import AgentActionType
from healforge.core.cancellation import CancellationToken
from healforge.integrations.element_registry import ElementRegistry
from healforge.tools.base import AgentTool, ToolCategory, ToolInput, failure, success
from healforge.util.logging import get_logger

logger = get_logger(__name__)


class UpdateElementRegistryInput(ToolInput):
    page_name: str = Field(default=UNKNOWN, description="Page the element lives on")
    element_name: str | None = Field(default=None, description="Registry name for the element")
    working_locator: str = Field(description="Locator verified to work")
    broken_locator: str = Field(description="Locator it replaces")
    discovered_by: str = Field(default="SelfHealingAgent", description="Who found the locator")
    description: str | None = None


class UpdateElementRegistryTool(AgentTool):
    action_type = AgentActionType.UPDATE_ELEMENT_REGISTRY
    name = "Element Registry Updater"
    description = (
        "Adds a verified replacement locator to the element registry, skipping "
        "mappings that are already recorded."
    )
    category = ToolCategory.REGISTRY
    input_schema = UpdateElementRegistryInput

    def __init__(self, registry: ElementRegistry) -> None:
        self.registry = registry

    def run(self, payload: UpdateElementRegistryInput, cancel: CancellationToken) -> dict[str, Any]:
        try:
            added, element_name = self.registry.add_healed_element(
                page_name=payload.page_name,
                working_locator=payload.working_locator,
                broken_locator=payload.broken_locator,
                element_name=payload.element_name,
                discovered_by=payload.discovered_by,
                description=payload.description,
            )
        except (OSError, ValueError) as exc:
            logger.warning("Registry update failed: %s", exc)
            return failure(f"Registry update failed: {exc}")
        message = (
            f"Added {payload.working_locator} for {element_name} on {payload.page_name}"
            if added
            else f"Mapping {payload.broken_locator} -> {payload.working_locator} already recorded"
        )
        return success(updated=added, elementName=element_name, message=message)
