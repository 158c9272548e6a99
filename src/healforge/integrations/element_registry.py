"""Page/element locator catalogue stored as a JSON document."""

from __future__ import annotations

from datetime import datetime, timezone
import json
from pathlib import Path
import re
import threading
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, model_validator

from healforge.content.locators import locators_match, parse_locator, to_playwright_code
from healforge.util.logging import get_logger

logger = get_logger(__name__)


class _CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class RegistryElement(_CamelModel):
    name: str
    primary_selector: str = Field(alias="primarySelector")
    playwright_code: str | None = Field(default=None, alias="playwrightCode")
    description: str | None = None
    replaced_locator: str | None = Field(default=None, alias="replacedLocator")
    discovered_by: str | None = Field(default=None, alias="discoveredBy")
    discovered_at: str | None = Field(default=None, alias="discoveredAt")
    fallbacks: list[str] = Field(default_factory=list)

    @property
    def strategy(self) -> str:
        return parse_locator(self.primary_selector).strategy


class RegistryPage(_CamelModel):
    name: str
    url: str | None = None
    elements: list[RegistryElement] = Field(default_factory=list)


class RegistryDocument(_CamelModel):
    version: str = "1.0"
    last_updated: str | None = Field(default=None, alias="lastUpdated")
    pages: list[RegistryPage] = Field(default_factory=list)

    @model_validator(mode="before")
    @classmethod
    def _accept_legacy_shapes(cls, data: Any) -> Any:
        """Accept a bare array of pages and the old name-keyed ``pages`` object."""
        if isinstance(data, list):
            return {"pages": data}
        if isinstance(data, dict) and isinstance(data.get("pages"), dict):
            pages = []
            for name, page in data["pages"].items():
                if isinstance(page, list):
                    page = {"elements": page}
                pages.append({"name": name, **page} if isinstance(page, dict) else page)
            return {**data, "pages": pages}
        return data


def healed_element_name(locator: str) -> str:
    value = parse_locator(locator).value
    slug = re.sub(r"[^a-zA-Z0-9]+", "_", value).strip("_").lower()
    return f"{slug or 'element'}_healed"


class ElementRegistry:
    """Reads and updates the registry file; a missing file reads as empty."""

    def __init__(self, path: Path) -> None:
        self.path = path
        self._lock = threading.Lock()

    def load(self) -> RegistryDocument:
        if not self.path.exists():
            return RegistryDocument()
        text = self.path.read_text(encoding="utf-8")
        if not text.strip():
            return RegistryDocument()
        return RegistryDocument.model_validate(json.loads(text))

    def save(self, document: RegistryDocument) -> None:
        document.last_updated = datetime.now(timezone.utc).isoformat()
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(
            document.model_dump_json(by_alias=True, indent=2, exclude_none=True),
            encoding="utf-8",
        )

    def find_page(self, page_name: str) -> RegistryPage | None:
        wanted = page_name.lower()
        for page in self.load().pages:
            if page.name.lower() == wanted:
                return page
        return None

    def all_elements(self) -> list[tuple[RegistryPage, RegistryElement]]:
        return [(page, element) for page in self.load().pages for element in page.elements]

    def add_healed_element(
        self,
        page_name: str,
        working_locator: str,
        broken_locator: str,
        element_name: str | None = None,
        discovered_by: str = "SelfHealingAgent",
        description: str | None = None,
    ) -> tuple[bool, str]:
        """Record ``working_locator`` as the replacement for ``broken_locator``.

        Returns ``(added, element_name)``; ``added`` is False when this exact
        working/broken mapping is already in the registry.
        """
        with self._lock:
            document = self.load()
            for page in document.pages:
                for element in page.elements:
                    if (
                        locators_match(element.primary_selector, working_locator)
                        and locators_match(element.replaced_locator, broken_locator)
                    ):
                        logger.info(
                            "Registry already maps %s -> %s, skipping", broken_locator, working_locator
                        )
                        return False, element.name
            page = next(
                (item for item in document.pages if item.name.lower() == page_name.lower()),
                None,
            )
            if page is None:
                page = RegistryPage(name=page_name)
                document.pages.append(page)
            name = element_name or healed_element_name(working_locator)
            page.elements.append(
                RegistryElement(
                    name=name,
                    primary_selector=working_locator,
                    playwright_code=to_playwright_code(working_locator),
                    description=description or f"Healed replacement for {broken_locator}",
                    replaced_locator=broken_locator,
                    discovered_by=discovered_by,
                    discovered_at=datetime.now(timezone.utc).isoformat(),
                    fallbacks=[broken_locator],
                )
            )
            self.save(document)
        logger.info("Registry updated: %s on %s replaces %s", name, page_name, broken_locator)
        return True, name
