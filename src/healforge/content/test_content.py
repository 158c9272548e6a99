"""Reading and rewriting test content documents.

Test content is a JSON document in one of two shapes: legacy
``{"steps": [...]}`` or intent ``{"scenarios": [{"steps": [...]}], "baseUrl": ...}``.
Rendered source files are recognized but never rewritten.
"""

from __future__ import annotations

from enum import Enum
import json
import re
from typing import Any

from pydantic import BaseModel, ConfigDict, field_validator

from healforge.content.locators import UNKNOWN_LOCATOR, locators_match, selector_rejection_reason
from healforge.util.logging import get_logger

logger = get_logger(__name__)


class ContentFormat(str, Enum):
    LEGACY_STEPS = "LEGACY_STEPS"
    INTENT_JSON = "INTENT_JSON"
    RENDERED = "RENDERED"
    UNKNOWN = "UNKNOWN"


class TestStep(BaseModel):
    __test__ = False
    model_config = ConfigDict(extra="allow")

    action: str
    locator: str | None = None
    value: str | None = None
    timeout: int | None = None

    @field_validator("value", mode="before")
    @classmethod
    def _value_as_text(cls, value: Any) -> Any:
        # content may hold unquoted numbers and booleans
        if isinstance(value, bool):
            return "true" if value else "false"
        if isinstance(value, (int, float)):
            return str(value)
        if isinstance(value, (dict, list)):
            return json.dumps(value, ensure_ascii=False)
        return value

    @property
    def action_key(self) -> str:
        return normalize_action(self.action)


def normalize_action(action: str | None) -> str:
    """``assertUrl`` / ``assert_url`` / ``ASSERT_URL`` all become ``ASSERT_URL``."""
    if not action:
        return ""
    snake = re.sub(r"(?<=[a-z0-9])([A-Z])", r"_\1", action.strip())
    return snake.replace("-", "_").upper()


def detect_format(content: str | None) -> ContentFormat:
    if not content or not content.strip():
        return ContentFormat.UNKNOWN
    trimmed = content.strip()
    if trimmed.startswith(("import ", "from ", "def ", "package ", "public class ")):
        return ContentFormat.RENDERED
    if not trimmed.startswith("{"):
        return ContentFormat.UNKNOWN
    try:
        document = json.loads(trimmed)
    except json.JSONDecodeError:
        return ContentFormat.UNKNOWN
    if not isinstance(document, dict):
        return ContentFormat.UNKNOWN
    if "scenarios" in document:
        return ContentFormat.INTENT_JSON
    if "steps" in document:
        return ContentFormat.LEGACY_STEPS
    return ContentFormat.UNKNOWN


def load_document(content: str) -> dict[str, Any]:
    document = json.loads(content)
    if not isinstance(document, dict):
        raise ValueError("Test content must be a JSON object")
    return document


def _step_lists(document: dict[str, Any]) -> list[list[dict[str, Any]]]:
    lists: list[list[dict[str, Any]]] = []
    for scenario in document.get("scenarios") or []:
        if isinstance(scenario, dict) and isinstance(scenario.get("steps"), list):
            lists.append(scenario["steps"])
    if isinstance(document.get("steps"), list):
        lists.append(document["steps"])
    return lists


def get_steps(content: str | None) -> list[TestStep]:
    """Flatten steps from either document shape; empty for anything else."""
    fmt = detect_format(content)
    if fmt not in {ContentFormat.LEGACY_STEPS, ContentFormat.INTENT_JSON}:
        logger.debug("No steps extractable from %s content", fmt.value)
        return []
    document = load_document(content or "")
    steps: list[TestStep] = []
    for step_list in _step_lists(document):
        for raw in step_list:
            if isinstance(raw, dict) and raw.get("action"):
                steps.append(TestStep.model_validate(raw))
    return steps


def base_url(content: str | None) -> str | None:
    if detect_format(content) != ContentFormat.INTENT_JSON:
        return None
    value = load_document(content or "").get("baseUrl")
    return value if isinstance(value, str) and value.strip() else None


def replace_locator(content: str, broken_locator: str, new_locator: str) -> tuple[str, bool]:
    """Replace every step locator matching ``broken_locator``.

    Scenario steps are searched first, then legacy top-level steps. Returns the
    re-serialized document and whether anything was replaced.
    """
    if detect_format(content) not in {ContentFormat.LEGACY_STEPS, ContentFormat.INTENT_JSON}:
        return content, False
    document = load_document(content)
    replaced = False
    for step_list in _step_lists(document):
        for step in step_list:
            if isinstance(step, dict) and locators_match(step.get("locator"), broken_locator):
                step["locator"] = new_locator
                replaced = True
    if not replaced:
        return content, False
    return json.dumps(document, indent=2, ensure_ascii=False), True


def build_fixed_content(
    original: str | None, broken_locator: str | None, new_locator: str | None
) -> str | None:
    """Content with ``broken_locator`` swapped for ``new_locator``.

    Returns ``None`` when the candidate is not a usable selector, the broken
    locator is unknown, or nothing in the document matches it.
    """
    if not original:
        return None
    rejection = selector_rejection_reason(new_locator)
    if rejection:
        logger.warning("Rejected candidate locator %r: %s", new_locator, rejection)
        return None
    if not broken_locator or broken_locator == UNKNOWN_LOCATOR:
        logger.warning("No broken locator known, cannot rewrite content")
        return None
    try:
        fixed, replaced = replace_locator(original, broken_locator, new_locator or "")
    except ValueError as exc:
        logger.warning("Could not rewrite test content: %s", exc)
        return None
    if not replaced:
        logger.warning("Broken locator %s not present in test content", broken_locator)
        return None
    return fixed
