"""Base tool definitions."""

from __future__ import annotations

from abc import ABC, abstractmethod
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, ValidationError
from pydantic.alias_generators import to_camel

from healforge.core.actions import AgentActionType
from healforge.core.cancellation import CancellationToken


class ToolCategory(str, Enum):
    ANALYSIS = "analysis"
    REGISTRY = "registry"
    BROWSER = "browser"
    AI = "ai"
    CONTENT = "content"
    EXECUTION = "execution"
    GIT = "git"
    APPROVAL = "approval"
    ORCHESTRATION = "orchestration"


class ToolInput(BaseModel):
    """Tool parameters arrive with camelCase keys (``testId``, ``brokenLocator``)."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


def success(**outputs: Any) -> dict[str, Any]:
    return {"success": True, **outputs}


def failure(error: str, **outputs: Any) -> dict[str, Any]:
    return {"success": False, "error": error, **outputs}


class AgentTool(ABC):
    """One unit of external effect, bound to exactly one action type.

    ``execute`` validates the raw parameter map against ``input_schema`` and
    hands the typed payload to ``run``. Anticipated failures come back as
    ``{"success": False, "error": ...}``; only unexpected faults raise.
    """

    action_type: AgentActionType
    name: str
    description: str
    category: ToolCategory
    input_schema: type[ToolInput]

    @abstractmethod
    def run(self, payload: Any, cancel: CancellationToken) -> dict[str, Any]:
        raise NotImplementedError

    def validate_parameters(self, parameters: dict[str, Any]) -> bool:
        try:
            self.input_schema.model_validate(parameters)
        except ValidationError:
            return False
        return True

    def parameter_schema(self) -> dict[str, str]:
        schema: dict[str, str] = {}
        for field_name, info in self.input_schema.model_fields.items():
            key = info.alias or field_name
            requirement = "required" if info.is_required() else "optional"
            schema[key] = f"({requirement}) {info.description or ''}".rstrip()
        return schema

    def execute(
        self, parameters: dict[str, Any], cancel: CancellationToken | None = None
    ) -> dict[str, Any]:
        try:
            payload = self.input_schema.model_validate(parameters)
        except ValidationError as exc:
            errors = "; ".join(
                f"{'.'.join(str(part) for part in err['loc'])}: {err['msg']}"
                for err in exc.errors()
            )
            return failure(f"Invalid parameters: {errors}")
        return self.run(payload, cancel or CancellationToken())
