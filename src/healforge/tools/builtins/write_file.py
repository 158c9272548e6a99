"""Write rendered test source to the drafts directory."""

from __future__ import annotations

from pathlib import Path
from typing import Any

from pydantic import Field

from healforge.core.actions import AgentActionType
from healforge.core.cancellation import CancellationToken
from healforge.tools.base import AgentTool, ToolCategory, ToolInput, failure, success
from healforge.util.logging import get_logger

logger = get_logger(__name__)


class WriteTestFileInput(ToolInput):
    test_code: str = Field(description="Complete source of the test file")
    file_name: str = Field(description="File name, e.g. test_login.py")


class WriteTestFileTool(AgentTool):
    action_type = AgentActionType.WRITE_FILE
    name = "Test File Writer"
    description = "Writes a rendered test module to the drafts directory for review and commit."
    category = ToolCategory.CONTENT
    input_schema = WriteTestFileInput

    def __init__(self, drafts_dir: Path) -> None:
        self.drafts_dir = drafts_dir

    def run(self, payload: WriteTestFileInput, cancel: CancellationToken) -> dict[str, Any]:
        file_name = Path(payload.file_name).name
        if not file_name or file_name != payload.file_name:
            return failure(f"Invalid file name: {payload.file_name}")
        if not payload.test_code.strip():
            return failure("testCode is empty")
        try:
            self.drafts_dir.mkdir(parents=True, exist_ok=True)
            path = self.drafts_dir / file_name
            path.write_text(payload.test_code, encoding="utf-8")
        except OSError as exc:
            logger.warning("Could not write draft %s: %s", file_name, exc)
            return failure(f"Could not write draft: {exc}")
        logger.info("Wrote draft %s (%d chars)", path, len(payload.test_code))
        return success(
            filePath=str(path),
            absolutePath=str(path.resolve()),
            fileName=file_name,
            fileSize=len(payload.test_code),
            status="DRAFT",
        )
