"""Persist the failure pattern of an analyzed flaky test."""

from __future__ import annotations

import hashlib
import re
from typing import Any

from pydantic import Field

from healforge.core.actions import AgentActionType
from healforge.core.cancellation import CancellationToken
from healforge.integrations.failure_patterns import FailurePattern, FailurePatternStore
from healforge.tools.base import AgentTool, ToolCategory, ToolInput, failure, success
from healforge.tools.builtins.analyze_failure import load_stability_result
from healforge.tools.builtins.stability import StabilityAnalysisResult
from healforge.util.logging import get_logger

logger = get_logger(__name__)


def error_signature(result: StabilityAnalysisResult) -> str:
    """``<rootCause>_<pattern>_<hash>`` with digits and quoted text normalized away."""
    first = result.error_messages[0] if result.error_messages else "no-error"
    normalized = re.sub(r'".*?"', "STR", re.sub(r"\d+", "N", first))[:100]
    digest = hashlib.sha1(normalized.encode("utf-8")).hexdigest()[:12]
    return f"{result.root_cause or 'UNKNOWN'}_{result.pattern}_{digest}"


class RecordFailurePatternInput(ToolInput):
    stability_result: str = Field(min_length=1, description="StabilityAnalysisResult JSON with root cause")


class RecordFailurePatternTool(AgentTool):
    action_type = AgentActionType.RECORD_FAILURE_PATTERN
    name = "Failure Pattern Recorder"
    description = "Stores or bumps the failure pattern for an analyzed flaky test."
    category = ToolCategory.ANALYSIS
    input_schema = RecordFailurePatternInput

    def __init__(self, store: FailurePatternStore) -> None:
        self.store = store

    def run(self, payload: RecordFailurePatternInput, cancel: CancellationToken) -> dict[str, Any]:
        result = load_stability_result(payload.stability_result)
        if result is None:
            return failure("stabilityResult is not a valid stability analysis")
        pattern = self.store.record(
            FailurePattern(
                signature=error_signature(result),
                test_id=result.test_id,
                test_name=result.test_name,
                root_cause=result.root_cause or "UNKNOWN",
                pattern=result.pattern,
                error_sample=result.error_messages[0] if result.error_messages else None,
                flakiness_score=result.flakiness_score,
                impact_score=round(result.flakiness_score * 100),
            )
        )
        logger.info(
            "Failure pattern %s for %s seen %d time(s)",
            pattern.signature,
            pattern.test_name,
            pattern.occurrences,
        )
        return success(
            patternId=pattern.signature,
            testName=pattern.test_name,
            occurrences=pattern.occurrences,
        )
