"""File an approval request for human review."""

from __future__ import annotations

from typing import Any

from pydantic import Field

from healforge.core.actions import AgentActionType
from healforge.core.cancellation import CancellationToken
from healforge.errors import ApprovalStoreError
from healforge.integrations.approvals import ApprovalRequest, ApprovalRequestType, ApprovalService
from healforge.tools.base import AgentTool, ToolCategory, ToolInput, failure, success
from healforge.util.logging import get_logger

logger = get_logger(__name__)


class CreateApprovalRequestInput(ToolInput):
    test_code: str = Field(default="", description="Content to review")
    test_name: str = Field(description="Name of the test")
    jira_key: str | None = Field(default=None, description="Tracking key")
    request_type: ApprovalRequestType = ApprovalRequestType.SELF_HEALING_FIX
    requested_by: str = "agent-system"
    agent_execution_id: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)
    auto_execute_on_approval: bool = False


class CreateApprovalRequestTool(AgentTool):
    action_type = AgentActionType.REQUEST_APPROVAL
    name = "Approval Request Creator"
    description = "Creates a pending approval request for a fix or for manual review."
    category = ToolCategory.APPROVAL
    input_schema = CreateApprovalRequestInput

    def __init__(self, approvals: ApprovalService) -> None:
        self.approvals = approvals

    def run(self, payload: CreateApprovalRequestInput, cancel: CancellationToken) -> dict[str, Any]:
        try:
            request = self.approvals.create(
                ApprovalRequest(
                    request_type=payload.request_type,
                    test_name=payload.test_name,
                    generated_content=payload.test_code,
                    requested_by=payload.requested_by,
                    jira_key=payload.jira_key,
                    agent_execution_id=payload.agent_execution_id,
                    metadata=payload.metadata,
                    auto_execute_on_approval=payload.auto_execute_on_approval,
                )
            )
        except ApprovalStoreError as exc:
            logger.warning("Approval request for %s not filed: %s", payload.test_name, exc)
            return failure(str(exc), requestType=payload.request_type.value)
        return success(
            approvalRequestId=request.id,
            status=request.status.value,
            requestType=request.request_type.value,
            testName=request.test_name,
            createdAt=request.created_at.isoformat(),
            expiresAt=request.expires_at.isoformat(),
            isPending=not request.is_decided,
        )
