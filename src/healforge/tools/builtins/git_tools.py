"""Branch, commit and pull-request tools over a git collaborator."""

from __future__ import annotations

from typing import Any

from pydantic import Field

from healforge.core.actions import AgentActionType
from healforge.core.cancellation import CancellationToken
from healforge.errors import GitOperationError
from healforge.integrations.approvals import ApprovalService
from healforge.integrations.git import GitConfigProvider, GitOperations
from healforge.tools.base import AgentTool, ToolCategory, ToolInput, failure, success
from healforge.util.logging import get_logger

logger = get_logger(__name__)

NO_GIT_CONFIG = "No default Git configuration found. Please configure Git settings."


class _GitTool(AgentTool):
    category = ToolCategory.GIT

    def __init__(self, git: GitOperations, config_provider: GitConfigProvider) -> None:
        self.git = git
        self.config_provider = config_provider


class CreateBranchInput(ToolInput):
    story_key: str = Field(description="Tracking key, e.g. LOCATOR-1a2b3c4d")
    branch_name: str | None = Field(default=None, description="Explicit branch name")


class CreateBranchTool(_GitTool):
    action_type = AgentActionType.CREATE_BRANCH
    name = "Git Branch Creator"
    description = "Creates (or checks out) a feature branch for a fix."
    input_schema = CreateBranchInput

    def run(self, payload: CreateBranchInput, cancel: CancellationToken) -> dict[str, Any]:
        config = self.config_provider()
        if config is None:
            return failure(NO_GIT_CONFIG)
        branch = payload.branch_name or f"feature/{payload.story_key}"
        try:
            created = self.git.create_branch(config, branch)
        except GitOperationError as exc:
            logger.warning("Branch creation failed: %s", exc)
            return failure(str(exc), operationType="CREATE_BRANCH")
        return success(
            branchName=created,
            storyKey=payload.story_key,
            operationType="CREATE_BRANCH",
            message="Branch created successfully",
        )


class CommitChangesInput(ToolInput):
    story_key: str
    branch_name: str
    commit_message: str
    file_paths: list[str] = Field(min_length=1, description="Files to commit")


class CommitChangesTool(_GitTool):
    action_type = AgentActionType.COMMIT_CHANGES
    name = "Git Commit"
    description = "Commits files on a branch and pushes it."
    input_schema = CommitChangesInput

    def run(self, payload: CommitChangesInput, cancel: CancellationToken) -> dict[str, Any]:
        config = self.config_provider()
        if config is None:
            return failure(NO_GIT_CONFIG)
        try:
            sha = self.git.commit(config, payload.branch_name, payload.file_paths, payload.commit_message)
        except GitOperationError as exc:
            logger.warning("Commit failed: %s", exc)
            return failure(str(exc), operationType="COMMIT")
        return success(
            commitSha=sha,
            branchName=payload.branch_name,
            commitMessage=payload.commit_message,
            filesCommitted=len(payload.file_paths),
            operationType="COMMIT",
        )


class CreatePullRequestInput(ToolInput):
    story_key: str
    branch_name: str
    title: str
    description: str = ""
    approval_request_id: str | None = Field(
        default=None, description="Approval request to link the PR to"
    )
    commit_sha: str | None = None


class CreatePullRequestTool(_GitTool):
    action_type = AgentActionType.CREATE_PULL_REQUEST
    name = "Pull Request Creator"
    description = "Opens a pull request for a fix branch and links it to its approval request."
    input_schema = CreatePullRequestInput

    def __init__(
        self,
        git: GitOperations,
        config_provider: GitConfigProvider,
        approvals: ApprovalService | None = None,
    ) -> None:
        super().__init__(git, config_provider)
        self.approvals = approvals

    def run(self, payload: CreatePullRequestInput, cancel: CancellationToken) -> dict[str, Any]:
        config = self.config_provider()
        if config is None:
            return failure(NO_GIT_CONFIG)
        try:
            pr = self.git.create_pull_request(
                config, payload.branch_name, payload.title, payload.description
            )
        except GitOperationError as exc:
            logger.warning("Pull request creation failed: %s", exc)
            return failure(str(exc), operationType="CREATE_PR")
        if self.approvals is not None and payload.approval_request_id:
            self.approvals.attach_git(
                payload.approval_request_id,
                branch=payload.branch_name,
                commit_sha=payload.commit_sha,
                pr_url=pr.url,
            )
        logger.info("Opened pull request #%d %s", pr.number, pr.url)
        return success(
            pullRequestUrl=pr.url,
            pullRequestNumber=pr.number,
            title=payload.title,
            branchName=payload.branch_name,
            storyKey=payload.story_key,
        )
