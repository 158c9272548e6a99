"""Exception types shared across healforge."""

from __future__ import annotations


class ToolNotRegisteredError(LookupError):
    """Raised when an agent plans an action that has no registered tool."""


class AgentTypeNotRegisteredError(LookupError):
    """Raised when starting an execution for an unknown agent type."""


class ExecutionNotFoundError(LookupError):
    pass


class TestNotFoundError(LookupError):
    __test__ = False


class AIGatewayError(RuntimeError):
    """Raised by the HTTP gateway when the backend cannot be reached."""


class GitOperationError(RuntimeError):
    pass


class StepFailure(RuntimeError):
    """Raised by a step executor when a browser step fails."""

    def __init__(self, message: str, step_index: int | None = None, locator: str | None = None) -> None:
        super().__init__(message)
        self.step_index = step_index
        self.locator = locator


class ApprovalStoreError(RuntimeError):
    """Raised when an approval request cannot be persisted."""
