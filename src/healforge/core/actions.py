"""Closed set of actions an agent can plan."""

from __future__ import annotations

from enum import Enum


class AgentActionType(str, Enum):
    # self-healing
    EXTRACT_BROKEN_LOCATOR = "EXTRACT_BROKEN_LOCATOR"
    QUERY_ELEMENT_REGISTRY = "QUERY_ELEMENT_REGISTRY"
    CAPTURE_PAGE_HTML = "CAPTURE_PAGE_HTML"
    DISCOVER_LOCATOR = "DISCOVER_LOCATOR"
    UPDATE_ELEMENT_REGISTRY = "UPDATE_ELEMENT_REGISTRY"

    # test content
    MODIFY_FILE = "MODIFY_FILE"
    WRITE_FILE = "WRITE_FILE"
    DELETE_FILE = "DELETE_FILE"
    EXECUTE_TEST = "EXECUTE_TEST"

    # flaky-test stabilization
    ANALYZE_TEST_STABILITY = "ANALYZE_TEST_STABILITY"
    ANALYZE_FAILURE = "ANALYZE_FAILURE"
    RECORD_FAILURE_PATTERN = "RECORD_FAILURE_PATTERN"
    SUGGEST_FIX = "SUGGEST_FIX"
    DELEGATE_SELF_HEALING = "DELEGATE_SELF_HEALING"

    # git and approval
    CREATE_BRANCH = "CREATE_BRANCH"
    COMMIT_CHANGES = "COMMIT_CHANGES"
    REQUEST_APPROVAL = "REQUEST_APPROVAL"
    CREATE_PULL_REQUEST = "CREATE_PULL_REQUEST"
    MERGE_PR = "MERGE_PR"

    # meta actions, handled by the loop without a tool
    INITIALIZE = "INITIALIZE"
    COMPLETE = "COMPLETE"
    ABORT = "ABORT"

    @property
    def is_meta(self) -> bool:
        return self in _META_ACTIONS


_META_ACTIONS = frozenset(
    {AgentActionType.INITIALIZE, AgentActionType.COMPLETE, AgentActionType.ABORT}
)

GATED_GIT_ACTIONS = frozenset(
    {
        AgentActionType.COMMIT_CHANGES,
        AgentActionType.CREATE_PULL_REQUEST,
        AgentActionType.DELETE_FILE,
        AgentActionType.MERGE_PR,
    }
)
