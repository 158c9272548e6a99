"""Human approval requests gating proposed changes."""

from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone
from enum import Enum
from pathlib import Path
import sqlite3
import time
from typing import Any
from uuid import uuid4

from pydantic import BaseModel, Field

from healforge.core.cancellation import CancellationToken
from healforge.errors import ApprovalStoreError
from healforge.util.logging import get_logger

logger = get_logger(__name__)

DEFAULT_EXPIRATION = timedelta(days=7)


class ApprovalStatus(str, Enum):
    PENDING_APPROVAL = "PENDING_APPROVAL"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"
    EXPIRED = "EXPIRED"


class ApprovalRequestType(str, Enum):
    SELF_HEALING_FIX = "SELF_HEALING_FIX"
    SELF_HEALING_MANUAL = "SELF_HEALING_MANUAL"
    FLAKY_FIX = "FLAKY_FIX"
    FLAKY_MANUAL = "FLAKY_MANUAL"
    AGENT_ACTION = "AGENT_ACTION"


def _now() -> datetime:
    return datetime.now(timezone.utc)


class ApprovalRequest(BaseModel):
    id: str = Field(default_factory=lambda: str(uuid4()))
    request_type: ApprovalRequestType
    status: ApprovalStatus = ApprovalStatus.PENDING_APPROVAL
    test_name: str
    generated_content: str = ""
    requested_by: str = "system"
    jira_key: str | None = None
    agent_execution_id: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)
    auto_execute_on_approval: bool = False
    created_at: datetime = Field(default_factory=_now)
    expires_at: datetime = Field(default_factory=lambda: _now() + DEFAULT_EXPIRATION)
    reviewed_by: str | None = None
    review_notes: str | None = None
    reviewed_at: datetime | None = None
    git_branch: str | None = None
    git_commit_sha: str | None = None
    git_pr_url: str | None = None

    @property
    def is_decided(self) -> bool:
        return self.status != ApprovalStatus.PENDING_APPROVAL


class ApprovalService(ABC):
    @abstractmethod
    def save(self, request: ApprovalRequest) -> ApprovalRequest:
        raise NotImplementedError

    @abstractmethod
    def get(self, request_id: str) -> ApprovalRequest | None:
        raise NotImplementedError

    @abstractmethod
    def list_requests(self, status: ApprovalStatus | None = None) -> list[ApprovalRequest]:
        raise NotImplementedError

    def create(self, request: ApprovalRequest) -> ApprovalRequest:
        saved = self.save(request)
        logger.info(
            "Approval request %s created (%s) for %s",
            saved.id,
            saved.request_type.value,
            saved.test_name,
        )
        return saved

    def decide(
        self, request_id: str, approved: bool, reviewer: str, notes: str | None = None
    ) -> ApprovalRequest:
        request = self.get(request_id)
        if request is None:
            raise LookupError(f"Approval request not found: {request_id}")
        if request.is_decided:
            raise ValueError(f"Approval request {request_id} already {request.status.value}")
        request.status = ApprovalStatus.APPROVED if approved else ApprovalStatus.REJECTED
        request.reviewed_by = reviewer
        request.review_notes = notes
        request.reviewed_at = _now()
        return self.save(request)

    def expire(self, request_id: str) -> ApprovalRequest | None:
        request = self.get(request_id)
        if request is None or request.is_decided:
            return request
        request.status = ApprovalStatus.EXPIRED
        request.reviewed_at = _now()
        return self.save(request)

    def expire_stale(self) -> int:
        expired = 0
        for request in self.list_requests(ApprovalStatus.PENDING_APPROVAL):
            if request.expires_at <= _now():
                self.expire(request.id)
                expired += 1
        return expired

    def attach_git(
        self,
        request_id: str,
        branch: str | None = None,
        commit_sha: str | None = None,
        pr_url: str | None = None,
    ) -> ApprovalRequest | None:
        request = self.get(request_id)
        if request is None:
            return None
        request.git_branch = branch or request.git_branch
        request.git_commit_sha = commit_sha or request.git_commit_sha
        request.git_pr_url = pr_url or request.git_pr_url
        return self.save(request)

    def wait_for_decision(
        self,
        request_id: str,
        timeout_seconds: float,
        poll_seconds: float = 5.0,
        cancel: CancellationToken | None = None,
    ) -> ApprovalStatus:
        """Poll until the request is decided, the timeout passes, or cancel is set.

        A timeout marks the request EXPIRED. Cancellation leaves it pending.
        """
        deadline = time.monotonic() + timeout_seconds
        while True:
            request = self.get(request_id)
            if request is None:
                raise LookupError(f"Approval request not found: {request_id}")
            if request.is_decided:
                return request.status
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                self.expire(request_id)
                logger.warning("Approval request %s expired waiting for a decision", request_id)
                return ApprovalStatus.EXPIRED
            wait = min(poll_seconds, remaining)
            if cancel is not None:
                if cancel.wait(wait):
                    return ApprovalStatus.PENDING_APPROVAL
            else:
                time.sleep(wait)


class SqliteApprovalService(ApprovalService):
    def __init__(self, db_path: Path) -> None:
        self.db_path = db_path
        self._init_db()

    def _init_db(self) -> None:
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        with sqlite3.connect(self.db_path) as conn:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS approval_requests (
                    id TEXT PRIMARY KEY,
                    status TEXT,
                    created_at TEXT,
                    payload_json TEXT
                )
                """
            )
            conn.commit()

    def save(self, request: ApprovalRequest) -> ApprovalRequest:
        try:
            with sqlite3.connect(self.db_path) as conn:
                conn.execute(
                    "INSERT OR REPLACE INTO approval_requests (id, status, created_at, payload_json) "
                    "VALUES (?, ?, ?, ?)",
                    (
                        request.id,
                        request.status.value,
                        request.created_at.isoformat(),
                        request.model_dump_json(),
                    ),
                )
                conn.commit()
        except sqlite3.Error as exc:
            raise ApprovalStoreError(f"Could not save approval request {request.id}: {exc}") from exc
        return request

    def get(self, request_id: str) -> ApprovalRequest | None:
        with sqlite3.connect(self.db_path) as conn:
            row = conn.execute(
                "SELECT payload_json FROM approval_requests WHERE id = ?", (request_id,)
            ).fetchone()
        if not row:
            return None
        return ApprovalRequest.model_validate_json(row[0])

    def list_requests(self, status: ApprovalStatus | None = None) -> list[ApprovalRequest]:
        query = "SELECT payload_json FROM approval_requests"
        params: tuple[str, ...] = ()
        if status is not None:
            query += " WHERE status = ?"
            params = (status.value,)
        query += " ORDER BY created_at"
        with sqlite3.connect(self.db_path) as conn:
            rows = conn.execute(query, params).fetchall()
        return [ApprovalRequest.model_validate_json(row[0]) for row in rows]
