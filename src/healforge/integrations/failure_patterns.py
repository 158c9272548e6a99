"""Recorded flaky-failure patterns."""

from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import datetime, timezone
from pathlib import Path
import sqlite3

from pydantic import BaseModel, Field


def _now() -> datetime:
    return datetime.now(timezone.utc)


class FailurePattern(BaseModel):
    signature: str
    test_id: str
    test_name: str
    root_cause: str
    pattern: str
    error_sample: str | None = None
    flakiness_score: float = 0.0
    impact_score: float = 0.0
    occurrences: int = 1
    first_seen: datetime = Field(default_factory=_now)
    last_seen: datetime = Field(default_factory=_now)


class FailurePatternStore(ABC):
    @abstractmethod
    def find(self, signature: str, test_id: str) -> FailurePattern | None:
        raise NotImplementedError

    @abstractmethod
    def save(self, pattern: FailurePattern) -> None:
        raise NotImplementedError

    @abstractmethod
    def list_patterns(self) -> list[FailurePattern]:
        raise NotImplementedError

    def record(self, pattern: FailurePattern) -> FailurePattern:
        """Insert a new pattern or bump the occurrence count of a known one."""
        existing = self.find(pattern.signature, pattern.test_id)
        if existing is None:
            self.save(pattern)
            return pattern
        existing.occurrences += 1
        existing.last_seen = _now()
        existing.flakiness_score = pattern.flakiness_score
        existing.impact_score = pattern.impact_score
        self.save(existing)
        return existing


class SqliteFailurePatternStore(FailurePatternStore):
    def __init__(self, db_path: Path) -> None:
        self.db_path = db_path
        self._init_db()

    def _init_db(self) -> None:
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        with sqlite3.connect(self.db_path) as conn:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS failure_patterns (
                    signature TEXT,
                    test_id TEXT,
                    payload_json TEXT,
                    PRIMARY KEY (signature, test_id)
                )
                """
            )
            conn.commit()

    def find(self, signature: str, test_id: str) -> FailurePattern | None:
        with sqlite3.connect(self.db_path) as conn:
            row = conn.execute(
                "SELECT payload_json FROM failure_patterns WHERE signature = ? AND test_id = ?",
                (signature, test_id),
            ).fetchone()
        if not row:
            return None
        return FailurePattern.model_validate_json(row[0])

    def save(self, pattern: FailurePattern) -> None:
        with sqlite3.connect(self.db_path) as conn:
            conn.execute(
                "INSERT OR REPLACE INTO failure_patterns (signature, test_id, payload_json) "
                "VALUES (?, ?, ?)",
                (pattern.signature, pattern.test_id, pattern.model_dump_json()),
            )
            conn.commit()

    def list_patterns(self) -> list[FailurePattern]:
        with sqlite3.connect(self.db_path) as conn:
            rows = conn.execute("SELECT payload_json FROM failure_patterns").fetchall()
        return [FailurePattern.model_validate_json(row[0]) for row in rows]
