"""Access to the tests being repaired."""

from __future__ import annotations

from abc import ABC, abstractmethod
from pathlib import Path
import sqlite3
import threading

from pydantic import BaseModel

from healforge.errors import TestNotFoundError


class TestRecord(BaseModel):
    __test__ = False

    id: str
    name: str
    content: str
    last_execution_error: str | None = None
    jira_key: str | None = None


class TestRepository(ABC):
    __test__ = False

    @abstractmethod
    def find(self, test_id: str) -> TestRecord | None:
        raise NotImplementedError

    @abstractmethod
    def save(self, test: TestRecord) -> None:
        raise NotImplementedError

    def get(self, test_id: str) -> TestRecord:
        test = self.find(test_id)
        if test is None:
            raise TestNotFoundError(f"Test not found: {test_id}")
        return test

    def update_content(self, test_id: str, content: str) -> TestRecord:
        test = self.get(test_id).model_copy(update={"content": content})
        self.save(test)
        return test


class InMemoryTestRepository(TestRepository):
    __test__ = False

    def __init__(self, tests: list[TestRecord] | None = None) -> None:
        self._tests = {test.id: test for test in tests or []}
        self._lock = threading.Lock()

    def find(self, test_id: str) -> TestRecord | None:
        with self._lock:
            return self._tests.get(test_id)

    def save(self, test: TestRecord) -> None:
        with self._lock:
            self._tests[test.id] = test


class SqliteTestRepository(TestRepository):
    __test__ = False

    def __init__(self, db_path: Path) -> None:
        self.db_path = db_path
        self._init_db()

    def _init_db(self) -> None:
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        with sqlite3.connect(self.db_path) as conn:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS tests (
                    id TEXT PRIMARY KEY,
                    payload_json TEXT
                )
                """
            )
            conn.commit()

    def find(self, test_id: str) -> TestRecord | None:
        with sqlite3.connect(self.db_path) as conn:
            row = conn.execute(
                "SELECT payload_json FROM tests WHERE id = ?", (test_id,)
            ).fetchone()
        if not row:
            return None
        return TestRecord.model_validate_json(row[0])

    def save(self, test: TestRecord) -> None:
        with sqlite3.connect(self.db_path) as conn:
            conn.execute(
                "INSERT OR REPLACE INTO tests (id, payload_json) VALUES (?, ?)",
                (test.id, test.model_dump_json()),
            )
            conn.commit()
