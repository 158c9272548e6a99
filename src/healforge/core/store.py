"""Persistence of execution summaries and agent contexts."""

from __future__ import annotations

from abc import ABC, abstractmethod
from pathlib import Path
import sqlite3
from typing import Iterable

from healforge.core.context import AgentContext
from healforge.core.models import AgentExecution, AgentStatus


class ExecutionStore(ABC):
    @abstractmethod
    def save_execution(self, execution: AgentExecution) -> None:
        raise NotImplementedError

    @abstractmethod
    def get_execution(self, execution_id: str) -> AgentExecution | None:
        raise NotImplementedError

    @abstractmethod
    def list_executions(
        self, statuses: Iterable[AgentStatus] | None = None
    ) -> list[AgentExecution]:
        raise NotImplementedError

    @abstractmethod
    def save_context(self, context: AgentContext) -> None:
        raise NotImplementedError

    @abstractmethod
    def load_context(self, execution_id: str) -> AgentContext | None:
        raise NotImplementedError


class SqliteExecutionStore(ExecutionStore):
    def __init__(self, db_path: Path) -> None:
        self.db_path = db_path
        self._init_db()

    def _init_db(self) -> None:
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        with sqlite3.connect(self.db_path) as conn:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS agent_executions (
                    id TEXT PRIMARY KEY,
                    agent_type TEXT,
                    status TEXT,
                    started_at TEXT,
                    payload_json TEXT
                )
                """
            )
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS agent_contexts (
                    execution_id TEXT PRIMARY KEY,
                    iteration INTEGER,
                    context_json TEXT
                )
                """
            )
            conn.commit()

    def save_execution(self, execution: AgentExecution) -> None:
        with sqlite3.connect(self.db_path) as conn:
            conn.execute(
                """
                INSERT OR REPLACE INTO agent_executions (
                    id, agent_type, status, started_at, payload_json
                ) VALUES (?, ?, ?, ?, ?)
                """,
                (
                    execution.id,
                    execution.agent_type.value,
                    execution.status.value,
                    execution.started_at.isoformat(),
                    execution.model_dump_json(),
                ),
            )
            conn.commit()

    def get_execution(self, execution_id: str) -> AgentExecution | None:
        with sqlite3.connect(self.db_path) as conn:
            row = conn.execute(
                "SELECT payload_json FROM agent_executions WHERE id = ?",
                (execution_id,),
            ).fetchone()
        if not row:
            return None
        return AgentExecution.model_validate_json(row[0])

    def list_executions(
        self, statuses: Iterable[AgentStatus] | None = None
    ) -> list[AgentExecution]:
        query = "SELECT payload_json FROM agent_executions"
        params: list[str] = []
        if statuses is not None:
            values = [status.value for status in statuses]
            if not values:
                return []
            query += f" WHERE status IN ({', '.join('?' for _ in values)})"
            params = values
        query += " ORDER BY started_at"
        with sqlite3.connect(self.db_path) as conn:
            rows = conn.execute(query, params).fetchall()
        return [AgentExecution.model_validate_json(row[0]) for row in rows]

    def save_context(self, context: AgentContext) -> None:
        with sqlite3.connect(self.db_path) as conn:
            conn.execute(
                "INSERT OR REPLACE INTO agent_contexts (execution_id, iteration, context_json) "
                "VALUES (?, ?, ?)",
                (context.execution_id, context.current_iteration, context.to_json()),
            )
            conn.commit()

    def load_context(self, execution_id: str) -> AgentContext | None:
        with sqlite3.connect(self.db_path) as conn:
            row = conn.execute(
                "SELECT context_json FROM agent_contexts WHERE execution_id = ?",
                (execution_id,),
            ).fetchone()
        if not row:
            return None
        return AgentContext.from_json(row[0])
