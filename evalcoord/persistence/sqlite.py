"""SQLite implementation of the database interface."""

from __future__ import annotations

import asyncio
import re
import sqlite3
from contextlib import asynccontextmanager
from datetime import datetime
from pathlib import Path
from typing import Any, AsyncIterator, Optional

from ..errors import ConstraintViolationError

_PLACEHOLDER = re.compile(r"\$(\d+)")


def _adapt_sql(sql: str) -> str:
    return _PLACEHOLDER.sub(r"?\1", sql)


def _adapt_param(value: Any) -> Any:
    if isinstance(value, datetime):
        return value.isoformat()
    return value


class _SQLiteConnection:
    """Runs statements on the shared sqlite3 connection in a worker thread."""

    def __init__(self, conn: sqlite3.Connection) -> None:
        self._conn = conn

    def _run(self, sql: str, params: tuple[Any, ...]) -> sqlite3.Cursor:
        try:
            return self._conn.execute(
                _adapt_sql(sql), tuple(_adapt_param(p) for p in params)
            )
        except sqlite3.IntegrityError as exc:
            if "UNIQUE" in str(exc):
                raise ConstraintViolationError(str(exc)) from exc
            raise

    def _fetchall(self, sql: str, params: tuple[Any, ...]) -> list[dict[str, Any]]:
        return [dict(row) for row in self._run(sql, params).fetchall()]

    def _rowcount(self, sql: str, params: tuple[Any, ...]) -> int:
        return self._run(sql, params).rowcount

    async def query(self, sql: str, *args: Any) -> list[dict[str, Any]]:
        return await asyncio.to_thread(self._fetchall, sql, args)

    async def query_one(self, sql: str, *args: Any) -> Optional[dict[str, Any]]:
        rows = await self.query(sql, *args)
        return rows[0] if rows else None

    async def execute(self, sql: str, *args: Any) -> int:
        return await asyncio.to_thread(self._rowcount, sql, args)


class SQLiteDatabase:
    """Persist workflow state using SQLite.

    A single connection is shared; an ``asyncio.Lock`` hands it to one
    statement or one transaction at a time, which makes it behave like a
    pool of size one.
    """

    schema: Optional[str] = None

    def __init__(self, db_path: str | Path = ":memory:"):
        self.db_path = str(db_path)
        self._conn = sqlite3.connect(
            self.db_path, check_same_thread=False, isolation_level=None
        )
        self._conn.row_factory = sqlite3.Row
        self._conn.execute("PRAGMA foreign_keys = ON")
        self._lock = asyncio.Lock()
        self._ensure_schema()

    # ------------------------------------------------------------------
    # Schema management
    def _ensure_schema(self) -> None:
        cur = self._conn.cursor()
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS evaluation_workflows (
                id TEXT PRIMARY KEY,
                journey_id TEXT NOT NULL,
                correlation_id TEXT NOT NULL,
                status TEXT NOT NULL CHECK (status IN
                    ('INITIATED', 'IN_PROGRESS', 'COMPLETED', 'PARTIAL_SUCCESS', 'FAILED')),
                decision_result TEXT,
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL,
                completed_at TEXT
            )
            """
        )
        cur.execute(
            "CREATE INDEX IF NOT EXISTS idx_workflows_journey_id "
            "ON evaluation_workflows (journey_id)"
        )
        cur.execute(
            """
            CREATE UNIQUE INDEX IF NOT EXISTS uq_workflows_active_journey
            ON evaluation_workflows (journey_id)
            WHERE status IN ('INITIATED', 'IN_PROGRESS', 'PARTIAL_SUCCESS')
            """
        )
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS workflow_steps (
                id TEXT PRIMARY KEY,
                workflow_id TEXT NOT NULL
                    REFERENCES evaluation_workflows (id) ON DELETE CASCADE,
                step_type TEXT NOT NULL,
                status TEXT NOT NULL CHECK (status IN
                    ('PENDING', 'COMPLETED', 'FAILED', 'TIMEOUT')),
                payload TEXT NOT NULL DEFAULT '{}',
                error_details TEXT,
                started_at TEXT,
                completed_at TEXT
            )
            """
        )
        cur.execute(
            "CREATE INDEX IF NOT EXISTS idx_steps_workflow_id "
            "ON workflow_steps (workflow_id)"
        )
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS outbox (
                id TEXT PRIMARY KEY,
                aggregate_id TEXT NOT NULL,
                aggregate_type TEXT NOT NULL,
                event_type TEXT NOT NULL,
                payload TEXT NOT NULL,
                correlation_id TEXT NOT NULL,
                published INTEGER NOT NULL DEFAULT 0,
                created_at TEXT NOT NULL,
                published_at TEXT
            )
            """
        )
        cur.execute(
            "CREATE INDEX IF NOT EXISTS idx_outbox_unpublished "
            "ON outbox (published, created_at)"
        )

    # ------------------------------------------------------------------
    # Database API
    async def connect(self) -> None:
        # the connection is opened eagerly so tests can use it without a loop
        pass

    async def close(self) -> None:
        async with self._lock:
            await asyncio.to_thread(self._conn.close)

    def table(self, name: str) -> str:
        return name

    async def query(self, sql: str, *args: Any) -> list[dict[str, Any]]:
        async with self._lock:
            return await _SQLiteConnection(self._conn).query(sql, *args)

    async def query_one(self, sql: str, *args: Any) -> Optional[dict[str, Any]]:
        async with self._lock:
            return await _SQLiteConnection(self._conn).query_one(sql, *args)

    async def execute(self, sql: str, *args: Any) -> int:
        async with self._lock:
            return await _SQLiteConnection(self._conn).execute(sql, *args)

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[_SQLiteConnection]:
        async with self._lock:
            conn = _SQLiteConnection(self._conn)
            await asyncio.to_thread(self._conn.execute, "BEGIN")
            try:
                yield conn
            except BaseException:
                await asyncio.to_thread(self._conn.execute, "ROLLBACK")
                raise
            else:
                await asyncio.to_thread(self._conn.execute, "COMMIT")
