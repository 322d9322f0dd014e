"""PostgreSQL implementation of the database interface."""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Optional

import asyncpg

from ..constants import SCHEMA_NAME
from ..errors import ConstraintViolationError


class _PostgresConnection:
    """Wraps one pooled asyncpg connection."""

    def __init__(self, conn: asyncpg.Connection) -> None:
        self._conn = conn

    async def query(self, sql: str, *args: Any) -> list[dict[str, Any]]:
        rows = await self._conn.fetch(sql, *args)
        return [dict(r) for r in rows]

    async def query_one(self, sql: str, *args: Any) -> Optional[dict[str, Any]]:
        row = await self._conn.fetchrow(sql, *args)
        return dict(row) if row else None

    async def execute(self, sql: str, *args: Any) -> int:
        try:
            status = await self._conn.execute(sql, *args)
        except asyncpg.UniqueViolationError as exc:
            raise ConstraintViolationError(str(exc)) from exc
        # asyncpg returns the command tag, e.g. "UPDATE 1"
        parts = status.split()
        return int(parts[-1]) if parts and parts[-1].isdigit() else 0


class PostgresDatabase:
    """Persist workflow state using PostgreSQL through an asyncpg pool."""

    def __init__(
        self,
        dsn: str,
        schema: str = SCHEMA_NAME,
        min_size: int = 1,
        max_size: int = 10,
    ):
        self._dsn = dsn
        self.schema = schema
        self._min_size = min_size
        self._max_size = max_size
        self._pool: Optional[asyncpg.Pool] = None

    async def connect(self) -> None:
        if self._pool is not None:
            return
        self._pool = await asyncpg.create_pool(
            self._dsn, min_size=self._min_size, max_size=self._max_size
        )
        async with self._pool.acquire() as conn:
            await self._ensure_schema(conn)

    async def close(self) -> None:
        if self._pool is not None:
            await self._pool.close()
            self._pool = None

    def table(self, name: str) -> str:
        return f"{self.schema}.{name}"

    async def _ensure_schema(self, conn: asyncpg.Connection) -> None:
        await conn.execute(f"CREATE SCHEMA IF NOT EXISTS {self.schema}")
        await conn.execute(
            f"""
            CREATE TABLE IF NOT EXISTS {self.table('evaluation_workflows')} (
                id TEXT PRIMARY KEY,
                journey_id TEXT NOT NULL,
                correlation_id TEXT NOT NULL,
                status VARCHAR(50) NOT NULL CHECK (status IN
                    ('INITIATED', 'IN_PROGRESS', 'COMPLETED', 'PARTIAL_SUCCESS', 'FAILED')),
                decision_result JSONB,
                created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
                updated_at TIMESTAMPTZ NOT NULL DEFAULT now(),
                completed_at TIMESTAMPTZ
            )
            """
        )
        await conn.execute(
            f"CREATE INDEX IF NOT EXISTS idx_workflows_journey_id "
            f"ON {self.table('evaluation_workflows')} (journey_id)"
        )
        await conn.execute(
            f"""
            CREATE UNIQUE INDEX IF NOT EXISTS uq_workflows_active_journey
            ON {self.table('evaluation_workflows')} (journey_id)
            WHERE status IN ('INITIATED', 'IN_PROGRESS', 'PARTIAL_SUCCESS')
            """
        )
        await conn.execute(
            f"""
            CREATE TABLE IF NOT EXISTS {self.table('workflow_steps')} (
                id TEXT PRIMARY KEY,
                workflow_id TEXT NOT NULL
                    REFERENCES {self.table('evaluation_workflows')} (id) ON DELETE CASCADE,
                step_type VARCHAR(50) NOT NULL,
                status VARCHAR(50) NOT NULL CHECK (status IN
                    ('PENDING', 'COMPLETED', 'FAILED', 'TIMEOUT')),
                payload JSONB NOT NULL DEFAULT '{{}}'::jsonb,
                error_details JSONB,
                started_at TIMESTAMPTZ,
                completed_at TIMESTAMPTZ
            )
            """
        )
        await conn.execute(
            f"CREATE INDEX IF NOT EXISTS idx_steps_workflow_id "
            f"ON {self.table('workflow_steps')} (workflow_id)"
        )
        await conn.execute(
            f"""
            CREATE TABLE IF NOT EXISTS {self.table('outbox')} (
                id TEXT PRIMARY KEY,
                aggregate_id TEXT NOT NULL,
                aggregate_type VARCHAR(100) NOT NULL,
                event_type VARCHAR(100) NOT NULL,
                payload JSONB NOT NULL,
                correlation_id TEXT NOT NULL,
                published BOOLEAN NOT NULL DEFAULT FALSE,
                created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
                published_at TIMESTAMPTZ
            )
            """
        )
        await conn.execute(
            f"CREATE INDEX IF NOT EXISTS idx_outbox_unpublished "
            f"ON {self.table('outbox')} (published, created_at)"
        )

    def _require_pool(self) -> asyncpg.Pool:
        if self._pool is None:
            raise RuntimeError("PostgresDatabase not connected")
        return self._pool

    async def query(self, sql: str, *args: Any) -> list[dict[str, Any]]:
        async with self._require_pool().acquire() as conn:
            return await _PostgresConnection(conn).query(sql, *args)

    async def query_one(self, sql: str, *args: Any) -> Optional[dict[str, Any]]:
        async with self._require_pool().acquire() as conn:
            return await _PostgresConnection(conn).query_one(sql, *args)

    async def execute(self, sql: str, *args: Any) -> int:
        async with self._require_pool().acquire() as conn:
            return await _PostgresConnection(conn).execute(sql, *args)

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[_PostgresConnection]:
        async with self._require_pool().acquire() as conn:
            async with conn.transaction():
                yield _PostgresConnection(conn)
