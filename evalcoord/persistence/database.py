"""Database abstraction shared by every entry point."""

from __future__ import annotations

from typing import Any, AsyncContextManager, Mapping, Optional, Protocol


class Connection(Protocol):
    """A connection checked out for the duration of a transaction."""

    async def query(self, sql: str, *args: Any) -> list[Mapping[str, Any]]:
        """Run ``sql`` and return all rows."""

    async def query_one(self, sql: str, *args: Any) -> Optional[Mapping[str, Any]]:
        """Run ``sql`` and return the first row, if any."""

    async def execute(self, sql: str, *args: Any) -> int:
        """Run a write statement and return the number of affected rows."""


class Database(Connection, Protocol):
    """Pool-backed database handle.

    SQL is written with PostgreSQL-style ``$1`` placeholders; backends adapt
    them as needed. Unique violations surface as
    :class:`~evalcoord.errors.ConstraintViolationError`.
    """

    schema: Optional[str]

    async def connect(self) -> None:
        """Open the pool and ensure the schema exists."""

    async def close(self) -> None:
        """Close the pool."""

    def transaction(self) -> AsyncContextManager[Connection]:
        """Check out one connection, commit on success, roll back on error."""

    def table(self, name: str) -> str:
        """Return ``name`` qualified with the backend's schema."""
