"""Persistence layer for evaluation workflows."""

from __future__ import annotations

import os
from typing import Optional

from ..config import CoordinatorConfig, load_config
from .database import Connection, Database
from .models import OutboxEvent, Step, Workflow
from .sqlite import SQLiteDatabase
from .store import WorkflowStore


def get_database(
    database_url: Optional[str] = None, config: Optional[CoordinatorConfig] = None
) -> Database:
    """Factory function to obtain a database handle.

    The backend is selected based on ``database_url`` which can be provided
    explicitly, via environment variable ``EVALCOORD_DATABASE_URL`` or
    ``DATABASE_URL``, or from loaded configuration. When no database is
    configured, an in-memory SQLite database is returned.
    """

    config = config or load_config()
    database_url = (
        database_url
        or os.getenv("EVALCOORD_DATABASE_URL")
        or os.getenv("DATABASE_URL")
        or config.database_url
    )

    if not database_url:
        return SQLiteDatabase(":memory:")

    if database_url.startswith("sqlite://"):
        path = database_url.replace("sqlite://", "", 1)
        return SQLiteDatabase(path or ":memory:")
    elif database_url.startswith("postgres://") or database_url.startswith(
        "postgresql://"
    ):
        from .postgres import PostgresDatabase

        return PostgresDatabase(database_url)
    raise ValueError(f"Unsupported database backend: {database_url}")


__all__ = [
    "Connection",
    "Database",
    "OutboxEvent",
    "SQLiteDatabase",
    "Step",
    "Workflow",
    "WorkflowStore",
    "get_database",
]
