"""Database connection factory.

Opens an async connection to SQLite (default, WAL mode) or an asyncpg pool
for Postgres. Backend selection via STUDIO_MIRROR_DB_BACKEND. The handle is
owned by the application lifespan and passed to whoever needs it.
"""
from __future__ import annotations

import logging
from pathlib import Path
from typing import Union, Any

import aiosqlite
import asyncpg

from studio_mirror import config

logger = logging.getLogger("studio_mirror.db")

# Type alias for DB connection/pool
DbConnection = Union[aiosqlite.Connection, Any] # Any to support asyncpg.Pool


async def open_connection(
    backend: str | None = None,
    db_path: Path | str | None = None,
) -> DbConnection:
    """Open a new database connection/pool for the configured backend."""
    backend = backend or config.DB_BACKEND
    if backend == "postgres":
        logger.info(f"Connecting to PostgreSQL: {config.DATABASE_URL}")
        return await asyncpg.create_pool(config.DATABASE_URL)

    path = str(db_path or config.DB_PATH)
    if path != ":memory:":
        Path(path).parent.mkdir(parents=True, exist_ok=True)
    conn = await aiosqlite.connect(path)
    conn.row_factory = aiosqlite.Row
    # Enable WAL mode for better concurrent read performance
    await conn.execute("PRAGMA journal_mode=WAL")
    await conn.execute("PRAGMA foreign_keys=ON")
    await conn.execute("PRAGMA busy_timeout=5000")
    logger.info(f"Database connection established: {path}")
    return conn


async def close_connection(db: DbConnection | None) -> None:
    """Close a connection or pool returned by open_connection."""
    if db is None:
        return
    await db.close()
    logger.info("Database connection closed")
