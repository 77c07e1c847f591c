"""Database schema creation and versioning.

All CREATE TABLE statements for the mirror store.
Uses IF NOT EXISTS for idempotent runs.
"""
from __future__ import annotations

import logging

import aiosqlite

logger = logging.getLogger("studio_mirror.db")

SCHEMA_VERSION = 1

_TABLES = """
-- ── Schema version tracking ────────────────────────────────────────
CREATE TABLE IF NOT EXISTS schema_version (
    version   INTEGER NOT NULL,
    applied   TEXT NOT NULL DEFAULT (datetime('now'))
);

-- ── 1. Users (upstream credentials + cached project list) ─────────
CREATE TABLE IF NOT EXISTS users (
    id                    INTEGER PRIMARY KEY AUTOINCREMENT,
    email                 TEXT NOT NULL UNIQUE,
    cucumber_client_id    TEXT DEFAULT '',
    cucumber_access_token TEXT DEFAULT '',
    projects_json         TEXT DEFAULT '[]'
);

-- ── 2. Folders, scoped by (project_id, user_id) ───────────────────
CREATE TABLE IF NOT EXISTS folders (
    project_id INTEGER NOT NULL,
    user_id    INTEGER NOT NULL,
    id         TEXT NOT NULL,
    name       TEXT NOT NULL DEFAULT '',
    parent_id  TEXT,
    position   INTEGER NOT NULL DEFAULT 0,
    PRIMARY KEY (project_id, user_id, id)
);

CREATE INDEX IF NOT EXISTS idx_folders_scope ON folders(project_id, user_id, position);

-- ── 3. Scenarios, scoped by (project_id, user_id) ─────────────────
CREATE TABLE IF NOT EXISTS scenarios (
    project_id INTEGER NOT NULL,
    user_id    INTEGER NOT NULL,
    id         TEXT NOT NULL,
    name       TEXT NOT NULL DEFAULT '',
    folder_id  INTEGER NOT NULL DEFAULT 0,
    tags_json  TEXT DEFAULT '[]',
    position   INTEGER NOT NULL DEFAULT 0,
    PRIMARY KEY (project_id, user_id, id)
);

CREATE INDEX IF NOT EXISTS idx_scenarios_scope ON scenarios(project_id, user_id, position);
CREATE INDEX IF NOT EXISTS idx_scenarios_folder ON scenarios(project_id, user_id, folder_id);

-- Structured tags for equality predicates
CREATE TABLE IF NOT EXISTS scenario_tags (
    project_id  INTEGER NOT NULL,
    user_id     INTEGER NOT NULL,
    scenario_id TEXT NOT NULL,
    position    INTEGER NOT NULL,
    tag_id      TEXT NOT NULL DEFAULT '',
    tag_key     TEXT NOT NULL DEFAULT '',
    tag_value   TEXT NOT NULL DEFAULT '',
    PRIMARY KEY (project_id, user_id, scenario_id, position),
    FOREIGN KEY (project_id, user_id, scenario_id)
        REFERENCES scenarios(project_id, user_id, id) ON DELETE CASCADE
);

CREATE INDEX IF NOT EXISTS idx_scenario_tags_kv ON scenario_tags(project_id, user_id, tag_key, tag_value);
"""


async def run_migrations(db: aiosqlite.Connection) -> None:
    """Create all tables. Idempotent."""
    # Check current schema version
    try:
        async with db.execute("SELECT MAX(version) FROM schema_version") as cur:
            row = await cur.fetchone()
            current_version = row[0] if row and row[0] else 0
    except aiosqlite.OperationalError:
        current_version = 0

    if current_version >= SCHEMA_VERSION:
        logger.info(f"Schema is up to date (version {current_version})")
        return

    logger.info(f"Running migrations: {current_version} → {SCHEMA_VERSION}")

    # Execute all CREATE TABLE statements
    await db.executescript(_TABLES)

    await db.execute(
        "INSERT INTO schema_version (version) VALUES (?)",
        (SCHEMA_VERSION,),
    )
    await db.commit()
    logger.info(f"Migrations complete, schema version {SCHEMA_VERSION}")
