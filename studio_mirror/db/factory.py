"""Repository factory to abstract DB backend (SQLite vs Postgres)."""
from __future__ import annotations

from typing import Any
import aiosqlite

from studio_mirror.db.repositories.folders import SqliteFolderRepository
from studio_mirror.db.repositories.scenarios import SqliteScenarioRepository
from studio_mirror.db.repositories.users import SqliteUserRepository


def get_folder_repository(db: Any):
    if isinstance(db, aiosqlite.Connection):
        return SqliteFolderRepository(db)
    from studio_mirror.db.repositories.postgres.folders import PostgresFolderRepository
    return PostgresFolderRepository(db)

def get_scenario_repository(db: Any):
    if isinstance(db, aiosqlite.Connection):
        return SqliteScenarioRepository(db)
    from studio_mirror.db.repositories.postgres.scenarios import PostgresScenarioRepository
    return PostgresScenarioRepository(db)

def get_user_repository(db: Any):
    if isinstance(db, aiosqlite.Connection):
        return SqliteUserRepository(db)
    from studio_mirror.db.repositories.postgres.users import PostgresUserRepository
    return PostgresUserRepository(db)
