"""Repository package for database access."""

from .folders import SqliteFolderRepository
from .scenarios import SqliteScenarioRepository
from .users import SqliteUserRepository

__all__ = [
    "SqliteFolderRepository",
    "SqliteScenarioRepository",
    "SqliteUserRepository",
]
