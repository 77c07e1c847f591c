"""SQLite implementation of UserRepository."""
from __future__ import annotations

import json
import logging
from typing import Any, Mapping, Sequence

import aiosqlite
from pydantic import ValidationError

from studio_mirror.models import Project, User

logger = logging.getLogger("studio_mirror.db.users")


def encode_projects(projects: Sequence[Project]) -> str:
    return json.dumps([Project.model_validate(p).model_dump() for p in projects])


def decode_projects(user_id: Any, raw: Any) -> list[Project]:
    if not raw:
        return []
    try:
        parsed = json.loads(raw)
        if not isinstance(parsed, list):
            raise ValueError("projects_json is not a list")
        return [Project.model_validate(item) for item in parsed]
    except (TypeError, ValueError, ValidationError) as exc:
        logger.warning("Failed to unmarshal projects for user %s: %s", user_id, exc)
        return []


def user_from_row(row: Mapping[str, Any]) -> User:
    return User(
        id=row["id"],
        email=row["email"],
        cucumber_client_id=row["cucumber_client_id"] or "",
        cucumber_access_token=row["cucumber_access_token"] or "",
        projects=decode_projects(row["id"], row["projects_json"]),
    )


class SqliteUserRepository:
    """Users with their upstream credentials and cached project list."""

    def __init__(self, db: aiosqlite.Connection):
        self.db = db

    async def _write(self, sql: str, params: tuple) -> None:
        try:
            await self.db.execute(sql, params)
            await self.db.commit()
        except BaseException:
            await self.db.rollback()
            raise

    async def upsert(self, user_data: dict) -> int:
        """Insert or update a user keyed by email; returns the user id."""
        await self._write(
            """INSERT INTO users (email, cucumber_client_id, cucumber_access_token, projects_json)
            VALUES (?, ?, ?, ?)
            ON CONFLICT(email) DO UPDATE SET
                cucumber_client_id=excluded.cucumber_client_id,
                cucumber_access_token=excluded.cucumber_access_token
            """,
            (
                user_data["email"],
                user_data.get("cucumber_client_id", ""),
                user_data.get("cucumber_access_token", ""),
                encode_projects(user_data.get("projects", [])),
            ),
        )
        async with self.db.execute(
            "SELECT id FROM users WHERE email = ?", (user_data["email"],)
        ) as cur:
            row = await cur.fetchone()
            return int(row[0])

    async def get_by_id(self, user_id: int) -> User | None:
        async with self.db.execute("SELECT * FROM users WHERE id = ?", (user_id,)) as cur:
            row = await cur.fetchone()
            return user_from_row(row) if row else None

    async def get_by_email(self, email: str) -> User | None:
        async with self.db.execute("SELECT * FROM users WHERE email = ?", (email,)) as cur:
            row = await cur.fetchone()
            return user_from_row(row) if row else None

    async def update_projects(self, user_id: int, projects: Sequence[Project]) -> None:
        await self._write(
            "UPDATE users SET projects_json = ? WHERE id = ?",
            (encode_projects(projects), user_id),
        )
