"""PostgreSQL implementation of UserRepository."""
from __future__ import annotations

from typing import Sequence

import asyncpg

from studio_mirror.db.repositories.users import encode_projects, user_from_row
from studio_mirror.models import Project, User


class PostgresUserRepository:
    """Users with their upstream credentials and cached project list."""

    def __init__(self, db: asyncpg.Pool):
        self.db = db

    async def upsert(self, user_data: dict) -> int:
        return await self.db.fetchval(
            """INSERT INTO users (email, cucumber_client_id, cucumber_access_token, projects_json)
            VALUES ($1, $2, $3, $4)
            ON CONFLICT(email) DO UPDATE SET
                cucumber_client_id=EXCLUDED.cucumber_client_id,
                cucumber_access_token=EXCLUDED.cucumber_access_token
            RETURNING id
            """,
            user_data["email"],
            user_data.get("cucumber_client_id", ""),
            user_data.get("cucumber_access_token", ""),
            encode_projects(user_data.get("projects", [])),
        )

    async def get_by_id(self, user_id: int) -> User | None:
        row = await self.db.fetchrow("SELECT * FROM users WHERE id = $1", user_id)
        return user_from_row(row) if row else None

    async def get_by_email(self, email: str) -> User | None:
        row = await self.db.fetchrow("SELECT * FROM users WHERE email = $1", email)
        return user_from_row(row) if row else None

    async def update_projects(self, user_id: int, projects: Sequence[Project]) -> None:
        await self.db.execute(
            "UPDATE users SET projects_json = $1 WHERE id = $2",
            encode_projects(projects), user_id,
        )
