"""PostgreSQL implementation of FolderRepository."""
from __future__ import annotations

from typing import Sequence

import asyncpg

from studio_mirror.db.repositories.folders import PhaseHook
from studio_mirror.errors import StoreDeleteError, StoreInsertError
from studio_mirror.models import Folder


class PostgresFolderRepository:
    """PostgreSQL-backed folder storage, one snapshot per (project_id, user_id)."""

    def __init__(self, db: asyncpg.Pool):
        self.db = db

    async def replace_scope(
        self,
        project_id: int,
        user_id: int,
        folders: Sequence[Folder],
        on_phase: PhaseHook = None,
    ) -> int:
        async with self.db.acquire() as conn:
            async with conn.transaction():
                try:
                    await conn.execute(
                        "DELETE FROM folders WHERE project_id = $1 AND user_id = $2",
                        project_id, user_id,
                    )
                except asyncpg.PostgresError as exc:
                    raise StoreDeleteError(f"failed to delete folders: {exc}") from exc

                if on_phase:
                    await on_phase("inserting_new")

                for position, folder in enumerate(folders):
                    try:
                        await conn.execute(
                            """INSERT INTO folders (project_id, user_id, id, name, parent_id, position)
                            VALUES ($1, $2, $3, $4, $5, $6)""",
                            project_id, user_id, folder.id, folder.name, folder.parent_id, position,
                        )
                    except asyncpg.PostgresError as exc:
                        raise StoreInsertError(
                            f"failed to create folder (ID: {folder.id}): {exc}", folder.id
                        ) from exc
        return len(folders)

    async def list_by_scope(self, project_id: int, user_id: int) -> list[Folder]:
        rows = await self.db.fetch(
            """SELECT id, name, parent_id FROM folders
               WHERE project_id = $1 AND user_id = $2
               ORDER BY position""",
            project_id, user_id,
        )
        return [Folder(id=r["id"], name=r["name"], parent_id=r["parent_id"]) for r in rows]
