"""SQLite implementation of FolderRepository."""
from __future__ import annotations

import logging
from typing import Awaitable, Callable, Optional, Sequence

import aiosqlite

from studio_mirror.errors import StoreDeleteError, StoreInsertError
from studio_mirror.models import Folder

logger = logging.getLogger("studio_mirror.db.folders")

PhaseHook = Optional[Callable[[str], Awaitable[None]]]


class SqliteFolderRepository:
    """SQLite-backed folder storage, one snapshot per (project_id, user_id)."""

    def __init__(self, db: aiosqlite.Connection):
        self.db = db

    async def replace_scope(
        self,
        project_id: int,
        user_id: int,
        folders: Sequence[Folder],
        on_phase: PhaseHook = None,
    ) -> int:
        """Swap the scope's folders for ``folders`` in one transaction.

        Any exit before the commit, cancellation included, rolls the
        transaction back so the previous snapshot survives. Store failures
        surface as StoreDeleteError/StoreInsertError.
        """
        try:
            await self._delete_then_insert(project_id, user_id, folders, on_phase)
            await self.db.commit()
        except BaseException:
            await self.db.rollback()
            raise
        return len(folders)

    async def _delete_then_insert(
        self,
        project_id: int,
        user_id: int,
        folders: Sequence[Folder],
        on_phase: PhaseHook,
    ) -> None:
        try:
            await self.db.execute(
                "DELETE FROM folders WHERE project_id = ? AND user_id = ?",
                (project_id, user_id),
            )
        except aiosqlite.Error as exc:
            raise StoreDeleteError(f"failed to delete folders: {exc}") from exc

        if on_phase:
            await on_phase("inserting_new")

        for position, folder in enumerate(folders):
            try:
                await self.db.execute(
                    """INSERT INTO folders (project_id, user_id, id, name, parent_id, position)
                    VALUES (?, ?, ?, ?, ?, ?)""",
                    (project_id, user_id, folder.id, folder.name, folder.parent_id, position),
                )
            except aiosqlite.Error as exc:
                raise StoreInsertError(
                    f"failed to create folder (ID: {folder.id}): {exc}", folder.id
                ) from exc

    async def list_by_scope(self, project_id: int, user_id: int) -> list[Folder]:
        async with self.db.execute(
            """SELECT id, name, parent_id FROM folders
               WHERE project_id = ? AND user_id = ?
               ORDER BY position""",
            (project_id, user_id),
        ) as cur:
            rows = await cur.fetchall()
        return [Folder(id=r["id"], name=r["name"], parent_id=r["parent_id"]) for r in rows]
