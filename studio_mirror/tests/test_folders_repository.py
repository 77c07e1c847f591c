import asyncio
import unittest

import aiosqlite

from studio_mirror.db.repositories.folders import SqliteFolderRepository
from studio_mirror.db.sqlite_migrations import run_migrations
from studio_mirror.errors import StoreInsertError
from studio_mirror.models import Folder


class FolderRepositoryTests(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self) -> None:
        self.db = await aiosqlite.connect(":memory:")
        self.db.row_factory = aiosqlite.Row
        await run_migrations(self.db)
        self.repo = SqliteFolderRepository(self.db)

    async def asyncTearDown(self) -> None:
        await self.db.close()

    async def test_replace_scope_preserves_order_and_parent(self) -> None:
        folders = [
            Folder(id="20", name="B", parent_id="10"),
            Folder(id="10", name="A", parent_id=None),
        ]

        inserted = await self.repo.replace_scope(1, 7, folders)
        rows = await self.repo.list_by_scope(1, 7)

        self.assertEqual(inserted, 2)
        self.assertEqual(rows, folders)

    async def test_scopes_are_isolated(self) -> None:
        await self.repo.replace_scope(1, 7, [Folder(id="a", name="Mine")])
        await self.repo.replace_scope(1, 8, [Folder(id="a", name="Theirs")])
        await self.repo.replace_scope(2, 7, [Folder(id="b", name="Other project")])

        self.assertEqual([f.name for f in await self.repo.list_by_scope(1, 7)], ["Mine"])
        self.assertEqual([f.name for f in await self.repo.list_by_scope(1, 8)], ["Theirs"])
        self.assertEqual([f.id for f in await self.repo.list_by_scope(2, 7)], ["b"])

    async def test_replace_does_not_append(self) -> None:
        await self.repo.replace_scope(1, 7, [Folder(id="old-1"), Folder(id="old-2")])
        await self.repo.replace_scope(1, 7, [Folder(id="new-1")])

        self.assertEqual([f.id for f in await self.repo.list_by_scope(1, 7)], ["new-1"])
        self.assertEqual(len(await self.repo.list_by_scope(1, 7)), 1)

    async def test_failed_insert_keeps_previous_snapshot(self) -> None:
        await self.repo.replace_scope(1, 7, [Folder(id="keep")])
        phases: list[str] = []

        async def _on_phase(phase: str) -> None:
            phases.append(phase)

        with self.assertRaises(StoreInsertError) as ctx:
            await self.repo.replace_scope(
                1, 7, [Folder(id="dup"), Folder(id="dup")], on_phase=_on_phase
            )

        self.assertEqual(ctx.exception.entity_id, "dup")
        self.assertIn("failed to create folder (ID: dup)", str(ctx.exception))
        self.assertEqual(phases, ["inserting_new"])
        self.assertEqual([f.id for f in await self.repo.list_by_scope(1, 7)], ["keep"])

    async def test_cancelled_replace_rolls_back(self) -> None:
        await self.repo.replace_scope(1, 7, [Folder(id="keep")])

        async def _cancel(phase: str) -> None:
            raise asyncio.CancelledError()

        with self.assertRaises(asyncio.CancelledError):
            await self.repo.replace_scope(1, 7, [Folder(id="new")], on_phase=_cancel)
        await self.repo.replace_scope(2, 7, [Folder(id="other")])

        self.assertEqual([f.id for f in await self.repo.list_by_scope(1, 7)], ["keep"])
        self.assertEqual([f.id for f in await self.repo.list_by_scope(2, 7)], ["other"])

    async def test_replace_with_empty_list_clears_scope(self) -> None:
        await self.repo.replace_scope(1, 7, [Folder(id="gone")])
        await self.repo.replace_scope(1, 7, [])

        self.assertEqual(await self.repo.list_by_scope(1, 7), [])


if __name__ == "__main__":
    unittest.main()
