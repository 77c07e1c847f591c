import asyncio
import gc
import unittest

import aiosqlite

from studio_mirror.db.sqlite_migrations import run_migrations
from studio_mirror.db.sync_engine import SyncEngine
from studio_mirror.errors import (
    CyclicHierarchyError,
    MirrorError,
    StoreInsertError,
    UpstreamUnavailableError,
)
from studio_mirror.models import Folder, Project, Scenario, Tag


class _FakeStudioClient:
    def __init__(self) -> None:
        self.folders: dict[int, list[Folder]] = {}
        self.scenarios: dict[int, list[Scenario]] = {}
        self.projects: list[Project] = []
        self.failing_projects: set[int] = set()
        self.calls: list[tuple[str, object]] = []

    async def fetch_projects(self, credentials):
        self.calls.append(("projects", credentials.uid))
        return list(self.projects)

    async def fetch_folders(self, credentials, project_id):
        self.calls.append(("folders", project_id))
        if project_id in self.failing_projects:
            raise UpstreamUnavailableError("Cucumber Studio API returned an error: 503", status_code=503)
        return list(self.folders.get(project_id, []))

    async def fetch_scenarios(self, credentials, project_id):
        self.calls.append(("scenarios", project_id))
        if project_id in self.failing_projects:
            raise UpstreamUnavailableError("Cucumber Studio API returned an error: 503", status_code=503)
        return list(self.scenarios.get(project_id, []))


def _scenario(sid: str, project_id: int, folder_id: int = 1, tags: list[tuple[str, str]] | None = None) -> Scenario:
    return Scenario(
        id=sid,
        name=f"Scenario {sid}",
        folder_id=folder_id,
        project_id=project_id,
        tags=[Tag(id=f"{sid}-{k}", key=k, value=v) for k, v in (tags or [])],
    )


class SyncEngineTests(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self) -> None:
        self.db = await aiosqlite.connect(":memory:")
        self.db.row_factory = aiosqlite.Row
        await run_migrations(self.db)
        self.client = _FakeStudioClient()
        self.engine = SyncEngine(self.db, self.client)
        user_id = await self.engine.user_repo.upsert(
            {"email": "qa@example.com", "cucumber_client_id": "c", "cucumber_access_token": "t"}
        )
        self.user = await self.engine.user_repo.get_by_id(user_id)

    async def asyncTearDown(self) -> None:
        await self.db.close()

    async def test_refresh_folders_then_hierarchy(self) -> None:
        self.client.folders[1] = [
            Folder(id="1", name="Root"),
            Folder(id="2", name="Child", parent_id="1"),
            Folder(id="3", name="Stray", parent_id="404"),
        ]

        fetched = await self.engine.refresh_folders(self.user, 1)
        roots = await self.engine.get_folders_hierarchy(1, self.user.id)

        self.assertEqual(len(fetched), 3)
        self.assertEqual([r.id for r in roots], ["1", "3"])
        self.assertEqual([c.id for c in roots[0].children], ["2"])

        operations = await self.engine.list_operations()
        self.assertEqual(operations[0]["kind"], "refresh_folders")
        self.assertEqual(operations[0]["status"], "completed")
        self.assertEqual(operations[0]["phase"], "done")
        self.assertEqual(operations[0]["stats"], {"fetched": 3, "inserted": 3})

    async def test_fetch_failure_leaves_store_untouched(self) -> None:
        self.client.scenarios[1] = [_scenario("a", 1)]
        await self.engine.refresh_scenarios(self.user, 1)
        self.client.failing_projects.add(1)

        with self.assertRaises(UpstreamUnavailableError):
            await self.engine.refresh_scenarios(self.user, 1)

        rows = await self.engine.get_scenarios_by_project(1, self.user.id)
        self.assertEqual([s.id for s in rows], ["a"])
        latest = (await self.engine.list_operations(limit=1))[0]
        self.assertEqual(latest["status"], "failed")
        self.assertEqual(latest["phase"], "failed")
        self.assertIn("503", latest["error"])

    async def test_store_failure_rolls_back_and_fails_operation(self) -> None:
        self.client.folders[1] = [Folder(id="keep")]
        await self.engine.refresh_folders(self.user, 1)
        self.client.folders[1] = [Folder(id="dup"), Folder(id="dup")]

        with self.assertRaises(StoreInsertError):
            await self.engine.refresh_folders(self.user, 1)

        roots = await self.engine.get_folders_hierarchy(1, self.user.id)
        self.assertEqual([r.id for r in roots], ["keep"])

    async def test_refresh_scenarios_replaces_and_queries(self) -> None:
        self.client.scenarios[1] = [_scenario("old", 1)]
        await self.engine.refresh_scenarios(self.user, 1)
        self.client.scenarios[1] = [
            _scenario("n1", 1, folder_id=5, tags=[("env", "prod"), ("team", "web")]),
            _scenario("n2", 1, folder_id=6, tags=[("env", "prod")]),
        ]

        returned = await self.engine.refresh_scenarios(self.user, 1)

        self.assertEqual([s.id for s in returned], ["n1", "n2"])
        self.assertEqual([s.id for s in await self.engine.get_scenarios_by_project(1, self.user.id)], ["n1", "n2"])
        self.assertEqual([s.id for s in await self.engine.get_scenarios_by_folder(1, self.user.id, 6)], ["n2"])
        self.assertEqual(
            [s.id for s in await self.engine.get_scenarios_by_tags(1, self.user.id, ["env:prod", "team:web"])],
            ["n1"],
        )
        self.assertEqual(await self.engine.get_scenarios_by_tags(1, self.user.id, []), [])
        self.assertEqual([s.id for s in await self.engine.get_scenarios_by_name(1, self.user.id, "N2")], ["n2"])

    async def test_get_scenarios_selection_precedence(self) -> None:
        self.client.scenarios[1] = [
            _scenario("login", 1, folder_id=5, tags=[("env", "prod")]),
            _scenario("logout", 1, folder_id=6),
        ]
        await self.engine.refresh_scenarios(self.user, 1)
        uid = self.user.id

        by_tags = await self.engine.get_scenarios(1, uid, tags=["env:prod"], folder_id=6, keyword="logout")
        by_folder = await self.engine.get_scenarios(1, uid, folder_id=6, keyword="login")
        by_name = await self.engine.get_scenarios(1, uid, keyword="LOGIN")
        everything = await self.engine.get_scenarios(1, uid)
        no_filters = await self.engine.get_scenarios(1, uid, tags=[], folder_id=6)

        self.assertEqual([s.id for s in by_tags], ["login"])
        self.assertEqual([s.id for s in by_folder], ["logout"])
        self.assertEqual([s.id for s in by_name], ["login"])
        self.assertEqual([s.id for s in everything], ["login", "logout"])
        self.assertEqual(no_filters, [])

    async def test_cyclic_folders_surface_error(self) -> None:
        self.client.folders[1] = [Folder(id="a", parent_id="b"), Folder(id="b", parent_id="a")]
        await self.engine.refresh_folders(self.user, 1)

        with self.assertRaises(CyclicHierarchyError):
            await self.engine.get_folders_hierarchy(1, self.user.id)

    async def test_refresh_projects_stores_on_user(self) -> None:
        self.client.projects = [Project(id="1", name="Shop"), Project(id="2", name="Admin")]

        projects = await self.engine.refresh_projects(self.user)

        stored = await self.engine.user_repo.get_by_id(self.user.id)
        self.assertEqual(projects, stored.projects)
        self.assertEqual(await self.engine.list_user_projects(self.user.id), projects)
        self.assertEqual(await self.engine.list_user_projects(999), [])
        self.assertEqual(self.client.calls[0], ("projects", "qa@example.com"))

    async def test_refresh_all_scenarios_skips_bad_projects(self) -> None:
        self.client.projects = [
            Project(id="1", name="Good"),
            Project(id="abc", name="Non-numeric"),
            Project(id="2", name="Down"),
            Project(id="3", name="Also good"),
        ]
        self.client.failing_projects.add(2)
        self.client.scenarios[1] = [_scenario("p1", 1)]
        self.client.scenarios[3] = [_scenario("p3", 3)]

        scenarios = await self.engine.refresh_all_scenarios(self.user)

        self.assertEqual([s.id for s in scenarios], ["p1", "p3"])
        self.assertNotIn(("scenarios", "abc"), self.client.calls)

    async def test_refresh_all_scenarios_fails_when_nothing_refreshed(self) -> None:
        self.client.projects = [Project(id="2", name="Down")]
        self.client.failing_projects.add(2)

        with self.assertRaises(MirrorError):
            await self.engine.refresh_all_scenarios(self.user)

    async def test_refresh_all_scenarios_without_projects(self) -> None:
        self.assertEqual(await self.engine.refresh_all_scenarios(self.user), [])

    async def test_concurrent_refreshes_of_one_scope_are_serialized(self) -> None:
        self.client.scenarios[1] = [_scenario("a", 1), _scenario("b", 1)]

        await asyncio.gather(*(self.engine.refresh_scenarios(self.user, 1) for _ in range(5)))

        rows = await self.engine.get_scenarios_by_project(1, self.user.id)
        self.assertEqual([s.id for s in rows], ["a", "b"])
        snapshot = await self.engine.get_observability_snapshot()
        self.assertEqual(snapshot["activeOperationCount"], 0)
        self.assertEqual(snapshot["trackedOperationCount"], 5)

    async def test_operation_history_is_bounded(self) -> None:
        self.engine.operations.history = 2
        for _ in range(4):
            await self.engine.refresh_folders(self.user, 1)

        operations = await self.engine.list_operations(limit=10)
        self.assertEqual(len(operations), 2)
        self.assertIsNone(await self.engine.get_operation("OP-missing"))
        self.assertEqual((await self.engine.get_operation(operations[0]["id"]))["kind"], "refresh_folders")

    async def test_cancelled_refresh_marks_operation(self) -> None:
        started = asyncio.Event()

        async def _hang(credentials, project_id):
            started.set()
            await asyncio.sleep(60)
            return []

        self.client.fetch_folders = _hang
        task = asyncio.create_task(self.engine.refresh_folders(self.user, 1))
        await started.wait()
        task.cancel()

        with self.assertRaises(asyncio.CancelledError):
            await task

        latest = (await self.engine.list_operations(limit=1))[0]
        self.assertEqual(latest["status"], "cancelled")

    async def test_refresh_cancelled_mid_insert_keeps_previous_snapshot(self) -> None:
        self.client.scenarios[1] = [_scenario("old", 1, tags=[("env", "prod")])]
        await self.engine.refresh_scenarios(self.user, 1)
        self.client.scenarios[1] = [_scenario("new", 1)]
        self.client.scenarios[2] = [_scenario("other", 2)]

        inserting = asyncio.Event()
        update = self.engine.operations.update

        async def _stall_on_insert(op_id, **kwargs):
            await update(op_id, **kwargs)
            if kwargs.get("phase") == "inserting_new":
                inserting.set()
                await asyncio.sleep(60)

        self.engine.operations.update = _stall_on_insert
        task = asyncio.create_task(self.engine.refresh_scenarios(self.user, 1))
        await inserting.wait()
        task.cancel()
        with self.assertRaises(asyncio.CancelledError):
            await task
        self.engine.operations.update = update

        await self.engine.refresh_scenarios(self.user, 2)

        rows = await self.engine.get_scenarios_by_project(1, self.user.id)
        self.assertEqual([s.id for s in rows], ["old"])
        self.assertEqual([s.id for s in await self.engine.get_scenarios_by_tags(1, self.user.id, ["env:prod"])], ["old"])
        self.assertEqual([s.id for s in await self.engine.get_scenarios_by_project(2, self.user.id)], ["other"])
        cancelled = (await self.engine.list_operations(limit=2))[1]
        self.assertEqual((cancelled["projectId"], cancelled["status"]), (1, "cancelled"))

    async def test_cancelled_project_refresh_marks_operation(self) -> None:
        started = asyncio.Event()

        async def _hang(credentials):
            started.set()
            await asyncio.sleep(60)
            return []

        self.client.fetch_projects = _hang
        task = asyncio.create_task(self.engine.refresh_projects(self.user))
        await started.wait()
        task.cancel()

        with self.assertRaises(asyncio.CancelledError):
            await task

        snapshot = await self.engine.get_observability_snapshot()
        self.assertEqual(snapshot["activeOperationCount"], 0)
        latest = (await self.engine.list_operations(limit=1))[0]
        self.assertEqual((latest["kind"], latest["status"]), ("refresh_projects", "cancelled"))

    async def test_scope_locks_are_released_after_refresh(self) -> None:
        for project_id in range(1, 6):
            await self.engine.refresh_folders(self.user, project_id)
            await self.engine.refresh_scenarios(self.user, project_id)
        gc.collect()

        self.assertEqual(len(self.engine._scope_locks), 0)

    async def test_register_user_creates_then_rotates_credentials(self) -> None:
        self.client.projects = [Project(id="1", name="Shop")]
        await self.engine.refresh_projects(self.user)

        with self.assertLogs("studio_mirror.sync", level="INFO") as logs:
            created = await self.engine.register_user(" new@example.com ", "c2", "t2")
            rotated = await self.engine.register_user("qa@example.com", "c3", "t3")

        self.assertEqual(created.email, "new@example.com")
        self.assertEqual((created.cucumber_client_id, created.cucumber_access_token), ("c2", "t2"))
        self.assertEqual(rotated.id, self.user.id)
        self.assertEqual((rotated.cucumber_client_id, rotated.cucumber_access_token), ("c3", "t3"))
        self.assertEqual(rotated.projects, [Project(id="1", name="Shop")])
        self.assertTrue(any("Created user" in line for line in logs.output))
        self.assertTrue(any("Updated user" in line for line in logs.output))
        with self.assertRaises(ValueError):
            await self.engine.register_user("  ", "c", "t")


if __name__ == "__main__":
    unittest.main()
