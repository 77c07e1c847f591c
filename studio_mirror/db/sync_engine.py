"""Full-replace Cucumber Studio → DB sync engine.

Each refresh fetches the current upstream state for one scope
(project_id, user_id) and swaps the local snapshot for it in a single
transaction. Reads go straight to the repositories.
"""
from __future__ import annotations

import asyncio
import logging
import time
import weakref
from typing import Any, Awaitable, Callable, Sequence

from studio_mirror import config
from studio_mirror.errors import MirrorError, UpstreamDecodeError, UpstreamUnavailableError
from studio_mirror.hierarchy import build_hierarchy
from studio_mirror.models import Folder, FolderNode, Project, Scenario, User
from studio_mirror.observability import record_refresh, record_upstream_failure, start_span
from studio_mirror.services.studio_client import StudioClient

from studio_mirror.db.operations import OperationLog
from studio_mirror.db.factory import (
    get_folder_repository,
    get_scenario_repository,
    get_user_repository,
)

logger = logging.getLogger("studio_mirror.sync")


class SyncEngine:
    """Refreshes and queries the local mirror.

    Refreshes of the same (kind, project_id, user_id) are serialized. Store
    transactions and reads share one lock: the SQLite backend uses a single
    connection, so a read between a replace's delete and commit would see
    the half-written scope.
    """

    def __init__(self, db: Any, client: StudioClient):  # db is Union[aiosqlite.Connection, asyncpg.Pool]
        self.db = db
        self.client = client
        self.folder_repo = get_folder_repository(db)
        self.scenario_repo = get_scenario_repository(db)
        self.user_repo = get_user_repository(db)
        self.operations = OperationLog(config.OPERATION_HISTORY)
        self._store_lock = asyncio.Lock()
        # Entries vanish once no refresh of that scope holds or awaits the lock.
        self._scope_locks: weakref.WeakValueDictionary[tuple[str, int, int], asyncio.Lock] = (
            weakref.WeakValueDictionary()
        )

    def _scope_lock(self, kind: str, project_id: int, user_id: int) -> asyncio.Lock:
        key = (kind, project_id, user_id)
        lock = self._scope_locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._scope_locks[key] = lock
        return lock

    # ── Operations ─────────────────────────────────────────────────

    async def list_operations(self, limit: int = 20) -> list[dict[str, Any]]:
        """Return latest operation snapshots, newest first."""
        return await self.operations.recent(limit)

    async def get_operation(self, operation_id: str) -> dict[str, Any] | None:
        return await self.operations.get(operation_id)

    async def get_observability_snapshot(self) -> dict[str, Any]:
        """Return live refresh observability payload for API status."""
        return await self.operations.snapshot()

    # ── Refresh ────────────────────────────────────────────────────

    async def _refresh_scope(
        self,
        kind: str,
        user: User,
        project_id: int,
        fetch: Callable[[], Awaitable[Sequence[Any]]],
        replace: Callable[..., Awaitable[int]],
        trigger: str,
    ) -> list[Any]:
        """fetching → deleting_old → inserting_new → done, or → failed.

        A fetch failure leaves the store untouched. A store failure rolls the
        whole replacement back, so the previous snapshot stays readable.
        """
        async with self._scope_lock(kind, project_id, user.id):
            op_id = await self.operations.start(f"refresh_{kind}", project_id, user.id, trigger)
            t0 = time.monotonic()

            async def _on_phase(phase: str) -> None:
                await self.operations.update(op_id, phase=phase, message=f"Inserting {kind}")

            try:
                with start_span(f"studio_mirror.refresh_{kind}", {"project_id": project_id, "user_id": user.id}):
                    await self.operations.update(
                        op_id, phase="fetching", message=f"Fetching {kind} from Cucumber Studio"
                    )
                    try:
                        entities = list(await fetch())
                    except (UpstreamUnavailableError, UpstreamDecodeError):
                        record_upstream_failure(kind, project_id=str(project_id))
                        raise

                    await self.operations.update(
                        op_id,
                        phase="deleting_old",
                        message=f"Replacing local {kind}",
                        counters={"fetched": len(entities)},
                    )
                    async with self._store_lock:
                        inserted = await replace(project_id, user.id, entities, on_phase=_on_phase)
            except asyncio.CancelledError:
                elapsed = int((time.monotonic() - t0) * 1000)
                await self.operations.finish(op_id, status="cancelled", duration_ms=elapsed)
                raise
            except Exception as exc:
                elapsed = int((time.monotonic() - t0) * 1000)
                await self.operations.finish(op_id, status="failed", duration_ms=elapsed, error=str(exc))
                record_refresh(kind, "failed", elapsed, project_id=str(project_id))
                raise

            elapsed = int((time.monotonic() - t0) * 1000)
            await self.operations.finish(
                op_id,
                status="completed",
                duration_ms=elapsed,
                stats={"fetched": len(entities), "inserted": inserted},
            )
            record_refresh(kind, "success", elapsed, project_id=str(project_id))
            logger.info(
                f"Refreshed {inserted} {kind} for project {project_id}, user {user.id} in {elapsed}ms"
            )
            return entities

    async def refresh_folders(self, user: User, project_id: int, trigger: str = "api") -> list[Folder]:
        """Replace the scope's folders with the current upstream folders."""
        return await self._refresh_scope(
            "folders",
            user,
            project_id,
            lambda: self.client.fetch_folders(user.credentials, project_id),
            self.folder_repo.replace_scope,
            trigger,
        )

    async def refresh_scenarios(self, user: User, project_id: int, trigger: str = "api") -> list[Scenario]:
        """Replace the scope's scenarios with the current upstream scenarios."""
        return await self._refresh_scope(
            "scenarios",
            user,
            project_id,
            lambda: self.client.fetch_scenarios(user.credentials, project_id),
            self.scenario_repo.replace_scope,
            trigger,
        )

    async def refresh_projects(self, user: User, trigger: str = "api") -> list[Project]:
        """Fetch the user's projects and store them on the user record."""
        op_id = await self.operations.start("refresh_projects", None, user.id, trigger)
        t0 = time.monotonic()
        try:
            await self.operations.update(op_id, phase="fetching", message="Fetching projects from Cucumber Studio")
            try:
                projects = await self.client.fetch_projects(user.credentials)
            except (UpstreamUnavailableError, UpstreamDecodeError):
                record_upstream_failure("projects", project_id="")
                raise
            await self.operations.update(op_id, phase="storing", counters={"fetched": len(projects)})
            async with self._store_lock:
                await self.user_repo.update_projects(user.id, projects)
        except asyncio.CancelledError:
            elapsed = int((time.monotonic() - t0) * 1000)
            await self.operations.finish(op_id, status="cancelled", duration_ms=elapsed)
            raise
        except Exception as exc:
            elapsed = int((time.monotonic() - t0) * 1000)
            await self.operations.finish(op_id, status="failed", duration_ms=elapsed, error=str(exc))
            record_refresh("projects", "failed", elapsed, project_id="")
            raise
        elapsed = int((time.monotonic() - t0) * 1000)
        await self.operations.finish(
            op_id, status="completed", duration_ms=elapsed, stats={"fetched": len(projects)}
        )
        record_refresh("projects", "success", elapsed, project_id="")
        return projects

    async def refresh_all_scenarios(self, user: User, trigger: str = "api") -> list[Scenario]:
        """Refresh scenarios for every upstream project of the user.

        Projects with non-numeric ids and projects whose refresh fails are
        logged and skipped. Fails only when projects exist and none refreshed.
        """
        projects = await self.client.fetch_projects(user.credentials)
        all_scenarios: list[Scenario] = []
        refreshed = 0
        for project in projects:
            try:
                project_id = int(project.id)
            except ValueError:
                logger.warning("Invalid project ID %s; skipping", project.id)
                continue
            try:
                scenarios = await self.refresh_scenarios(user, project_id, trigger=trigger)
            except MirrorError as exc:
                logger.warning("Failed to refresh scenarios for project %d: %s", project_id, exc)
                continue
            refreshed += 1
            all_scenarios.extend(scenarios)

        if projects and refreshed == 0:
            raise MirrorError("failed to refresh scenarios for any project")
        return all_scenarios

    # ── Users ──────────────────────────────────────────────────────

    async def register_user(self, email: str, client_id: str, access_token: str) -> User:
        """Create the user or replace its Cucumber Studio credentials.

        Keyed by email; the cached project list of an existing user is kept.
        """
        email = (email or "").strip()
        if not email:
            raise ValueError("email is required")
        async with self._store_lock:
            existing = await self.user_repo.get_by_email(email)
            user_id = await self.user_repo.upsert(
                {
                    "email": email,
                    "cucumber_client_id": client_id,
                    "cucumber_access_token": access_token,
                }
            )
            user = await self.user_repo.get_by_id(user_id)
        logger.info("%s user %d (%s)", "Updated" if existing else "Created", user_id, email)
        return user

    # ── Reads ──────────────────────────────────────────────────────

    async def get_folders_hierarchy(self, project_id: int, user_id: int) -> list[FolderNode]:
        async with self._store_lock:
            folders = await self.folder_repo.list_by_scope(project_id, user_id)
        return build_hierarchy(folders)

    async def get_scenarios_by_project(self, project_id: int, user_id: int) -> list[Scenario]:
        async with self._store_lock:
            return await self.scenario_repo.list_by_scope(project_id, user_id)

    async def get_scenarios_by_folder(self, project_id: int, user_id: int, folder_id: int) -> list[Scenario]:
        async with self._store_lock:
            return await self.scenario_repo.list_by_folder(project_id, user_id, folder_id)

    async def get_scenarios_by_tags(self, project_id: int, user_id: int, tags: Sequence[str]) -> list[Scenario]:
        async with self._store_lock:
            return await self.scenario_repo.list_by_tags(project_id, user_id, tags)

    async def get_scenarios_by_name(self, project_id: int, user_id: int, keyword: str) -> list[Scenario]:
        async with self._store_lock:
            return await self.scenario_repo.search_by_name(project_id, user_id, keyword)

    async def get_scenarios(
        self,
        project_id: int,
        user_id: int,
        *,
        tags: Sequence[str] | None = None,
        folder_id: int | None = None,
        keyword: str | None = None,
    ) -> list[Scenario]:
        """Select by tags, else folder, else name keyword, else the whole scope.

        An explicit empty ``tags`` list still selects by tags and returns nothing.
        """
        if tags is not None:
            return await self.get_scenarios_by_tags(project_id, user_id, tags)
        if folder_id is not None:
            return await self.get_scenarios_by_folder(project_id, user_id, folder_id)
        if keyword:
            return await self.get_scenarios_by_name(project_id, user_id, keyword)
        return await self.get_scenarios_by_project(project_id, user_id)

    async def list_user_projects(self, user_id: int) -> list[Project]:
        async with self._store_lock:
            user = await self.user_repo.get_by_id(user_id)
        return user.projects if user else []
