"""PostgreSQL implementation of ScenarioRepository."""
from __future__ import annotations

from typing import Any, Sequence

import asyncpg

from studio_mirror.db.repositories.scenarios import (
    PhaseHook,
    encode_tags,
    filter_by_tags,
    like_pattern,
    scenario_from_row,
)
from studio_mirror.errors import StoreDeleteError, StoreInsertError
from studio_mirror.models import Scenario
from studio_mirror.tag_filters import parse_tag_filters


class PostgresScenarioRepository:
    """PostgreSQL-backed scenario storage with a structured tags sub-table."""

    _SELECT = "SELECT s.id, s.name, s.folder_id, s.project_id, s.tags_json FROM scenarios s"

    def __init__(self, db: asyncpg.Pool):
        self.db = db

    async def replace_scope(
        self,
        project_id: int,
        user_id: int,
        scenarios: Sequence[Scenario],
        on_phase: PhaseHook = None,
    ) -> int:
        async with self.db.acquire() as conn:
            async with conn.transaction():
                try:
                    await conn.execute(
                        "DELETE FROM scenario_tags WHERE project_id = $1 AND user_id = $2",
                        project_id, user_id,
                    )
                    await conn.execute(
                        "DELETE FROM scenarios WHERE project_id = $1 AND user_id = $2",
                        project_id, user_id,
                    )
                except asyncpg.PostgresError as exc:
                    raise StoreDeleteError(f"failed to delete scenarios: {exc}") from exc

                if on_phase:
                    await on_phase("inserting_new")

                for position, scenario in enumerate(scenarios):
                    try:
                        await conn.execute(
                            """INSERT INTO scenarios (project_id, user_id, id, name, folder_id, tags_json, position)
                            VALUES ($1, $2, $3, $4, $5, $6, $7)""",
                            project_id, user_id,
                            scenario.id, scenario.name, scenario.folder_id,
                            encode_tags(scenario.tags),
                            position,
                        )
                        if scenario.tags:
                            await conn.executemany(
                                """INSERT INTO scenario_tags (
                                    project_id, user_id, scenario_id, position, tag_id, tag_key, tag_value
                                ) VALUES ($1, $2, $3, $4, $5, $6, $7)""",
                                [
                                    (project_id, user_id, scenario.id, tag_pos, tag.id, tag.key, tag.value)
                                    for tag_pos, tag in enumerate(scenario.tags)
                                ],
                            )
                    except asyncpg.PostgresError as exc:
                        raise StoreInsertError(
                            f"failed to insert scenario (ID: {scenario.id}): {exc}", scenario.id
                        ) from exc
        return len(scenarios)

    async def _fetch(self, where: str, *params: Any) -> list[Scenario]:
        rows = await self.db.fetch(f"{self._SELECT} WHERE {where} ORDER BY s.position", *params)
        return [scenario_from_row(r) for r in rows]

    async def list_by_scope(self, project_id: int, user_id: int) -> list[Scenario]:
        return await self._fetch("s.project_id = $1 AND s.user_id = $2", project_id, user_id)

    async def list_by_folder(self, project_id: int, user_id: int, folder_id: int) -> list[Scenario]:
        return await self._fetch(
            "s.project_id = $1 AND s.user_id = $2 AND s.folder_id = $3",
            project_id, user_id, folder_id,
        )

    async def search_by_name(self, project_id: int, user_id: int, keyword: str) -> list[Scenario]:
        return await self._fetch(
            "s.project_id = $1 AND s.user_id = $2 AND s.name ILIKE $3 ESCAPE '\\'",
            project_id, user_id, like_pattern(keyword),
        )

    async def list_by_tags(self, project_id: int, user_id: int, filters: Sequence[str]) -> list[Scenario]:
        pairs = parse_tag_filters(filters)
        if not pairs:
            return []
        clauses: list[str] = []
        params: list[Any] = [project_id, user_id]
        for key, value in pairs:
            params.extend([key, value])
            clauses.append(
                f"""EXISTS (
                    SELECT 1 FROM scenario_tags t
                    WHERE t.project_id = s.project_id AND t.user_id = s.user_id
                      AND t.scenario_id = s.id
                      AND t.tag_key = ${len(params) - 1} AND t.tag_value = ${len(params)}
                )"""
            )
        rows = await self._fetch(
            "s.project_id = $1 AND s.user_id = $2 AND " + " AND ".join(clauses),
            *params,
        )
        return filter_by_tags(rows, filters)
