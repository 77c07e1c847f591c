"""SQLite implementation of ScenarioRepository."""
from __future__ import annotations

import json
import logging
from typing import Any, Awaitable, Callable, Iterable, Mapping, Optional, Sequence

import aiosqlite
from pydantic import ValidationError

from studio_mirror.errors import StoreDeleteError, StoreInsertError, TagDecodeError
from studio_mirror.models import Scenario, Tag
from studio_mirror.observability import record_tag_decode_failure
from studio_mirror.tag_filters import matches, parse_tag_filters

logger = logging.getLogger("studio_mirror.db.scenarios")

PhaseHook = Optional[Callable[[str], Awaitable[None]]]

_TAG_EXISTS_CLAUSE = """EXISTS (
    SELECT 1 FROM scenario_tags t
    WHERE t.project_id = s.project_id AND t.user_id = s.user_id
      AND t.scenario_id = s.id AND t.tag_key = {key} AND t.tag_value = {value}
)"""


def encode_tags(tags: Sequence[Tag]) -> str:
    return json.dumps([tag.model_dump() for tag in tags])


def decode_tags(scenario_id: str, raw: Any) -> list[Tag]:
    """Decode a row's ``tags_json``; raises TagDecodeError on anything malformed."""
    if raw is None or raw == "":
        return []
    try:
        parsed = json.loads(raw)
    except (TypeError, ValueError) as exc:
        raise TagDecodeError(scenario_id, str(exc)) from exc
    if not isinstance(parsed, list):
        raise TagDecodeError(scenario_id, f"expected a list, got {type(parsed).__name__}")
    try:
        return [Tag.model_validate(item) for item in parsed]
    except ValidationError as exc:
        raise TagDecodeError(scenario_id, str(exc)) from exc


def scenario_from_row(row: Mapping[str, Any]) -> Scenario:
    """Build a Scenario from a stored row; undecodable tags become ``[]``."""
    try:
        tags = decode_tags(row["id"], row["tags_json"])
    except TagDecodeError as exc:
        logger.warning("%s; returning scenario without tags", exc)
        record_tag_decode_failure(project_id=str(row["project_id"]))
        tags = []
    return Scenario(
        id=row["id"],
        name=row["name"],
        folder_id=row["folder_id"],
        project_id=row["project_id"],
        tags=tags,
    )


def filter_by_tags(scenarios: Iterable[Scenario], filters: Sequence[str]) -> list[Scenario]:
    return [scenario for scenario in scenarios if matches(scenario.tags, filters)]


def name_contains(scenarios: Iterable[Scenario], keyword: str) -> list[Scenario]:
    """Case-insensitive (Unicode casefold) substring match on the name."""
    needle = keyword.casefold()
    return [scenario for scenario in scenarios if needle in scenario.name.casefold()]


def like_pattern(keyword: str) -> str:
    """Substring LIKE pattern with ``%``/``_`` in the keyword taken literally."""
    escaped = keyword.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
    return f"%{escaped}%"


class SqliteScenarioRepository:
    """SQLite-backed scenario storage with a structured tags sub-table."""

    _SELECT = "SELECT s.id, s.name, s.folder_id, s.project_id, s.tags_json FROM scenarios s"

    def __init__(self, db: aiosqlite.Connection):
        self.db = db

    async def replace_scope(
        self,
        project_id: int,
        user_id: int,
        scenarios: Sequence[Scenario],
        on_phase: PhaseHook = None,
    ) -> int:
        """Swap the scope's scenarios for ``scenarios`` in one transaction.

        The first failing insert raises StoreInsertError. Any exit before the
        commit, cancellation included, rolls everything back and leaves the
        previous snapshot untouched.
        """
        try:
            await self._delete_then_insert(project_id, user_id, scenarios, on_phase)
            await self.db.commit()
        except BaseException:
            await self.db.rollback()
            raise
        return len(scenarios)

    async def _delete_then_insert(
        self,
        project_id: int,
        user_id: int,
        scenarios: Sequence[Scenario],
        on_phase: PhaseHook,
    ) -> None:
        try:
            await self.db.execute(
                "DELETE FROM scenario_tags WHERE project_id = ? AND user_id = ?",
                (project_id, user_id),
            )
            await self.db.execute(
                "DELETE FROM scenarios WHERE project_id = ? AND user_id = ?",
                (project_id, user_id),
            )
        except aiosqlite.Error as exc:
            raise StoreDeleteError(f"failed to delete scenarios: {exc}") from exc

        if on_phase:
            await on_phase("inserting_new")

        for position, scenario in enumerate(scenarios):
            try:
                await self.db.execute(
                    """INSERT INTO scenarios (project_id, user_id, id, name, folder_id, tags_json, position)
                    VALUES (?, ?, ?, ?, ?, ?, ?)""",
                    (
                        project_id, user_id,
                        scenario.id, scenario.name, scenario.folder_id,
                        encode_tags(scenario.tags),
                        position,
                    ),
                )
                await self.db.executemany(
                    """INSERT INTO scenario_tags (
                        project_id, user_id, scenario_id, position, tag_id, tag_key, tag_value
                    ) VALUES (?, ?, ?, ?, ?, ?, ?)""",
                    [
                        (project_id, user_id, scenario.id, tag_pos, tag.id, tag.key, tag.value)
                        for tag_pos, tag in enumerate(scenario.tags)
                    ],
                )
            except aiosqlite.Error as exc:
                raise StoreInsertError(
                    f"failed to insert scenario (ID: {scenario.id}): {exc}", scenario.id
                ) from exc

    async def _fetch(self, where: str, params: tuple) -> list[Scenario]:
        async with self.db.execute(
            f"{self._SELECT} WHERE {where} ORDER BY s.position", params
        ) as cur:
            rows = await cur.fetchall()
        return [scenario_from_row(r) for r in rows]

    async def list_by_scope(self, project_id: int, user_id: int) -> list[Scenario]:
        return await self._fetch("s.project_id = ? AND s.user_id = ?", (project_id, user_id))

    async def list_by_folder(self, project_id: int, user_id: int, folder_id: int) -> list[Scenario]:
        return await self._fetch(
            "s.project_id = ? AND s.user_id = ? AND s.folder_id = ?",
            (project_id, user_id, folder_id),
        )

    async def search_by_name(self, project_id: int, user_id: int, keyword: str) -> list[Scenario]:
        # SQLite LIKE folds ASCII case only, so match in Python instead.
        return name_contains(await self.list_by_scope(project_id, user_id), keyword)

    async def list_by_tags(self, project_id: int, user_id: int, filters: Sequence[str]) -> list[Scenario]:
        pairs = parse_tag_filters(filters)
        if not pairs:
            return []
        clauses = [_TAG_EXISTS_CLAUSE.format(key="?", value="?") for _ in pairs]
        params: list[Any] = [project_id, user_id]
        for key, value in pairs:
            params.extend([key, value])
        rows = await self._fetch(
            "s.project_id = ? AND s.user_id = ? AND " + " AND ".join(clauses),
            tuple(params),
        )
        return filter_by_tags(rows, filters)
