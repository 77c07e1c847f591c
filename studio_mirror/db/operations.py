"""In-memory log of refresh operations, newest first."""
from __future__ import annotations

import asyncio
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Optional

logger = logging.getLogger("studio_mirror.sync")

ACTIVE = "running"


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass
class Operation:
    id: str
    kind: str
    project_id: Optional[int]
    user_id: int
    trigger: str
    status: str = ACTIVE
    phase: str = "queued"
    message: str = ""
    started_at: str = field(default_factory=_now)
    updated_at: str = ""
    finished_at: str = ""
    duration_ms: int = 0
    counters: dict[str, Any] = field(default_factory=dict)
    stats: dict[str, Any] = field(default_factory=dict)
    error: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "kind": self.kind,
            "projectId": self.project_id,
            "userId": self.user_id,
            "trigger": self.trigger,
            "status": self.status,
            "phase": self.phase,
            "message": self.message,
            "startedAt": self.started_at,
            "updatedAt": self.updated_at or self.started_at,
            "finishedAt": self.finished_at,
            "durationMs": self.duration_ms,
            "counters": dict(self.counters),
            "stats": dict(self.stats),
            "error": self.error,
        }


class OperationLog:
    """Keeps the last ``history`` operations; older ones are forgotten."""

    def __init__(self, history: int):
        self.history = max(1, int(history))
        self._lock = asyncio.Lock()
        self._ops: dict[str, Operation] = {}
        self._order: list[str] = []

    async def start(self, kind: str, project_id: Optional[int], user_id: int, trigger: str) -> str:
        op = Operation(id=f"OP-{uuid.uuid4()}", kind=kind, project_id=project_id, user_id=user_id, trigger=trigger)
        async with self._lock:
            self._ops[op.id] = op
            self._order.insert(0, op.id)
            for stale_id in self._order[self.history :]:
                self._ops.pop(stale_id, None)
            del self._order[self.history :]
        logger.info(
            "Operation started [%s] %s (project=%s user=%s trigger=%s)",
            op.id, kind, project_id, user_id, trigger,
        )
        return op.id

    async def update(
        self,
        op_id: str,
        *,
        phase: str | None = None,
        message: str | None = None,
        counters: dict[str, Any] | None = None,
    ) -> None:
        async with self._lock:
            op = self._ops.get(op_id)
            if op is None:
                return
            op.phase = phase or op.phase
            if message is not None:
                op.message = message
            op.counters.update(counters or {})
            op.updated_at = _now()
        if message:
            logger.info("Operation update [%s] %s - %s", op_id, phase or "progress", message)

    async def finish(
        self,
        op_id: str,
        *,
        status: str,
        duration_ms: int,
        stats: dict[str, Any] | None = None,
        error: str = "",
    ) -> None:
        async with self._lock:
            op = self._ops.get(op_id)
            if op is None:
                return
            op.status = status
            op.phase = "done" if status == "completed" else status
            op.updated_at = op.finished_at = _now()
            op.duration_ms = max(0, duration_ms)
            op.stats.update(stats or {})
            op.error = error or op.error
        if status == "failed":
            logger.error("Operation failed [%s]: %s", op_id, error)
        else:
            logger.info("Operation finished [%s] status=%s", op_id, status)

    async def recent(self, limit: int = 20) -> list[dict[str, Any]]:
        async with self._lock:
            return [self._ops[op_id].to_dict() for op_id in self._order[: max(1, limit)]]

    async def get(self, op_id: str) -> dict[str, Any] | None:
        async with self._lock:
            op = self._ops.get(op_id)
            return op.to_dict() if op else None

    async def snapshot(self) -> dict[str, Any]:
        async with self._lock:
            ops = [self._ops[op_id] for op_id in self._order]
            active = [op.to_dict() for op in ops if op.status == ACTIVE]
            return {
                "activeOperationCount": len(active),
                "activeOperations": active,
                "recentOperations": [op.to_dict() for op in ops[:5]],
                "trackedOperationCount": len(ops),
            }
