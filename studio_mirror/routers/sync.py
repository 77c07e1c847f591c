"""Refresh operation observability API."""
from __future__ import annotations

from fastapi import APIRouter, HTTPException, Query, Request

from studio_mirror.routers.deps import get_sync_engine

sync_router = APIRouter(prefix="/api/sync", tags=["sync"])


@sync_router.get("/status")
async def get_sync_status(request: Request):
    """Active and recent refresh operations."""
    sync_engine = get_sync_engine(request)
    observability = await sync_engine.get_observability_snapshot()
    return {"status": "active", "operations": observability}


@sync_router.get("/operations")
async def list_sync_operations(request: Request, limit: int = Query(20, ge=1, le=200)):
    """List recent refresh operations."""
    sync_engine = get_sync_engine(request)
    operations = await sync_engine.list_operations(limit=limit)
    return {"status": "ok", "count": len(operations), "items": operations}


@sync_router.get("/operations/{operation_id}")
async def get_sync_operation(request: Request, operation_id: str):
    """Get one refresh operation by ID."""
    sync_engine = get_sync_engine(request)
    operation = await sync_engine.get_operation(operation_id)
    if not operation:
        raise HTTPException(status_code=404, detail=f"Operation {operation_id} not found")
    return {"status": "ok", "item": operation}
