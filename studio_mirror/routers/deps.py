"""Request-scoped dependencies shared by the routers."""
from __future__ import annotations

from typing import Optional

from fastapi import Header, HTTPException, Request

from studio_mirror.models import User


def get_sync_engine(request: Request):
    sync_engine = getattr(request.app.state, "sync_engine", None)
    if not sync_engine:
        raise HTTPException(status_code=503, detail="Sync engine not initialized")
    return sync_engine


async def get_current_user(
    request: Request,
    x_user_id: Optional[str] = Header(None),
) -> User:
    """Resolve the principal named by ``X-User-Id``.

    Token verification lives in the auth layer in front of this service,
    which can swap this dependency out through ``app.dependency_overrides``.
    """
    if not x_user_id:
        raise HTTPException(status_code=401, detail="Unauthorized")
    try:
        user_id = int(x_user_id)
    except ValueError:
        raise HTTPException(status_code=401, detail="Unauthorized")
    user = await get_sync_engine(request).user_repo.get_by_id(user_id)
    if user is None:
        raise HTTPException(status_code=401, detail="Unauthorized")
    return user


def parse_int_param(value: Optional[str], name: str, *, required: bool = True) -> Optional[int]:
    if value is None or value == "":
        if required:
            raise HTTPException(status_code=400, detail=f"{name} is required")
        return None
    try:
        return int(value)
    except ValueError:
        label = name.replace("_id", "").replace("_", " ").title() + " ID"
        raise HTTPException(status_code=400, detail=f"Invalid {label}")
