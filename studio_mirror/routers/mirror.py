"""Folder, scenario and project endpoints for the authenticated user."""
from __future__ import annotations

import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request

from studio_mirror.errors import MirrorError
from studio_mirror.models import CredentialsUpdate, PublicUser, User
from studio_mirror.routers.deps import get_current_user, get_sync_engine, parse_int_param
from studio_mirror.tag_filters import split_tag_param

logger = logging.getLogger("studio_mirror.api")

mirror_router = APIRouter(prefix="/api/protected", tags=["mirror"])


@mirror_router.get("/data")
async def get_user_data(request: Request, user: User = Depends(get_current_user)):
    """Return the principal and their cached project list."""
    projects = await get_sync_engine(request).list_user_projects(user.id)
    return {
        "user": PublicUser(id=user.id, email=user.email, cucumber_client_id=user.cucumber_client_id),
        "projects": projects,
    }


@mirror_router.put("/credentials")
async def update_credentials(
    request: Request,
    body: CredentialsUpdate,
    user: User = Depends(get_current_user),
):
    """Replace the Cucumber Studio credentials used for this user's refreshes."""
    updated = await get_sync_engine(request).register_user(
        user.email, body.cucumber_client_id, body.cucumber_access_token
    )
    return {
        "message": "Credentials updated successfully",
        "user": PublicUser(id=updated.id, email=updated.email, cucumber_client_id=updated.cucumber_client_id),
    }


@mirror_router.post("/refresh-projects")
async def refresh_projects(request: Request, user: User = Depends(get_current_user)):
    sync_engine = get_sync_engine(request)
    try:
        projects = await sync_engine.refresh_projects(user)
    except MirrorError as e:
        raise HTTPException(status_code=500, detail=f"Failed to fetch projects: {e}")
    return {"message": "Projects refreshed successfully", "projects": projects}


@mirror_router.get("/folders")
async def get_folders_hierarchy(
    request: Request,
    project_id: Optional[str] = Query(None),
    user: User = Depends(get_current_user),
):
    """Folder tree of the local mirror for one project."""
    pid = parse_int_param(project_id, "project_id")
    sync_engine = get_sync_engine(request)
    try:
        folders = await sync_engine.get_folders_hierarchy(pid, user.id)
    except MirrorError as e:
        raise HTTPException(status_code=500, detail=f"Failed to get folder hierarchy: {e}")
    return {"message": "Folder hierarchy retrieved successfully", "folders": folders}


@mirror_router.post("/refresh-folders")
async def refresh_folders(
    request: Request,
    project_id: Optional[str] = Query(None),
    user: User = Depends(get_current_user),
):
    pid = parse_int_param(project_id, "project_id")
    sync_engine = get_sync_engine(request)
    try:
        await sync_engine.refresh_folders(user, pid)
    except MirrorError as e:
        logger.error("Folder refresh failed for project %s: %s", pid, e)
        raise HTTPException(status_code=500, detail="Failed to refresh folders")
    return {"message": "Folders refreshed successfully"}


@mirror_router.get("/scenarios")
async def get_scenarios(
    request: Request,
    project_id: Optional[str] = Query(None),
    tags: Optional[str] = Query(None, description="Comma-separated key:value filters"),
    folder_id: Optional[str] = Query(None),
    keyword: Optional[str] = Query(None),
    user: User = Depends(get_current_user),
):
    """Scenarios by tags, else by folder, else by name keyword, else all."""
    pid = parse_int_param(project_id, "project_id")
    fid = None if tags else parse_int_param(folder_id, "folder_id", required=False)
    sync_engine = get_sync_engine(request)
    try:
        scenarios = await sync_engine.get_scenarios(
            pid,
            user.id,
            tags=split_tag_param(tags) if tags else None,
            folder_id=fid,
            keyword=keyword or None,
        )
    except MirrorError as e:
        raise HTTPException(status_code=500, detail=f"Failed to get scenarios: {e}")
    return {"message": "Scenarios retrieved successfully", "scenarios": scenarios}


@mirror_router.post("/refresh-scenarios")
async def refresh_scenarios(
    request: Request,
    project_id: Optional[str] = Query(None),
    user: User = Depends(get_current_user),
):
    pid = parse_int_param(project_id, "project_id")
    sync_engine = get_sync_engine(request)
    try:
        scenarios = await sync_engine.refresh_scenarios(user, pid)
    except MirrorError as e:
        logger.error("Scenario refresh failed for project %s: %s", pid, e)
        raise HTTPException(status_code=500, detail="Failed to refresh scenarios")
    return {"message": "Scenarios refreshed successfully", "scenarios": scenarios}


@mirror_router.post("/refresh-all-scenarios")
async def refresh_all_scenarios(request: Request, user: User = Depends(get_current_user)):
    sync_engine = get_sync_engine(request)
    try:
        scenarios = await sync_engine.refresh_all_scenarios(user)
    except MirrorError as e:
        logger.error("Refresh of all scenarios failed for user %s: %s", user.id, e)
        raise HTTPException(status_code=500, detail="Failed to refresh scenarios")
    return {"message": "Scenarios refreshed successfully", "scenarios": scenarios}
