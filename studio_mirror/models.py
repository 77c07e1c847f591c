"""Pydantic models for mirrored Cucumber Studio entities."""
from __future__ import annotations
from pydantic import BaseModel, Field
from typing import Optional

# ── Mirrored entities ──────────────────────────────────────────────

class Tag(BaseModel):
    id: str
    key: str = ""
    value: str = ""


class Folder(BaseModel):
    id: str
    name: str = ""
    parent_id: Optional[str] = None


class FolderNode(Folder):
    """A folder placed in a built hierarchy, with its nested children."""
    children: list[FolderNode] = Field(default_factory=list)


class Scenario(BaseModel):
    id: str
    name: str = ""
    folder_id: int = 0
    project_id: int = 0
    tags: list[Tag] = Field(default_factory=list)


# ── Users & projects ───────────────────────────────────────────────

class Project(BaseModel):
    id: str
    name: str = ""


class UpstreamCredentials(BaseModel):
    """Headers Cucumber Studio expects on every request."""
    client_id: str = ""
    access_token: str = ""
    uid: str = ""


class User(BaseModel):
    id: int
    email: str
    cucumber_client_id: str = ""
    cucumber_access_token: str = ""
    projects: list[Project] = Field(default_factory=list)

    @property
    def credentials(self) -> UpstreamCredentials:
        return UpstreamCredentials(
            client_id=self.cucumber_client_id,
            access_token=self.cucumber_access_token,
            uid=self.email,
        )


class PublicUser(BaseModel):
    id: int
    email: str
    cucumber_client_id: str = ""


class CredentialsUpdate(BaseModel):
    cucumber_client_id: str = Field(min_length=1)
    cucumber_access_token: str = Field(min_length=1)
