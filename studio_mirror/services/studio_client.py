"""Cucumber Studio API client.

Fetches projects, folders and scenarios (with their tags) and normalizes the
JSON:API documents into mirror models. One request per call: no retries,
backoff or pagination.
"""
from __future__ import annotations

import logging
from typing import Annotated, Any, Optional

import httpx
from pydantic import BaseModel, BeforeValidator, ConfigDict, Field, ValidationError

from studio_mirror import config
from studio_mirror.errors import UpstreamDecodeError, UpstreamUnavailableError
from studio_mirror.models import Folder, Project, Scenario, Tag, UpstreamCredentials

logger = logging.getLogger("studio_mirror.upstream")

_BODY_PREVIEW_CHARS = 2000


# ── JSON:API wire shapes ───────────────────────────────────────────

def _none_as_empty(value: Any) -> Any:
    return "" if value is None else value


# Upstream sends `null` for blank names and tag values.
WireStr = Annotated[str, BeforeValidator(_none_as_empty)]


class _Wire(BaseModel):
    model_config = ConfigDict(populate_by_name=True, coerce_numbers_to_str=True, extra="ignore")


class _ResourceIdentifier(_Wire):
    id: str
    type: str = ""


class _ProjectAttributes(_Wire):
    name: WireStr = ""


class _ProjectResource(_Wire):
    id: str
    type: str = ""
    attributes: _ProjectAttributes = Field(default_factory=_ProjectAttributes)


class _FolderAttributes(_Wire):
    name: WireStr = ""
    parent_id: Optional[str] = Field(None, alias="parent-id")


class _FolderResource(_Wire):
    id: str
    type: str = ""
    attributes: _FolderAttributes = Field(default_factory=_FolderAttributes)


class _ScenarioAttributes(_Wire):
    name: WireStr = ""
    folder_id: Optional[int] = Field(None, alias="folder-id")


class _Relationship(_Wire):
    data: Optional[list[_ResourceIdentifier]] = None


class _ScenarioRelationships(_Wire):
    tags: _Relationship = Field(default_factory=_Relationship)


class _ScenarioResource(_Wire):
    id: str
    type: str = ""
    attributes: _ScenarioAttributes = Field(default_factory=_ScenarioAttributes)
    relationships: _ScenarioRelationships = Field(default_factory=_ScenarioRelationships)


class _TagAttributes(_Wire):
    key: WireStr = ""
    value: WireStr = ""


class _IncludedResource(_Wire):
    id: str
    type: str = ""
    attributes: dict[str, Any] = Field(default_factory=dict)


class _ProjectsDocument(_Wire):
    data: list[_ProjectResource] = Field(default_factory=list)


class _FoldersDocument(_Wire):
    data: list[_FolderResource] = Field(default_factory=list)


class _ScenariosDocument(_Wire):
    data: list[_ScenarioResource] = Field(default_factory=list)
    included: list[_IncludedResource] = Field(default_factory=list)


# ── Normalization ──────────────────────────────────────────────────

def _folder_from_resource(resource: _FolderResource) -> Folder:
    parent_id = (resource.attributes.parent_id or "").strip() or None
    return Folder(id=resource.id, name=resource.attributes.name, parent_id=parent_id)


def build_tag_index(included: list[_IncludedResource]) -> dict[str, Tag]:
    """Map included ``tags`` resources by id; other included types are ignored."""
    index: dict[str, Tag] = {}
    for item in included:
        if item.type != "tags":
            continue
        attrs = _TagAttributes.model_validate(item.attributes)
        index[item.id] = Tag(id=item.id, key=attrs.key, value=attrs.value)
    return index


def _scenario_from_resource(resource: _ScenarioResource, project_id: int, tag_index: dict[str, Tag]) -> Scenario:
    tags: list[Tag] = []
    for ref in resource.relationships.tags.data or []:
        tag = tag_index.get(ref.id)
        if tag is not None:
            tags.append(tag.model_copy())
    return Scenario(
        id=resource.id,
        name=resource.attributes.name,
        folder_id=resource.attributes.folder_id or 0,
        project_id=project_id,
        tags=tags,
    )


class StudioClient:
    """Thin async client over the Cucumber Studio JSON:API."""

    def __init__(
        self,
        base_url: str | None = None,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.base_url = base_url or config.API_BASE_URL
        self.timeout = timeout if timeout is not None else config.UPSTREAM_TIMEOUT_SECONDS
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    @property
    def client(self) -> httpx.AsyncClient:
        """Get or create the HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                headers={"Accept": config.API_ACCEPT},
                timeout=httpx.Timeout(self.timeout),
                transport=self._transport,
            )
        return self._client

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self) -> "StudioClient":
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.close()

    @staticmethod
    def _auth_headers(credentials: UpstreamCredentials) -> dict[str, str]:
        return {
            "access-token": credentials.access_token,
            "client": credentials.client_id,
            "uid": credentials.uid,
        }

    async def _get_document(
        self,
        path: str,
        credentials: UpstreamCredentials,
        resource: str,
        params: dict[str, str] | None = None,
    ) -> dict[str, Any]:
        try:
            response = await self.client.get(path, params=params, headers=self._auth_headers(credentials))
        except httpx.TimeoutException as err:
            raise UpstreamUnavailableError(f"timed out fetching {resource} from Cucumber Studio") from err
        except httpx.HTTPError as err:
            raise UpstreamUnavailableError(f"failed to fetch {resource}: {err}") from err
        return self._handle_response(response, resource)

    @staticmethod
    def _handle_response(response: httpx.Response, resource: str) -> dict[str, Any]:
        """Reject non-2xx and non-JSON:API bodies."""
        if not response.is_success:
            body = response.text[:_BODY_PREVIEW_CHARS]
            raise UpstreamUnavailableError(
                f"Cucumber Studio API returned an error fetching {resource}: "
                f"{response.status_code} {response.reason_phrase}, Body: {body}",
                status_code=response.status_code,
                body=body,
            )
        try:
            payload = response.json()
        except ValueError as err:
            raise UpstreamDecodeError(
                f"failed to unmarshal {resource} JSON: {err}\nResponse: {response.text[:_BODY_PREVIEW_CHARS]}"
            ) from err
        if not isinstance(payload, dict):
            raise UpstreamDecodeError(f"expected a JSON:API document for {resource}, got {type(payload).__name__}")
        return payload

    async def fetch_projects(self, credentials: UpstreamCredentials) -> list[Project]:
        payload = await self._get_document("/projects", credentials, "projects")
        try:
            document = _ProjectsDocument.model_validate(payload)
        except ValidationError as err:
            raise UpstreamDecodeError(f"unexpected projects document: {err}") from err
        return [Project(id=p.id, name=p.attributes.name) for p in document.data]

    async def fetch_folders(self, credentials: UpstreamCredentials, project_id: int) -> list[Folder]:
        payload = await self._get_document(f"/projects/{project_id}/folders", credentials, "folders")
        try:
            document = _FoldersDocument.model_validate(payload)
        except ValidationError as err:
            raise UpstreamDecodeError(f"unexpected folders document: {err}") from err
        folders = [_folder_from_resource(resource) for resource in document.data]
        logger.info("Fetched %d folders for project %s", len(folders), project_id)
        return folders

    async def fetch_scenarios(self, credentials: UpstreamCredentials, project_id: int) -> list[Scenario]:
        payload = await self._get_document(
            f"/projects/{project_id}/scenarios",
            credentials,
            "scenarios",
            params={"include": "tags"},
        )
        try:
            document = _ScenariosDocument.model_validate(payload)
            tag_index = build_tag_index(document.included)
        except ValidationError as err:
            raise UpstreamDecodeError(f"unexpected scenarios document: {err}") from err
        scenarios = [_scenario_from_resource(resource, project_id, tag_index) for resource in document.data]
        logger.info(
            "Fetched %d scenarios (%d included tags) for project %s",
            len(scenarios), len(tag_index), project_id,
        )
        return scenarios
