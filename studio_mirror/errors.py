"""Error taxonomy for the sync core.

Every failure the core surfaces derives from ``MirrorError`` so the HTTP layer
can turn any of them into a single descriptive message.
"""
from __future__ import annotations

from typing import Optional


class MirrorError(Exception):
    """Base error for fetch, store and hierarchy failures."""


class UpstreamUnavailableError(MirrorError):
    """Upstream request failed at the transport level or returned non-2xx."""

    def __init__(self, message: str, status_code: Optional[int] = None, body: str = ""):
        self.status_code = status_code
        self.body = body
        super().__init__(message)


class UpstreamDecodeError(MirrorError):
    """Upstream answered 2xx with a body that is not the expected JSON:API document."""


class StoreDeleteError(MirrorError):
    """Clearing a scope before replacement failed."""


class StoreInsertError(MirrorError):
    """Inserting an entity during scope replacement failed."""

    def __init__(self, message: str, entity_id: str = ""):
        self.entity_id = entity_id
        super().__init__(message)


class TagDecodeError(MirrorError):
    """A scenario row carries serialized tags that cannot be decoded."""

    def __init__(self, scenario_id: str, reason: str):
        self.scenario_id = scenario_id
        super().__init__(f"Cannot decode tags for scenario {scenario_id}: {reason}")


class CyclicHierarchyError(MirrorError):
    """Some folders are unreachable from any root because of a parent cycle."""

    def __init__(self, folder_ids: list[str]):
        self.folder_ids = list(folder_ids)
        super().__init__(
            "Folder hierarchy contains a parent cycle; unreachable folders: "
            + ", ".join(self.folder_ids)
        )
