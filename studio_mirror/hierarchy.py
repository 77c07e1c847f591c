"""Rebuild the folder tree from flat parent-pointer records."""
from __future__ import annotations

import logging
from typing import Sequence

from studio_mirror.errors import CyclicHierarchyError
from studio_mirror.models import Folder, FolderNode

logger = logging.getLogger("studio_mirror.hierarchy")


def _node_from(folder: Folder) -> FolderNode:
    return FolderNode(id=folder.id, name=folder.name, parent_id=folder.parent_id)


def build_hierarchy(folders: Sequence[Folder]) -> list[FolderNode]:
    """Return the root folders with their descendants nested under ``children``.

    Folders without a parent, and folders whose parent is not in ``folders``,
    become roots. Roots and children keep input order. Every returned node is
    a new object, so the flat input is never modified.

    Raises ``CyclicHierarchyError`` when some folders cannot be reached from a
    root, which only happens when parent links form a cycle.
    """
    index_by_id: dict[str, int] = {}
    for idx, folder in enumerate(folders):
        index_by_id.setdefault(folder.id, idx)

    root_indices: list[int] = []
    children_of: dict[int, list[int]] = {}
    for idx, folder in enumerate(folders):
        if folder.parent_id is None:
            root_indices.append(idx)
            continue
        parent_idx = index_by_id.get(folder.parent_id)
        if parent_idx is None:
            logger.warning("Folder %s has invalid parent ID %s", folder.id, folder.parent_id)
            root_indices.append(idx)
            continue
        children_of.setdefault(parent_idx, []).append(idx)

    visited: set[int] = set()
    roots: list[FolderNode] = []
    stack: list[tuple[int, FolderNode]] = []
    for idx in root_indices:
        node = _node_from(folders[idx])
        visited.add(idx)
        roots.append(node)
        stack.append((idx, node))

    while stack:
        idx, node = stack.pop()
        for child_idx in children_of.get(idx, []):
            if child_idx in visited:
                continue
            child = _node_from(folders[child_idx])
            visited.add(child_idx)
            node.children.append(child)
            stack.append((child_idx, child))

    if len(visited) != len(folders):
        unreachable = [folders[i].id for i in range(len(folders)) if i not in visited]
        logger.error("Folder hierarchy has a parent cycle; %d folders unreachable", len(unreachable))
        raise CyclicHierarchyError(unreachable)

    return roots

