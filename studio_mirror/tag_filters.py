"""Tag filter parsing and matching for scenario queries.

A tag filter is a ``"key:value"`` string. A scenario matches a list of filters
when every well-formed filter is satisfied by at least one of its tags, with
exact, case-sensitive equality on both key and value.
"""
from __future__ import annotations

from typing import Iterable, Sequence

from studio_mirror.models import Tag


def parse_tag_filter(raw: str) -> tuple[str, str] | None:
    """Split ``"key:value"``; anything not made of exactly two parts is ignored."""
    parts = (raw or "").split(":")
    if len(parts) != 2:
        return None
    return parts[0], parts[1]


def parse_tag_filters(filters: Iterable[str]) -> list[tuple[str, str]]:
    pairs: list[tuple[str, str]] = []
    for raw in filters:
        pair = parse_tag_filter(raw)
        if pair is not None:
            pairs.append(pair)
    return pairs


def split_tag_param(value: str | None) -> list[str]:
    """Turn the comma-separated ``tags`` query parameter into filter strings."""
    if not value:
        return []
    return [part.strip() for part in value.split(",") if part.strip()]


def matches(scenario_tags: Sequence[Tag], filters: Iterable[str]) -> bool:
    # Malformed filters are skipped, so a list with none left is vacuously true.
    # Callers that must not return everything short-circuit before this.
    for key, value in parse_tag_filters(filters):
        if not any(tag.key == key and tag.value == value for tag in scenario_tags):
            return False
    return True
