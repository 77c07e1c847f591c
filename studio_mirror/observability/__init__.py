"""Observability helpers."""

from studio_mirror.observability.otel import (
    initialize,
    shutdown,
    start_span,
    record_refresh,
    record_upstream_failure,
    record_tag_decode_failure,
)

__all__ = [
    "initialize",
    "shutdown",
    "start_span",
    "record_refresh",
    "record_upstream_failure",
    "record_tag_decode_failure",
]
