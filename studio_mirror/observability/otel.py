"""OpenTelemetry tracing/metrics for refreshes, with a Prometheus fallback.

Everything here is a no-op until ``initialize`` runs with
STUDIO_MIRROR_OTEL_ENABLED set and the ``otel`` extra installed.
"""
from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Any

from fastapi import FastAPI

from studio_mirror import config

logger = logging.getLogger("studio_mirror.observability")

_METRICS = {
    "refresh": ("studio_mirror_refresh_total", "Count of folder/scenario/project refreshes by outcome"),
    "refresh_latency": ("studio_mirror_refresh_latency_ms", "End-to-end refresh latency"),
    "upstream_failures": ("studio_mirror_upstream_failures_total", "Failed upstream fetches"),
    "tag_decode_failures": (
        "studio_mirror_tag_decode_failures_total",
        "Scenario rows returned without tags because tags_json was unreadable",
    ),
}

_initialized = False
_enabled = False
_tracer: Any | None = None
_providers: list[Any] = []
_instrumentor: Any | None = None
# OTel instruments and Prometheus collectors, keyed like _METRICS
_otel: dict[str, Any] = {}
_prom: dict[str, Any] = {}


def _normalize_otlp_endpoint(base_endpoint: str, signal_path: str) -> str:
    endpoint = (base_endpoint or "").strip().rstrip("/")
    if not endpoint:
        return ""
    if endpoint.endswith(signal_path):
        return endpoint
    if endpoint.endswith("/v1"):
        endpoint = endpoint[: -len("/v1")]
    return f"{endpoint}{signal_path}"


def _prom_labels(*, project_id: str, **extra: str) -> dict[str, str]:
    labels = {"project": project_id or "unknown"}
    for key, value in extra.items():
        labels[key] = (value or "").strip() or "unknown"
    return labels


def _start_otel() -> bool:
    try:
        from opentelemetry import metrics, trace
        from opentelemetry.exporter.otlp.proto.http.metric_exporter import OTLPMetricExporter
        from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter
        from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
        from opentelemetry.sdk.metrics import MeterProvider
        from opentelemetry.sdk.metrics.export import PeriodicExportingMetricReader
        from opentelemetry.sdk.resources import Resource
        from opentelemetry.sdk.trace import TracerProvider
        from opentelemetry.sdk.trace.export import BatchSpanProcessor
    except ImportError as exc:
        logger.warning("OpenTelemetry dependencies unavailable: %s", exc)
        return False

    global _tracer, _instrumentor
    resource = Resource.create(
        {"service.name": config.OTEL_SERVICE_NAME or "studio-mirror", "service.namespace": "studio_mirror"}
    )

    trace_provider = TracerProvider(resource=resource)
    trace_endpoint = _normalize_otlp_endpoint(config.OTEL_ENDPOINT, "/v1/traces")
    trace_provider.add_span_processor(BatchSpanProcessor(OTLPSpanExporter(endpoint=trace_endpoint or None)))
    trace.set_tracer_provider(trace_provider)

    metrics_endpoint = _normalize_otlp_endpoint(config.OTEL_ENDPOINT, "/v1/metrics")
    reader = PeriodicExportingMetricReader(OTLPMetricExporter(endpoint=metrics_endpoint or None))
    meter_provider = MeterProvider(resource=resource, metric_readers=[reader])
    metrics.set_meter_provider(meter_provider)

    meter = metrics.get_meter("studio_mirror")
    for key, (name, description) in _METRICS.items():
        if key == "refresh_latency":
            _otel[key] = meter.create_histogram(name, unit="ms", description=description)
        else:
            _otel[key] = meter.create_counter(name, unit="1", description=description)

    _tracer = trace.get_tracer("studio_mirror")
    _instrumentor = FastAPIInstrumentor()
    _providers.extend([meter_provider, trace_provider])
    return True


def _start_prometheus() -> None:
    try:
        from prometheus_client import Counter, Histogram, start_http_server

        start_http_server(config.PROM_PORT)
        labelnames = {
            "refresh": ["entity", "result", "project"],
            "refresh_latency": ["entity", "result", "project"],
            "upstream_failures": ["resource", "project"],
            "tag_decode_failures": ["project"],
        }
        for key, (name, description) in _METRICS.items():
            collector = Histogram if key == "refresh_latency" else Counter
            _prom[key] = collector(name, description, labelnames[key])
    except Exception as exc:  # noqa: BLE001
        logger.warning("Prometheus fallback not started: %s", exc)
        _prom.clear()
        return
    logger.info("Prometheus fallback metrics server listening on port %s", config.PROM_PORT)


def initialize(app: FastAPI | None = None) -> None:
    """Set up exporters once; later calls only instrument ``app``."""
    global _initialized, _enabled
    if _initialized:
        if _enabled and app is not None and _instrumentor is not None:
            _instrumentor.instrument_app(app)
        return
    _initialized = True

    if not config.OTEL_ENABLED:
        logger.info("OpenTelemetry disabled (STUDIO_MIRROR_OTEL_ENABLED=false)")
        return
    if not _start_otel():
        return
    _enabled = True

    if app is not None:
        _instrumentor.instrument_app(app)
    if config.PROM_PORT > 0:
        _start_prometheus()
    logger.info(
        "OpenTelemetry initialized (service=%s endpoint=%s)",
        config.OTEL_SERVICE_NAME,
        config.OTEL_ENDPOINT,
    )


def shutdown(app: FastAPI | None = None) -> None:
    global _enabled
    if not _initialized:
        return
    if app is not None and _instrumentor is not None:
        try:
            _instrumentor.uninstrument_app(app)
        except Exception as exc:  # noqa: BLE001
            logger.debug("FastAPI uninstrument failed: %s", exc)
    while _providers:
        provider = _providers.pop()
        try:
            provider.shutdown()
        except Exception as exc:  # noqa: BLE001
            logger.debug("Telemetry provider shutdown failed: %s", exc)
    _enabled = False


@contextmanager
def start_span(name: str, attributes: dict[str, Any] | None = None):
    if not _enabled or _tracer is None:
        yield None
        return
    with _tracer.start_as_current_span(name) as span:
        for key, value in (attributes or {}).items():
            if value is not None:
                span.set_attribute(key, value)
        yield span


def _emit(key: str, amount: float, otel_labels: dict[str, str], prom_labels: dict[str, str]) -> None:
    instrument = _otel.get(key) if _enabled else None
    if instrument is not None:
        if key == "refresh_latency":
            instrument.record(amount, otel_labels)
        else:
            instrument.add(amount, otel_labels)
    collector = _prom.get(key)
    if collector is not None:
        child = collector.labels(**prom_labels)
        if key == "refresh_latency":
            child.observe(amount)
        else:
            child.inc(amount)


def record_refresh(entity: str, result: str, duration_ms: float, *, project_id: str) -> None:
    labels = {
        "entity": entity or "unknown",
        "result": result or "unknown",
        "project_id": project_id or "unknown",
    }
    prom = _prom_labels(project_id=project_id, entity=entity, result=result)
    _emit("refresh", 1, labels, prom)
    _emit("refresh_latency", max(0.0, float(duration_ms)), labels, prom)


def record_upstream_failure(resource: str, *, project_id: str) -> None:
    labels = {"resource": resource or "unknown", "project_id": project_id or "unknown"}
    _emit("upstream_failures", 1, labels, _prom_labels(project_id=project_id, resource=resource))


def record_tag_decode_failure(*, project_id: str) -> None:
    _emit("tag_decode_failures", 1, {"project_id": project_id or "unknown"}, _prom_labels(project_id=project_id))
