from __future__ import annotations

from typing import Any

from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import SpanProcessor, TracerProvider
from opentelemetry.sdk.trace.export import (
    BatchSpanProcessor,
    ConsoleSpanExporter,
    SimpleSpanProcessor,
)
from opentelemetry.sdk.trace.export.in_memory_span_exporter import InMemorySpanExporter

from app.core.config import get_settings


SERVICE_NAME = "cross-sell-api"
CORRELATION_HEADERS = (b"x-correlation-id", b"x-request-id")

_provider: TracerProvider | None = None
_exporters_attached = False


def tracer_provider(service_name: str = SERVICE_NAME) -> TracerProvider:
    """Return the process-wide provider, registering it globally on first use."""
    global _provider

    if _provider is None:
        settings = get_settings()
        resource = Resource.create(
            {
                "service.name": service_name,
                "service.version": settings.app_version,
                "deployment.environment": settings.app_env,
            }
        )
        _provider = TracerProvider(resource=resource)
        trace.set_tracer_provider(_provider)
    return _provider


def _export_processors() -> list[SpanProcessor]:
    settings = get_settings()
    processors: list[SpanProcessor] = []
    if settings.otel_exporter_otlp_endpoint:
        processors.append(BatchSpanProcessor(OTLPSpanExporter(endpoint=settings.otel_exporter_otlp_endpoint)))
    if settings.otel_console_exporter:
        processors.append(SimpleSpanProcessor(ConsoleSpanExporter()))
    return processors


def setup_otel(service_name: str = SERVICE_NAME) -> TracerProvider:
    global _exporters_attached

    provider = tracer_provider(service_name)
    if not _exporters_attached:
        for processor in _export_processors():
            provider.add_span_processor(processor)
        _exporters_attached = True
    return provider


def setup_inmemory_otel(service_name: str = SERVICE_NAME) -> InMemorySpanExporter:
    exporter = InMemorySpanExporter()
    tracer_provider(service_name).add_span_processor(SimpleSpanProcessor(exporter))
    return exporter


def correlation_request_hook(span: Any, scope: dict[str, Any]) -> None:
    if span is None or not span.is_recording():
        return
    headers = dict(scope.get("headers", []))
    for header in CORRELATION_HEADERS:
        value = headers.get(header)
        if value:
            span.set_attribute("correlation_id", value.decode("latin-1"))
            return
