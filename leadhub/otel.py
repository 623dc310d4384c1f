"""Tracing bootstrap for the API process.

A single ``TracerProvider`` is installed globally the first time anything asks
for one. Exporters are attached from ``Settings``: OTLP over HTTP when an
endpoint is configured, the console exporter for local debugging, and an
in-memory exporter that tests attach on demand.
"""

from __future__ import annotations

from typing import Any

from fastapi import FastAPI
from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor, ConsoleSpanExporter, SimpleSpanProcessor
from opentelemetry.sdk.trace.export.in_memory_span_exporter import InMemorySpanExporter

from leadhub.core.config import Settings, get_settings
from leadhub.metrics import resolve_route_group


_provider: TracerProvider | None = None
_exporters_attached = False


def build_resource(settings: Settings) -> Resource:
    return Resource.create(
        {
            "service.name": settings.otel_service_name,
            "service.version": settings.app_version,
            "deployment.environment": settings.app_env,
        }
    )


def get_tracer_provider() -> TracerProvider:
    global _provider

    if _provider is None:
        _provider = TracerProvider(resource=build_resource(get_settings()))
        trace.set_tracer_provider(_provider)
    return _provider


def configure_tracing(settings: Settings) -> TracerProvider | None:
    """Attach the configured exporters once; returns None when tracing is switched off."""

    global _exporters_attached

    if not settings.otel_enabled:
        return None

    provider = get_tracer_provider()
    if _exporters_attached:
        return provider

    if settings.otel_exporter_otlp_endpoint:
        provider.add_span_processor(BatchSpanProcessor(OTLPSpanExporter(endpoint=settings.otel_exporter_otlp_endpoint)))
    if settings.otel_console_exporter:
        provider.add_span_processor(SimpleSpanProcessor(ConsoleSpanExporter()))

    _exporters_attached = True
    return provider


def setup_inmemory_otel() -> InMemorySpanExporter:
    exporter = InMemorySpanExporter()
    get_tracer_provider().add_span_processor(SimpleSpanProcessor(exporter))
    return exporter


def get_tracer(name: str) -> trace.Tracer:
    return trace.get_tracer(name)


def server_request_hook(span: Any, scope: dict[str, Any]) -> None:
    if span is None or not span.is_recording():
        return
    span.set_attribute("leadhub.route_group", resolve_route_group(scope.get("path", "")))


def instrument_app(app: FastAPI) -> None:
    if getattr(app, "_is_instrumented_by_opentelemetry", False):
        return
    FastAPIInstrumentor().instrument_app(app, server_request_hook=server_request_hook, excluded_urls="health,metrics")
