"""OpenTelemetry tracing setup and context propagation."""

from __future__ import annotations

import os

import structlog
from opentelemetry import propagate, trace
from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor

from .config import TracingSettings
from .types import TraceContextCarrier

logger = structlog.get_logger(__name__)

_provider: TracerProvider | None = None


def setup_tracing(settings: TracingSettings) -> bool:
    """Install an OTLP-exporting tracer provider.

    Pipeline cycles and AI calls open spans through the global tracer
    provider; without this they are no-ops.

    Returns:
        True if tracing was configured, False otherwise.
    """
    global _provider
    if not settings.enabled:
        logger.info("tracing_disabled")
        return False

    exporter_name = os.getenv("OTEL_TRACES_EXPORTER", "otlp").lower()
    if exporter_name in {"none", ""}:
        logger.info("tracing_exporter_disabled")
        return False

    if _provider is not None:
        return True

    if settings.endpoint:
        exporter = OTLPSpanExporter(endpoint=settings.endpoint)
    else:
        exporter = OTLPSpanExporter()
    provider = TracerProvider(resource=Resource.create({"service.name": settings.service_name}))
    provider.add_span_processor(BatchSpanProcessor(exporter))
    trace.set_tracer_provider(provider)
    _provider = provider
    logger.info(
        "tracing_configured",
        exporter=exporter_name,
        service_name=settings.service_name,
        endpoint=settings.endpoint,
    )
    return True


def shutdown_tracing() -> None:
    """Flush and shut down the provider installed by ``setup_tracing``."""
    global _provider
    if _provider is None:
        return
    _provider.shutdown()
    _provider = None
    logger.info("tracing_shutdown")


def trace_headers() -> TraceContextCarrier:
    """Current trace context as HTTP headers for outgoing requests."""
    carrier: TraceContextCarrier = {}
    propagate.inject(carrier)
    return carrier
