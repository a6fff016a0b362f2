"""
Distributed Tracing with OpenTelemetry.

Off unless TRACING_ENABLED is set. When on, spans cover inbound HTTP
requests (health and metrics scrapes excluded), SQL statements, credit
consumption and the upstream completion call, exported over OTLP/gRPC.
"""

from typing import Any

from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from opentelemetry.instrumentation.sqlalchemy import SQLAlchemyInstrumentor
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor
from opentelemetry.trace import Span, Status, StatusCode, Tracer

from creditgate.config import settings

UNTRACED_URLS = "health,metrics"

_provider: TracerProvider | None = None


def setup_tracing() -> None:
    """Install the global tracer provider with a batching OTLP exporter."""
    global _provider
    if not settings.tracing_enabled or _provider is not None:
        return

    _provider = TracerProvider(
        resource=Resource.create(
            {
                "service.name": settings.service_name,
                "service.version": settings.api_version,
                "deployment.environment": settings.paypal_mode,
            }
        )
    )
    _provider.add_span_processor(
        BatchSpanProcessor(
            OTLPSpanExporter(endpoint=settings.otlp_endpoint, insecure=settings.otlp_insecure)
        )
    )
    trace.set_tracer_provider(_provider)


def shutdown_tracing() -> None:
    """Flush buffered spans; called on application shutdown."""
    global _provider
    if _provider is None:
        return
    _provider.shutdown()
    _provider = None


def instrument_fastapi(app: Any) -> None:
    if not settings.tracing_enabled:
        return
    FastAPIInstrumentor.instrument_app(app, excluded_urls=UNTRACED_URLS)


def instrument_sqlalchemy(engine: Any) -> None:
    """Trace statements issued through an async engine."""
    if not settings.tracing_enabled:
        return
    SQLAlchemyInstrumentor().instrument(engine=engine.sync_engine)


def get_tracer(name: str) -> Tracer:
    """
    Tracer for manual spans; a no-op tracer while tracing is off.

    Usage:
        tracer = get_tracer(__name__)
        with tracer.start_as_current_span("consume_one_credit") as span:
            add_span_attributes(span, device_id=device_id)
    """
    return trace.get_tracer(name)


def add_span_attributes(span: Span, **attributes: Any) -> None:
    """Set attributes, skipping None and stringifying anything non-primitive."""
    for key, value in attributes.items():
        if value is None:
            continue
        span.set_attribute(key, value if isinstance(value, (str, int, float, bool)) else str(value))


def set_span_error(span: Span, error: Exception) -> None:
    span.set_status(Status(StatusCode.ERROR, str(error)))
    span.record_exception(error)
