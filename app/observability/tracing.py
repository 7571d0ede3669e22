"""
Distributed Tracing with OpenTelemetry.

Provides request tracing across the API and its database.
"""

from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any

from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from opentelemetry.instrumentation.sqlalchemy import SQLAlchemyInstrumentor
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor
from opentelemetry.sdk.trace.sampling import TraceIdRatioBased
from opentelemetry.trace import Span, Status, StatusCode

from app.config import settings


def setup_tracing() -> None:
    """
    Configure OpenTelemetry tracing with OTLP export.

    Sets up a TracerProvider carrying the service resource, sampled at
    trace_sample_rate, exporting in batches to the collector.
    """
    if not settings.tracing_enabled:
        return

    resource = Resource.create(
        {
            "service.name": settings.service_name,
            "service.version": settings.api_version,
        }
    )
    provider = TracerProvider(
        resource=resource,
        sampler=TraceIdRatioBased(settings.trace_sample_rate),
    )
    provider.add_span_processor(
        BatchSpanProcessor(
            OTLPSpanExporter(endpoint=settings.otlp_endpoint, insecure=settings.otlp_insecure)
        )
    )
    trace.set_tracer_provider(provider)


def instrument_fastapi(app: Any) -> None:
    """Instrument a FastAPI application. Must be called after app creation."""
    if not settings.tracing_enabled:
        return
    FastAPIInstrumentor.instrument_app(app)


def instrument_sqlalchemy(engine: Any) -> None:
    """Instrument an async engine so each query becomes a span."""
    if not settings.tracing_enabled:
        return
    SQLAlchemyInstrumentor().instrument(engine=engine.sync_engine)


def set_span_error(span: Span, error: BaseException) -> None:
    """Mark span as error and record exception."""
    span.set_status(Status(StatusCode.ERROR, str(error)))
    span.record_exception(error)


@contextmanager
def trace_operation(operation_name: str, **attributes: Any) -> Iterator[Span]:
    """
    Run a block inside a named span.

    Usage:
        with trace_operation("token_cleanup", dry_run=False) as span:
            result = await tokens.cleanup_expired()
            span.set_attribute("deleted", result.deleted)
    """
    tracer = trace.get_tracer("app.operations")
    with tracer.start_as_current_span(operation_name, record_exception=False) as span:
        for key, value in attributes.items():
            if value is None:
                continue
            span.set_attribute(
                key, value if isinstance(value, (str, int, float, bool)) else str(value)
            )
        try:
            yield span
        except Exception as e:
            set_span_error(span, e)
            raise
