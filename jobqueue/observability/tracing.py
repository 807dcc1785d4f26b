"""
OpenTelemetry tracing for the scheduler.

The queue opens a span per selected batch and per processed job. Without
setup_tracing() those spans go to whatever provider the host installed, or
nowhere.
"""

import logging
from typing import Any

from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
from opentelemetry.instrumentation.sqlalchemy import SQLAlchemyInstrumentor
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor, ConsoleSpanExporter, SpanExporter
from opentelemetry.trace import Tracer

from jobqueue import __version__
from jobqueue.config import Settings, get_settings

logger = logging.getLogger(__name__)

# Tracer installed by setup_tracing()
_tracer: Tracer | None = None


def setup_tracing(
    settings: Settings | None = None,
    enable_console_export: bool = False,
) -> Tracer:
    """
    Install a tracer provider for the queue's spans.

    Spans are exported over OTLP/gRPC only when
    `otel_exporter_otlp_endpoint` is set.

    Args:
        settings: Optional settings. Uses the cached settings if not provided.
        enable_console_export: Also print finished spans to stdout.

    Returns:
        Tracer: The queue's tracer.
    """
    global _tracer

    settings = settings or get_settings()

    exporters: list[SpanExporter] = []
    if settings.otel_exporter_otlp_endpoint:
        exporters.append(
            OTLPSpanExporter(endpoint=settings.otel_exporter_otlp_endpoint, insecure=True)
        )
    if enable_console_export:
        exporters.append(ConsoleSpanExporter())

    provider = TracerProvider(
        resource=Resource.create(
            {
                "service.name": settings.otel_service_name,
                "service.version": __version__,
            }
        )
    )
    for exporter in exporters:
        provider.add_span_processor(BatchSpanProcessor(exporter))

    trace.set_tracer_provider(provider)
    _tracer = trace.get_tracer("jobqueue", __version__)

    logger.info(
        "Tracing configured",
        extra={"otlp_endpoint": settings.otel_exporter_otlp_endpoint}
    )
    return _tracer


def instrument_sqlalchemy(engine: Any) -> None:
    """
    Emit spans for statements run by the SQL job store.

    The instrumentor is process-wide; only the first engine passed here is
    instrumented.

    Args:
        engine: A sync engine (`AsyncEngine.sync_engine` for async engines).
    """
    instrumentor = SQLAlchemyInstrumentor()
    if instrumentor.is_instrumented_by_opentelemetry:
        logger.debug("SQLAlchemy already instrumented")
        return
    instrumentor.instrument(engine=engine)


def get_tracer() -> Tracer:
    """
    Get the queue's tracer.

    Before setup_tracing() this is a tracer from the global provider, a
    no-op unless the host application configured one.
    """
    if _tracer is None:
        return trace.get_tracer("jobqueue", __version__)
    return _tracer
