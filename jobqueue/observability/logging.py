"""
Structured log output for processes embedding the queue.

Queue modules log through the standard library with `extra=` fields
(job_id, job_name, ...). setup_logging() routes those records through
structlog so they come out as JSON lines or a readable console format,
tagged with the active trace and any context bound for the current job.
"""

import logging
import sys
from typing import Any, TextIO

import structlog
from opentelemetry import trace

from jobqueue.config import Settings, get_settings

# Loggers that are chatty at INFO and below
_QUIET_LOGGERS = ("sqlalchemy.engine", "aiosqlite", "redis", "opentelemetry")


def add_trace_context(logger: Any, method_name: str, event_dict: dict[str, Any]) -> dict[str, Any]:
    """Attach the current span's trace and span ids, if a span is recording."""
    span = trace.get_current_span()
    if not span.is_recording():
        return event_dict

    span_context = span.get_span_context()
    event_dict.setdefault("trace_id", format(span_context.trace_id, "032x"))
    event_dict.setdefault("span_id", format(span_context.span_id, "016x"))
    return event_dict


def _build_renderer(log_format: str) -> Any:
    if log_format == "console":
        return structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty())
    return structlog.processors.JSONRenderer()


def setup_logging(settings: Settings | None = None, stream: TextIO | None = None) -> None:
    """
    Install structured logging on the root logger.

    Replaces any handlers already attached to the root logger.

    Args:
        settings: Optional settings. Uses the cached settings if not provided.
        stream: Output stream. Defaults to stdout.
    """
    settings = settings or get_settings()

    pre_chain: list[Any] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.stdlib.ExtraAdder(),
        add_trace_context,
    ]
    if settings.log_format != "console":
        pre_chain.append(structlog.processors.dict_tracebacks)

    structlog.configure(
        processors=[*pre_chain, structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        wrapper_class=structlog.stdlib.BoundLogger,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    handler = logging.StreamHandler(stream or sys.stdout)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            foreign_pre_chain=pre_chain,
            processors=[
                structlog.stdlib.ProcessorFormatter.remove_processors_meta,
                _build_renderer(settings.log_format),
            ],
        )
    )

    root = logging.getLogger()
    root.handlers = [handler]
    root.setLevel(getattr(logging, settings.log_level.upper(), logging.INFO))

    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """Get a structlog logger for host code that prefers key-value calls."""
    return structlog.get_logger(name)


def bind_context(**kwargs: Any) -> None:
    """
    Bind fields to every record logged from the current task.

    The scheduler binds job_id and job_name while a job is processed.
    """
    structlog.contextvars.bind_contextvars(**kwargs)
