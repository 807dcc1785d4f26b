"""
Storage module.
Contains the JobStore contract, its backends, and the store factory.
"""

from jobqueue.storage.base import JobStore, order_next_jobs
from jobqueue.storage.memory import MemoryJobStore
from jobqueue.storage.redis import RedisJobStore
from jobqueue.config import Settings, get_settings
from jobqueue.db import Database, SqlJobStore, create_engine
from jobqueue.observability.tracing import instrument_sqlalchemy


def create_store(settings: Settings | None = None) -> JobStore:
    """
    Build the job store selected by configuration.

    Each call returns a new store with its own connection handle.

    Args:
        settings: Optional settings. Uses the cached settings if not provided.

    Returns:
        JobStore: An uninitialized store; the queue calls init() on it.
    """
    settings = settings or get_settings()

    if settings.storage_backend == "redis":
        return RedisJobStore.from_url(settings.redis_url, settings.job_key_prefix)

    if settings.storage_backend == "sql":
        engine = create_engine(
            settings.database_url,
            pool_size=settings.database_pool_size,
            max_overflow=settings.database_max_overflow,
            echo=settings.log_level == "DEBUG",
        )
        if settings.otel_exporter_otlp_endpoint:
            instrument_sqlalchemy(engine.sync_engine)
        return SqlJobStore(Database(engine))

    return MemoryJobStore(settings.job_key_prefix)


__all__ = [
    "JobStore",
    "order_next_jobs",
    "MemoryJobStore",
    "RedisJobStore",
    "SqlJobStore",
    "create_store",
]
