"""
Queue configuration using Pydantic Settings.
Loads configuration from environment variables with sensible defaults.
"""

from functools import lru_cache
from typing import Literal

from pydantic_settings import BaseSettings, SettingsConfigDict

from jobqueue.constants import (
    DEFAULT_JOB_ATTEMPTS,
    DEFAULT_JOB_PRIORITY,
    DEFAULT_JOB_TIMEOUT_MS,
    JOB_KEY_PREFIX,
    LIFESPAN_BUFFER_MS,
)


class Settings(BaseSettings):
    """Queue settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="JOBQUEUE_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Storage
    storage_backend: Literal["memory", "redis", "sql"] = "memory"
    database_url: str = "sqlite+aiosqlite:///./jobqueue.db"
    database_pool_size: int = 10
    database_max_overflow: int = 20
    redis_url: str = "redis://localhost:6379/0"
    job_key_prefix: str = JOB_KEY_PREFIX

    # Job defaults
    default_job_timeout_ms: int = DEFAULT_JOB_TIMEOUT_MS
    default_job_attempts: int = DEFAULT_JOB_ATTEMPTS
    default_job_priority: int = DEFAULT_JOB_PRIORITY

    # Scheduler
    lifespan_buffer_ms: int = LIFESPAN_BUFFER_MS
    execute_failed_jobs_on_start: bool = False

    # Observability
    otel_exporter_otlp_endpoint: str | None = None
    otel_service_name: str = "jobqueue"
    log_level: str = "INFO"
    log_format: str = "json"  # json or console


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
