"""
Pytest configuration and shared fixtures.

Backends run against lightweight in-process stand-ins:
- SQL -> SQLite file per test (via aiosqlite), or TEST_DATABASE_URL
- Redis -> fakeredis
"""

import os
from collections.abc import AsyncGenerator, Callable
from datetime import datetime, timedelta, timezone
from pathlib import Path
from uuid import uuid4

import pytest
import pytest_asyncio
from fakeredis.aioredis import FakeRedis

from jobqueue.config import Settings
from jobqueue.db import Database, SqlJobStore, create_engine
from jobqueue.scheduler import Queue
from jobqueue.storage import JobStore, MemoryJobStore, RedisJobStore
from jobqueue.types.job import Job

TEST_DATABASE_URL = os.getenv("TEST_DATABASE_URL")

BASE_TIME = datetime(2024, 1, 1, tzinfo=timezone.utc)


@pytest.fixture
def test_settings() -> Settings:
    """Create test settings."""
    return Settings(
        storage_backend="memory",
        log_level="DEBUG",
        log_format="console",
        execute_failed_jobs_on_start=False,
    )


@pytest_asyncio.fixture
async def memory_store() -> MemoryJobStore:
    """Create an empty in-memory store."""
    store = MemoryJobStore()
    await store.init()
    return store


def build_store(backend: str, tmp_path: Path) -> JobStore:
    """Build an uninitialized store for a backend name."""
    if backend == "sql":
        url = TEST_DATABASE_URL or f"sqlite+aiosqlite:///{tmp_path / 'jobs.db'}"
        return SqlJobStore(Database(create_engine(url)))
    if backend == "redis":
        return RedisJobStore(FakeRedis(decode_responses=True))
    return MemoryJobStore()


@pytest_asyncio.fixture(params=["memory", "sql", "redis"])
async def store(request: pytest.FixtureRequest, tmp_path: Path) -> AsyncGenerator[JobStore]:
    """Run a test once per storage backend, starting from an empty store."""
    store = build_store(request.param, tmp_path)
    await store.init()
    await store.delete_all()

    yield store

    await store.delete_all()
    await store.close()


@pytest.fixture
def job_factory() -> Callable[..., Job]:
    """
    Build jobs with deterministic creation times.

    The n-th job built by one factory is created n seconds after BASE_TIME,
    so FIFO order follows build order.
    """
    counter = iter(range(10_000))

    def make_job(name: str = "test-job", **fields) -> Job:
        fields.setdefault("id", uuid4().hex)
        fields.setdefault("created", BASE_TIME + timedelta(seconds=next(counter)))
        return Job(name=name, **fields)

    return make_job


@pytest_asyncio.fixture
async def queue(test_settings: Settings) -> AsyncGenerator[Queue]:
    """Create an initialized queue on an in-memory store."""
    queue = Queue(store_factory=MemoryJobStore, settings=test_settings)
    await queue.init()

    yield queue

    await queue.close()


@pytest_asyncio.fixture
async def backend_queue(store: JobStore, test_settings: Settings) -> Queue:
    """Create an initialized queue once per storage backend."""
    queue = Queue(store_factory=lambda: store, settings=test_settings)
    await queue.init()
    return queue
