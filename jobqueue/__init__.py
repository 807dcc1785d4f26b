"""
Embeddable Job Queue

An asyncio job queue engine: register named handlers, enqueue jobs with
priorities, timeouts and attempt budgets, and let the scheduler loop run
them in per-name batches with bounded concurrency and automatic retries.
"""

__version__ = "1.0.0"

from jobqueue.constants import LifecycleEvent, QueueStatus
from jobqueue.exceptions import (
    ExecutionError,
    JobTimeoutError,
    QueueError,
    StorageError,
    ValidationError,
)
from jobqueue.scheduler import Queue, queue_factory
from jobqueue.storage import (
    JobStore,
    MemoryJobStore,
    RedisJobStore,
    SqlJobStore,
    create_store,
)
from jobqueue.types import Job, JobOptions

__all__ = [
    "Queue",
    "queue_factory",
    "Job",
    "JobOptions",
    "JobStore",
    "MemoryJobStore",
    "RedisJobStore",
    "SqlJobStore",
    "create_store",
    "LifecycleEvent",
    "QueueStatus",
    "QueueError",
    "ValidationError",
    "ExecutionError",
    "JobTimeoutError",
    "StorageError",
]
