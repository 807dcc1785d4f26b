"""
Type definitions for the job queue.
Contains the persisted job record, enqueue options and worker registrations.
"""

from jobqueue.types.job import Job, JobOptions, utcnow
from jobqueue.types.worker import (
    JobHandler,
    LifecycleCallback,
    WorkerRegistration,
)

__all__ = [
    # Job types
    "Job",
    "JobOptions",
    "utcnow",
    # Worker types
    "JobHandler",
    "LifecycleCallback",
    "WorkerRegistration",
]
