"""
Queue constants.
Centralized location for all constant values used across the engine.
"""

from enum import StrEnum


class QueueStatus(StrEnum):
    """
    Scheduler loop states.

    State transitions:
    - INACTIVE -> ACTIVE (start() or create_job() with auto start)
    - ACTIVE -> INACTIVE (no eligible jobs left, or stop() observed between batches)
    """

    INACTIVE = "inactive"
    ACTIVE = "active"


class LifecycleEvent(StrEnum):
    """Points in a job's execution where worker callbacks fire."""

    START = "on_start"
    SUCCESS = "on_success"
    FAILURE = "on_failure"
    FAILED = "on_failed"
    COMPLETE = "on_complete"


# Events whose callbacks receive the handler result as a third argument
RESULT_EVENTS: frozenset[LifecycleEvent] = frozenset(
    {LifecycleEvent.SUCCESS, LifecycleEvent.COMPLETE}
)

# Default values
DEFAULT_JOB_TIMEOUT_MS = 25000
DEFAULT_JOB_ATTEMPTS = 1
DEFAULT_JOB_PRIORITY = 0
DEFAULT_WORKER_CONCURRENCY = 1

# Only jobs whose timeout is at least this much shorter than the remaining
# lifespan are selected while the queue runs with a lifespan
LIFESPAN_BUFFER_MS = 500

# Storage key prefix for key-value backends
JOB_KEY_PREFIX = "@queue:Job-"

# Job completion statuses reported to metrics
JOB_STATUS_SUCCEEDED = "succeeded"
JOB_STATUS_RETRYING = "retrying"
JOB_STATUS_FAILED = "failed"

# Metrics names
METRIC_JOBS_CREATED = "jobqueue_jobs_created_total"
METRIC_JOBS_COMPLETED = "jobqueue_jobs_completed_total"
METRIC_JOB_DURATION = "jobqueue_job_duration_seconds"
METRIC_BATCHES_DISPATCHED = "jobqueue_batches_dispatched_total"
METRIC_BATCH_SIZE = "jobqueue_batch_size"

# Trace span names
SPAN_SELECT_BATCH = "select_batch"
SPAN_PROCESS_JOB = "process_job"
