"""
Exception hierarchy for the job queue.
"""


class QueueError(Exception):
    """Base class for all job queue errors."""


class ValidationError(QueueError):
    """Invalid arguments passed to create_job or add_worker."""


class ExecutionError(QueueError):
    """A job handler or its on_start callback raised, or the job has no worker."""


class JobTimeoutError(ExecutionError):
    """A job handler did not settle within the job's timeout."""

    def __init__(self, job_id: str, timeout_ms: int):
        self.job_id = job_id
        self.timeout_ms = timeout_ms
        super().__init__(f"TIMEOUT: Job id: {job_id} timed out in {timeout_ms}ms.")


class StorageError(QueueError):
    """A storage backend operation failed."""
