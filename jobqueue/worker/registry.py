"""
Worker registry and job execution.

Maps job names to handler functions, their concurrency limit and lifecycle
callbacks, and runs a job's handler with timeout enforcement.

Handlers are called as handler(job_id, payload) and may be plain functions
or coroutine functions. A timeout only bounds asynchronous handlers; the
engine stops waiting when it expires but never cancels the handler, so a
handler should be safe to keep running in the background.
"""

import asyncio
import inspect
import logging
from typing import Any

from jobqueue.constants import (
    DEFAULT_WORKER_CONCURRENCY,
    RESULT_EVENTS,
    LifecycleEvent,
)
from jobqueue.exceptions import ExecutionError, JobTimeoutError, ValidationError
from jobqueue.types.job import Job
from jobqueue.types.worker import JobHandler, LifecycleCallback, WorkerRegistration

logger = logging.getLogger(__name__)


def _discard_late_result(task: asyncio.Future) -> None:
    """Consume the outcome of a handler that outlived its timeout."""
    if task.cancelled():
        return
    error = task.exception()
    if error is not None:
        logger.debug(
            "Timed out handler raised after its timeout",
            extra={"error": str(error)}
        )


class WorkerRegistry:
    """
    Registry of job handlers for one queue.

    Re-registering a name replaces the previous registration.
    """

    def __init__(self) -> None:
        self._workers: dict[str, WorkerRegistration] = {}

    def add_worker(
        self,
        name: str,
        handler: JobHandler,
        *,
        concurrency: int = DEFAULT_WORKER_CONCURRENCY,
        on_start: LifecycleCallback | None = None,
        on_success: LifecycleCallback | None = None,
        on_failure: LifecycleCallback | None = None,
        on_failed: LifecycleCallback | None = None,
        on_complete: LifecycleCallback | None = None,
    ) -> None:
        """
        Register a handler for a job name.

        Args:
            name: Job name this handler processes.
            handler: Callable invoked as handler(job_id, payload).
            concurrency: Maximum jobs of this name dispatched per batch.
            on_start: Called before the handler runs.
            on_success: Called with the result after a successful run.
            on_failure: Called after every failed attempt.
            on_failed: Called once the attempt budget is exhausted.
            on_complete: Called after success or terminal failure.

        Raises:
            ValidationError: If the name is empty or concurrency is below 1.
        """
        if not name:
            raise ValidationError("Worker name must be supplied.")
        if concurrency < 1:
            raise ValidationError("Worker concurrency must be at least 1.")

        callbacks = {
            LifecycleEvent.START: on_start,
            LifecycleEvent.SUCCESS: on_success,
            LifecycleEvent.FAILURE: on_failure,
            LifecycleEvent.FAILED: on_failed,
            LifecycleEvent.COMPLETE: on_complete,
        }

        self._workers[name] = WorkerRegistration(
            name=name,
            handler=handler,
            concurrency=concurrency,
            callbacks={event: cb for event, cb in callbacks.items() if cb is not None},
        )
        logger.info(
            "Registered worker",
            extra={"job_name": name, "concurrency": concurrency}
        )

    def remove_worker(self, name: str) -> None:
        """Unregister the handler for a job name, if any."""
        if self._workers.pop(name, None) is not None:
            logger.info("Removed worker", extra={"job_name": name})

    def has_worker(self, name: str) -> bool:
        """Check if a handler is registered for a job name."""
        return name in self._workers

    def list_workers(self) -> list[str]:
        """List all registered job names."""
        return list(self._workers.keys())

    def get_concurrency(self, name: str) -> int:
        """
        Get the concurrency limit for a job name.

        Returns:
            The configured concurrency, or 1 if the name is not registered.
        """
        registration = self._workers.get(name)
        if registration is None:
            return DEFAULT_WORKER_CONCURRENCY
        return registration.concurrency

    async def execute_job(self, job: Job) -> Any:
        """
        Run the handler registered for a job.

        Args:
            job: The job to execute.

        Returns:
            Whatever the handler returned.

        Raises:
            JobTimeoutError: If an asynchronous handler outlives job.timeout.
            ExecutionError: If the handler raised or no worker is registered.
        """
        registration = self._workers.get(job.name)
        if registration is None:
            raise ExecutionError(f"Job {job.name} does not have a worker assigned to it.")

        try:
            payload = job.load_payload()
            outcome = registration.handler(job.id, payload)
            if not inspect.isawaitable(outcome):
                return outcome
            if job.timeout > 0:
                return await self._run_with_timeout(job, outcome)
            return await outcome
        except ExecutionError:
            raise
        except Exception as e:
            raise ExecutionError(str(e) or type(e).__name__) from e

    async def _run_with_timeout(self, job: Job, outcome: Any) -> Any:
        task = asyncio.ensure_future(outcome)
        done, _ = await asyncio.wait({task}, timeout=job.timeout / 1000)

        if task not in done:
            task.add_done_callback(_discard_late_result)
            logger.warning(
                "Job timed out",
                extra={"job_id": job.id, "job_name": job.name, "timeout_ms": job.timeout}
            )
            raise JobTimeoutError(job.id, job.timeout)

        return task.result()

    async def execute_job_lifecycle_callback(
        self,
        event: LifecycleEvent,
        name: str,
        job_id: str,
        payload: Any,
        result: Any = None,
    ) -> None:
        """
        Invoke the callback registered for a lifecycle event.

        Does nothing if the worker or callback is absent. Exceptions raised
        by an on_start callback fail the job like a handler error; those of
        every other callback are logged and never propagate.

        Args:
            event: The lifecycle event.
            name: Job name whose registration holds the callback.
            job_id: Id of the job.
            payload: Decoded job payload.
            result: Handler result, passed to success and complete callbacks.

        Raises:
            ExecutionError: If the on_start callback raised.
        """
        registration = self._workers.get(name)
        if registration is None:
            return

        callback = registration.get_callback(event)
        if callback is None:
            return

        args: tuple[Any, ...] = (job_id, payload)
        if event in RESULT_EVENTS:
            args = (*args, result)

        try:
            outcome = callback(*args)
            if inspect.isawaitable(outcome):
                await outcome
        except Exception as e:
            if event is LifecycleEvent.START:
                raise ExecutionError(str(e) or type(e).__name__) from e
            logger.exception(
                "Lifecycle callback raised exception",
                extra={"job_id": job_id, "job_name": name, "event": event.value}
            )
