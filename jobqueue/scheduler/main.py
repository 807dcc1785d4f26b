"""
Queue scheduler loop.

The queue selects eligible jobs from its store, dispatches them to the
registered handlers in batches, and records successes and failures
according to the job lifecycle:

    created (inactive) -> active (selected) -> deleted (success)
                                            -> inactive, retry (failure, attempts left)
                                            -> failed (failure, attempts exhausted)

Each batch holds jobs of a single name, capped at that worker's
concurrency. Batches never overlap: the loop waits for every job in a batch
to settle before selecting the next one.
"""

import asyncio
import json
import logging
import time
import uuid
from collections.abc import Callable, Mapping
from typing import Any

from pydantic import ValidationError as PydanticValidationError

from jobqueue.config import Settings, get_settings
from jobqueue.constants import (
    JOB_STATUS_FAILED,
    JOB_STATUS_RETRYING,
    JOB_STATUS_SUCCEEDED,
    SPAN_PROCESS_JOB,
    SPAN_SELECT_BATCH,
    LifecycleEvent,
    QueueStatus,
)
from jobqueue.exceptions import ExecutionError, StorageError, ValidationError
from jobqueue.observability.logging import bind_context
from jobqueue.observability.metrics import get_metrics
from jobqueue.observability.tracing import get_tracer
from jobqueue.storage import JobStore, create_store
from jobqueue.types.job import Job, JobOptions, utcnow
from jobqueue.types.worker import JobHandler
from jobqueue.worker.registry import WorkerRegistry

logger = logging.getLogger(__name__)


class Queue:
    """
    Job queue with a cooperative scheduler loop.

    Features:
    - Priority then FIFO selection, one job name per batch
    - Per-name concurrency limits
    - Per-job timeouts and attempt budgets with immediate retry
    - Optional lifespan for time-boxed runs
    - Start/stop state machine that never runs two loops at once
    """

    def __init__(
        self,
        store_factory: Callable[[], JobStore] | None = None,
        execute_failed_jobs_on_start: bool | None = None,
        settings: Settings | None = None,
    ):
        """
        Initialize the queue.

        Args:
            store_factory: Builds the store this queue owns. Defaults to the
                backend selected by settings.
            execute_failed_jobs_on_start: Clear failure marks on all stored
                jobs when the first job is created. Defaults to settings.
            settings: Optional settings. Uses the cached settings if not provided.
        """
        self._settings = settings or get_settings()
        self._store_factory = store_factory or (lambda: create_store(self._settings))
        self._store: JobStore | None = None

        self.registry = WorkerRegistry()
        self.status = QueueStatus.INACTIVE

        if execute_failed_jobs_on_start is None:
            execute_failed_jobs_on_start = self._settings.execute_failed_jobs_on_start
        self.execute_failed_jobs_on_start = execute_failed_jobs_on_start

        self._generation = 0
        self._loop_tasks: set[asyncio.Task] = set()
        self._metrics = get_metrics()

    @property
    def store(self) -> JobStore:
        """
        Get the store owned by this queue.

        Raises:
            RuntimeError: If the queue is not initialized.
        """
        if self._store is None:
            raise RuntimeError("Queue not initialized. Call init() first.")
        return self._store

    async def init(self) -> None:
        """Build and initialize the store. Safe to call more than once."""
        if self._store is None:
            self._store = self._store_factory()
            await self._store.init()

    async def close(self) -> None:
        """Stop the loop, wait for it to wind down, and release the store."""
        self.stop()
        await self.join()
        if self._store is not None:
            await self._store.close()
            self._store = None

    def add_worker(self, name: str, handler: JobHandler, **options: Any) -> None:
        """
        Register a handler for a job name.

        See WorkerRegistry.add_worker for the accepted options.
        """
        self.registry.add_worker(name, handler, **options)

    def remove_worker(self, name: str) -> None:
        """Unregister the handler for a job name."""
        self.registry.remove_worker(name)

    async def create_job(
        self,
        name: str,
        payload: Any = None,
        options: JobOptions | Mapping[str, Any] | None = None,
        auto_start: bool = True,
    ) -> str:
        """
        Create a job and add it to the queue.

        Args:
            name: Job name; the worker registered under it executes the job.
            payload: JSON-serializable data passed to the handler. A mapping
                with an "id" key supplies the job id.
            options: timeout (ms, 0 for none), attempts and priority.
            auto_start: Start processing if the queue is inactive.

        Returns:
            The job id.

        Raises:
            ValidationError: If the name, options or payload are invalid.
        """
        if not name:
            raise ValidationError("Job name must be supplied.")

        job_options = self._parse_options(options)

        if payload is None:
            payload = {}
        try:
            serialized = json.dumps(payload)
        except (TypeError, ValueError) as e:
            raise ValidationError(f"Job payload must be JSON serializable: {e}") from e

        if self.execute_failed_jobs_on_start:
            await self.store.reset_failed_jobs()
            self.execute_failed_jobs_on_start = False

        job_id = payload.get("id") if isinstance(payload, Mapping) else None

        job = Job(
            id=str(job_id or uuid.uuid4()),
            name=name,
            payload=serialized,
            priority=(
                job_options.priority
                if job_options.priority is not None
                else self._settings.default_job_priority
            ),
            # An explicit 0 still allows one attempt
            attempts=job_options.attempts or self._settings.default_job_attempts,
            timeout=(
                job_options.timeout
                if job_options.timeout is not None
                else self._settings.default_job_timeout_ms
            ),
            active=False,
            created=utcnow(),
            failed=None,
        )

        await self.store.create(job)

        self._metrics.record_job_created(job.name, job.priority)
        logger.info(
            "Created job",
            extra={"job_id": job.id, "job_name": name, "priority": job.priority}
        )

        if auto_start and self.status is QueueStatus.INACTIVE:
            generation = self._activate()
            task = asyncio.create_task(self._run(None, generation))
            self._loop_tasks.add(task)
            task.add_done_callback(self._on_loop_done)

        return job.id

    @staticmethod
    def _parse_options(options: JobOptions | Mapping[str, Any] | None) -> JobOptions:
        if options is None:
            return JobOptions()
        if isinstance(options, JobOptions):
            return options
        try:
            return JobOptions.model_validate(dict(options))
        except PydanticValidationError as e:
            raise ValidationError(f"Invalid job option: {e}") from e

    async def start(self, lifespan: int | None = None) -> bool:
        """
        Start processing the queue.

        Runs batches until no eligible job remains or stop() is called.
        With a lifespan, only jobs whose timeout is positive and at least
        500ms shorter than the remaining lifespan are selected, so jobs
        without a timeout never run under a lifespan.

        Args:
            lifespan: Optional run budget in milliseconds.

        Returns:
            False if the queue was already running, True once the loop exits.

        Raises:
            StorageError: If the store fails; raised after the current
                batch has settled.
        """
        if self.status is QueueStatus.ACTIVE:
            logger.debug("Queue already running")
            return False

        generation = self._activate()
        logger.info("Queue starting", extra={"lifespan_ms": lifespan})

        await self._run(lifespan, generation)

        logger.info("Queue stopped")
        return True

    def stop(self) -> None:
        """
        Stop processing the queue.

        Takes effect between batches; jobs already dispatched run to
        completion.
        """
        if self.status is QueueStatus.ACTIVE:
            logger.info("Queue stopping")
        self.status = QueueStatus.INACTIVE

    async def join(self) -> None:
        """Wait for loops started by create_job to finish."""
        while pending := [task for task in self._loop_tasks if not task.done()]:
            await asyncio.gather(*pending, return_exceptions=True)

    def _activate(self) -> int:
        self.status = QueueStatus.ACTIVE
        self._generation += 1
        return self._generation

    def _on_loop_done(self, task: asyncio.Task) -> None:
        self._loop_tasks.discard(task)
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.error("Queue loop failed", exc_info=error)

    async def _run(self, lifespan: int | None, generation: int) -> None:
        started = time.monotonic()

        try:
            while True:
                remaining = None
                if lifespan is not None:
                    remaining = lifespan - int((time.monotonic() - started) * 1000)

                batch = await self.select_batch(remaining)
                if not batch:
                    break

                await self._dispatch(batch)

                if self.status is not QueueStatus.ACTIVE or self._generation != generation:
                    break
        finally:
            # A newer loop may own the state after stop() and a restart
            if self._generation == generation:
                self.status = QueueStatus.INACTIVE

    async def _dispatch(self, batch: list[Job]) -> None:
        tasks = [asyncio.create_task(self.process_job(job)) for job in batch]

        # Wait for every job, even if some raise
        outcomes = await asyncio.gather(*tasks, return_exceptions=True)

        storage_error: StorageError | None = None
        for job, outcome in zip(batch, outcomes):
            if not isinstance(outcome, BaseException):
                continue
            logger.error(
                "Job processing raised",
                extra={"job_id": job.id, "job_name": job.name, "error": str(outcome)},
                exc_info=outcome,
            )
            if isinstance(outcome, StorageError) and storage_error is None:
                storage_error = outcome

        if storage_error is not None:
            raise storage_error

    async def select_batch(self, lifespan_remaining: int | None = None) -> list[Job]:
        """
        Select and activate the next batch of jobs.

        The batch holds jobs sharing the name of the highest priority, oldest
        eligible job, in selection order, capped at that worker's concurrency.
        Jobs whose name has no registered worker are never selected.

        Args:
            lifespan_remaining: Remaining lifespan in ms, if running with one.

        Returns:
            The selected jobs, already marked active. Empty if none are eligible.
        """
        timeout_upper_bound = None
        if lifespan_remaining is not None:
            timeout_upper_bound = lifespan_remaining - (self._settings.lifespan_buffer_ms - 1)

        with get_tracer().start_as_current_span(SPAN_SELECT_BATCH) as span:
            jobs = await self.store.find_next_jobs(timeout_upper_bound)
            jobs = [job for job in jobs if self.registry.has_worker(job.name)]

            if not jobs:
                return []

            name = jobs[0].name
            concurrency = self.registry.get_concurrency(name)
            batch = [job for job in jobs if job.name == name][:concurrency]

            await self.store.mark_active(batch)

            span.set_attribute("job_name", name)
            span.set_attribute("batch_size", len(batch))

        self._metrics.record_batch(name, len(batch))
        logger.debug(
            "Selected batch",
            extra={"job_name": name, "batch_size": len(batch), "concurrency": concurrency}
        )

        return batch

    async def process_job(self, job: Job) -> None:
        """
        Process a job.

        Lifecycle callbacks fire as appropriate. The job is deleted on
        success. On failure its error is appended to job.errors and it goes
        back to inactive; once failed_attempts reaches attempts it is also
        marked failed and never retried. An on_start callback that raises
        counts as a failed attempt and the handler is not called, as does a
        payload that cannot be decoded (callbacks then receive None).

        Args:
            job: The job to process. Must already be marked active.
        """
        # Snapshot before the record is deleted or merged
        job_id = job.id
        job_name = job.name
        payload: Any = None

        # Dispatched jobs each run in their own task context
        bind_context(job_id=job_id, job_name=job_name)

        start_time = time.perf_counter()

        try:
            payload = job.load_payload()

            await self.registry.execute_job_lifecycle_callback(
                LifecycleEvent.START, job_name, job_id, payload
            )

            with get_tracer().start_as_current_span(SPAN_PROCESS_JOB) as span:
                span.set_attribute("job_id", job_id)
                span.set_attribute("job_name", job_name)
                span.set_attribute("attempt", job.failed_attempts + 1)

                result = await self.registry.execute_job(job)
        except ExecutionError as e:
            await self._fail_job(job, e, payload, time.perf_counter() - start_time)
            return

        await self.store.delete(job)

        duration = time.perf_counter() - start_time
        self._metrics.record_job_completed(job_name, JOB_STATUS_SUCCEEDED, duration)
        logger.info(
            "Job completed successfully",
            extra={"job_id": job_id, "job_name": job_name, "duration": f"{duration:.3f}s"}
        )

        await self.registry.execute_job_lifecycle_callback(
            LifecycleEvent.SUCCESS, job_name, job_id, payload, result
        )
        await self.registry.execute_job_lifecycle_callback(
            LifecycleEvent.COMPLETE, job_name, job_id, payload, result
        )

    async def _fail_job(
        self,
        job: Job,
        error: ExecutionError,
        payload: Any,
        duration: float,
    ) -> None:
        failed_attempts = job.failed_attempts + 1
        changes: dict[str, Any] = {
            "active": False,
            "failed_attempts": failed_attempts,
            "errors": [*job.errors, str(error)],
        }

        exhausted = failed_attempts >= job.attempts
        if exhausted:
            changes["failed"] = utcnow()

        await self.store.merge(job, changes)

        status = JOB_STATUS_FAILED if exhausted else JOB_STATUS_RETRYING
        self._metrics.record_job_completed(job.name, status, duration)
        logger.warning(
            "Job failed",
            extra={
                "job_id": job.id,
                "job_name": job.name,
                "error": str(error),
                "attempt": failed_attempts,
                "will_retry": not exhausted,
            }
        )

        await self.registry.execute_job_lifecycle_callback(
            LifecycleEvent.FAILURE, job.name, job.id, payload
        )

        if exhausted:
            await self.registry.execute_job_lifecycle_callback(
                LifecycleEvent.FAILED, job.name, job.id, payload
            )
            await self.registry.execute_job_lifecycle_callback(
                LifecycleEvent.COMPLETE, job.name, job.id, payload
            )

    async def get_jobs(self, sync: bool = True) -> list[Job]:
        """
        Get all jobs in the queue.

        Args:
            sync: Request data that reflects every completed write.
        """
        return await self.store.objects(sync)

    async def flush_queue(self, name: str | None = None) -> None:
        """
        Delete jobs from the queue.

        Args:
            name: Only delete jobs with this name. Deletes every job if omitted.
        """
        if name:
            await self.store.delete_by_name(name)
        else:
            await self.store.delete_all()

        logger.info("Flushed queue", extra={"job_name": name})


async def queue_factory(
    store_factory: Callable[[], JobStore] | None = None,
    execute_failed_jobs_on_start: bool | None = None,
    settings: Settings | None = None,
) -> Queue:
    """
    Create and initialize a queue.

    Args:
        store_factory: Builds the store the queue owns.
        execute_failed_jobs_on_start: Clear failure marks when the first job
            is created.
        settings: Optional settings.

    Returns:
        An initialized Queue.
    """
    queue = Queue(store_factory, execute_failed_jobs_on_start, settings)
    await queue.init()
    return queue
