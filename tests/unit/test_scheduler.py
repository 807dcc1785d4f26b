"""
Unit tests for the queue scheduler loop.
"""

import asyncio
from collections.abc import Callable

import pytest

from jobqueue.config import Settings
from jobqueue.constants import QueueStatus
from jobqueue.exceptions import StorageError, ValidationError
from jobqueue.scheduler import Queue, queue_factory
from jobqueue.storage import MemoryJobStore
from jobqueue.types.job import Job, JobOptions, utcnow


async def get_job(queue: Queue, job_id: str) -> Job | None:
    for job in await queue.get_jobs():
        if job.id == job_id:
            return job
    return None


class TestCreateJob:
    """Tests for job creation."""

    @pytest.mark.asyncio
    async def test_defaults(self, queue: Queue):
        """Test default priority, attempts and timeout."""
        job_id = await queue.create_job("echo", {"a": 1}, auto_start=False)

        job = await get_job(queue, job_id)
        assert job is not None
        assert job.name == "echo"
        assert job.load_payload() == {"a": 1}
        assert job.priority == 0
        assert job.attempts == 1
        assert job.timeout == 25000
        assert job.active is False
        assert job.failed is None
        assert job.failed_attempts == 0
        assert job.errors == []

    @pytest.mark.asyncio
    async def test_explicit_options(self, queue: Queue):
        """Test that explicit options are honored, including timeout 0."""
        job_id = await queue.create_job(
            "echo",
            options={"timeout": 0, "attempts": 3, "priority": -2},
            auto_start=False,
        )

        job = await get_job(queue, job_id)
        assert job.timeout == 0
        assert job.attempts == 3
        assert job.priority == -2

    @pytest.mark.asyncio
    async def test_options_model(self, queue: Queue):
        """Test passing a JobOptions instance."""
        job_id = await queue.create_job(
            "echo", options=JobOptions(priority=5), auto_start=False
        )

        assert (await get_job(queue, job_id)).priority == 5

    @pytest.mark.asyncio
    async def test_zero_attempts_allows_one(self, queue: Queue):
        """Test that attempts=0 still allows a single attempt."""
        job_id = await queue.create_job("echo", options={"attempts": 0}, auto_start=False)

        assert (await get_job(queue, job_id)).attempts == 1

    @pytest.mark.asyncio
    async def test_payload_id_used_as_job_id(self, queue: Queue):
        """Test that a payload id becomes the job id."""
        job_id = await queue.create_job("echo", {"id": "custom-id"}, auto_start=False)

        assert job_id == "custom-id"
        assert (await get_job(queue, "custom-id")) is not None

    @pytest.mark.asyncio
    async def test_generated_ids_unique(self, queue: Queue):
        """Test generated ids."""
        first = await queue.create_job("echo", auto_start=False)
        second = await queue.create_job("echo", auto_start=False)

        assert first != second

    @pytest.mark.parametrize(
        "name,options",
        [
            ("", None),
            (None, None),
            ("echo", {"timeout": -1}),
            ("echo", {"attempts": -1}),
        ],
    )
    @pytest.mark.asyncio
    async def test_validation(self, queue: Queue, name, options):
        """Test that invalid arguments are rejected and nothing is stored."""
        with pytest.raises(ValidationError):
            await queue.create_job(name, {}, options, auto_start=False)

        assert await queue.get_jobs() == []

    @pytest.mark.asyncio
    async def test_unserializable_payload(self, queue: Queue):
        """Test that a payload must be JSON serializable."""
        with pytest.raises(ValidationError):
            await queue.create_job("echo", {"when": object()}, auto_start=False)

    @pytest.mark.asyncio
    async def test_auto_start(self, queue: Queue):
        """Test that creating a job starts the queue."""
        processed = []
        queue.add_worker("echo", lambda job_id, payload: processed.append(payload))

        await queue.create_job("echo", {"n": 1})
        assert queue.status is QueueStatus.ACTIVE

        await queue.create_job("echo", {"n": 2})
        await queue.join()

        assert processed == [{"n": 1}, {"n": 2}]
        assert queue.status is QueueStatus.INACTIVE
        assert await queue.get_jobs() == []

    @pytest.mark.asyncio
    async def test_no_auto_start(self, queue: Queue):
        """Test that auto_start=False leaves the queue inactive."""
        queue.add_worker("echo", lambda job_id, payload: None)

        await queue.create_job("echo", auto_start=False)

        assert queue.status is QueueStatus.INACTIVE
        assert len(await queue.get_jobs()) == 1

    @pytest.mark.asyncio
    async def test_execute_failed_jobs_on_start(
        self,
        test_settings: Settings,
        job_factory: Callable[..., Job],
    ):
        """Test the one-shot reset of failed jobs on first creation."""
        store = MemoryJobStore()
        failed_job = job_factory("echo", failed=utcnow(), failed_attempts=1)
        await store.create(failed_job)

        queue = Queue(lambda: store, execute_failed_jobs_on_start=True, settings=test_settings)
        await queue.init()

        await queue.create_job("echo", auto_start=False)

        assert (await get_job(queue, failed_job.id)).failed is None
        assert queue.execute_failed_jobs_on_start is False

        # Consumed: failures recorded later are kept
        await store.merge(failed_job, {"failed": utcnow()})
        await queue.create_job("echo", auto_start=False)
        assert (await get_job(queue, failed_job.id)).failed is not None


class TestSelectBatch:
    """Tests for batch selection."""

    @pytest.mark.asyncio
    async def test_empty(self, queue: Queue):
        """Test selecting from an empty queue."""
        assert await queue.select_batch() == []

    @pytest.mark.asyncio
    async def test_head_name_and_concurrency(
        self,
        queue: Queue,
        job_factory: Callable[..., Job],
    ):
        """Test that a batch holds the head job's name, capped at concurrency."""
        queue.add_worker("a", lambda job_id, payload: None, concurrency=2)
        queue.add_worker("b", lambda job_id, payload: None, concurrency=5)

        a1 = job_factory("a", priority=1)
        b1 = job_factory("b", priority=0)
        a2 = job_factory("a", priority=1)
        a3 = job_factory("a", priority=1)
        for job in (a1, b1, a2, a3):
            await queue.store.create(job)

        batch = await queue.select_batch()

        assert [job.id for job in batch] == [a1.id, a2.id]
        assert all(job.active for job in batch)

        # The oldest remaining "a" job now leads
        batch = await queue.select_batch()
        assert [job.id for job in batch] == [a3.id]

        batch = await queue.select_batch()
        assert [job.id for job in batch] == [b1.id]

        assert await queue.select_batch() == []

    @pytest.mark.asyncio
    async def test_priority_beats_age(
        self,
        queue: Queue,
        job_factory: Callable[..., Job],
    ):
        """Test that a newer, higher priority job is selected first."""
        queue.add_worker("low", lambda job_id, payload: None)
        queue.add_worker("high", lambda job_id, payload: None)

        await queue.store.create(job_factory("low", priority=0))
        high = job_factory("high", priority=5)
        await queue.store.create(high)

        assert [job.id for job in await queue.select_batch()] == [high.id]

    @pytest.mark.asyncio
    async def test_excludes_active_and_failed(
        self,
        queue: Queue,
        job_factory: Callable[..., Job],
    ):
        """Test that active and failed jobs are never selected."""
        queue.add_worker("echo", lambda job_id, payload: None, concurrency=10)

        await queue.store.create(job_factory("echo", active=True))
        await queue.store.create(job_factory("echo", failed=utcnow()))
        eligible = job_factory("echo")
        await queue.store.create(eligible)

        assert [job.id for job in await queue.select_batch()] == [eligible.id]

    @pytest.mark.asyncio
    async def test_skips_unregistered_names(
        self,
        queue: Queue,
        job_factory: Callable[..., Job],
    ):
        """Test that jobs without a worker are never selected."""
        queue.add_worker("known", lambda job_id, payload: None)

        await queue.store.create(job_factory("orphan", priority=5))
        known = job_factory("known", priority=0)
        await queue.store.create(known)

        assert [job.id for job in await queue.select_batch()] == [known.id]

        queue.remove_worker("known")
        await queue.store.create(job_factory("known"))
        assert await queue.select_batch() == []

    @pytest.mark.asyncio
    async def test_lifespan_bound(
        self,
        queue: Queue,
        job_factory: Callable[..., Job],
    ):
        """Test that only jobs with timeout <= remaining - 500 are eligible."""
        queue.add_worker("echo", lambda job_id, payload: None, concurrency=10)

        fits = job_factory("echo", timeout=9500)
        await queue.store.create(fits)
        await queue.store.create(job_factory("echo", timeout=9501))
        await queue.store.create(job_factory("echo", timeout=0))

        batch = await queue.select_batch(10000)

        assert [job.id for job in batch] == [fits.id]

    @pytest.mark.asyncio
    async def test_unbounded_without_lifespan(
        self,
        queue: Queue,
        job_factory: Callable[..., Job],
    ):
        """Test that jobs with timeout 0 are eligible without a lifespan."""
        queue.add_worker("echo", lambda job_id, payload: None)
        job = job_factory("echo", timeout=0)
        await queue.store.create(job)

        assert [j.id for j in await queue.select_batch()] == [job.id]


class TestProcessJob:
    """Tests for processing a single job."""

    @pytest.mark.asyncio
    async def test_success(self, queue: Queue):
        """Test that a successful job is deleted and callbacks fire in order."""
        events = []
        queue.add_worker(
            "echo",
            lambda job_id, payload: "ok",
            on_start=lambda job_id, payload: events.append("start"),
            on_success=lambda job_id, payload, result: events.append(("success", result)),
            on_failure=lambda job_id, payload: events.append("failure"),
            on_complete=lambda job_id, payload, result: events.append(("complete", result)),
        )
        job_id = await queue.create_job("echo", auto_start=False)

        [job] = await queue.select_batch()
        await queue.process_job(job)

        assert await get_job(queue, job_id) is None
        assert events == ["start", ("success", "ok"), ("complete", "ok")]

    @pytest.mark.asyncio
    async def test_failure_with_attempts_left(self, queue: Queue):
        """Test that a failed attempt returns the job to the pool."""
        events = []

        def handler(job_id, payload):
            raise RuntimeError("flaky")

        queue.add_worker(
            "echo",
            handler,
            on_failure=lambda job_id, payload: events.append("failure"),
            on_failed=lambda job_id, payload: events.append("failed"),
            on_complete=lambda *args: events.append("complete"),
        )
        job_id = await queue.create_job("echo", options={"attempts": 3}, auto_start=False)

        [job] = await queue.select_batch()
        await queue.process_job(job)

        stored = await get_job(queue, job_id)
        assert stored.active is False
        assert stored.failed is None
        assert stored.failed_attempts == 1
        assert stored.errors == ["flaky"]
        assert events == ["failure"]

        # Immediately eligible again
        assert [j.id for j in await queue.select_batch()] == [job_id]

    @pytest.mark.asyncio
    async def test_failure_exhausts_attempts(self, queue: Queue):
        """Test terminal failure once the attempt budget is used up."""
        events = []

        def handler(job_id, payload):
            raise ValueError("always broken")

        queue.add_worker(
            "echo",
            handler,
            on_success=lambda *args: events.append("success"),
            on_failure=lambda job_id, payload: events.append("failure"),
            on_failed=lambda job_id, payload: events.append("failed"),
            on_complete=lambda job_id, payload, result: events.append(("complete", result)),
        )
        job_id = await queue.create_job("echo", options={"attempts": 2}, auto_start=False)

        await queue.start()

        stored = await get_job(queue, job_id)
        assert stored.failed is not None
        assert stored.failed_attempts == 2
        assert stored.errors == ["always broken", "always broken"]
        assert events == ["failure", "failure", "failed", ("complete", None)]
        assert await queue.select_batch() == []

    @pytest.mark.asyncio
    async def test_timeout_recorded(self, queue: Queue):
        """Test that a timeout is recorded and the late result is ignored."""
        release = asyncio.Event()
        finished = []
        events = []

        async def handler(job_id, payload):
            await release.wait()
            finished.append(job_id)
            return "late"

        queue.add_worker(
            "slow",
            handler,
            on_success=lambda job_id, payload, result: events.append(("success", result)),
            on_complete=lambda job_id, payload, result: events.append(("complete", result)),
        )
        job_id = await queue.create_job(
            "slow", options={"timeout": 20}, auto_start=False
        )

        await queue.start()

        stored = await get_job(queue, job_id)
        assert stored.failed is not None
        assert stored.errors == [f"TIMEOUT: Job id: {job_id} timed out in 20ms."]
        assert events == [("complete", None)]

        release.set()
        for _ in range(3):
            await asyncio.sleep(0)

        assert finished == [job_id]
        assert events == [("complete", None)]
        stored = await get_job(queue, job_id)
        assert stored.failed is not None
        assert stored.failed_attempts == 1

    @pytest.mark.asyncio
    async def test_sync_throw_with_default_attempts(self, queue: Queue):
        """Test terminal failure after one synchronous throw with default attempts."""
        events = []

        def handler(job_id, payload):
            raise RuntimeError("sync failure")

        queue.add_worker(
            "echo",
            handler,
            on_success=lambda job_id, payload, result: events.append("success"),
            on_failure=lambda job_id, payload: events.append("failure"),
            on_failed=lambda job_id, payload: events.append("failed"),
            on_complete=lambda job_id, payload, result: events.append("complete"),
        )
        job_id = await queue.create_job("echo", auto_start=False)

        await queue.start()

        assert events.count("failure") == 1
        assert events.count("failed") == 1
        assert events.count("complete") == 1
        assert "success" not in events

        stored = await get_job(queue, job_id)
        assert stored.attempts == 1
        assert stored.failed is not None
        assert stored.errors == ["sync failure"]

        await queue.flush_queue()
        assert await get_job(queue, job_id) is None

    @pytest.mark.asyncio
    async def test_undecodable_payload_fails_attempt(
        self,
        queue: Queue,
        job_factory: Callable[..., Job],
    ):
        """Test that a corrupt stored payload is recorded as a failure."""
        calls = []
        failures = []
        queue.add_worker(
            "echo",
            lambda job_id, payload: calls.append(job_id),
            on_failure=lambda job_id, payload: failures.append((job_id, payload)),
        )
        job = job_factory("echo", payload="{not json", attempts=2)
        await queue.store.create(job)

        await queue.start()

        stored = await get_job(queue, job.id)
        assert calls == []
        assert stored.active is False
        assert stored.failed_attempts == 2
        assert stored.failed is not None
        assert "undecodable payload" in stored.errors[0]
        assert failures == [(job.id, None), (job.id, None)]

    @pytest.mark.asyncio
    async def test_on_start_exception_fails_attempt(self, queue: Queue):
        """Test that a raising on_start callback fails the attempt."""
        calls = []
        events = []

        def on_start(job_id, payload):
            raise RuntimeError("callback bug")

        queue.add_worker(
            "echo",
            lambda job_id, payload: calls.append(job_id),
            on_start=on_start,
            on_failure=lambda job_id, payload: events.append("failure"),
        )
        job_id = await queue.create_job("echo", options={"attempts": 2}, auto_start=False)

        [job] = await queue.select_batch()
        await queue.process_job(job)

        stored = await get_job(queue, job_id)
        assert calls == []
        assert stored.failed_attempts == 1
        assert stored.errors == ["callback bug"]
        assert stored.failed is None
        assert events == ["failure"]

    @pytest.mark.asyncio
    async def test_on_start_exception_does_not_abort_batch(self, queue: Queue):
        """Test that siblings run when one job's on_start raises."""
        processed = []

        def on_start(job_id, payload):
            if payload["bad"]:
                raise RuntimeError("callback bug")

        queue.add_worker(
            "echo",
            lambda job_id, payload: processed.append(job_id),
            concurrency=2,
            on_start=on_start,
        )
        bad = await queue.create_job("echo", {"bad": True}, auto_start=False)
        good = await queue.create_job("echo", {"bad": False}, auto_start=False)

        await queue.start()

        assert processed == [good]
        assert [job.id for job in await queue.get_jobs()] == [bad]


class TestStartStop:
    """Tests for the start/stop state machine."""

    @pytest.mark.asyncio
    async def test_start_processes_until_empty(self, queue: Queue):
        """Test that start runs every eligible job and returns True."""
        processed = []
        queue.add_worker("echo", lambda job_id, payload: processed.append(payload["n"]))
        for n in range(3):
            await queue.create_job("echo", {"n": n}, auto_start=False)

        assert await queue.start() is True

        assert processed == [0, 1, 2]
        assert queue.status is QueueStatus.INACTIVE

    @pytest.mark.asyncio
    async def test_start_while_running(self, queue: Queue):
        """Test that a second start returns False and runs no second loop."""
        release = asyncio.Event()
        running = []
        max_running = []

        async def handler(job_id, payload):
            running.append(job_id)
            max_running.append(len(running))
            await release.wait()
            running.remove(job_id)

        queue.add_worker("echo", handler)
        await queue.create_job("echo", auto_start=False)
        await queue.create_job("echo", auto_start=False)

        first = asyncio.create_task(queue.start())
        while not running:
            await asyncio.sleep(0)

        assert queue.status is QueueStatus.ACTIVE
        assert await queue.start() is False

        release.set()
        assert await first is True
        assert max(max_running) == 1
        assert await queue.get_jobs() == []

    @pytest.mark.asyncio
    async def test_stop_between_batches(self, queue: Queue):
        """Test that stop lets the current batch finish and halts the loop."""
        processed = []

        def handler(job_id, payload):
            processed.append(job_id)
            queue.stop()

        queue.add_worker("echo", handler)
        await queue.create_job("echo", auto_start=False)
        await queue.create_job("echo", auto_start=False)

        assert await queue.start() is True

        assert len(processed) == 1
        assert queue.status is QueueStatus.INACTIVE
        assert len(await queue.get_jobs()) == 1

        await queue.start()
        assert len(processed) == 2

    @pytest.mark.asyncio
    async def test_batch_runs_concurrently(self, queue: Queue):
        """Test that a batch's jobs run at the same time."""
        started = []
        release = asyncio.Event()

        async def handler(job_id, payload):
            started.append(job_id)
            if len(started) == 3:
                release.set()
            await release.wait()

        queue.add_worker("echo", handler, concurrency=3)
        for _ in range(3):
            await queue.create_job("echo", options={"timeout": 1000}, auto_start=False)

        await queue.start()

        assert len(started) == 3
        assert await queue.get_jobs() == []

    @pytest.mark.asyncio
    async def test_failing_job_does_not_abort_batch(self, queue: Queue):
        """Test that siblings in a batch finish when one job fails."""
        async def handler(job_id, payload):
            if payload["fail"]:
                raise RuntimeError("nope")
            await asyncio.sleep(0.01)

        queue.add_worker("echo", handler, concurrency=2)
        bad = await queue.create_job("echo", {"fail": True}, auto_start=False)
        await queue.create_job("echo", {"fail": False}, auto_start=False)

        await queue.start()

        jobs = await queue.get_jobs()
        assert [job.id for job in jobs] == [bad]
        assert jobs[0].failed is not None

    @pytest.mark.asyncio
    async def test_lifespan_skips_unbounded_jobs(self, queue: Queue):
        """Test that jobs without a timeout never run under a lifespan."""
        processed = []
        queue.add_worker("echo", lambda job_id, payload: processed.append(payload["kind"]))
        unbounded = await queue.create_job(
            "echo", {"kind": "unbounded"}, {"timeout": 0}, auto_start=False
        )
        await queue.create_job("echo", {"kind": "bounded"}, {"timeout": 100}, auto_start=False)

        await queue.start(lifespan=2000)

        assert processed == ["bounded"]
        assert [job.id for job in await queue.get_jobs()] == [unbounded]

    @pytest.mark.asyncio
    async def test_priority_scenario(self, queue: Queue):
        """Test that all high priority jobs run before any lower priority job."""
        processed = []
        queue.add_worker("x", lambda job_id, payload: processed.append("x"))
        queue.add_worker("y", lambda job_id, payload: processed.append("y"))

        await queue.create_job("y", options={"priority": 0}, auto_start=False)
        await queue.create_job("x", options={"priority": 5}, auto_start=False)
        await queue.create_job("y", options={"priority": 0}, auto_start=False)
        await queue.create_job("x", options={"priority": 5}, auto_start=False)

        await queue.start()

        assert processed == ["x", "x", "y", "y"]

    @pytest.mark.asyncio
    async def test_storage_error_propagates(self, test_settings: Settings):
        """Test that a storage failure surfaces from start after the batch settles."""
        class BrokenDeleteStore(MemoryJobStore):
            async def delete(self, job):
                raise StorageError("disk full")

        queue = Queue(BrokenDeleteStore, settings=test_settings)
        await queue.init()
        completed = []

        async def handler(job_id, payload):
            await asyncio.sleep(0.01)
            completed.append(job_id)

        queue.add_worker("echo", handler, concurrency=2)
        await queue.create_job("echo", auto_start=False)
        await queue.create_job("echo", auto_start=False)

        with pytest.raises(StorageError, match="disk full"):
            await queue.start()

        assert len(completed) == 2
        assert queue.status is QueueStatus.INACTIVE


class TestFlushQueue:
    """Tests for flushing jobs."""

    @pytest.mark.asyncio
    async def test_flush_by_name(self, queue: Queue):
        """Test that only jobs with the given name are removed."""
        await queue.create_job("a", auto_start=False)
        await queue.create_job("a", auto_start=False)
        keep = await queue.create_job("b", auto_start=False)

        await queue.flush_queue("a")

        assert [job.id for job in await queue.get_jobs()] == [keep]

    @pytest.mark.asyncio
    async def test_flush_all(self, queue: Queue):
        """Test that every job is removed."""
        await queue.create_job("a", auto_start=False)
        await queue.create_job("b", auto_start=False)

        await queue.flush_queue()

        assert await queue.get_jobs() == []


class TestQueueFactory:
    """Tests for queue construction."""

    @pytest.mark.asyncio
    async def test_queue_factory_initializes(self, test_settings: Settings):
        """Test that the factory returns a ready queue."""
        queue = await queue_factory(MemoryJobStore, settings=test_settings)

        assert isinstance(queue.store, MemoryJobStore)
        assert queue.status is QueueStatus.INACTIVE

        await queue.close()

    @pytest.mark.asyncio
    async def test_uninitialized_queue(self, test_settings: Settings):
        """Test that using the store before init fails clearly."""
        queue = Queue(MemoryJobStore, settings=test_settings)

        with pytest.raises(RuntimeError, match="not initialized"):
            await queue.get_jobs()

    @pytest.mark.asyncio
    async def test_default_store_from_settings(self, test_settings: Settings):
        """Test that the configured backend is used without a factory."""
        queue = Queue(settings=test_settings)
        await queue.init()

        assert isinstance(queue.store, MemoryJobStore)

        await queue.close()
