"""
Storage contract consumed by the scheduler.

Every backend implements JobStore. The scheduler assumes each operation is
effectively atomic within a single process; no cross-process locking is
provided.
"""

from abc import ABC, abstractmethod
from collections.abc import Iterable, Sequence
from typing import Any

from jobqueue.types.job import Job


def order_next_jobs(
    jobs: Iterable[Job],
    timeout_upper_bound: int | None = None,
) -> list[Job]:
    """
    Filter and order jobs the way find_next_jobs must return them.

    Keeps jobs that are inactive and not failed. When a timeout upper bound
    is given, also requires 0 < timeout < timeout_upper_bound. Orders by
    priority descending, then creation time ascending.

    Args:
        jobs: Candidate jobs.
        timeout_upper_bound: Optional exclusive bound on job timeout (ms).

    Returns:
        Eligible jobs in selection order.
    """
    eligible = [job for job in jobs if job.is_eligible]
    if timeout_upper_bound is not None:
        eligible = [
            job for job in eligible
            if 0 < job.timeout < timeout_upper_bound
        ]
    # Two stable passes: oldest first, then highest priority first
    eligible.sort(key=lambda job: job.created)
    eligible.sort(key=lambda job: job.priority, reverse=True)
    return eligible


class JobStore(ABC):
    """
    Abstract job storage.

    Implements the persistence primitives plus the selection queries the
    scheduler relies on:
    - find_next_jobs returns eligible jobs in priority/FIFO order
    - mark_active flags a selected batch as dispatched
    - reset_failed_jobs makes terminally failed jobs eligible again
    """

    async def init(self) -> None:
        """Idempotent connection/setup."""

    async def close(self) -> None:
        """Release connections held by the store."""

    @abstractmethod
    async def create(self, job: Job) -> None:
        """Insert a new job."""

    @abstractmethod
    async def objects(self, sync: bool = True) -> list[Job]:
        """
        Return a snapshot of all stored jobs.

        Args:
            sync: Request data that reflects every completed write. Backends
                without read-side caching always behave as if True.
        """

    @abstractmethod
    async def save(self, job: Job) -> None:
        """Insert or replace a job."""

    async def save_all(self, jobs: Sequence[Job]) -> None:
        """Insert or replace several jobs."""
        for job in jobs:
            await self.save(job)

    @abstractmethod
    async def update(self, job: Job) -> None:
        """Replace a stored job. Does nothing if the job no longer exists."""

    async def merge(self, job: Job, fields: dict[str, Any]) -> None:
        """
        Apply a partial update to a job and persist it.

        The passed job object is updated in place. A job deleted in the
        meantime (e.g. by a flush) stays deleted.
        """
        job.apply(fields)
        await self.update(job)

    @abstractmethod
    async def delete(self, job: Job | Sequence[Job]) -> None:
        """Remove one job or a sequence of jobs."""

    @abstractmethod
    async def delete_all(self) -> None:
        """Remove every job."""

    async def delete_by_name(self, name: str) -> None:
        """Remove every job with the given name."""
        jobs = [job for job in await self.objects() if job.name == name]
        if jobs:
            await self.delete(jobs)

    async def find_next_jobs(self, timeout_upper_bound: int | None = None) -> list[Job]:
        """
        Return eligible jobs in selection order.

        Args:
            timeout_upper_bound: Optional exclusive bound on job timeout (ms).
                When given, jobs without a timeout (0) are excluded.
        """
        return order_next_jobs(await self.objects(), timeout_upper_bound)

    async def mark_active(self, jobs: Sequence[Job]) -> None:
        """Flag jobs as dispatched and persist them."""
        for job in jobs:
            job.active = True
        await self.save_all(jobs)

    async def reset_failed_jobs(self) -> None:
        """Clear the failure timestamp on every job."""
        jobs = await self.objects()
        for job in jobs:
            job.failed = None
        await self.save_all(jobs)
