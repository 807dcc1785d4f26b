"""
In-memory job storage.

Jobs are held as serialized records keyed by id, so callers never share
mutable job objects with the store. Appropriate for a single producer and a
single consumer in one process; nothing survives a restart.
"""

from collections.abc import Sequence
from typing import Any

from jobqueue.constants import JOB_KEY_PREFIX
from jobqueue.storage.base import JobStore
from jobqueue.types.job import Job


class MemoryJobStore(JobStore):
    """Volatile JobStore backed by a per-instance dict."""

    def __init__(self, key_prefix: str = JOB_KEY_PREFIX):
        self._prefix = key_prefix
        self._items: dict[str, dict[str, Any]] = {}

    def _key(self, job: Job) -> str:
        return f"{self._prefix}{job.id}"

    async def create(self, job: Job) -> None:
        self._items[self._key(job)] = job.to_record()

    async def objects(self, sync: bool = True) -> list[Job]:
        return [
            Job.from_record(record)
            for key, record in self._items.items()
            if key.startswith(self._prefix)
        ]

    async def save(self, job: Job) -> None:
        await self.create(job)

    async def update(self, job: Job) -> None:
        key = self._key(job)
        if key in self._items:
            self._items[key] = job.to_record()

    async def delete(self, job: Job | Sequence[Job]) -> None:
        jobs = [job] if isinstance(job, Job) else job
        for item in jobs:
            self._items.pop(self._key(item), None)

    async def delete_all(self) -> None:
        for key in [k for k in self._items if k.startswith(self._prefix)]:
            del self._items[key]
