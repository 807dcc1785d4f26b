"""
Key-value job storage on Redis.

Each job is stored as one JSON document under "<prefix><job id>". Listing
scans the key prefix, so selection order comes from the record fields
(priority, then creation time) rather than from key order.
"""

import json
import logging
from collections.abc import Iterator, Sequence
from contextlib import contextmanager

from redis.asyncio import Redis
from redis.exceptions import RedisError

from jobqueue.constants import JOB_KEY_PREFIX
from jobqueue.exceptions import StorageError
from jobqueue.storage.base import JobStore
from jobqueue.types.job import Job

logger = logging.getLogger(__name__)


@contextmanager
def _storage_errors(operation: str) -> Iterator[None]:
    try:
        yield
    except RedisError as e:
        logger.error(
            "Redis operation failed",
            extra={"operation": operation, "error": str(e)}
        )
        raise StorageError(f"Redis {operation} failed: {e}") from e


class RedisJobStore(JobStore):
    """
    JobStore backed by a Redis key space.

    The client is owned by the store and closed by close().
    """

    def __init__(self, client: Redis, key_prefix: str = JOB_KEY_PREFIX):
        """
        Initialize the store.

        Args:
            client: Redis client created with decode_responses=True.
            key_prefix: Prefix for job keys.
        """
        self._client = client
        self._prefix = key_prefix

    @classmethod
    def from_url(cls, url: str, key_prefix: str = JOB_KEY_PREFIX) -> "RedisJobStore":
        """Create a store with its own client for the given Redis URL."""
        return cls(Redis.from_url(url, decode_responses=True), key_prefix)

    def _key(self, job: Job) -> str:
        return f"{self._prefix}{job.id}"

    async def _keys(self) -> list[str]:
        return [key async for key in self._client.scan_iter(match=f"{self._prefix}*")]

    async def init(self) -> None:
        with _storage_errors("ping"):
            await self._client.ping()
        logger.info("Redis job store connected", extra={"key_prefix": self._prefix})

    async def close(self) -> None:
        await self._client.aclose()

    async def create(self, job: Job) -> None:
        with _storage_errors("set"):
            await self._client.set(self._key(job), json.dumps(job.to_record()))

    async def objects(self, sync: bool = True) -> list[Job]:
        with _storage_errors("read"):
            keys = await self._keys()
            if not keys:
                return []
            values = await self._client.mget(keys)
        # A key may vanish between the scan and the read
        return [Job.from_record(json.loads(value)) for value in values if value is not None]

    async def save(self, job: Job) -> None:
        await self.create(job)

    async def update(self, job: Job) -> None:
        with _storage_errors("set"):
            await self._client.set(self._key(job), json.dumps(job.to_record()), xx=True)

    async def save_all(self, jobs: Sequence[Job]) -> None:
        if not jobs:
            return
        with _storage_errors("mset"):
            await self._client.mset(
                {self._key(job): json.dumps(job.to_record()) for job in jobs}
            )

    async def delete(self, job: Job | Sequence[Job]) -> None:
        jobs = [job] if isinstance(job, Job) else job
        if not jobs:
            return
        with _storage_errors("delete"):
            await self._client.delete(*(self._key(item) for item in jobs))

    async def delete_all(self) -> None:
        with _storage_errors("delete"):
            keys = await self._keys()
            if keys:
                await self._client.delete(*keys)
