"""
SQL job store.
Implements the JobStore contract on a relational database through async
SQLAlchemy. Every operation runs in its own transaction.
"""

import logging
from collections.abc import AsyncGenerator, Sequence
from contextlib import asynccontextmanager

from sqlalchemy import delete, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from jobqueue.db.connection import Database
from jobqueue.db.models import JobRecord
from jobqueue.exceptions import StorageError
from jobqueue.storage.base import JobStore
from jobqueue.types.job import Job

logger = logging.getLogger(__name__)


class SqlJobStore(JobStore):
    """
    Transactional JobStore.

    Selection queries are pushed down to SQL:
    - find_next_jobs filters and orders in the database
    - mark_active and reset_failed_jobs are single UPDATE statements
    """

    def __init__(self, database: Database):
        """
        Initialize the store with a database handle.

        Args:
            database: The database handle. Owned by this store.
        """
        self._db = database

    @asynccontextmanager
    async def _session(self, operation: str) -> AsyncGenerator[AsyncSession]:
        try:
            async with self._db.session() as session:
                yield session
        except SQLAlchemyError as e:
            logger.error(
                "Database operation failed",
                extra={"operation": operation, "error": str(e)}
            )
            raise StorageError(f"Database {operation} failed: {e}") from e

    async def init(self) -> None:
        try:
            await self._db.init()
        except SQLAlchemyError as e:
            raise StorageError(f"Database init failed: {e}") from e

    async def close(self) -> None:
        await self._db.close()

    async def create(self, job: Job) -> None:
        async with self._session("create") as session:
            session.add(JobRecord.from_job(job))

    async def objects(self, sync: bool = True) -> list[Job]:
        async with self._session("objects") as session:
            result = await session.execute(select(JobRecord))
            return [row.to_job() for row in result.scalars().all()]

    async def save(self, job: Job) -> None:
        async with self._session("save") as session:
            await session.merge(JobRecord.from_job(job))

    async def update(self, job: Job) -> None:
        row = JobRecord.from_job(job)
        async with self._session("update") as session:
            await session.execute(
                update(JobRecord)
                .where(JobRecord.id == job.id)
                .values(
                    name=row.name,
                    payload=row.payload,
                    data=row.data,
                    priority=row.priority,
                    active=row.active,
                    timeout=row.timeout,
                    created=row.created,
                    failed=row.failed,
                )
            )

    async def save_all(self, jobs: Sequence[Job]) -> None:
        if not jobs:
            return
        async with self._session("save_all") as session:
            for job in jobs:
                await session.merge(JobRecord.from_job(job))

    async def delete(self, job: Job | Sequence[Job]) -> None:
        jobs = [job] if isinstance(job, Job) else job
        if not jobs:
            return
        async with self._session("delete") as session:
            await session.execute(
                delete(JobRecord).where(JobRecord.id.in_([item.id for item in jobs]))
            )

    async def delete_all(self) -> None:
        async with self._session("delete_all") as session:
            await session.execute(delete(JobRecord))

    async def delete_by_name(self, name: str) -> None:
        async with self._session("delete_by_name") as session:
            result = await session.execute(
                delete(JobRecord).where(JobRecord.name == name)
            )

        logger.info(
            "Deleted jobs by name",
            extra={"job_name": name, "count": result.rowcount}
        )

    async def find_next_jobs(self, timeout_upper_bound: int | None = None) -> list[Job]:
        stmt = select(JobRecord).where(
            JobRecord.active.is_(False),
            JobRecord.failed.is_(None),
        )

        if timeout_upper_bound is not None:
            stmt = stmt.where(
                JobRecord.timeout > 0,
                JobRecord.timeout < timeout_upper_bound,
            )

        stmt = stmt.order_by(JobRecord.priority.desc(), JobRecord.created.asc())

        async with self._session("find_next_jobs") as session:
            result = await session.execute(stmt)
            return [row.to_job() for row in result.scalars().all()]

    async def mark_active(self, jobs: Sequence[Job]) -> None:
        if not jobs:
            return
        async with self._session("mark_active") as session:
            await session.execute(
                update(JobRecord)
                .where(JobRecord.id.in_([job.id for job in jobs]))
                .values(active=True)
            )

        for job in jobs:
            job.active = True

    async def reset_failed_jobs(self) -> None:
        async with self._session("reset_failed_jobs") as session:
            result = await session.execute(
                update(JobRecord)
                .where(JobRecord.failed.is_not(None))
                .values(failed=None)
            )

        logger.info("Reset failed jobs", extra={"count": result.rowcount})
