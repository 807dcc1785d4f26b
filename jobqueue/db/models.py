"""
SQLAlchemy database models.
Defines the jobs table used by the SQL job store.
"""

from datetime import datetime

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    Index,
    Integer,
    String,
    Text,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from jobqueue.types.job import Job


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models."""

    pass


class JobRecord(Base):
    """
    Row representation of a Job.

    The payload is stored as an opaque JSON string; attempt bookkeeping
    lives in the `data` JSON column, matching the persisted record shape.
    """

    __tablename__ = "jobs"

    id: Mapped[str] = mapped_column(String(255), primary_key=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    payload: Mapped[str] = mapped_column(Text, nullable=False, default="{}")
    data: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)
    priority: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    timeout: Mapped[int] = mapped_column(Integer, nullable=False)
    created: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    failed: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        # Index for next-job selection
        Index("ix_jobs_selection", "active", "failed", "priority", "created"),
    )

    @classmethod
    def from_job(cls, job: Job) -> "JobRecord":
        """Build a row from a job."""
        record = job.to_record()
        return cls(
            id=job.id,
            name=job.name,
            payload=job.payload,
            data=record["data"],
            priority=job.priority,
            active=job.active,
            timeout=job.timeout,
            created=job.created,
            failed=job.failed,
        )

    def to_job(self) -> Job:
        """Convert the row back into a job."""
        return Job.from_record(
            {
                "id": self.id,
                "name": self.name,
                "payload": self.payload,
                "data": self.data,
                "priority": self.priority,
                "active": self.active,
                "timeout": self.timeout,
                "created": self.created,
                "failed": self.failed,
            }
        )

    def __repr__(self) -> str:
        return (
            f"JobRecord(id={self.id}, name={self.name}, "
            f"active={self.active}, failed={self.failed})"
        )
