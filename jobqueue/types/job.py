"""
Job-related type definitions.
"""

import json
from dataclasses import dataclass, field, fields
from datetime import datetime, timezone
from typing import Any

from pydantic import BaseModel, Field

from jobqueue.constants import (
    DEFAULT_JOB_ATTEMPTS,
    DEFAULT_JOB_PRIORITY,
    DEFAULT_JOB_TIMEOUT_MS,
)
from jobqueue.exceptions import ExecutionError


def utcnow() -> datetime:
    """Current time as a timezone-aware UTC datetime."""
    return datetime.now(timezone.utc)


def _as_utc(value: datetime) -> datetime:
    # Some backends (SQLite) hand back naive datetimes
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _parse_timestamp(value: datetime | str | None) -> datetime | None:
    if value is None:
        return None
    if isinstance(value, str):
        value = datetime.fromisoformat(value)
    return _as_utc(value)


class JobOptions(BaseModel):
    """
    Options accepted by Queue.create_job.

    Omitted values fall back to the queue defaults (timeout 25000ms,
    one attempt, priority 0).
    """

    timeout: int | None = Field(default=None, ge=0)
    attempts: int | None = Field(default=None, ge=0)
    priority: int | None = None


@dataclass
class Job:
    """
    A persisted unit of work.

    Only jobs with active=False and failed=None are eligible for selection.
    The payload is kept as a JSON blob and decoded at the handler boundary.
    """

    id: str
    name: str
    payload: str = "{}"
    priority: int = DEFAULT_JOB_PRIORITY
    attempts: int = DEFAULT_JOB_ATTEMPTS
    timeout: int = DEFAULT_JOB_TIMEOUT_MS
    active: bool = False
    created: datetime = field(default_factory=utcnow)
    failed: datetime | None = None
    failed_attempts: int = 0
    errors: list[str] = field(default_factory=list)

    @property
    def is_eligible(self) -> bool:
        """Check if the job may be picked up by the scheduler."""
        return not self.active and self.failed is None

    @property
    def attempts_exhausted(self) -> bool:
        """Check if the job has used up its attempt budget."""
        return self.failed_attempts >= self.attempts

    def load_payload(self) -> Any:
        """
        Decode the stored payload.

        Raises:
            ExecutionError: If the stored payload is not valid JSON.
        """
        try:
            return json.loads(self.payload)
        except (TypeError, ValueError) as e:
            raise ExecutionError(f"Job {self.id} has an undecodable payload: {e}") from e

    def apply(self, changes: dict[str, Any]) -> None:
        """
        Apply a partial update to this job in place.

        Args:
            changes: Mapping of attribute name to new value.

        Raises:
            AttributeError: If a key does not name a job attribute.
        """
        for key, value in changes.items():
            if key not in _JOB_FIELDS:
                raise AttributeError(f"Job has no attribute '{key}'")
            setattr(self, key, value)

    def to_record(self) -> dict[str, Any]:
        """Serialize to the persisted record shape."""
        return {
            "id": self.id,
            "name": self.name,
            "payload": self.payload,
            "data": {
                "attempts": self.attempts,
                "failedAttempts": self.failed_attempts,
                "errors": list(self.errors),
            },
            "priority": self.priority,
            "active": self.active,
            "timeout": self.timeout,
            "created": self.created.isoformat(),
            "failed": self.failed.isoformat() if self.failed else None,
        }

    @classmethod
    def from_record(cls, record: dict[str, Any]) -> "Job":
        """Build a job from the persisted record shape."""
        data = record.get("data") or {}
        if isinstance(data, str):
            data = json.loads(data)

        return cls(
            id=record["id"],
            name=record["name"],
            payload=record.get("payload", "{}"),
            priority=record.get("priority", DEFAULT_JOB_PRIORITY),
            attempts=data.get("attempts", DEFAULT_JOB_ATTEMPTS),
            timeout=record.get("timeout", DEFAULT_JOB_TIMEOUT_MS),
            active=bool(record.get("active", False)),
            created=_parse_timestamp(record["created"]),
            failed=_parse_timestamp(record.get("failed")),
            failed_attempts=data.get("failedAttempts", 0),
            errors=list(data.get("errors") or []),
        )


_JOB_FIELDS = frozenset(f.name for f in fields(Job))
