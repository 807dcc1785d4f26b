"""
Worker registration type definitions.
"""

from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

from jobqueue.constants import DEFAULT_WORKER_CONCURRENCY, LifecycleEvent

# Handlers receive (job_id, payload) and may be plain or coroutine functions
JobHandler = Callable[[str, Any], Any]

# Callbacks receive (job_id, payload) or (job_id, payload, result)
LifecycleCallback = Callable[..., Any]


@dataclass
class WorkerRegistration:
    """
    In-process registration of a handler for one job name.
    """

    name: str
    handler: JobHandler
    concurrency: int = DEFAULT_WORKER_CONCURRENCY
    callbacks: dict[LifecycleEvent, LifecycleCallback] = field(default_factory=dict)

    def get_callback(self, event: LifecycleEvent) -> LifecycleCallback | None:
        """Get the callback registered for a lifecycle event, if any."""
        return self.callbacks.get(event)
