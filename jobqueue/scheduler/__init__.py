"""
Scheduler module.
Contains the queue and its scheduler loop.
"""

from jobqueue.scheduler.main import Queue, queue_factory

__all__ = ["Queue", "queue_factory"]
