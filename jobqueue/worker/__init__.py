"""
Worker module.
Contains the handler registry and job execution.
"""

from jobqueue.worker.registry import WorkerRegistry

__all__ = ["WorkerRegistry"]
