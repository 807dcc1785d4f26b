"""
Database module.
Contains the database handle, the jobs table model, and the SQL job store.
"""

from jobqueue.db.connection import Database, create_engine
from jobqueue.db.models import Base, JobRecord
from jobqueue.db.repository import SqlJobStore

__all__ = [
    "Database",
    "create_engine",
    "Base",
    "JobRecord",
    "SqlJobStore",
]
