"""
Deploy Common module.

This module contains shared domain models, the error taxonomy and the
abstract collaborator interfaces used across the deploy system components
(intake, worker, persistence).

The common module has no dependencies on other deploy_* modules, making it
a pure domain layer that can be imported by any component.
"""

from .models import ACTIVE_STATUSES, Job, JobStatus, LogEntry
from .repository import JobRepository
from .storage import JobQueue, ListPage, ObjectStore

__all__ = [
    "ACTIVE_STATUSES",
    "Job",
    "JobQueue",
    "JobRepository",
    "JobStatus",
    "ListPage",
    "LogEntry",
    "ObjectStore",
]
