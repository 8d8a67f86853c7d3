"""
Deploy Persistence module.

This module contains the concrete collaborators behind the abstract
contracts in deploy_common: SQLite job/log/secret storage, a SQLite-backed
job queue and a directory-backed object store.

The persistence layer depends on deploy_common for domain models and
interfaces, and can be used by both deploy_intake and deploy_worker.
"""

from .local_object_store import LocalObjectStore
from .sqlite_queue import SQLiteJobQueue
from .sqlite_repository import SQLiteJobRepository

__all__ = ["LocalObjectStore", "SQLiteJobQueue", "SQLiteJobRepository"]
