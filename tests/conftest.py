"""
Shared fixtures: a temporary SQLite database, a queue on the same file and a
directory-backed object store.
"""

import os
import tempfile

import pytest

from deploy_persistence.local_object_store import LocalObjectStore
from deploy_persistence.sqlite_queue import SQLiteJobQueue
from deploy_persistence.sqlite_repository import SQLiteJobRepository


@pytest.fixture
def db_path():
    """Create a temporary database file for testing."""
    fd, path = tempfile.mkstemp(suffix=".db", prefix="deploy_test_")
    os.close(fd)

    yield path

    for suffix in ("", "-wal", "-shm"):
        if os.path.exists(path + suffix):
            os.unlink(path + suffix)


@pytest.fixture
async def repository(db_path):
    repo = SQLiteJobRepository(db_path)
    await repo.initialize()

    yield repo

    await repo.close()


@pytest.fixture
async def queue(db_path):
    q = SQLiteJobQueue(db_path)
    await q.initialize()

    yield q

    await q.close()


@pytest.fixture
def store(tmp_path):
    return LocalObjectStore(tmp_path / "bucket")
