"""
Tests for the deploy admin CLI.

Commands run through click's CliRunner against a temporary database and
object store selected with environment variables.
"""

import asyncio
import json

import pytest
from click.testing import CliRunner

from deploy_admin.cli import cli
from deploy_common.models import Job, JobStatus, LogEntry
from deploy_persistence.local_object_store import LocalObjectStore
from deploy_persistence.sqlite_queue import SQLiteJobQueue
from deploy_persistence.sqlite_repository import SQLiteJobRepository


@pytest.fixture
def env(db_path, tmp_path):
    return {
        "DEPLOY_DB_PATH": db_path,
        "DEPLOY_STORAGE_ROOT": str(tmp_path / "bucket"),
        "DEPLOY_QUEUE_KEY": "build-queue",
    }


@pytest.fixture
def seeded(db_path, tmp_path):
    """Two deployments for u1: one READY with a live site, one BUILDING."""

    async def seed():
        repo = SQLiteJobRepository(db_path)
        await repo.initialize()
        try:
            await repo.create_job(
                Job(
                    id="ready",
                    owner_id="u1",
                    repository_url="repoA",
                    status=JobStatus.READY,
                    result_url="http://sites.test/view/ready",
                )
            )
            await repo.create_job(
                Job(id="build", owner_id="u1", repository_url="repoB", status=JobStatus.BUILDING)
            )
            await repo.add_log_entries([LogEntry(job_id="ready", content="npm run build")])
            await repo.save_secrets("ready", {"API_TOKEN": "hidden-value"})
        finally:
            await repo.close()

        store = LocalObjectStore(tmp_path / "bucket")
        await store.put_object("live-sites/ready/index.html", b"<h1>hi</h1>")
        await store.put_object("source-codes/ready/index.html", b"<h1>hi</h1>")

    asyncio.run(seed())


def get_job(db_path, job_id):
    async def fetch():
        repo = SQLiteJobRepository(db_path)
        try:
            return await repo.get_job(job_id)
        finally:
            await repo.close()

    return asyncio.run(fetch())


def invoke(env, *args, **kwargs):
    return CliRunner().invoke(cli, list(args), env=env, **kwargs)


class TestJobCommands:
    def test_list(self, env, seeded):
        result = invoke(env, "jobs", "list")

        assert result.exit_code == 0
        assert "ready" in result.output
        assert "build" in result.output

    def test_list_active_json(self, env, seeded):
        result = invoke(env, "jobs", "list", "--active", "--json")

        assert result.exit_code == 0
        assert [j["id"] for j in json.loads(result.output)] == ["build"]

    def test_show_hides_secret_values(self, env, seeded):
        result = invoke(env, "jobs", "show", "ready")

        assert result.exit_code == 0
        assert "http://sites.test/view/ready" in result.output
        assert "API_TOKEN" in result.output
        assert "hidden-value" not in result.output

    def test_show_missing(self, env, seeded):
        result = invoke(env, "jobs", "show", "nope1")

        assert result.exit_code == 1
        assert "not found" in result.output

    def test_logs(self, env, seeded):
        result = invoke(env, "jobs", "logs", "ready")

        assert result.exit_code == 0
        assert "npm run build" in result.output

    def test_cancel(self, env, seeded, db_path):
        result = invoke(env, "jobs", "cancel", "build")

        assert result.exit_code == 0
        assert get_job(db_path, "build").status == JobStatus.CANCELLED

    def test_cancel_finished(self, env, seeded, db_path):
        result = invoke(env, "jobs", "cancel", "ready")

        assert result.exit_code == 1
        assert get_job(db_path, "ready").status == JobStatus.READY

    def test_delete(self, env, seeded, db_path, tmp_path):
        result = invoke(env, "jobs", "delete", "ready", "--yes")

        assert result.exit_code == 0
        assert get_job(db_path, "ready") is None
        assert not (tmp_path / "bucket" / "live-sites" / "ready").exists()
        assert not (tmp_path / "bucket" / "source-codes" / "ready").exists()

    def test_delete_asks_for_confirmation(self, env, seeded, db_path):
        result = invoke(env, "jobs", "delete", "ready", input="n\n")

        assert result.exit_code != 0
        assert get_job(db_path, "ready") is not None


class TestSecretCommands:
    def test_set_and_list(self, env, seeded):
        result = invoke(env, "secrets", "set", "build", "A=1", "B = 2")
        assert result.exit_code == 0

        result = invoke(env, "secrets", "list", "build")
        assert result.output.split() == ["A", "B"]

    def test_set_rejects_malformed_pair(self, env, seeded):
        result = invoke(env, "secrets", "set", "build", "novalue")
        assert result.exit_code == 1

    def test_import_env_file(self, env, seeded, tmp_path):
        env_file = tmp_path / ".env"
        env_file.write_text("# settings\nVITE_API=https://api.test\nDEBUG=false\n")

        result = invoke(env, "secrets", "import", "build", str(env_file))

        assert result.exit_code == 0
        assert "Imported 2" in result.output


class TestQueueCommands:
    def test_push_and_size(self, env, seeded, db_path):
        result = invoke(env, "queue", "push", "ready")
        assert result.exit_code == 0

        result = invoke(env, "queue", "size")
        assert result.output.strip() == "1"

        async def pop():
            q = SQLiteJobQueue(db_path)
            try:
                return await q.pop()
            finally:
                await q.close()

        assert asyncio.run(pop()) == "ready"

    def test_push_rejects_building_job(self, env, seeded):
        result = invoke(env, "queue", "push", "build")
        assert result.exit_code == 1
