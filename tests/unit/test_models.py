"""
Unit tests for the deploy_common data models.
"""

from datetime import UTC, datetime

from deploy_common.models import (
    ACTIVE_STATUSES,
    MAX_LOG_LINE_LENGTH,
    Job,
    JobStatus,
    LogEntry,
)


class TestJobStatus:
    def test_only_queued_and_building_are_active(self):
        assert ACTIVE_STATUSES == {JobStatus.QUEUED, JobStatus.BUILDING}

    def test_terminal_states(self):
        assert not JobStatus.QUEUED.is_terminal
        assert not JobStatus.BUILDING.is_terminal
        for status in (
            JobStatus.READY,
            JobStatus.FAILED,
            JobStatus.TIMED_OUT,
            JobStatus.CANCELLED,
        ):
            assert status.is_terminal

    def test_string_values(self):
        assert JobStatus("TIMED_OUT") is JobStatus.TIMED_OUT
        assert JobStatus.READY.value == "READY"


class TestJob:
    def test_defaults(self):
        job = Job(id="abc12", owner_id="u1", repository_url="https://example.com/a.git")

        assert job.branch == "main"
        assert job.status == JobStatus.QUEUED
        assert job.result_url is None
        assert job.created_at.tzinfo is not None

    def test_source_location(self):
        job = Job(id="abc12", owner_id="u1", repository_url="repoA", branch="dev")
        assert job.source_location == "repoA@dev"

    def test_to_dict(self):
        created = datetime(2024, 1, 2, 3, 4, 5, tzinfo=UTC)
        job = Job(
            id="abc12",
            owner_id="u1",
            repository_url="repoA",
            status=JobStatus.READY,
            created_at=created,
            result_url="http://sites.test/view/abc12",
            project_name="site",
        )

        data = job.to_dict()

        assert data == {
            "id": "abc12",
            "owner_id": "u1",
            "repository_url": "repoA",
            "branch": "main",
            "project_name": "site",
            "status": "READY",
            "created_at": created.isoformat(),
            "result_url": "http://sites.test/view/abc12",
        }


class TestLogEntry:
    def test_long_lines_are_truncated(self):
        entry = LogEntry(job_id="abc12", content="x" * (MAX_LOG_LINE_LENGTH + 50))
        assert len(entry.content) == MAX_LOG_LINE_LENGTH

    def test_short_lines_are_kept(self):
        entry = LogEntry(job_id="abc12", content="npm run build")
        assert entry.content == "npm run build"
        assert entry.to_dict()["content"] == "npm run build"
