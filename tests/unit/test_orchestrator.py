"""
Unit tests for PipelineOrchestrator.

Jobs run against a real SQLite repository and a directory-backed object
store; builds are short ``sh`` commands.
"""

import asyncio
import time
from pathlib import Path

import pytest

from deploy_common.models import Job, JobStatus
from deploy_worker.executor import BuildExecutor, ExecutionResult
from deploy_worker.orchestrator import PipelineOrchestrator
from deploy_worker.transfer import RetryPolicy, TransferEngine

SITE_URL = "http://sites.test"
BUILD_SITE = "mkdir -p out && cp index.html out/ && echo built"


def out_dir(project_dir: Path) -> Path:
    return project_dir / "out"


async def create_claimed_job(repository, store, job_id: str, files: dict[str, bytes] | None = None):
    await repository.create_job(
        Job(id=job_id, owner_id="u1", repository_url="repoA", status=JobStatus.BUILDING)
    )
    for name, data in (files if files is not None else {"index.html": b"<h1>hi</h1>"}).items():
        await store.put_object(f"source-codes/{job_id}/{name}", data)


@pytest.fixture
def work_dir(tmp_path):
    return tmp_path / "work"


@pytest.fixture
def make_orchestrator(repository, store, work_dir):
    def factory(command: str = BUILD_SITE, executor=None, **kwargs) -> PipelineOrchestrator:
        return PipelineOrchestrator(
            repository=repository,
            transfer=TransferEngine(store, retry_policy=RetryPolicy(base_delay=0)),
            executor=executor or BuildExecutor(command=command, output_resolver=out_dir),
            site_base_url=SITE_URL,
            temp_root=work_dir,
            **kwargs,
        )

    return factory


def leftover_dirs(work_dir: Path) -> list[Path]:
    return list(work_dir.iterdir()) if work_dir.exists() else []


@pytest.mark.asyncio
async def test_successful_deployment(repository, store, work_dir, make_orchestrator):
    await create_claimed_job(repository, store, "abc12")
    orchestrator = make_orchestrator()

    status = await orchestrator.process("abc12")

    assert status == JobStatus.READY
    job = await repository.get_job("abc12")
    assert job.status == JobStatus.READY
    assert job.result_url == f"{SITE_URL}/view/abc12"
    assert await store.get_object("live-sites/abc12/index.html") == b"<h1>hi</h1>"

    logs = [e.content for e in await repository.get_log_entries("abc12")]
    assert "built" in logs
    assert logs[-1] == "Successfully deployed site!"

    assert leftover_dirs(work_dir) == []
    assert orchestrator.busy_slots == 0
    assert orchestrator.active_jobs == {}


@pytest.mark.asyncio
async def test_build_failure_marks_failed(repository, store, work_dir, make_orchestrator):
    await create_claimed_job(repository, store, "abc12")
    orchestrator = make_orchestrator(command="echo compile error; exit 2")

    status = await orchestrator.process("abc12")

    assert status == JobStatus.FAILED
    job = await repository.get_job("abc12")
    assert job.status == JobStatus.FAILED
    assert job.result_url is None
    logs = [e.content for e in await repository.get_log_entries("abc12")]
    assert "compile error" in logs
    assert any("exit code 2" in line for line in logs)
    assert (await store.list_keys("live-sites/abc12/")).keys == []
    assert leftover_dirs(work_dir) == []


@pytest.mark.asyncio
async def test_missing_source_marks_failed(repository, store, make_orchestrator):
    await create_claimed_job(repository, store, "abc12", files={})
    orchestrator = make_orchestrator()

    assert await orchestrator.process("abc12") == JobStatus.FAILED


@pytest.mark.asyncio
async def test_timeout_marks_timed_out_and_cleans_up(repository, store, work_dir, make_orchestrator):
    await create_claimed_job(repository, store, "abc12")
    orchestrator = make_orchestrator(command="sleep 30", timeout=0.5)

    started = time.monotonic()
    status = await orchestrator.process("abc12")

    assert status == JobStatus.TIMED_OUT
    assert time.monotonic() - started < 10
    job = await repository.get_job("abc12")
    assert job.status == JobStatus.TIMED_OUT
    assert job.result_url is None
    assert leftover_dirs(work_dir) == []
    assert orchestrator.busy_slots == 0


@pytest.mark.asyncio
async def test_cancelled_before_build_is_abandoned(repository, store, make_orchestrator, work_dir):
    await create_claimed_job(repository, store, "abc12")
    await repository.transition_status("abc12", (JobStatus.BUILDING,), JobStatus.CANCELLED)
    marker = work_dir.parent / "ran"
    orchestrator = make_orchestrator(command=f"touch {marker}; {BUILD_SITE}")

    assert await orchestrator.process("abc12") is None

    assert (await repository.get_job("abc12")).status == JobStatus.CANCELLED
    assert not marker.exists()


@pytest.mark.asyncio
async def test_cancel_during_build_is_not_overwritten(repository, store, make_orchestrator):
    await create_claimed_job(repository, store, "abc12")
    orchestrator = make_orchestrator(command=f"sleep 0.5 && {BUILD_SITE}")

    task = asyncio.create_task(orchestrator.process("abc12"))
    await asyncio.sleep(0.2)
    assert await repository.transition_status(
        "abc12", (JobStatus.BUILDING,), JobStatus.CANCELLED
    )

    assert await task is None
    job = await repository.get_job("abc12")
    assert job.status == JobStatus.CANCELLED
    assert job.result_url is None
    assert (await store.list_keys("live-sites/abc12/")).keys == []


class TrackingExecutor:
    """Fake executor that records how many builds overlap."""

    def __init__(self, duration: float = 0.2):
        self.duration = duration
        self.running = 0
        self.peak = 0
        self.envs: list[dict[str, str]] = []

    async def run(self, project_dir, env=None, sink=None):
        self.running += 1
        self.peak = max(self.peak, self.running)
        self.envs.append(dict(env or {}))
        try:
            await asyncio.sleep(self.duration)
            output = Path(project_dir) / "out"
            output.mkdir()
            (output / "index.html").write_text("ok")
            if sink is not None:
                sink.append("fake build")
            return ExecutionResult(exit_code=0, output_dir=output, line_count=1)
        finally:
            self.running -= 1


@pytest.mark.asyncio
async def test_worker_slots_bound_concurrency(repository, store, make_orchestrator):
    for i in range(5):
        await create_claimed_job(repository, store, f"job{i:02d}")
    executor = TrackingExecutor()
    orchestrator = make_orchestrator(executor=executor, max_workers=2)

    statuses = await asyncio.gather(*(orchestrator.process(f"job{i:02d}") for i in range(5)))

    assert statuses == [JobStatus.READY] * 5
    assert executor.peak == 2
    assert orchestrator.busy_slots == 0


@pytest.mark.asyncio
async def test_secrets_are_passed_to_the_build(repository, store, make_orchestrator):
    await create_claimed_job(repository, store, "abc12")
    await repository.save_secrets("abc12", {"VITE_API_URL": "https://api.test"})
    executor = TrackingExecutor(duration=0)
    orchestrator = make_orchestrator(executor=executor)

    await orchestrator.process("abc12")

    assert executor.envs == [{"VITE_API_URL": "https://api.test"}]
