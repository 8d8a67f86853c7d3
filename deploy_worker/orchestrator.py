"""
Supervised per-job pipeline: download, build, upload, finalize, clean up.

A claimed job runs inside a worker slot (bounded semaphore) under a
wall-clock deadline. Whatever happens, the temporary directory is removed
and the slot is released.
"""

import asyncio
import logging
import shutil
import tempfile
from pathlib import Path

from deploy_common.errors import DownloadFailed, JobTimedOut
from deploy_common.models import Job, JobStatus, LogEntry
from deploy_common.repository import JobRepository

from .executor import BuildExecutor
from .log_sink import LogSink
from .transfer import TransferEngine

logger = logging.getLogger(__name__)

DEFAULT_MAX_WORKERS = 3
DEPLOYMENT_TIMEOUT_SECONDS = 20 * 60
SOURCE_PREFIX = "source-codes"
SITE_PREFIX = "live-sites"


class JobAbandoned(Exception):
    """The job was cancelled while the pipeline was running."""


def source_prefix_for(job_id: str, base: str = SOURCE_PREFIX) -> str:
    return f"{base}/{job_id}"


def site_prefix_for(job_id: str, base: str = SITE_PREFIX) -> str:
    return f"{base}/{job_id}"


class PipelineOrchestrator:
    """
    Runs claimed jobs with bounded concurrency and a per-job deadline.

    Args:
        repository: Job repository (status, logs, secrets)
        transfer: Transfer engine bound to the object store
        executor: Build executor
        max_workers: Number of worker slots (concurrent pipelines)
        timeout: Seconds allowed for download + build + upload
        site_base_url: Base URL the live sites are served from
        temp_root: Parent directory for per-job working directories
    """

    def __init__(
        self,
        repository: JobRepository,
        transfer: TransferEngine,
        executor: BuildExecutor | None = None,
        max_workers: int = DEFAULT_MAX_WORKERS,
        timeout: float = DEPLOYMENT_TIMEOUT_SECONDS,
        site_base_url: str = "http://localhost:8080",
        temp_root: str | Path | None = None,
        source_prefix: str = SOURCE_PREFIX,
        site_prefix: str = SITE_PREFIX,
    ):
        self.repository = repository
        self.transfer = transfer
        self.executor = executor or BuildExecutor()
        self.max_workers = max_workers
        self.timeout = timeout
        self.site_base_url = site_base_url.rstrip("/")
        self.temp_root = Path(temp_root) if temp_root else None
        self.source_prefix = source_prefix
        self.site_prefix = site_prefix

        self._slots = asyncio.Semaphore(max_workers)
        self._busy = 0
        # Track active jobs and their working directories
        self.active_jobs: dict[str, Path] = {}

    @property
    def busy_slots(self) -> int:
        return self._busy

    def result_url_for(self, job_id: str) -> str:
        return f"{self.site_base_url}/view/{job_id}"

    async def process(self, job_id: str) -> JobStatus | None:
        """
        Run the full pipeline for a job that has already been claimed.

        Blocks while all worker slots are busy.

        Returns:
            The terminal status written, or None if the job was abandoned
            or its status could not be finalized
        """
        async with self._slots:
            self._busy += 1
            temp_dir: Path | None = None
            try:
                temp_dir = await asyncio.to_thread(self._make_temp_dir, job_id)
                self.active_jobs[job_id] = temp_dir

                result_url = await self._run_with_deadline(job_id, temp_dir)
                return await self._finalize(job_id, JobStatus.READY, result_url)

            except JobAbandoned:
                logger.warning(f"Job {job_id} was cancelled, abandoning pipeline")
                return None
            except JobTimedOut as e:
                logger.error(f"[TIMEOUT] Deployment {job_id}: {e}")
                await self._record_log(job_id, f"Deployment timed out: {e}")
                return await self._finalize(job_id, JobStatus.TIMED_OUT)
            except Exception as e:
                logger.error(f"[FAILED] Deployment {job_id} failed: {e}", exc_info=True)
                await self._record_log(job_id, f"Deployment failed: {e}")
                return await self._finalize(job_id, JobStatus.FAILED)
            finally:
                self.active_jobs.pop(job_id, None)
                if temp_dir is not None:
                    await asyncio.to_thread(self._remove_temp_dir, job_id, temp_dir)
                self._busy -= 1

    async def _run_with_deadline(self, job_id: str, temp_dir: Path) -> str:
        try:
            async with asyncio.timeout(self.timeout) as deadline:
                return await self._run_pipeline(job_id, temp_dir)
        except TimeoutError as e:
            if deadline.expired():
                raise JobTimedOut(
                    f"took longer than {self.timeout:g} seconds"
                ) from e
            raise

    async def _run_pipeline(self, job_id: str, temp_dir: Path) -> str:
        logger.info(f"[BUILD_START] ID: {job_id}")

        # A. Download source
        source_dir = temp_dir / "source"
        downloaded = await self.transfer.download(
            source_prefix_for(job_id, self.source_prefix), source_dir
        )
        if downloaded.file_count == 0:
            raise DownloadFailed(f"No source files found for deployment {job_id}")

        # B. Resolve secrets
        secrets = await self.repository.get_secrets(job_id)
        logger.info(f"Fetched {len(secrets)} environment variables for build.")

        await self._ensure_not_cancelled(job_id)

        # C. Build with streamed logs
        async with LogSink(self.repository, job_id) as sink:
            result = await self.executor.run(source_dir, secrets, sink)
        logger.info(f"Build completed for {job_id} ({result.line_count} lines)")

        await self._ensure_not_cancelled(job_id)

        # D. Upload artifacts
        destination = site_prefix_for(job_id, self.site_prefix)
        await self.transfer.upload(result.output_dir, destination)

        return self.result_url_for(job_id)

    async def _ensure_not_cancelled(self, job_id: str) -> None:
        job: Job | None = await self.repository.get_job(job_id)
        if job is None or job.status == JobStatus.CANCELLED:
            raise JobAbandoned(job_id)

    async def _finalize(
        self, job_id: str, status: JobStatus, result_url: str | None = None
    ) -> JobStatus | None:
        """
        Move BUILDING -> ``status``. A cancelled job is left untouched.
        """
        try:
            updated = await self.repository.transition_status(
                job_id, (JobStatus.BUILDING,), status, result_url=result_url
            )
        except Exception as e:
            logger.error(f"Error finalizing job {job_id}: {e}", exc_info=True)
            return None

        if not updated:
            logger.warning(
                f"Job {job_id} was not in BUILDING state, leaving status unchanged"
            )
            return None

        if status == JobStatus.READY:
            await self._record_log(job_id, "Successfully deployed site!")
            logger.info(f"[BUILD_SUCCESS] ID: {job_id} is live at {result_url}")
        else:
            logger.info(f"Job {job_id} finalized as {status.value}")
        return status

    async def _record_log(self, job_id: str, message: str) -> None:
        try:
            await self.repository.add_log_entries(
                [LogEntry(job_id=job_id, content=message)]
            )
        except Exception as e:
            logger.error(f"Failed to save log line for job {job_id}: {e}")

    def _make_temp_dir(self, job_id: str) -> Path:
        if self.temp_root is not None:
            self.temp_root.mkdir(parents=True, exist_ok=True)
        return Path(
            tempfile.mkdtemp(prefix=f"build-{job_id}-", dir=self.temp_root)
        )

    def _remove_temp_dir(self, job_id: str, temp_dir: Path) -> None:
        try:
            shutil.rmtree(temp_dir)
            logger.info(f"[CLEANUP] Removed temp dir for {job_id}")
        except FileNotFoundError:
            pass
        except OSError as e:
            logger.error(f"Cleanup failed for {job_id}: {e}")
