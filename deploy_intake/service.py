"""
Deployment service: the operations exposed to users of the system.

Submission records a QUEUED job and returns immediately; the source is cloned
and staged in the object store by a background task, which then pushes the
job id onto the queue for a worker to claim.
"""

import asyncio
import logging
import secrets
import shutil
import string
import tempfile
from pathlib import Path

from deploy_common.errors import (
    DeployError,
    DuplicateActive,
    InvalidStateTransition,
    JobNotFound,
    Unauthorized,
)
from deploy_common.models import ACTIVE_STATUSES, Job, JobStatus, LogEntry
from deploy_common.repository import JobRepository
from deploy_common.storage import JobQueue
from deploy_worker.orchestrator import (
    SITE_PREFIX,
    SOURCE_PREFIX,
    site_prefix_for,
    source_prefix_for,
)
from deploy_worker.transfer import TransferEngine

from .admission import AdmissionController
from .fetcher import GitSourceFetcher

logger = logging.getLogger(__name__)

ID_ALPHABET = string.ascii_letters + string.digits
ID_LENGTH = 5
MAX_ID_ATTEMPTS = 10


def generate_id(length: int = ID_LENGTH) -> str:
    """Random alphanumeric deployment id."""
    return "".join(secrets.choice(ID_ALPHABET) for _ in range(length))


def parse_env_file(content: str) -> dict[str, str]:
    """
    Parse ``KEY=VALUE`` lines. Blank lines, ``#`` comments and lines without
    ``=`` are skipped; keys and values are trimmed.
    """
    parsed: dict[str, str] = {}
    for line in content.splitlines():
        stripped = line.strip()
        if not stripped or stripped.startswith("#"):
            continue
        key, sep, value = line.partition("=")
        if not sep:
            continue
        parsed[key.strip()] = value.strip()
    return parsed


def clean_secrets(values: dict[str, str]) -> dict[str, str]:
    """Trim keys and values; entries with a blank key are dropped."""
    return {key.strip(): value.strip() for key, value in values.items() if key.strip()}


def _is_git_metadata(relative_path: str) -> bool:
    return relative_path == ".git" or relative_path.startswith(".git/")


class DeploymentService:
    """
    Submission, cancellation, inspection and cleanup of deployments.

    Args:
        repository: Job repository
        queue: Queue shared with the workers
        transfer: Transfer engine bound to the object store
        fetcher: Source fetcher used to stage new submissions
        admission: Admission controller (defaults to the standard quota)
        temp_root: Parent directory for clone working directories
    """

    def __init__(
        self,
        repository: JobRepository,
        queue: JobQueue,
        transfer: TransferEngine,
        fetcher: GitSourceFetcher | None = None,
        admission: AdmissionController | None = None,
        temp_root: str | Path | None = None,
        source_prefix: str = SOURCE_PREFIX,
        site_prefix: str = SITE_PREFIX,
    ):
        self.repository = repository
        self.queue = queue
        self.transfer = transfer
        self.fetcher = fetcher or GitSourceFetcher()
        self.admission = admission or AdmissionController(repository)
        self.temp_root = Path(temp_root) if temp_root else None
        self.source_prefix = source_prefix
        self.site_prefix = site_prefix

        self._background: set[asyncio.Task] = set()

    # Submission

    async def submit(
        self,
        owner_id: str,
        repository_url: str,
        branch: str = "main",
        project_name: str | None = None,
        secrets: dict[str, str] | None = None,
    ) -> str:
        """
        Create a deployment for ``repository_url@branch``.

        Submitting a source that already has an active job returns that
        job's id instead of creating a new one; ``secrets`` are then ignored.
        Secrets of a new job are stored before its id can reach the queue.

        Returns:
            The deployment id

        Raises:
            QuotaExceeded: If the owner may not start another deployment
        """
        try:
            await self.admission.check_duplicate(owner_id, repository_url, branch)
        except DuplicateActive as e:
            logger.info(f"Owner {owner_id}: {e}")
            return e.existing_id

        await self.admission.check_limit(owner_id)

        job_id = await self._allocate_id()
        job = Job(
            id=job_id,
            owner_id=owner_id,
            repository_url=repository_url,
            branch=branch,
            status=JobStatus.QUEUED,
            project_name=project_name,
        )
        await self.repository.create_job(job)
        logger.info(f"Deployment {job_id} created for {job.source_location}")

        cleaned = clean_secrets(secrets or {})
        if cleaned:
            await self.repository.save_secrets(job_id, cleaned)
            logger.info(f"Saved {len(cleaned)} secrets for deployment {job_id}")

        task = asyncio.create_task(self._stage_source(job))
        self._background.add(task)
        task.add_done_callback(self._background.discard)
        return job_id

    async def _allocate_id(self) -> str:
        for _ in range(MAX_ID_ATTEMPTS):
            candidate = generate_id()
            if not await self.repository.job_exists(candidate):
                return candidate
        raise DeployError("Could not allocate a unique deployment id")

    async def _stage_source(self, job: Job) -> None:
        """Clone, upload to ``source-codes/<id>`` and enqueue."""
        temp_dir: Path | None = None
        try:
            temp_dir = await asyncio.to_thread(self._make_temp_dir, job.id)
            checkout = await self.fetcher.fetch(
                job.repository_url, job.branch, temp_dir / "repo"
            )
            await self.transfer.upload(
                checkout,
                source_prefix_for(job.id, self.source_prefix),
                exclude=_is_git_metadata,
            )
            await self.queue.push(job.id)
            logger.info(f"Deployment {job.id} added to the build queue")
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"Staging deployment {job.id} failed: {e}", exc_info=True)
            await self._fail_staging(job.id, str(e))
        finally:
            if temp_dir is not None:
                await asyncio.to_thread(shutil.rmtree, temp_dir, True)

    async def _fail_staging(self, job_id: str, message: str) -> None:
        try:
            await self.repository.add_log_entries(
                [LogEntry(job_id=job_id, content=f"Failed to fetch source: {message}")]
            )
            await self.repository.transition_status(
                job_id, (JobStatus.QUEUED,), JobStatus.FAILED
            )
        except Exception as e:
            logger.error(f"Could not mark deployment {job_id} as failed: {e}")

    def _make_temp_dir(self, job_id: str) -> Path:
        if self.temp_root is not None:
            self.temp_root.mkdir(parents=True, exist_ok=True)
        return Path(tempfile.mkdtemp(prefix=f"upload-{job_id}-", dir=self.temp_root))

    async def wait_background(self) -> None:
        """Wait for every staging task started so far."""
        while self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)

    async def close(self) -> None:
        for task in list(self._background):
            task.cancel()
        await asyncio.gather(*list(self._background), return_exceptions=True)

    # Queries

    async def _get_owned(self, job_id: str, owner_id: str) -> Job:
        job = await self.repository.get_job(job_id)
        if job is None:
            raise JobNotFound(job_id)
        if job.owner_id != owner_id:
            raise Unauthorized(f"You do not have access to deployment {job_id}")
        return job

    async def get_status(self, job_id: str, owner_id: str) -> Job:
        return await self._get_owned(job_id, owner_id)

    async def get_logs(self, job_id: str, owner_id: str) -> list[LogEntry]:
        """Build log lines in the order they were produced."""
        await self._get_owned(job_id, owner_id)
        return await self.repository.get_log_entries(job_id)

    async def list_jobs(self, owner_id: str, active_only: bool = False) -> list[Job]:
        if active_only:
            return await self.repository.find_owner_jobs(owner_id, ACTIVE_STATUSES)
        return await self.repository.find_owner_jobs(owner_id)

    # Mutations

    async def cancel(self, job_id: str, owner_id: str) -> None:
        """
        Cancel a QUEUED or BUILDING deployment.

        Raises:
            JobNotFound: If the deployment does not exist
            Unauthorized: If the caller does not own it
            InvalidStateTransition: If it already finished
        """
        job = await self._get_owned(job_id, owner_id)
        updated = await self.repository.transition_status(
            job_id, (JobStatus.QUEUED, JobStatus.BUILDING), JobStatus.CANCELLED
        )
        if not updated:
            # Re-read: the job may have finished since the first read
            current = await self.repository.get_job(job_id)
            status = current.status.value if current else job.status.value
            raise InvalidStateTransition(
                f"Cannot cancel a deployment that is already {status}"
            )
        logger.info(f"Deployment {job_id} cancelled by {owner_id}")

    async def redeploy(self, job_id: str, owner_id: str) -> None:
        """
        Rebuild a READY deployment from its staged source.

        Raises:
            InvalidStateTransition: If the deployment is not READY
        """
        job = await self._get_owned(job_id, owner_id)
        if job.status != JobStatus.READY:
            raise InvalidStateTransition(
                f"Only READY deployments can be redeployed (current: {job.status.value})"
            )
        await self.queue.push(job_id)
        logger.info(f"Deployment {job_id} queued for rebuild")

    async def delete(self, job_id: str, owner_id: str) -> None:
        """
        Remove a deployment with its secrets, source, live site and logs.

        Object-store failures are logged and do not stop the deletion.
        """
        await self._get_owned(job_id, owner_id)
        await self.transfer.delete_prefix(source_prefix_for(job_id, self.source_prefix) + "/")
        await self.transfer.delete_prefix(site_prefix_for(job_id, self.site_prefix) + "/")
        await self.repository.delete_job(job_id)
        logger.info(f"Deployment {job_id} deleted")

    async def save_secrets(self, job_id: str, owner_id: str, values: dict[str, str]) -> int:
        """
        Insert or update build secrets; keys and values are trimmed.

        Returns:
            Number of secrets written
        """
        await self._get_owned(job_id, owner_id)
        cleaned = clean_secrets(values)
        await self.repository.save_secrets(job_id, cleaned)
        logger.info(f"Saved {len(cleaned)} secrets for deployment {job_id}")
        return len(cleaned)

    @staticmethod
    def parse_env_file(content: str) -> dict[str, str]:
        return parse_env_file(content)
