"""
Abstract repository interface for job persistence.

This module defines the contract that any database implementation must follow,
allowing easy swapping between SQLite, PostgreSQL, MySQL, etc.
"""

from abc import ABC, abstractmethod
from collections.abc import Iterable

from .models import Job, JobStatus, LogEntry


class JobRepository(ABC):
    """
    Abstract base class for job, build log and secret storage.

    Implementations must provide async-safe access to job data and handle
    their own connection management. Status changes made by workers go through
    conditional updates so that concurrent writers cannot both succeed.
    """

    @abstractmethod
    async def create_job(self, job: Job) -> None:
        """
        Create a new job in the database.

        Args:
            job: Job object to persist

        Raises:
            Exception: If job with same ID already exists
        """
        pass

    @abstractmethod
    async def get_job(self, job_id: str) -> Job | None:
        """
        Retrieve a job by its ID.

        Returns:
            Job object if found, None otherwise
        """
        pass

    @abstractmethod
    async def job_exists(self, job_id: str) -> bool:
        pass

    @abstractmethod
    async def transition_status(
        self,
        job_id: str,
        expected: Iterable[JobStatus],
        new_status: JobStatus,
        result_url: str | None = None,
    ) -> bool:
        """
        Atomically move a job to ``new_status`` if it is in one of ``expected``.

        This is a single compare-and-set write against the store, never a
        read followed by a write.

        Args:
            job_id: ID of the job to update
            expected: Statuses the job must currently be in
            new_status: Status to set
            result_url: Optional URL to record together with the status

        Returns:
            True if exactly one row was updated, False otherwise
        """
        pass

    async def claim_job(self, job_id: str) -> bool:
        """
        Claim a job for building (QUEUED/READY -> BUILDING).

        Returns:
            True if this caller won the claim, False if the job was already
            claimed, cancelled, finished or does not exist
        """
        return await self.transition_status(
            job_id, (JobStatus.QUEUED, JobStatus.READY), JobStatus.BUILDING
        )

    @abstractmethod
    async def count_owner_jobs(self, owner_id: str) -> int:
        pass

    @abstractmethod
    async def find_owner_jobs(
        self, owner_id: str, statuses: Iterable[JobStatus] | None = None
    ) -> list[Job]:
        """
        List an owner's jobs, newest first, optionally filtered by status.
        """
        pass

    @abstractmethod
    async def find_active_job(
        self, owner_id: str, repository_url: str, branch: str
    ) -> Job | None:
        """
        Find the owner's QUEUED or BUILDING job for the given source, if any.
        """
        pass

    @abstractmethod
    async def list_jobs(self) -> list[Job]:
        pass

    @abstractmethod
    async def delete_job(self, job_id: str) -> None:
        """
        Delete a job together with its build logs and secrets.
        """
        pass

    # Build log methods

    @abstractmethod
    async def add_log_entries(self, entries: list[LogEntry]) -> None:
        """
        Persist a batch of log entries in one write.
        """
        pass

    @abstractmethod
    async def get_log_entries(self, job_id: str) -> list[LogEntry]:
        """
        Get a job's log entries ordered by timestamp ascending.
        """
        pass

    # Secret methods

    @abstractmethod
    async def save_secrets(self, job_id: str, secrets: dict[str, str]) -> None:
        """
        Insert or update secrets for a job, keyed by name.
        """
        pass

    @abstractmethod
    async def get_secrets(self, job_id: str) -> dict[str, str]:
        pass

    @abstractmethod
    async def initialize(self) -> None:
        """
        Initialize the database (create tables, etc.).

        Called once at application startup.
        """
        pass

    @abstractmethod
    async def close(self) -> None:
        """
        Close database connections and cleanup resources.

        Called at application shutdown.
        """
        pass
