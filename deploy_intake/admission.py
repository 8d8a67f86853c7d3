"""
Per-owner admission rules for new deployments.
"""

import logging

from deploy_common.errors import DuplicateActive, QuotaExceeded
from deploy_common.models import ACTIVE_STATUSES, Job
from deploy_common.repository import JobRepository

logger = logging.getLogger(__name__)

MAX_JOBS_PER_OWNER = 3


class AdmissionController:
    """
    Enforces at most one active job and at most ``max_jobs_per_owner`` jobs
    per owner.

    The checks read the store and do not lock it, so two submissions racing
    for the same owner can both be admitted.
    """

    def __init__(self, repository: JobRepository, max_jobs_per_owner: int = MAX_JOBS_PER_OWNER):
        self.repository = repository
        self.max_jobs_per_owner = max_jobs_per_owner

    async def check_limit(self, owner_id: str) -> None:
        """
        Raises:
            QuotaExceeded: If the owner has a QUEUED/BUILDING job or already
                owns the maximum number of jobs
        """
        active = await self.repository.find_owner_jobs(owner_id, ACTIVE_STATUSES)
        if active:
            logger.info(f"Owner {owner_id} rejected: deployment {active[0].id} in progress")
            raise QuotaExceeded(
                "You already have a deployment in progress. Please wait for it to finish."
            )

        total = await self.repository.count_owner_jobs(owner_id)
        if total >= self.max_jobs_per_owner:
            logger.info(f"Owner {owner_id} rejected: {total} deployments")
            raise QuotaExceeded(
                f"You can only have {self.max_jobs_per_owner} deployments total. "
                "Delete an old one to deploy again."
            )

    async def find_active(self, owner_id: str, repository_url: str, branch: str) -> Job | None:
        return await self.repository.find_active_job(owner_id, repository_url, branch)

    async def check_duplicate(self, owner_id: str, repository_url: str, branch: str) -> None:
        """
        Raises:
            DuplicateActive: If the owner already has a QUEUED/BUILDING job
                for the same repository and branch
        """
        existing = await self.find_active(owner_id, repository_url, branch)
        if existing is not None:
            raise DuplicateActive(existing.id)
