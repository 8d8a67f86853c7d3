"""
Queue poller that claims jobs and hands them to the orchestrator.

The poller never waits on build work: each claimed job becomes its own task
and waits for a worker slot inside the orchestrator.
"""

import asyncio
import logging

from deploy_common.repository import JobRepository
from deploy_common.storage import JobQueue

from .orchestrator import PipelineOrchestrator

logger = logging.getLogger(__name__)


class JobPoller:
    """
    Fixed-interval loop that pops job ids, claims them and dispatches them.

    Args:
        queue: Job queue shared with the intake
        repository: Job repository used for the atomic claim
        orchestrator: Pipeline runner for claimed jobs
        poll_interval: Fixed delay in seconds between polls
    """

    def __init__(
        self,
        queue: JobQueue,
        repository: JobRepository,
        orchestrator: PipelineOrchestrator,
        poll_interval: float = 1.0,
    ):
        self.queue = queue
        self.repository = repository
        self.orchestrator = orchestrator
        self.poll_interval = poll_interval

        self._running = False
        self._task: asyncio.Task | None = None
        self._jobs: dict[str, asyncio.Task] = {}

    @property
    def in_flight(self) -> list[str]:
        return list(self._jobs)

    async def start(self) -> None:
        """Start the polling loop."""
        if self._running:
            logger.warning("Poller already running")
            return

        # Fail fast if the queue is unreachable
        size = await self.queue.size()
        logger.info(f"Queue reachable, {size} job(s) waiting")

        self._running = True
        self._task = asyncio.create_task(self._run_loop())
        logger.info("Job poller started")

    async def stop(self, grace_period: float = 30.0) -> None:
        """
        Stop polling, then give in-flight jobs ``grace_period`` seconds to
        finish before cancelling them.
        """
        if not self._running:
            return

        logger.info("Stopping job poller...")
        self._running = False

        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None

        pending = list(self._jobs.values())
        if pending:
            logger.info(f"Waiting up to {grace_period}s for {len(pending)} job(s)")
            _, still_running = await asyncio.wait(pending, timeout=grace_period)
            for task in still_running:
                task.cancel()
            if still_running:
                logger.warning(f"Cancelled {len(still_running)} job(s) after grace period")
                await asyncio.gather(*still_running, return_exceptions=True)

        logger.info("Job poller stopped")

    async def _run_loop(self) -> None:
        """Main polling loop."""
        while self._running:
            try:
                await self.poll_once()
                await asyncio.sleep(self.poll_interval)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error(f"Error in polling loop: {e}", exc_info=True)
                await asyncio.sleep(self.poll_interval)

    async def poll_once(self) -> str | None:
        """
        Pop one job id, claim it and dispatch it.

        Returns:
            The dispatched job id, or None if the queue was empty or the
            claim was lost
        """
        job_id = await self.queue.pop()
        if job_id is None:
            return None

        if not await self.repository.claim_job(job_id):
            logger.warning(f"Job {job_id} skipped (already building or cancelled).")
            return None

        logger.info(f"Job {job_id} locked. Status set to BUILDING.")
        task = asyncio.create_task(self.orchestrator.process(job_id))
        self._jobs[job_id] = task
        task.add_done_callback(lambda _t, jid=job_id: self._jobs.pop(jid, None))
        return job_id

    async def wait_idle(self) -> None:
        """Wait until every dispatched job has finished."""
        while self._jobs:
            await asyncio.gather(*list(self._jobs.values()), return_exceptions=True)
