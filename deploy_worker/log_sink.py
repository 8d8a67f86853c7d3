"""
Non-blocking persistence of build output.

The build's output reader appends lines to an unbounded in-memory buffer and
never waits on the database. A single background consumer drains the buffer
and writes batches to the repository.
"""

import asyncio
import logging

from deploy_common.models import LogEntry
from deploy_common.repository import JobRepository

logger = logging.getLogger(__name__)

DB_BATCH_SIZE = 100
POLL_TIMEOUT = 0.1


class LogSink:
    """
    Single-producer/single-consumer log pipeline for one job.

    Usage:
        async with LogSink(repository, job_id) as sink:
            sink.append("line")
        # all appended lines are persisted (best effort) once the block exits

    Args:
        repository: Where batches are persisted
        job_id: Job the lines belong to
        batch_size: Maximum entries per write
        poll_timeout: Seconds to wait for new entries before re-checking
    """

    def __init__(
        self,
        repository: JobRepository,
        job_id: str,
        batch_size: int = DB_BATCH_SIZE,
        poll_timeout: float = POLL_TIMEOUT,
    ):
        self.repository = repository
        self.job_id = job_id
        self.batch_size = batch_size
        self.poll_timeout = poll_timeout

        self._queue: asyncio.Queue[LogEntry] = asyncio.Queue()
        self._closed = False
        self._consumer: asyncio.Task | None = None
        self.persisted = 0
        self.dropped = 0

    def append(self, line: str) -> None:
        """
        Buffer one line for persistence. Never blocks.
        """
        self._queue.put_nowait(LogEntry(job_id=self.job_id, content=line))

    def start(self) -> None:
        if self._consumer is None:
            self._consumer = asyncio.create_task(self.drain())

    async def close(self) -> None:
        """
        Signal that no more lines will arrive and wait for the final flush.
        """
        self._closed = True
        if self._consumer is not None:
            await self._consumer

    async def __aenter__(self) -> "LogSink":
        self.start()
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    async def drain(self) -> None:
        """
        Consume the buffer until closed and empty, writing in batches.
        """
        batch: list[LogEntry] = []

        # Keep running while the producer is alive OR there are still entries
        while not self._closed or not self._queue.empty():
            entry = None
            try:
                entry = await asyncio.wait_for(
                    self._queue.get(), timeout=self.poll_timeout
                )
                batch.append(entry)
            except asyncio.TimeoutError:
                pass

            # Flush when full, or when the poll came back empty with leftovers
            if len(batch) >= self.batch_size or (entry is None and batch):
                await self._flush(batch)
                batch = []

        if batch:
            await self._flush(batch)

    async def _flush(self, batch: list[LogEntry]) -> None:
        try:
            await self.repository.add_log_entries(batch)
            self.persisted += len(batch)
        except Exception as e:
            # Logs are diagnostic only; drop the batch and keep going
            self.dropped += len(batch)
            logger.error(
                f"Failed to save {len(batch)} log lines for job {self.job_id}: {e}",
                exc_info=True,
            )
