"""
Abstract interfaces for the object store and the job queue.

The intake and worker roles only share a job queue and a key-addressed
object store; neither calls the other directly.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field


@dataclass
class ListPage:
    """One page of a prefix listing."""

    keys: list[str] = field(default_factory=list)
    continuation_token: str | None = None  # None when this is the last page


class ObjectStore(ABC):
    """
    Minimal client contract for a bucket-style object store.
    """

    @abstractmethod
    async def list_keys(
        self, prefix: str, continuation_token: str | None = None
    ) -> ListPage:
        """
        List keys starting with ``prefix``, one page at a time.

        Args:
            prefix: Key prefix to match
            continuation_token: Token returned by the previous page, if any

        Returns:
            ListPage with the keys of this page and the next token
        """
        pass

    @abstractmethod
    async def get_object(self, key: str) -> bytes:
        """
        Raises:
            KeyError: If the key does not exist
        """
        pass

    @abstractmethod
    async def put_object(self, key: str, data: bytes) -> None:
        pass

    @abstractmethod
    async def delete_prefix(self, prefix: str) -> int:
        """
        Delete every object whose key starts with ``prefix``.

        Returns:
            Number of objects deleted
        """
        pass

    async def close(self) -> None:
        pass


class JobQueue(ABC):
    """
    FIFO hand-off of job ids between intake and worker processes.

    Delivery is at-least-once; consumers must tolerate duplicates.
    """

    @abstractmethod
    async def push(self, job_id: str) -> None:
        """Append a job id to the tail of the queue."""
        pass

    @abstractmethod
    async def pop(self) -> str | None:
        """Remove and return the head of the queue, or None if empty."""
        pass

    @abstractmethod
    async def size(self) -> int:
        pass

    async def close(self) -> None:
        pass
