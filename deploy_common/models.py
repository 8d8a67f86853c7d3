"""
Data models for deployment job storage.

These models represent the domain objects used throughout the application,
independent of the underlying storage mechanism.
"""

from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any

MAX_LOG_LINE_LENGTH = 5000


class JobStatus(str, Enum):
    """
    Lifecycle states of a deployment job.

    QUEUED and BUILDING are the only non-terminal states.
    """

    QUEUED = "QUEUED"
    BUILDING = "BUILDING"
    READY = "READY"
    FAILED = "FAILED"
    TIMED_OUT = "TIMED_OUT"
    CANCELLED = "CANCELLED"

    @property
    def is_terminal(self) -> bool:
        return self not in ACTIVE_STATUSES


ACTIVE_STATUSES = frozenset({JobStatus.QUEUED, JobStatus.BUILDING})

# States a worker may claim from. READY is included so a finished site can be
# rebuilt by pushing its id onto the queue again.
CLAIMABLE_STATUSES = frozenset({JobStatus.QUEUED, JobStatus.READY})


@dataclass
class LogEntry:
    """
    A single line of build output belonging to a job.

    Entries are append-only and ordered by timestamp within a job.
    """

    job_id: str
    content: str
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))

    def __post_init__(self) -> None:
        if len(self.content) > MAX_LOG_LINE_LENGTH:
            self.content = self.content[:MAX_LOG_LINE_LENGTH]

    def to_dict(self) -> dict[str, Any]:
        """Convert entry to dictionary format (for API responses)."""
        return {
            "content": self.content,
            "timestamp": self.timestamp.isoformat(),
        }


@dataclass
class Job:
    """
    Represents one submitted build-and-deploy request and its lifecycle.

    Jobs progress through states: QUEUED -> BUILDING -> READY
    Additional terminal states: FAILED, TIMED_OUT, CANCELLED
    """

    id: str
    owner_id: str
    repository_url: str
    branch: str = "main"
    status: JobStatus = JobStatus.QUEUED
    created_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    result_url: str | None = None
    project_name: str | None = None

    @property
    def source_location(self) -> str:
        """Repository URL and branch in ``url@branch`` form."""
        return f"{self.repository_url}@{self.branch}"

    def to_dict(self) -> dict[str, Any]:
        """Convert job to dictionary format (for API responses)."""
        return {
            "id": self.id,
            "owner_id": self.owner_id,
            "repository_url": self.repository_url,
            "branch": self.branch,
            "project_name": self.project_name,
            "status": self.status.value,
            "created_at": self.created_at.isoformat(),
            "result_url": self.result_url,
        }
