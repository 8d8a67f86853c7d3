"""
Deploy Worker module.

This module contains the job-processing core that runs independently of the
intake API: the queue poller, the per-job pipeline orchestrator, the build
executor with its log sink, and the object-store transfer engine.

The worker only shares the job queue, the database and the object store with
the intake; it can run as any number of separate processes.
"""

from .executor import BuildExecutor, ExecutionResult
from .log_sink import LogSink
from .orchestrator import PipelineOrchestrator
from .poller import JobPoller
from .transfer import RetryPolicy, TransferEngine, TransferResult

__all__ = [
    "BuildExecutor",
    "ExecutionResult",
    "JobPoller",
    "LogSink",
    "PipelineOrchestrator",
    "RetryPolicy",
    "TransferEngine",
    "TransferResult",
]
