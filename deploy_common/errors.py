"""Exception hierarchy for the deploy system."""


class DeployError(Exception):
    """Base exception for all deploy system errors."""


class QuotaExceeded(DeployError):
    """The owner already has an active job or reached the job cap."""


class DuplicateActive(DeployError):
    """An active job already exists for the same owner and source."""

    def __init__(self, existing_id: str):
        super().__init__(f"Deployment {existing_id} is already in progress")
        self.existing_id = existing_id


class JobNotFound(DeployError):
    """No job exists with the requested id (or it belongs to someone else)."""

    def __init__(self, job_id: str):
        super().__init__(f"Deployment {job_id} not found")
        self.job_id = job_id


class Unauthorized(DeployError):
    """The caller does not own the job it tried to act on."""


class InvalidStateTransition(DeployError):
    """The requested transition is not allowed from the job's current state."""


class FetchFailed(DeployError):
    """The source repository could not be materialized on disk."""


class BuildFailed(DeployError):
    """The build subprocess exited with a non-zero code."""

    def __init__(self, exit_code: int, tail: list[str] | None = None):
        super().__init__(f"Build failed with exit code {exit_code}")
        self.exit_code = exit_code
        self.tail = tail or []


class OutputMissing(DeployError):
    """The build finished but the expected output directory does not exist."""


class UnsupportedProject(DeployError):
    """The project cannot be deployed as a static site."""


class TransferFailed(DeployError):
    """One or more files could not be transferred after all retries."""

    def __init__(self, message: str, failed_keys: list[str] | None = None):
        super().__init__(message)
        self.failed_keys = failed_keys or []


class UploadFailed(TransferFailed):
    pass


class DownloadFailed(TransferFailed):
    pass


class JobTimedOut(DeployError):
    """The pipeline did not finish within its deadline."""


class TransientIOFailure(DeployError):
    """A retryable object-store failure."""


class BranchLookupFailed(DeployError):
    """The branches of a repository could not be listed."""
