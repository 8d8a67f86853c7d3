import argparse
import asyncio
import logging
import os
from contextlib import asynccontextmanager
from typing import Any

import uvicorn
from fastapi import Depends, FastAPI, Header, HTTPException
from pydantic import BaseModel, Field

from deploy_common.errors import (
    BranchLookupFailed,
    DeployError,
    InvalidStateTransition,
    JobNotFound,
    QuotaExceeded,
    Unauthorized,
)
from deploy_persistence.local_object_store import LocalObjectStore
from deploy_persistence.sqlite_queue import SQLiteJobQueue
from deploy_persistence.sqlite_repository import SQLiteJobRepository
from deploy_worker.transfer import TransferEngine

from .branches import GITHUB_API_URL, GitHubBranchLister
from .service import DeploymentService

# Configure logging
logging.basicConfig(
    level=logging.INFO, format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)

# Global instance (initialized at startup)
service: DeploymentService | None = None
branch_lister: GitHubBranchLister | None = None


def get_database_path() -> str:
    """
    Environment variables:
    - DEPLOY_DB_PATH: Custom database path (useful for testing)
    """
    return os.environ.get("DEPLOY_DB_PATH", "deploy_jobs.db")


def get_storage_root() -> str:
    return os.environ.get("DEPLOY_STORAGE_ROOT", "deploy_storage")


def get_queue_key() -> str:
    return os.environ.get("DEPLOY_QUEUE_KEY", "build-queue")


def get_temp_dir() -> str | None:
    return os.environ.get("DEPLOY_TEMP_DIR") or None


def get_github_api_url() -> str:
    return os.environ.get("DEPLOY_GITHUB_API_URL", GITHUB_API_URL)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Lifespan context manager for FastAPI app.

    - Startup: Open the database, queue and object store
    - Shutdown: Stop staging tasks and close connections

    Note: At least one deploy-worker must be running to build queued jobs.
    """
    global service

    db_path = get_database_path()
    repository = SQLiteJobRepository(db_path)
    await repository.initialize()
    queue = SQLiteJobQueue(db_path, queue_key=get_queue_key())
    await queue.initialize()

    service = DeploymentService(
        repository=repository,
        queue=queue,
        transfer=TransferEngine(LocalObjectStore(get_storage_root())),
        temp_root=get_temp_dir(),
    )
    logger.info(f"Intake ready (database: {db_path})")

    yield

    await service.close()
    await queue.close()
    await repository.close()
    service = None


app = FastAPI(lifespan=lifespan)


def get_service() -> DeploymentService:
    """
    Raises:
        RuntimeError: If the service is not initialized
    """
    if service is None:
        raise RuntimeError("Service not initialized")
    return service


def get_branch_lister() -> GitHubBranchLister:
    global branch_lister
    if branch_lister is None:
        branch_lister = GitHubBranchLister(api_url=get_github_api_url())
    return branch_lister


def get_owner_id(x_owner_id: str = Header(..., min_length=1)) -> str:
    """Caller identity, supplied by the fronting gateway."""
    return x_owner_id


# Public https remotes only: no local paths, file://, ssh or credentials
REPOSITORY_URL_PATTERN = r"^https://[A-Za-z0-9.-]+(:[0-9]+)?/[A-Za-z0-9._~/-]+$"
BRANCH_PATTERN = r"^[A-Za-z0-9._/][A-Za-z0-9._/-]*$"


class SubmitRequest(BaseModel):
    repository_url: str = Field(..., max_length=500, pattern=REPOSITORY_URL_PATTERN)
    branch: str = Field(default="main", max_length=255, pattern=BRANCH_PATTERN)
    project_name: str | None = Field(default=None, max_length=100)
    secrets: dict[str, str] = Field(default_factory=dict)
    env_file: str | None = None


class SecretsRequest(BaseModel):
    secrets: dict[str, str] = Field(default_factory=dict)
    env_file: str | None = None


def merge_secrets(
    svc: DeploymentService, secrets: dict[str, str], env_file: str | None
) -> dict[str, str]:
    """Secrets from .env text, overridden by explicit entries."""
    values: dict[str, str] = {}
    if env_file:
        values.update(svc.parse_env_file(env_file))
    values.update(secrets)
    return values


def to_http_error(error: DeployError) -> HTTPException:
    """Map a domain error onto an HTTP status code."""
    if isinstance(error, BranchLookupFailed):
        return HTTPException(status_code=400, detail=str(error))
    if isinstance(error, QuotaExceeded):
        return HTTPException(status_code=429, detail=str(error))
    if isinstance(error, Unauthorized):
        return HTTPException(status_code=403, detail=str(error))
    if isinstance(error, JobNotFound):
        return HTTPException(status_code=404, detail=str(error))
    if isinstance(error, InvalidStateTransition):
        return HTTPException(status_code=409, detail=str(error))
    logger.error(f"Unhandled deploy error: {error}")
    return HTTPException(status_code=500, detail=str(error))


@app.get("/health")
async def health_check() -> dict[str, str]:
    """Health check endpoint (no owner header required)."""
    return {"status": "ok"}


@app.get("/branches", dependencies=[Depends(get_owner_id)])
async def list_branches(
    repository_url: str,
    x_github_token: str | None = Header(default=None),
    lister: GitHubBranchLister = Depends(get_branch_lister),
) -> list[dict[str, Any]]:
    """
    Branches of a GitHub repository. Private repositories need a token in
    the X-GitHub-Token header.
    """
    try:
        return await asyncio.to_thread(lister.list_branches, repository_url, x_github_token)
    except DeployError as e:
        raise to_http_error(e)


@app.post("/deployments", status_code=202)
async def submit_deployment(
    body: SubmitRequest,
    owner_id: str = Depends(get_owner_id),
    svc: DeploymentService = Depends(get_service),
) -> dict[str, str]:
    """
    Queue a deployment and return its id immediately.

    A repeated submission of a source that is still queued or building
    returns the existing id. Build secrets may be sent along, as a mapping
    and/or .env text, so they are stored before the job can be built.
    """
    values = merge_secrets(svc, body.secrets, body.env_file)
    try:
        job_id = await svc.submit(
            owner_id, body.repository_url, body.branch, body.project_name, secrets=values
        )
    except DeployError as e:
        raise to_http_error(e)
    return {"id": job_id}


@app.get("/deployments")
async def list_deployments(
    active: bool = False,
    owner_id: str = Depends(get_owner_id),
    svc: DeploymentService = Depends(get_service),
) -> list[dict[str, Any]]:
    jobs = await svc.list_jobs(owner_id, active_only=active)
    return [job.to_dict() for job in jobs]


@app.get("/deployments/{job_id}")
async def get_deployment(
    job_id: str,
    owner_id: str = Depends(get_owner_id),
    svc: DeploymentService = Depends(get_service),
) -> dict[str, Any]:
    try:
        job = await svc.get_status(job_id, owner_id)
    except DeployError as e:
        raise to_http_error(e)
    return job.to_dict()


@app.get("/deployments/{job_id}/logs")
async def get_deployment_logs(
    job_id: str,
    owner_id: str = Depends(get_owner_id),
    svc: DeploymentService = Depends(get_service),
) -> list[dict[str, Any]]:
    try:
        entries = await svc.get_logs(job_id, owner_id)
    except DeployError as e:
        raise to_http_error(e)
    return [entry.to_dict() for entry in entries]


@app.post("/deployments/{job_id}/cancel")
async def cancel_deployment(
    job_id: str,
    owner_id: str = Depends(get_owner_id),
    svc: DeploymentService = Depends(get_service),
) -> dict[str, str]:
    try:
        await svc.cancel(job_id, owner_id)
    except DeployError as e:
        raise to_http_error(e)
    return {"id": job_id, "status": "CANCELLED"}


@app.post("/deployments/{job_id}/redeploy", status_code=202)
async def redeploy_deployment(
    job_id: str,
    owner_id: str = Depends(get_owner_id),
    svc: DeploymentService = Depends(get_service),
) -> dict[str, str]:
    try:
        await svc.redeploy(job_id, owner_id)
    except DeployError as e:
        raise to_http_error(e)
    return {"id": job_id}


@app.put("/deployments/{job_id}/secrets")
async def put_secrets(
    job_id: str,
    body: SecretsRequest,
    owner_id: str = Depends(get_owner_id),
    svc: DeploymentService = Depends(get_service),
) -> dict[str, int]:
    """
    Upsert build secrets, given as a mapping and/or the text of a .env file.
    Explicit entries win over the file.
    """
    values = merge_secrets(svc, body.secrets, body.env_file)
    if not values:
        raise HTTPException(status_code=422, detail="No secrets provided")

    try:
        saved = await svc.save_secrets(job_id, owner_id, values)
    except DeployError as e:
        raise to_http_error(e)
    return {"saved": saved}


@app.delete("/deployments/{job_id}")
async def delete_deployment(
    job_id: str,
    owner_id: str = Depends(get_owner_id),
    svc: DeploymentService = Depends(get_service),
) -> dict[str, str]:
    try:
        await svc.delete(job_id, owner_id)
    except DeployError as e:
        raise to_http_error(e)
    return {"id": job_id, "status": "DELETED"}


def main(argv: list[str] | None = None) -> int:
    """Serve the intake API with uvicorn."""
    parser = argparse.ArgumentParser(description="Deploy Intake API server")
    parser.add_argument("--host", default=os.environ.get("DEPLOY_HOST", "127.0.0.1"))
    parser.add_argument("--port", type=int, default=int(os.environ.get("DEPLOY_PORT", "8000")))
    parser.add_argument(
        "--log-level",
        default="info",
        choices=["debug", "info", "warning", "error", "critical"],
    )
    args = parser.parse_args(argv)

    uvicorn.run(app, host=args.host, port=args.port, log_level=args.log_level)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
