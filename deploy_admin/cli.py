"""
Admin CLI for operating the deploy system.

Works directly on the database, queue and object store, without owner
checks, for inspecting and repairing deployments.
"""

import asyncio
import json
import os
import sys
from pathlib import Path

import click

from deploy_common.models import ACTIVE_STATUSES, JobStatus
from deploy_intake.service import parse_env_file
from deploy_persistence.local_object_store import LocalObjectStore
from deploy_persistence.sqlite_queue import SQLiteJobQueue
from deploy_persistence.sqlite_repository import SQLiteJobRepository
from deploy_worker.orchestrator import site_prefix_for, source_prefix_for
from deploy_worker.transfer import TransferEngine


def get_db_path() -> str:
    """Get the database path from environment variable or default."""
    return os.environ.get("DEPLOY_DB_PATH", "deploy_jobs.db")


def get_storage_root() -> str:
    return os.environ.get("DEPLOY_STORAGE_ROOT", "deploy_storage")


def get_queue_key() -> str:
    return os.environ.get("DEPLOY_QUEUE_KEY", "build-queue")


def get_repository() -> SQLiteJobRepository:
    """Get the repository instance."""
    return SQLiteJobRepository(get_db_path())


def get_queue() -> SQLiteJobQueue:
    return SQLiteJobQueue(get_db_path(), queue_key=get_queue_key())


def run_async(coro):
    """Helper to run async functions in CLI commands."""
    return asyncio.run(coro)


@click.group()
def cli():
    """Deploy Admin - Inspect and manage deployments."""
    pass


@cli.group()
def jobs():
    """Manage deployments."""
    pass


@cli.group()
def secrets():
    """Manage build secrets."""
    pass


@cli.group()
def queue():
    """Inspect the build queue."""
    pass


# ============================================================================
# Job Commands
# ============================================================================


@jobs.command("list")
@click.option("--owner", help="Only jobs of this owner")
@click.option("--active", is_flag=True, help="Only QUEUED or BUILDING jobs")
@click.option("--json", "json_output", is_flag=True, help="Output as JSON")
def jobs_list(owner: str | None, active: bool, json_output: bool):
    """List deployments, newest first."""

    async def list_jobs():
        repo = get_repository()
        await repo.initialize()

        try:
            if owner:
                found = await repo.find_owner_jobs(owner, ACTIVE_STATUSES if active else None)
            else:
                found = await repo.list_jobs()
                if active:
                    found = [j for j in found if j.status in ACTIVE_STATUSES]

            if json_output:
                click.echo(json.dumps([j.to_dict() for j in found], indent=2))
                return

            if not found:
                click.echo("No deployments found.")
                return

            click.echo(f"\n{'ID':<8} {'Owner':<20} {'Status':<10} {'Source':<50}")
            click.echo("-" * 90)
            for j in found:
                click.echo(f"{j.id:<8} {j.owner_id:<20} {j.status.value:<10} {j.source_location:<50}")
            click.echo()

        finally:
            await repo.close()

    run_async(list_jobs())


@jobs.command("show")
@click.argument("job_id")
def jobs_show(job_id: str):
    """Show one deployment."""

    async def show():
        repo = get_repository()
        await repo.initialize()

        try:
            job = await repo.get_job(job_id)
            if not job:
                click.echo(f"Error: Deployment not found: {job_id}", err=True)
                sys.exit(1)

            secret_keys = sorted(await repo.get_secrets(job_id))

            click.echo("\nDeployment Details:")
            click.echo(f"  ID:       {job.id}")
            click.echo(f"  Owner:    {job.owner_id}")
            click.echo(f"  Name:     {job.project_name or '-'}")
            click.echo(f"  Source:   {job.source_location}")
            click.echo(f"  Status:   {job.status.value}")
            click.echo(f"  Created:  {job.created_at.isoformat()}")
            click.echo(f"  URL:      {job.result_url or '-'}")
            click.echo(f"  Secrets:  {', '.join(secret_keys) or '-'}")
            click.echo()

        finally:
            await repo.close()

    run_async(show())


@jobs.command("logs")
@click.argument("job_id")
def jobs_logs(job_id: str):
    """Print a deployment's build log."""

    async def logs():
        repo = get_repository()
        await repo.initialize()

        try:
            if not await repo.job_exists(job_id):
                click.echo(f"Error: Deployment not found: {job_id}", err=True)
                sys.exit(1)
            for entry in await repo.get_log_entries(job_id):
                click.echo(f"{entry.timestamp.isoformat()}  {entry.content}")

        finally:
            await repo.close()

    run_async(logs())


@jobs.command("cancel")
@click.argument("job_id")
def jobs_cancel(job_id: str):
    """Cancel a QUEUED or BUILDING deployment."""

    async def cancel():
        repo = get_repository()
        await repo.initialize()

        try:
            job = await repo.get_job(job_id)
            if not job:
                click.echo(f"Error: Deployment not found: {job_id}", err=True)
                sys.exit(1)

            updated = await repo.transition_status(
                job_id, ACTIVE_STATUSES, JobStatus.CANCELLED
            )
            if not updated:
                click.echo(
                    f"Error: Cannot cancel a deployment that is already {job.status.value}",
                    err=True,
                )
                sys.exit(1)

            click.echo(f"✓ Deployment cancelled: {job_id}")

        finally:
            await repo.close()

    run_async(cancel())


@jobs.command("delete")
@click.argument("job_id")
@click.option("--yes", is_flag=True, help="Do not ask for confirmation")
def jobs_delete(job_id: str, yes: bool):
    """Delete a deployment with its source, live site, logs and secrets."""
    if not yes:
        click.confirm(f"Delete deployment {job_id} and its live site?", abort=True)

    async def delete():
        repo = get_repository()
        await repo.initialize()
        transfer = TransferEngine(LocalObjectStore(get_storage_root()))

        try:
            if not await repo.job_exists(job_id):
                click.echo(f"Error: Deployment not found: {job_id}", err=True)
                sys.exit(1)

            await transfer.delete_prefix(source_prefix_for(job_id) + "/")
            await transfer.delete_prefix(site_prefix_for(job_id) + "/")
            await repo.delete_job(job_id)

            click.echo(f"✓ Deployment deleted: {job_id}")

        finally:
            await repo.close()

    run_async(delete())


# ============================================================================
# Secret Commands
# ============================================================================


@secrets.command("set")
@click.argument("job_id")
@click.argument("pairs", nargs=-1, required=True)
def secrets_set(job_id: str, pairs: tuple[str, ...]):
    """Set KEY=VALUE secrets for a deployment."""
    values = {}
    for pair in pairs:
        key, sep, value = pair.partition("=")
        if not sep or not key.strip():
            click.echo(f"Error: Expected KEY=VALUE, got: {pair}", err=True)
            sys.exit(1)
        values[key.strip()] = value.strip()

    async def save():
        repo = get_repository()
        await repo.initialize()

        try:
            if not await repo.job_exists(job_id):
                click.echo(f"Error: Deployment not found: {job_id}", err=True)
                sys.exit(1)
            await repo.save_secrets(job_id, values)
            click.echo(f"✓ Saved {len(values)} secret(s) for {job_id}")

        finally:
            await repo.close()

    run_async(save())


@secrets.command("import")
@click.argument("job_id")
@click.argument("env_file", type=click.Path(exists=True, dir_okay=False, path_type=Path))
def secrets_import(job_id: str, env_file: Path):
    """Import secrets from a .env file."""
    values = parse_env_file(env_file.read_text())
    if not values:
        click.echo(f"Error: No KEY=VALUE lines found in {env_file}", err=True)
        sys.exit(1)

    async def save():
        repo = get_repository()
        await repo.initialize()

        try:
            if not await repo.job_exists(job_id):
                click.echo(f"Error: Deployment not found: {job_id}", err=True)
                sys.exit(1)
            await repo.save_secrets(job_id, values)
            click.echo(f"✓ Imported {len(values)} secret(s) for {job_id}")

        finally:
            await repo.close()

    run_async(save())


@secrets.command("list")
@click.argument("job_id")
def secrets_list(job_id: str):
    """List secret names (values are never printed)."""

    async def list_secrets():
        repo = get_repository()
        await repo.initialize()

        try:
            names = sorted(await repo.get_secrets(job_id))
            if not names:
                click.echo("No secrets found.")
                return
            for name in names:
                click.echo(name)

        finally:
            await repo.close()

    run_async(list_secrets())


# ============================================================================
# Queue Commands
# ============================================================================


@queue.command("size")
def queue_size():
    """Show the number of waiting job ids."""

    async def size():
        q = get_queue()
        await q.initialize()

        try:
            click.echo(str(await q.size()))

        finally:
            await q.close()

    run_async(size())


@queue.command("push")
@click.argument("job_id")
def queue_push(job_id: str):
    """Push a job id onto the queue (requeue a stuck QUEUED or READY job)."""

    async def push():
        repo = get_repository()
        await repo.initialize()
        q = get_queue()
        await q.initialize()

        try:
            job = await repo.get_job(job_id)
            if not job:
                click.echo(f"Error: Deployment not found: {job_id}", err=True)
                sys.exit(1)
            if job.status not in (JobStatus.QUEUED, JobStatus.READY):
                click.echo(
                    f"Error: Only QUEUED or READY deployments can be queued "
                    f"(current: {job.status.value})",
                    err=True,
                )
                sys.exit(1)

            await q.push(job_id)
            click.echo(f"✓ Queued: {job_id}")

        finally:
            await q.close()
            await repo.close()

    run_async(push())


if __name__ == "__main__":
    cli()
