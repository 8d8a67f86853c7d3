import argparse
import json
import os
import sys
import time
from datetime import datetime
from pathlib import Path

from .client import (
    cancel_deployment,
    delete_deployment,
    get_deployment,
    get_logs,
    list_branches,
    list_deployments,
    redeploy,
    set_secrets,
    submit_deployment,
)

TERMINAL_STATUSES = {"READY", "FAILED", "TIMED_OUT", "CANCELLED"}


def get_server_url() -> str:
    """
    Environment variables:
    - DEPLOY_SERVER_URL: Custom server URL (useful for testing with different ports)
    """
    return os.environ.get("DEPLOY_SERVER_URL", "http://localhost:8000")


def get_owner_id(cli_arg: str | None = None) -> str | None:
    """
    Owner id from ``--owner`` or the DEPLOY_OWNER_ID environment variable.
    """
    if cli_arg:
        return cli_arg
    return os.environ.get("DEPLOY_OWNER_ID") or None


def parse_pairs(pairs: list[str]) -> dict[str, str]:
    """
    Parse KEY=VALUE command line arguments.

    Raises:
        ValueError: If an argument has no "="
    """
    values = {}
    for pair in pairs:
        key, sep, value = pair.partition("=")
        if not sep:
            raise ValueError(f"expected KEY=VALUE, got {pair!r}")
        values[key] = value
    return values


def wait_for_deployment(
    job_id: str, owner_id: str, server_url: str, interval: float = 2.0
) -> str:
    """
    Poll a deployment, printing new log lines, until it reaches a final state.

    Returns:
        The final status
    """
    printed = 0
    while True:
        job = get_deployment(job_id, owner_id, server_url=server_url)
        entries = get_logs(job_id, owner_id, server_url=server_url)
        for entry in entries[printed:]:
            print(entry["content"], flush=True)
        printed = max(printed, len(entries))

        if job["status"] in TERMINAL_STATUSES:
            return job["status"]
        time.sleep(interval)


def main():
    """Main entry point for the deploy CLI."""
    parser = argparse.ArgumentParser(description="Static site deploy CLI")
    parser.add_argument(
        "--owner",
        dest="owner",
        help="Owner id (can also use DEPLOY_OWNER_ID env var)",
    )
    subparsers = parser.add_subparsers(dest="command")

    # deploy submit <repo_url> [--branch B] [--name N] [--wait]
    submit_parser = subparsers.add_parser("submit", help="Deploy a git repository")
    submit_parser.add_argument("repository_url", help="Git repository URL")
    submit_parser.add_argument("--branch", default="main", help="Branch to build (default: main)")
    submit_parser.add_argument("--name", dest="project_name", help="Display name")
    submit_parser.add_argument(
        "--wait",
        action="store_true",
        help="Stream build logs until the deployment finishes",
    )
    submit_parser.add_argument(
        "--secret",
        dest="secrets",
        action="append",
        default=[],
        metavar="KEY=VALUE",
        help="Build environment variable (repeatable)",
    )
    submit_parser.add_argument("--env-file", dest="env_file", help="Path to a .env file")

    # deploy branches <repo_url> [--token T]
    branches_parser = subparsers.add_parser("branches", help="List branches of a GitHub repository")
    branches_parser.add_argument("repository_url", help="GitHub repository URL")
    branches_parser.add_argument(
        "--token",
        default=os.environ.get("DEPLOY_GITHUB_TOKEN"),
        help="GitHub token for private repositories (or DEPLOY_GITHUB_TOKEN env var)",
    )

    # deploy status <id> [--json]
    status_parser = subparsers.add_parser("status", help="Show a deployment")
    status_parser.add_argument("job_id", help="Deployment ID")
    status_parser.add_argument("--json", dest="json_mode", action="store_true")

    # deploy logs <id> [--follow]
    logs_parser = subparsers.add_parser("logs", help="Print build logs")
    logs_parser.add_argument("job_id", help="Deployment ID")
    logs_parser.add_argument(
        "--follow", action="store_true", help="Keep printing until the build finishes"
    )

    cancel_parser = subparsers.add_parser("cancel", help="Cancel a queued or running deployment")
    cancel_parser.add_argument("job_id", help="Deployment ID")

    redeploy_parser = subparsers.add_parser("redeploy", help="Rebuild a live deployment")
    redeploy_parser.add_argument("job_id", help="Deployment ID")

    delete_parser = subparsers.add_parser("delete", help="Delete a deployment and its site")
    delete_parser.add_argument("job_id", help="Deployment ID")

    # deploy secrets <id> [KEY=VALUE ...] [--env-file PATH]
    secrets_parser = subparsers.add_parser("secrets", help="Set build environment variables")
    secrets_parser.add_argument("job_id", help="Deployment ID")
    secrets_parser.add_argument("pairs", nargs="*", help="KEY=VALUE pairs")
    secrets_parser.add_argument("--env-file", dest="env_file", help="Path to a .env file")

    # deploy list [--active] [--json]
    list_parser = subparsers.add_parser("list", help="List your deployments")
    list_parser.add_argument("--active", action="store_true", help="Only queued or building")
    list_parser.add_argument("--json", dest="json_mode", action="store_true")

    args = parser.parse_args()

    if args.command is None:
        parser.print_help()
        sys.exit(1)

    server_url = get_server_url()
    owner_id = get_owner_id(args.owner)
    if owner_id is None:
        print("Error: owner id required (--owner or DEPLOY_OWNER_ID)", file=sys.stderr)
        sys.exit(1)

    try:
        if args.command == "submit":
            env_file = Path(args.env_file).read_text() if args.env_file else None
            job_id = submit_deployment(
                args.repository_url,
                owner_id,
                branch=args.branch,
                project_name=args.project_name,
                server_url=server_url,
                secrets=parse_pairs(args.secrets),
                env_file=env_file,
            )
            print(f"Deployment submitted: {job_id}")
            if args.wait:
                status = wait_for_deployment(job_id, owner_id, server_url)
                print(f"Deployment {job_id} finished: {status}")
                if status == "READY":
                    job = get_deployment(job_id, owner_id, server_url=server_url)
                    print(f"Live at {job['result_url']}")
                sys.exit(0 if status == "READY" else 1)
            sys.exit(0)

        elif args.command == "branches":
            branches = list_branches(
                args.repository_url, owner_id, token=args.token, server_url=server_url
            )
            if not branches:
                print("No branches found.")
            for branch in branches:
                sha = (branch.get("commit") or {}).get("sha") or ""
                print(f"{branch['name']:<40} {sha[:7]}")
            sys.exit(0)

        elif args.command == "status":
            job = get_deployment(args.job_id, owner_id, server_url=server_url)
            if args.json_mode:
                print(json.dumps(job, indent=2))
            else:
                print(f"ID:       {job['id']}")
                print(f"Status:   {job['status']}")
                print(f"Source:   {job['repository_url']}@{job['branch']}")
                print(f"Created:  {format_time(job.get('created_at'))}")
                print(f"URL:      {job.get('result_url') or '-'}")
            sys.exit(0)

        elif args.command == "logs":
            if args.follow:
                status = wait_for_deployment(args.job_id, owner_id, server_url)
                sys.exit(0 if status == "READY" else 1)
            for entry in get_logs(args.job_id, owner_id, server_url=server_url):
                print(entry["content"])
            sys.exit(0)

        elif args.command == "cancel":
            cancel_deployment(args.job_id, owner_id, server_url=server_url)
            print(f"Deployment {args.job_id} cancelled")
            sys.exit(0)

        elif args.command == "redeploy":
            redeploy(args.job_id, owner_id, server_url=server_url)
            print(f"Deployment {args.job_id} queued for rebuild")
            sys.exit(0)

        elif args.command == "delete":
            delete_deployment(args.job_id, owner_id, server_url=server_url)
            print(f"Deployment {args.job_id} deleted")
            sys.exit(0)

        elif args.command == "secrets":
            pairs = parse_pairs(args.pairs)
            env_file = Path(args.env_file).read_text() if args.env_file else None
            saved = set_secrets(
                args.job_id, owner_id, secrets=pairs, env_file=env_file, server_url=server_url
            )
            print(f"Saved {saved} secret(s) for {args.job_id}")
            sys.exit(0)

        elif args.command == "list":
            jobs = list_deployments(owner_id, active_only=args.active, server_url=server_url)

            if args.json_mode:
                print(json.dumps(jobs, indent=2))
                sys.exit(0)

            if not jobs:
                print("No deployments found.")
                sys.exit(0)

            print(f"{'ID':<8} {'STATUS':<10} {'CREATED':<20} {'SOURCE':<50} {'URL'}")
            print("-" * 110)
            for job in jobs:
                source = f"{job['repository_url']}@{job['branch']}"
                print(
                    f"{job['id']:<8} {job['status']:<10} "
                    f"{format_time(job.get('created_at')):<20} {source:<50} "
                    f"{job.get('result_url') or '-'}"
                )
            sys.exit(0)

    except (RuntimeError, ValueError) as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)
    except OSError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)
    except KeyboardInterrupt:
        print("\n\nStopped. The deployment continues on the server.", file=sys.stderr)
        sys.exit(130)  # Standard exit code for SIGINT

    parser.print_help()
    sys.exit(1)


def format_time(time_str: str | None) -> str:
    """Format ISO timestamp to human-readable format."""
    if not time_str:
        return "N/A"
    try:
        dt = datetime.fromisoformat(time_str.replace("Z", "+00:00"))
        return dt.strftime("%Y-%m-%d %H:%M:%S")
    except (ValueError, AttributeError):
        return time_str


if __name__ == "__main__":
    main()
