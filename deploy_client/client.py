from typing import Any

import requests

DEFAULT_SERVER_URL = "http://localhost:8000"


def _headers(owner_id: str) -> dict[str, str]:
    return {"X-Owner-Id": owner_id}


def _error_detail(response: requests.Response) -> str:
    try:
        return response.json().get("detail", response.text)
    except ValueError:
        return response.text


def _request(method: str, url: str, owner_id: str, **kwargs: Any) -> Any:
    """
    Send a request and return the decoded JSON body.

    Raises:
        RuntimeError: On network errors or non-2xx responses; the message
            starts with the HTTP status code when there is one
    """
    try:
        headers = {**_headers(owner_id), **kwargs.pop("headers", {})}
        response = requests.request(method, url, headers=headers, timeout=30, **kwargs)
    except requests.exceptions.RequestException as e:
        raise RuntimeError(f"Error contacting deploy server: {e}")

    if not response.ok:
        raise RuntimeError(f"{response.status_code}: {_error_detail(response)}")
    return response.json()


def submit_deployment(
    repository_url: str,
    owner_id: str,
    branch: str = "main",
    project_name: str | None = None,
    server_url: str = DEFAULT_SERVER_URL,
    secrets: dict[str, str] | None = None,
    env_file: str | None = None,
) -> str:
    """
    Submit a repository for deployment and return its id immediately.

    Build secrets given here are stored before the build can start.
    The build runs in the background; poll ``get_deployment`` for progress.
    """
    body = {"repository_url": repository_url, "branch": branch, "project_name": project_name}
    if secrets:
        body["secrets"] = secrets
    if env_file:
        body["env_file"] = env_file
    result = _request("POST", f"{server_url}/deployments", owner_id, json=body)
    return result["id"]


def get_deployment(job_id: str, owner_id: str, server_url: str = DEFAULT_SERVER_URL) -> dict:
    return _request("GET", f"{server_url}/deployments/{job_id}", owner_id)


def get_logs(job_id: str, owner_id: str, server_url: str = DEFAULT_SERVER_URL) -> list[dict]:
    return _request("GET", f"{server_url}/deployments/{job_id}/logs", owner_id)


def cancel_deployment(job_id: str, owner_id: str, server_url: str = DEFAULT_SERVER_URL) -> None:
    _request("POST", f"{server_url}/deployments/{job_id}/cancel", owner_id)


def redeploy(job_id: str, owner_id: str, server_url: str = DEFAULT_SERVER_URL) -> None:
    _request("POST", f"{server_url}/deployments/{job_id}/redeploy", owner_id)


def delete_deployment(job_id: str, owner_id: str, server_url: str = DEFAULT_SERVER_URL) -> None:
    _request("DELETE", f"{server_url}/deployments/{job_id}", owner_id)


def list_deployments(
    owner_id: str, active_only: bool = False, server_url: str = DEFAULT_SERVER_URL
) -> list[dict]:
    # Only add param if True (FastAPI will use default False if not present)
    params = {"active": "true"} if active_only else {}
    return _request("GET", f"{server_url}/deployments", owner_id, params=params)


def set_secrets(
    job_id: str,
    owner_id: str,
    secrets: dict[str, str] | None = None,
    env_file: str | None = None,
    server_url: str = DEFAULT_SERVER_URL,
) -> int:
    """
    Upsert build secrets from a mapping and/or the contents of a .env file.

    Returns:
        Number of secrets saved
    """
    body = {"secrets": secrets or {}, "env_file": env_file}
    result = _request("PUT", f"{server_url}/deployments/{job_id}/secrets", owner_id, json=body)
    return result["saved"]


def list_branches(
    repository_url: str,
    owner_id: str,
    token: str | None = None,
    server_url: str = DEFAULT_SERVER_URL,
) -> list[dict]:
    """List the branches of a GitHub repository (``token`` for private ones)."""
    headers = {"X-GitHub-Token": token} if token else {}
    return _request(
        "GET",
        f"{server_url}/branches",
        owner_id,
        params={"repository_url": repository_url},
        headers=headers,
    )
