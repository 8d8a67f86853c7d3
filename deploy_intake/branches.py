"""
Branch listing for GitHub repositories, used to pick a branch before
submitting a deployment.
"""

import logging
import re
from typing import Any

import requests

from deploy_common.errors import BranchLookupFailed

logger = logging.getLogger(__name__)

GITHUB_API_URL = "https://api.github.com"

_GITHUB_REPOSITORY = re.compile(
    r"^https://github\.com/(?P<owner>[A-Za-z0-9_.-]+)/(?P<name>[A-Za-z0-9_.-]+?)(?:\.git)?/?$"
)


def parse_github_repository(repository_url: str) -> tuple[str, str]:
    """
    Split ``https://github.com/<owner>/<name>[.git]`` into owner and name.

    Raises:
        BranchLookupFailed: If the URL is not a GitHub repository URL
    """
    match = _GITHUB_REPOSITORY.match(repository_url.strip())
    if match is None:
        raise BranchLookupFailed(
            f"Branches can only be listed for GitHub repositories: {repository_url}"
        )
    return match.group("owner"), match.group("name")


class GitHubBranchLister:
    """
    Lists branches through the GitHub REST API.

    Args:
        api_url: Base URL of the API (overridable for GitHub Enterprise)
        timeout: Request timeout in seconds
        per_page: Number of branches requested (the API maximum is 100)
    """

    def __init__(self, api_url: str = GITHUB_API_URL, timeout: float = 10.0, per_page: int = 100):
        self.api_url = api_url.rstrip("/")
        self.timeout = timeout
        self.per_page = per_page

    def list_branches(
        self, repository_url: str, access_token: str | None = None
    ) -> list[dict[str, Any]]:
        """
        Fetch the branches of a repository.

        Args:
            repository_url: GitHub repository URL
            access_token: Optional token for private repositories

        Returns:
            List of {"name", "commit": {"sha", "url"}} dicts

        Raises:
            BranchLookupFailed: If the repository is unknown, the token is
                rejected or GitHub cannot be reached
        """
        owner, name = parse_github_repository(repository_url)
        headers = {"Accept": "application/vnd.github+json"}
        if access_token:
            headers["Authorization"] = f"Bearer {access_token}"

        try:
            response = requests.get(
                f"{self.api_url}/repos/{owner}/{name}/branches",
                headers=headers,
                params={"per_page": self.per_page},
                timeout=self.timeout,
            )
        except requests.exceptions.RequestException as e:
            logger.error(f"Branch lookup for {owner}/{name} failed: {e}")
            raise BranchLookupFailed(f"Error contacting GitHub: {e}")

        if response.status_code == 404:
            raise BranchLookupFailed(
                "Repository not found. Check the URL or ensure you have access."
            )
        if response.status_code == 401:
            raise BranchLookupFailed("Invalid or expired GitHub token.")
        if not response.ok:
            raise BranchLookupFailed(
                f"GitHub returned {response.status_code} for {owner}/{name}"
            )

        branches = []
        for item in response.json():
            commit = item.get("commit") or {}
            branches.append(
                {
                    "name": item.get("name"),
                    "commit": {"sha": commit.get("sha"), "url": commit.get("url")},
                }
            )
        return branches
