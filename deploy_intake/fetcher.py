"""
Materialize a git repository on local disk.
"""

import asyncio
import logging
import os
from pathlib import Path

from deploy_common.errors import FetchFailed

logger = logging.getLogger(__name__)


class GitSourceFetcher:
    """
    Shallow-clones a single branch with the ``git`` executable.

    Args:
        git_executable: Name or path of the git binary
        timeout: Seconds allowed for the clone
    """

    def __init__(self, git_executable: str = "git", timeout: float = 300.0):
        self.git_executable = git_executable
        self.timeout = timeout

    async def fetch(self, repository_url: str, branch: str, dest: Path) -> Path:
        """
        Clone ``repository_url`` at ``branch`` into ``dest``.

        Returns:
            The checkout directory

        Raises:
            FetchFailed: If git is missing, exits non-zero or times out
        """
        dest = Path(dest)
        logger.info(f"Cloning {repository_url}@{branch} into {dest}")

        try:
            process = await asyncio.create_subprocess_exec(
                self.git_executable,
                "clone",
                "--depth",
                "1",
                "--branch",
                branch,
                "--single-branch",
                "--",
                repository_url,
                str(dest),
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.STDOUT,
                env={**os.environ, "GIT_TERMINAL_PROMPT": "0"},
            )
        except OSError as e:
            raise FetchFailed(f"Could not run git: {e}") from e

        try:
            output, _ = await asyncio.wait_for(process.communicate(), timeout=self.timeout)
        except asyncio.TimeoutError:
            process.kill()
            await process.wait()
            raise FetchFailed(f"Cloning {repository_url} timed out after {self.timeout:g}s")
        except asyncio.CancelledError:
            if process.returncode is None:
                process.kill()
                await process.wait()
            raise

        if process.returncode != 0:
            message = output.decode(errors="replace").strip()
            logger.error(f"git clone failed ({process.returncode}): {message}")
            raise FetchFailed(f"Failed to clone {repository_url}@{branch}: {message}")

        return dest
