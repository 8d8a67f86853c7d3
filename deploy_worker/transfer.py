"""
Parallel, retrying transfer of directory trees to and from the object store.

Every file is moved by its own task; the aggregate call settles only when all
file tasks have settled. A failing file fails the aggregate but never cancels
its siblings, and nothing already transferred is rolled back.
"""

import asyncio
import logging
import os
import stat
from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path
from typing import Literal

from deploy_common.errors import DownloadFailed, UploadFailed
from deploy_common.storage import ObjectStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RetryPolicy:
    """
    Bounded retry with linear backoff.

    Attempt ``n`` (1-based) that fails is followed by a sleep of
    ``n * base_delay`` seconds, unless it was the last attempt.
    """

    max_attempts: int = 3
    base_delay: float = 1.0

    def delay_for(self, attempt: int) -> float:
        return attempt * self.base_delay


@dataclass
class TransferTask:
    """One file moving in one direction; lives only for one transfer call."""

    local_path: Path
    remote_key: str
    direction: Literal["upload", "download"]
    attempts: int = 0


@dataclass
class TransferResult:
    """Outcome of a successful directory transfer."""

    prefix: str
    keys: list[str] = field(default_factory=list)

    @property
    def file_count(self) -> int:
        return len(self.keys)


def join_key(prefix: str, relative_path: str) -> str:
    """Build ``prefix/relative`` with forward slashes and no doubled separators."""
    relative = relative_path.replace("\\", "/").lstrip("/")
    return f"{prefix.rstrip('/')}/{relative}"


class TransferEngine:
    """
    Moves local directory trees to and from an object store.

    Args:
        store: Object store client
        retry_policy: Per-file retry policy
        max_concurrency: Upper bound on files in flight at once
    """

    def __init__(
        self,
        store: ObjectStore,
        retry_policy: RetryPolicy | None = None,
        max_concurrency: int = 16,
    ):
        self.store = store
        self.retry_policy = retry_policy or RetryPolicy()
        self._limiter = asyncio.Semaphore(max_concurrency)

    async def _with_retry(self, task: TransferTask) -> None:
        policy = self.retry_policy
        while True:
            task.attempts += 1
            try:
                async with self._limiter:
                    if task.direction == "upload":
                        data = await asyncio.to_thread(task.local_path.read_bytes)
                        await self.store.put_object(task.remote_key, data)
                    else:
                        data = await self.store.get_object(task.remote_key)
                        await asyncio.to_thread(_write_file, task.local_path, data)
                return
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error(
                    f"{task.direction.capitalize()} attempt {task.attempts} failed "
                    f"for {task.remote_key}: {e}"
                )
                if task.attempts >= policy.max_attempts:
                    logger.error(f"Max retries reached for {task.remote_key}")
                    raise
                await asyncio.sleep(policy.delay_for(task.attempts))

    async def _run_all(self, tasks: list[TransferTask]) -> list[str]:
        """
        Run every task to completion and return the keys that failed.
        """
        results = await asyncio.gather(
            *(self._with_retry(task) for task in tasks), return_exceptions=True
        )
        failed = []
        for task, result in zip(tasks, results):
            if isinstance(result, BaseException):
                if isinstance(result, asyncio.CancelledError):
                    raise result
                failed.append(task.remote_key)
        return failed

    async def upload(
        self,
        local_dir: Path,
        remote_prefix: str,
        exclude: Callable[[str], bool] | None = None,
    ) -> TransferResult:
        """
        Upload every regular file under ``local_dir`` to ``remote_prefix``.

        Args:
            local_dir: Directory to upload
            remote_prefix: Key prefix; keys become ``remote_prefix/relative/path``
            exclude: Optional predicate on the POSIX relative path; matching
                files are skipped

        Returns:
            TransferResult with the uploaded keys

        Raises:
            UploadFailed: If any file failed after all retries
        """
        local_dir = Path(local_dir)
        logger.info(f"Starting directory upload: {local_dir} -> {remote_prefix}")

        files = await asyncio.to_thread(_walk_files, local_dir)
        tasks = []
        for path in files:
            relative = path.relative_to(local_dir).as_posix()
            if exclude is not None and exclude(relative):
                continue
            tasks.append(
                TransferTask(
                    local_path=path,
                    remote_key=join_key(remote_prefix, relative),
                    direction="upload",
                )
            )

        failed = await self._run_all(tasks)
        if failed:
            logger.error(
                f"Directory upload to {remote_prefix} failed for {len(failed)} file(s)"
            )
            raise UploadFailed(
                f"Failed to upload {len(failed)} of {len(tasks)} files to {remote_prefix}",
                failed_keys=failed,
            )

        logger.info(f"Uploaded {len(tasks)} files to {remote_prefix}")
        return TransferResult(prefix=remote_prefix, keys=[t.remote_key for t in tasks])

    async def list_all_keys(self, prefix: str) -> list[str]:
        """Follow continuation tokens until the listing is exhausted."""
        keys: list[str] = []
        token: str | None = None
        while True:
            page = await self.store.list_keys(prefix, continuation_token=token)
            keys.extend(page.keys)
            token = page.continuation_token
            if token is None:
                return keys

    async def download(self, remote_prefix: str, local_dir: Path) -> TransferResult:
        """
        Download every object under ``remote_prefix`` into ``local_dir``.

        Returns:
            TransferResult with the downloaded keys

        Raises:
            DownloadFailed: If any file failed after all retries
        """
        local_dir = Path(local_dir)
        strip_prefix = remote_prefix.rstrip("/") + "/"
        logger.info(f"Starting download of {remote_prefix} to {local_dir}")

        keys = await self.list_all_keys(strip_prefix)
        if not keys:
            logger.warning(f"No files found in object store for prefix: {remote_prefix}")
        else:
            logger.info(f"Found {len(keys)} files to download.")

        tasks = []
        for key in keys:
            relative = key[len(strip_prefix) :]
            if not relative:
                continue
            tasks.append(
                TransferTask(
                    local_path=local_dir.joinpath(*relative.split("/")),
                    remote_key=key,
                    direction="download",
                )
            )

        failed = await self._run_all(tasks)
        if failed:
            raise DownloadFailed(
                f"Failed to download {len(failed)} of {len(tasks)} files from {remote_prefix}",
                failed_keys=failed,
            )

        return TransferResult(prefix=remote_prefix, keys=[t.remote_key for t in tasks])

    async def delete_prefix(self, prefix: str) -> None:
        """
        Best-effort removal of everything under ``prefix``.

        Errors are logged and never raised.
        """
        try:
            deleted = await self.store.delete_prefix(prefix)
            logger.info(f"Deleted {deleted} objects under {prefix}")
        except Exception as e:
            logger.error(f"Failed to delete prefix {prefix}: {e}", exc_info=True)


def _walk_files(root: Path) -> list[Path]:
    """Regular files under ``root``. Symlinks are neither followed nor uploaded."""
    files = []
    for dirpath, _dirnames, filenames in os.walk(root):
        for filename in filenames:
            path = Path(dirpath) / filename
            if stat.S_ISREG(path.lstat().st_mode):
                files.append(path)
            else:
                logger.warning(f"Skipping non-regular file {path}")
    files.sort()
    return files


def _write_file(path: Path, data: bytes) -> None:
    # Sibling tasks may create the same parent concurrently
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(data)
