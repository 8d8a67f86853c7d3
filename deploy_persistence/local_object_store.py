"""
Directory-backed object store.

Objects live as plain files under a root directory, with the object key used
as the relative path. Listing is paginated with start-after continuation
tokens, mirroring the ListObjectsV2 contract of S3-compatible stores.
"""

import asyncio
import os
import tempfile
from pathlib import Path, PurePosixPath

from deploy_common.storage import ListPage, ObjectStore

PARTIAL_PREFIX = ".upload-"
PARTIAL_SUFFIX = ".partial"


class LocalObjectStore(ObjectStore):
    """
    Object store rooted at a local directory.

    Args:
        root: Directory acting as the bucket
        page_size: Maximum number of keys returned per listing page
    """

    def __init__(self, root: str | Path, page_size: int = 1000):
        self.root = Path(root)
        self.page_size = page_size

    def _path_for(self, key: str) -> Path:
        """
        Map an object key to a file path inside the root.

        Raises:
            ValueError: If the key is empty, absolute, or escapes the root
        """
        parts = PurePosixPath(key).parts
        if not key or key.startswith("/") or ".." in parts:
            raise ValueError(f"Invalid object key: {key!r}")
        return self.root.joinpath(*parts)

    def _all_keys(self, prefix: str) -> list[str]:
        # Only walk the deepest directory the prefix is guaranteed to live in
        base = prefix.rsplit("/", 1)[0] if "/" in prefix else ""
        start = self.root / base if base else self.root
        if not start.is_dir():
            return []

        keys = []
        for dirpath, _dirnames, filenames in os.walk(start):
            for filename in filenames:
                if filename.startswith(PARTIAL_PREFIX) and filename.endswith(
                    PARTIAL_SUFFIX
                ):
                    continue
                full = Path(dirpath) / filename
                key = full.relative_to(self.root).as_posix()
                if key.startswith(prefix):
                    keys.append(key)
        keys.sort()
        return keys

    def _list_page(self, prefix: str, continuation_token: str | None) -> ListPage:
        keys = self._all_keys(prefix)
        if continuation_token is not None:
            keys = [key for key in keys if key > continuation_token]

        page = keys[: self.page_size]
        token = page[-1] if len(keys) > self.page_size else None
        return ListPage(keys=page, continuation_token=token)

    async def list_keys(
        self, prefix: str, continuation_token: str | None = None
    ) -> ListPage:
        return await asyncio.to_thread(self._list_page, prefix, continuation_token)

    def _read(self, key: str) -> bytes:
        path = self._path_for(key)
        if not path.is_file():
            raise KeyError(key)
        return path.read_bytes()

    async def get_object(self, key: str) -> bytes:
        return await asyncio.to_thread(self._read, key)

    def _write(self, key: str, data: bytes) -> None:
        path = self._path_for(key)
        path.parent.mkdir(parents=True, exist_ok=True)
        # Write-then-rename so readers never observe a partial object
        fd, tmp_name = tempfile.mkstemp(
            dir=path.parent, prefix=PARTIAL_PREFIX, suffix=PARTIAL_SUFFIX
        )
        try:
            with os.fdopen(fd, "wb") as f:
                f.write(data)
            os.replace(tmp_name, path)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise

    async def put_object(self, key: str, data: bytes) -> None:
        await asyncio.to_thread(self._write, key, data)

    def _delete(self, prefix: str) -> int:
        deleted = 0
        parents: set[Path] = set()
        for key in self._all_keys(prefix):
            path = self._path_for(key)
            path.unlink(missing_ok=True)
            parents.add(path.parent)
            deleted += 1

        # Prune directories left empty, deepest first
        for directory in sorted(parents, key=lambda p: len(p.parts), reverse=True):
            current = directory
            while current != self.root and current.is_dir() and not any(current.iterdir()):
                try:
                    current.rmdir()
                except OSError:
                    # A concurrent write repopulated it
                    break
                current = current.parent
        return deleted

    async def delete_prefix(self, prefix: str) -> int:
        return await asyncio.to_thread(self._delete, prefix)
