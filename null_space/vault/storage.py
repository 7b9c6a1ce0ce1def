"""File storage operations.

Byte-level primitives over an application data root. Paths passed in are
relative to the root and use forward slashes; every primitive runs its
blocking work in a worker thread so callers can await it.
"""

import asyncio
import os
import shutil
import tempfile
from pathlib import Path, PurePosixPath
from typing import Union

from ..exceptions import NotFoundError, StorageError, ValidationError
from ..utils.logging import get_logger

logger = get_logger(__name__)


class FileStorage:
    """
    File storage rooted at ``base_path``.

    Usage:
        storage = FileStorage(data_dir)
        await storage.write_file("vaults/v1/vault.json", b"{}")
        data = await storage.read_file("vaults/v1/vault.json")
    """

    def __init__(self, base_path: Union[str, Path]):
        self.base_path = Path(base_path).expanduser().resolve()

    def resolve(self, relative_path: str) -> Path:
        """
        Get the absolute path for a relative path.

        Raises:
            ValidationError: If the path is absolute or escapes the root
        """
        posix = PurePosixPath(relative_path)
        if posix.is_absolute() or ".." in posix.parts:
            raise ValidationError(
                f"Path must be relative to the data root: {relative_path!r}",
                operation="resolve",
            )
        return self.base_path.joinpath(*posix.parts)

    def _relative(self, path: Path) -> str:
        return path.relative_to(self.base_path).as_posix()

    # Synchronous implementations, run via asyncio.to_thread

    def _read(self, relative_path: str) -> bytes:
        path = self.resolve(relative_path)
        if not path.is_file():
            raise NotFoundError(f"File not found: {relative_path}", operation="read_file", entity_id=relative_path)
        try:
            return path.read_bytes()
        except OSError as e:
            raise StorageError(f"Failed to read {relative_path}: {e}", operation="read_file", entity_id=relative_path) from e

    def _write(self, relative_path: str, data: bytes) -> None:
        path = self.resolve(relative_path)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            # Write to a sibling temp file then swap it in, so readers never
            # see a half-written file
            fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
            try:
                with os.fdopen(fd, "wb") as handle:
                    handle.write(data)
                os.replace(tmp_name, path)
            except BaseException:
                Path(tmp_name).unlink(missing_ok=True)
                raise
        except OSError as e:
            raise StorageError(f"Failed to write {relative_path}: {e}", operation="write_file", entity_id=relative_path) from e

    def _delete(self, relative_path: str) -> None:
        path = self.resolve(relative_path)
        if not path.is_file():
            raise NotFoundError(f"File not found: {relative_path}", operation="delete_file", entity_id=relative_path)
        try:
            path.unlink()
        except OSError as e:
            raise StorageError(f"Failed to delete {relative_path}: {e}", operation="delete_file", entity_id=relative_path) from e

    def _list(self, relative_path: str) -> list[str]:
        root = self.resolve(relative_path)
        if not root.exists():
            return []
        try:
            return sorted(
                self._relative(path)
                for path in root.rglob("*")
                if path.is_file() and not path.name.startswith(".")
            )
        except OSError as e:
            raise StorageError(f"Failed to list {relative_path}: {e}", operation="list_files", entity_id=relative_path) from e

    def _mkdir(self, relative_path: str) -> None:
        try:
            self.resolve(relative_path).mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise StorageError(
                f"Failed to create directory {relative_path}: {e}",
                operation="create_directory",
                entity_id=relative_path,
            ) from e

    def _rmtree(self, relative_path: str) -> None:
        path = self.resolve(relative_path)
        if not path.exists():
            return
        try:
            shutil.rmtree(path)
        except OSError as e:
            raise StorageError(
                f"Failed to delete directory {relative_path}: {e}",
                operation="delete_directory",
                entity_id=relative_path,
            ) from e

    # Public async API

    async def read_file(self, relative_path: str) -> bytes:
        """Read a file. Raises NotFoundError if absent, StorageError on I/O failure."""
        return await asyncio.to_thread(self._read, relative_path)

    async def write_file(self, relative_path: str, data: bytes) -> None:
        """Write a file atomically, creating parent directories."""
        await asyncio.to_thread(self._write, relative_path, data)

    async def delete_file(self, relative_path: str) -> None:
        """Delete a file. Raises NotFoundError if absent."""
        await asyncio.to_thread(self._delete, relative_path)

    async def list_files(self, relative_path: str) -> list[str]:
        """List files under a directory recursively; empty if it does not exist."""
        return await asyncio.to_thread(self._list, relative_path)

    async def exists(self, relative_path: str) -> bool:
        path = self.resolve(relative_path)
        return await asyncio.to_thread(path.exists)

    async def create_directory(self, relative_path: str) -> None:
        await asyncio.to_thread(self._mkdir, relative_path)

    async def delete_directory(self, relative_path: str) -> None:
        """Delete a directory tree; missing directories are ignored."""
        await asyncio.to_thread(self._rmtree, relative_path)
        logger.debug("Deleted directory %s", relative_path)
