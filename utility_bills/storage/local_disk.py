"""Local filesystem blob store."""

import asyncio
from pathlib import Path, PurePosixPath

from utility_bills.errors import BlobNotFoundError, StorageError

from .base import BlobStore


class LocalDiskBlobStore(BlobStore):
    """Stores blobs as files under a base directory.

    Blob paths are slash-separated and always resolved inside ``base_dir``;
    the content type is not persisted.

    Args:
        base_dir: Root directory for all blobs.
    """

    def __init__(self, base_dir: Path) -> None:
        self._base_dir = Path(base_dir)

    def _resolve(self, path: str) -> Path:
        relative = PurePosixPath(path)
        if relative.is_absolute() or ".." in relative.parts:
            raise StorageError(f"Invalid blob path: {path}")
        return self._base_dir.joinpath(*relative.parts)

    def _read(self, path: str) -> bytes:
        target = self._resolve(path)
        if not target.is_file():
            raise BlobNotFoundError(f"Blob not found: {path}")
        return target.read_bytes()

    def _write(self, path: str, data: bytes) -> None:
        target = self._resolve(path)
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_bytes(data)

    async def download(self, path: str) -> bytes:
        return await asyncio.to_thread(self._read, path)

    async def upload(self, path: str, data: bytes, content_type: str = "image/png") -> None:
        await asyncio.to_thread(self._write, path, data)
