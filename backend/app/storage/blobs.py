from __future__ import annotations

import asyncio
from pathlib import Path, PurePosixPath
from typing import Protocol, runtime_checkable


class BlobStoreError(Exception):
    """Raised when an attachment blob cannot be written or removed."""


def _validate_name(name: str) -> PurePosixPath:
    path = PurePosixPath(name)
    if path.is_absolute() or ".." in path.parts or not path.parts:
        raise BlobStoreError(f"invalid blob name: {name!r}")
    return path


@runtime_checkable
class BlobStore(Protocol):
    async def upload(self, name: str, data: bytes, content_type: str) -> str: ...

    async def delete(self, name: str) -> None: ...

    async def healthcheck(self) -> None: ...


class InMemoryBlobStore:
    """Keeps attachment bytes in process memory (mock mode)."""

    def __init__(self, container: str = "attachments") -> None:
        self._container = container
        self._blobs: dict[str, tuple[bytes, str]] = {}

    def __contains__(self, name: object) -> bool:
        return name in self._blobs

    def get(self, name: str) -> tuple[bytes, str] | None:
        return self._blobs.get(name)

    async def upload(self, name: str, data: bytes, content_type: str) -> str:
        _validate_name(name)
        self._blobs[name] = (bytes(data), content_type)
        return f"memory://{self._container}/{name}"

    async def delete(self, name: str) -> None:
        self._blobs.pop(name, None)

    async def healthcheck(self) -> None:
        return None


class FileSystemBlobStore:
    """Stores attachments below a directory; file I/O runs in the default executor."""

    def __init__(self, root: Path, *, public_base_url: str | None = None) -> None:
        self._root = Path(root)
        self._public_base_url = public_base_url

    def _path_for(self, name: str) -> Path:
        return self._root.joinpath(*_validate_name(name).parts)

    def _url_for(self, name: str, path: Path) -> str:
        if self._public_base_url:
            return f"{self._public_base_url}/{name}"
        return path.resolve().as_uri()

    def _write(self, path: Path, data: bytes) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(data)

    async def upload(self, name: str, data: bytes, content_type: str) -> str:
        path = self._path_for(name)
        loop = asyncio.get_running_loop()
        try:
            await loop.run_in_executor(None, self._write, path, data)
        except OSError as exc:
            raise BlobStoreError(f"failed to store {name}") from exc
        return self._url_for(name, path)

    async def delete(self, name: str) -> None:
        path = self._path_for(name)
        loop = asyncio.get_running_loop()
        try:
            await loop.run_in_executor(None, lambda: path.unlink(missing_ok=True))
        except OSError as exc:
            raise BlobStoreError(f"failed to delete {name}") from exc

    async def healthcheck(self) -> None:
        loop = asyncio.get_running_loop()
        try:
            await loop.run_in_executor(
                None, lambda: self._root.mkdir(parents=True, exist_ok=True)
            )
        except OSError as exc:
            raise BlobStoreError(f"blob root unavailable: {self._root}") from exc


__all__ = [
    "BlobStore",
    "BlobStoreError",
    "FileSystemBlobStore",
    "InMemoryBlobStore",
]
