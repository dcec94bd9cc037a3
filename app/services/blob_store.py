"""Binary object storage for attachment blobs."""

import abc
import logging
import os
from functools import lru_cache
from pathlib import Path, PurePosixPath
from urllib.parse import quote

from app.config import get_settings
from app.services.jwt import get_jwt_service

logger = logging.getLogger("visit_media")


class BlobStoreError(Exception):
    """Raised by a blob store when an operation cannot be completed."""


class BlobExistsError(BlobStoreError):
    """Raised by ``put`` when an object already occupies the path."""


class BlobStore(abc.ABC):
    """Path-addressed binary storage.

    Paths are relative POSIX paths such as ``12/34/1700000000000_photo.jpg``.
    """

    @abc.abstractmethod
    async def put(self, path: str, data: bytes, content_type: str | None = None) -> str:
        """Store ``data`` at ``path``. Never overwrites. Returns the stored path."""

    @abc.abstractmethod
    async def signed_url(self, path: str, ttl_seconds: int) -> str:
        """Return a URL that grants read access to ``path`` for ``ttl_seconds``."""

    @abc.abstractmethod
    async def remove(self, paths: list[str]) -> list[str]:
        """Remove ``paths``. Returns the paths that could not be removed."""

    @abc.abstractmethod
    async def exists(self, path: str) -> bool: ...

    @abc.abstractmethod
    async def read(self, path: str) -> bytes: ...

    @abc.abstractmethod
    async def list(self, prefix: str = "") -> list[str]:
        """List stored paths starting with ``prefix``, sorted."""


def normalize_path(path: str) -> str:
    """Validate a blob path and return it in canonical form.

    Raises BlobStoreError for empty, absolute or traversing paths.
    """
    if not path or path.startswith("/") or "\\" in path or "\0" in path:
        raise BlobStoreError(f"Invalid blob path '{path}'")
    parts = PurePosixPath(path).parts
    if any(part in ("..", ".") for part in parts):
        raise BlobStoreError(f"Invalid blob path '{path}'")
    return "/".join(parts)


class LocalBlobStore(BlobStore):
    """Blob store backed by a directory on local disk.

    Signed URLs point at the ``/api/v1/blobs`` route and carry a JWT bound to
    the blob path.
    """

    def __init__(self, root: str | Path, public_base_url: str) -> None:
        self.root = Path(root)
        self.root.mkdir(parents=True, exist_ok=True)
        self.public_base_url = public_base_url.rstrip("/")

    def _file_path(self, path: str) -> Path:
        return self.root / normalize_path(path)

    async def put(self, path: str, data: bytes, content_type: str | None = None) -> str:
        file_path = self._file_path(path)
        file_path.parent.mkdir(parents=True, exist_ok=True)
        try:
            # "xb" refuses to replace an existing object
            with open(file_path, "xb") as f:
                f.write(data)
        except FileExistsError as e:
            raise BlobExistsError(f"Blob already exists at '{path}'") from e
        except OSError as e:
            raise BlobStoreError(f"Failed to write blob '{path}': {e}") from e
        logger.debug("Stored blob %s (%d bytes, %s)", path, len(data), content_type)
        return normalize_path(path)

    async def signed_url(self, path: str, ttl_seconds: int) -> str:
        if not self._file_path(path).is_file():
            raise BlobStoreError(f"Blob not found at '{path}'")
        token = get_jwt_service().create_blob_token(normalize_path(path), ttl_seconds)
        return f"{self.public_base_url}/api/v1/blobs/{quote(normalize_path(path))}?token={token}"

    async def remove(self, paths: list[str]) -> list[str]:
        failed = []
        for path in paths:
            try:
                file_path = self._file_path(path)
                if file_path.exists():
                    os.remove(file_path)
            except (OSError, BlobStoreError) as e:
                logger.warning("Failed to remove blob %s: %s", path, e)
                failed.append(path)
        return failed

    async def exists(self, path: str) -> bool:
        return self._file_path(path).is_file()

    async def read(self, path: str) -> bytes:
        file_path = self._file_path(path)
        try:
            return file_path.read_bytes()
        except OSError as e:
            raise BlobStoreError(f"Failed to read blob '{path}': {e}") from e

    async def list(self, prefix: str = "") -> list[str]:
        if not self.root.exists():
            return []
        stored = (p.relative_to(self.root).as_posix() for p in self.root.rglob("*") if p.is_file())
        return sorted(p for p in stored if p.startswith(prefix))


@lru_cache
def get_blob_store() -> BlobStore:
    """Get the configured blob store. Overridable as a FastAPI dependency."""
    settings = get_settings()
    return LocalBlobStore(settings.BLOB_DIR, settings.PUBLIC_BASE_URL)
