"""Signed URL resolution for stored attachments."""

import asyncio
import logging

from app.models.attachment import VisitAttachment
from app.services.blob_store import BlobStore
from app.services.errors import StorageReadError

logger = logging.getLogger("visit_media")

DEFAULT_URL_TTL_SECONDS = 3600


class AttachmentUrlResolver:
    """Turns storage paths into time-limited URLs.

    Resolution failures are recoverable: they are logged and reported as None.
    """

    def __init__(
        self,
        blob_store: BlobStore,
        default_ttl: int = DEFAULT_URL_TTL_SECONDS,
        timeout: float | None = None,
    ) -> None:
        self.blob_store = blob_store
        self.default_ttl = default_ttl
        self.timeout = timeout

    async def resolve(self, path: str, ttl: int | None = None) -> str:
        """Signed URL for ``path``. Raises StorageReadError on failure."""
        try:
            return await asyncio.wait_for(
                self.blob_store.signed_url(path, ttl or self.default_ttl),
                timeout=self.timeout,
            )
        except asyncio.TimeoutError as e:
            raise StorageReadError(f"Timed out creating signed URL for '{path}'") from e
        except Exception as e:
            raise StorageReadError(f"Error creating signed URL for '{path}': {e}") from e

    async def get_url(self, path: str, ttl: int | None = None) -> str | None:
        try:
            return await self.resolve(path, ttl)
        except StorageReadError as e:
            logger.error("%s", e)
            return None

    async def get_thumbnail_url(self, attachment: VisitAttachment, ttl: int | None = None) -> str | None:
        """Prefer the thumbnail, falling back to the primary blob."""
        return await self.get_url(attachment.thumbnail_path or attachment.storage_path, ttl)

    async def get_urls(self, attachments: list[VisitAttachment]) -> dict[str, str | None]:
        """Primary URLs for a listing, keyed by attachment id."""
        urls = await asyncio.gather(*(self.get_url(a.storage_path) for a in attachments))
        return {a.id: url for a, url in zip(attachments, urls)}
