"""Deletion orchestration: blobs, then metadata, then derived visit flags."""

import asyncio
import logging
from dataclasses import dataclass

from sqlalchemy.exc import SQLAlchemyError

from app.config import Settings, get_settings
from app.models.attachment import VOICE
from app.services.attachment_repository import AttachmentRepository
from app.services.blob_store import BlobStore
from app.services.errors import AttachmentError, AttachmentNotFoundError, MetadataWriteError
from app.services.locks import VisitLocks, get_visit_locks

logger = logging.getLogger("visit_media")


@dataclass
class DeleteResult:
    """Result of a delete attempt."""

    success: bool
    attachment_id: str
    error: AttachmentError | None = None
    storage_warnings: list[str] | None = None
    has_voice_note: bool | None = None


class AttachmentDeleter:
    """Removes an attachment's blobs and record, then recomputes visit flags.

    Blob removal failures only warn: the record is removed regardless so the
    user never sees an attachment that cannot be opened.
    """

    def __init__(
        self,
        repository: AttachmentRepository,
        blob_store: BlobStore,
        settings: Settings | None = None,
        locks: VisitLocks | None = None,
    ) -> None:
        self.repository = repository
        self.blob_store = blob_store
        self.settings = settings or get_settings()
        self.locks = locks or get_visit_locks()

    async def delete(self, attachment_id: str) -> DeleteResult:
        attachment = self.repository.get(attachment_id)
        if attachment is None:
            return DeleteResult(
                success=False,
                attachment_id=attachment_id,
                error=AttachmentNotFoundError(f"Attachment {attachment_id} not found"),
            )

        visit_id = attachment.visit_id
        kind = attachment.kind
        paths = [p for p in (attachment.storage_path, attachment.thumbnail_path) if p]

        async with self.locks.hold(visit_id):
            warnings = await self._remove_blobs(paths)

            try:
                deleted = self.repository.delete(attachment_id)
            except MetadataWriteError as e:
                logger.error("Failed to delete attachment %s: %s", attachment_id, e)
                return DeleteResult(success=False, attachment_id=attachment_id, error=e, storage_warnings=warnings)
            if not deleted:
                return DeleteResult(
                    success=False,
                    attachment_id=attachment_id,
                    error=AttachmentNotFoundError(f"Attachment {attachment_id} not found"),
                    storage_warnings=warnings,
                )

            has_voice_note = self._recompute_voice_flag(visit_id) if kind == VOICE else None

        logger.info("Deleted %s %s from visit %s", kind, attachment_id, visit_id)
        return DeleteResult(
            success=True,
            attachment_id=attachment_id,
            storage_warnings=warnings,
            has_voice_note=has_voice_note,
        )

    async def _remove_blobs(self, paths: list[str]) -> list[str]:
        try:
            failed = await asyncio.wait_for(self.blob_store.remove(paths), timeout=self.settings.BLOB_TIMEOUT_SECONDS)
        except Exception as e:
            logger.warning("Storage deletion warning for %s: %s", paths, str(e) or e.__class__.__name__)
            return list(paths)
        for path in failed:
            logger.warning("Storage deletion warning: could not remove %s", path)
        return failed

    def _recompute_voice_flag(self, visit_id: int) -> bool | None:
        """Set has_voice_note from the voice notes that actually remain."""
        try:
            has_voice_note = self.repository.voice_count(visit_id) > 0
            self.repository.set_voice_flag(visit_id, has_voice_note)
            return has_voice_note
        except (MetadataWriteError, SQLAlchemyError) as e:
            logger.error("Could not recompute has_voice_note for visit %s: %s", visit_id, e)
            return None
