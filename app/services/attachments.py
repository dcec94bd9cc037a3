"""Attachment service: the entry point routers use for visit photos and voice notes."""

import logging
from dataclasses import dataclass

from sqlalchemy.orm import Session

from app.config import Settings, get_settings
from app.models.attachment import PHOTO, VisitAttachment
from app.models.visit import Visit
from app.services.attachment_repository import AttachmentRepository
from app.services.blob_store import BlobStore
from app.services.capacity import check_capacity, normalize_caption
from app.services.deletion import AttachmentDeleter, DeleteResult
from app.services.errors import (
    AttachmentError,
    AttachmentNotFoundError,
    RejectReason,
    ValidationError,
    VisitNotFoundError,
)
from app.services.locks import VisitLocks, get_visit_locks
from app.services.progress import ProgressCallback, new_upload_id
from app.services.retrieval import AttachmentUrlResolver
from app.services.upload import (
    AttachmentUploader,
    OrphanHook,
    PhotoArtifact,
    UploadOptions,
    UploadResult,
    VoiceArtifact,
)

logger = logging.getLogger("visit_media")


@dataclass
class AttachmentResult:
    """Result of a caption, archive or restore change."""

    success: bool
    attachment: VisitAttachment | None = None
    error: AttachmentError | None = None


@dataclass
class StorageStats:
    total_photos: int
    total_size: int
    storage_used: str


def format_file_size(size: int) -> str:
    """Human readable size, e.g. ``0 B``, ``1.5 KB``, ``12 MB``."""
    if size <= 0:
        return "0 B"
    units = ["B", "KB", "MB", "GB"]
    i = 0
    while size >= 1024 ** (i + 1) and i < len(units) - 1:
        i += 1
    value = round(size / 1024**i, 1)
    return f"{value:g} {units[i]}"


class AttachmentService:
    """Handles upload, listing, captioning, archiving and deletion of visit attachments.

    Built per request from a database session and a blob store.
    """

    def __init__(
        self,
        db: Session,
        blob_store: BlobStore,
        settings: Settings | None = None,
        locks: VisitLocks | None = None,
        on_orphan: OrphanHook | None = None,
    ) -> None:
        self.settings = settings or get_settings()
        self.repository = AttachmentRepository(db)
        self.blob_store = blob_store
        self.locks = locks or get_visit_locks()
        self.uploader = AttachmentUploader(self.repository, blob_store, self.settings, self.locks, on_orphan)
        self.deleter = AttachmentDeleter(self.repository, blob_store, self.settings, self.locks)
        self.resolver = AttachmentUrlResolver(
            blob_store,
            default_ttl=self.settings.SIGNED_URL_TTL_SECONDS,
            timeout=self.settings.BLOB_TIMEOUT_SECONDS,
        )

    # --- upload ---

    async def upload_photo(
        self,
        visit_id: int,
        uploader_id: int,
        artifact: PhotoArtifact,
        caption: str | None = None,
        is_private: bool = False,
        on_progress: ProgressCallback | None = None,
    ) -> UploadResult:
        return await self._upload(visit_id, uploader_id, artifact, caption, is_private, on_progress)

    async def upload_voice_note(
        self,
        visit_id: int,
        uploader_id: int,
        artifact: VoiceArtifact,
        caption: str | None = None,
        is_private: bool = False,
        on_progress: ProgressCallback | None = None,
    ) -> UploadResult:
        return await self._upload(visit_id, uploader_id, artifact, caption, is_private, on_progress)

    async def _upload(
        self,
        visit_id: int,
        uploader_id: int,
        artifact: PhotoArtifact | VoiceArtifact,
        caption: str | None,
        is_private: bool,
        on_progress: ProgressCallback | None,
    ) -> UploadResult:
        visit = self.repository.get_visit(visit_id)
        if visit is None:
            return UploadResult(
                success=False,
                upload_id=new_upload_id(),
                error=VisitNotFoundError(f"Visit {visit_id} not found"),
            )
        options = UploadOptions(
            visit_id=visit_id,
            circle_id=visit.circle_id,
            uploader_id=uploader_id,
            caption=caption,
            is_private=is_private,
        )
        return await self.uploader.upload(artifact, options, on_progress)

    # --- delete ---

    async def delete(self, attachment_id: str) -> DeleteResult:
        return await self.deleter.delete(attachment_id)

    # --- read ---

    def get(self, attachment_id: str) -> VisitAttachment | None:
        return self.repository.get(attachment_id)

    def get_visit(self, visit_id: int) -> Visit | None:
        return self.repository.get_visit(visit_id)

    def list_for_visit(
        self, visit_id: int, kind: str | None = None, include_archived: bool = False
    ) -> list[VisitAttachment]:
        return self.repository.list_for_visit(visit_id, kind=kind, include_archived=include_archived)

    async def get_url(self, path: str, ttl: int | None = None) -> str | None:
        return await self.resolver.get_url(path, ttl)

    async def get_thumbnail_url(self, attachment: VisitAttachment) -> str | None:
        return await self.resolver.get_thumbnail_url(attachment)

    # --- mutate ---

    def update_caption(self, attachment_id: str, text: str | None) -> AttachmentResult:
        """Set or clear a caption. Blank text clears it."""
        try:
            caption = normalize_caption(text)
            attachment = self.repository.update(attachment_id, caption=caption)
        except AttachmentError as e:
            return AttachmentResult(success=False, error=e)
        if attachment is None:
            return AttachmentResult(success=False, error=AttachmentNotFoundError(f"Attachment {attachment_id} not found"))
        return AttachmentResult(success=True, attachment=attachment)

    def archive(self, attachment_id: str) -> AttachmentResult:
        """Soft-delete a photo: hides it from listings and frees its quota slot."""
        current = self.repository.get(attachment_id)
        if current is not None and current.kind != PHOTO:
            return AttachmentResult(
                success=False,
                attachment=current,
                error=ValidationError(
                    "Only photos can be archived. Delete voice notes instead.", RejectReason.UNSUPPORTED_KIND
                ),
            )
        try:
            attachment = self.repository.update(attachment_id, is_archived=True)
        except AttachmentError as e:
            return AttachmentResult(success=False, error=e)
        if attachment is None:
            return AttachmentResult(success=False, error=AttachmentNotFoundError(f"Attachment {attachment_id} not found"))
        logger.info("Archived photo %s on visit %s", attachment_id, attachment.visit_id)
        return AttachmentResult(success=True, attachment=attachment)

    async def restore(self, attachment_id: str) -> AttachmentResult:
        """Undo an archive. Photos must fit within the visit's quota again."""
        attachment = self.repository.get(attachment_id)
        if attachment is None:
            return AttachmentResult(success=False, error=AttachmentNotFoundError(f"Attachment {attachment_id} not found"))
        if not attachment.is_archived:
            return AttachmentResult(success=True, attachment=attachment)

        async with self.locks.hold(attachment.visit_id):
            if attachment.kind == PHOTO:
                decision = check_capacity(
                    PHOTO,
                    self.repository.count_for_quota(attachment.visit_id, PHOTO),
                    attachment.file_size,
                    photo_quota=self.settings.PHOTO_QUOTA,
                    voice_quota=self.settings.VOICE_QUOTA,
                    max_file_size=self.settings.max_attachment_bytes,
                )
                if not decision.allowed:
                    return AttachmentResult(success=False, attachment=attachment, error=decision.to_error())
            try:
                restored = self.repository.update(attachment_id, is_archived=False)
            except AttachmentError as e:
                return AttachmentResult(success=False, error=e)
        if restored is None:
            return AttachmentResult(success=False, error=AttachmentNotFoundError(f"Attachment {attachment_id} not found"))
        return AttachmentResult(success=True, attachment=restored)

    # --- statistics ---

    def get_storage_stats(self, circle_id: int) -> StorageStats:
        """Count and compressed bytes of live photos stored under a circle."""
        total_photos, total_size = self.repository.photo_stats_for_circle(circle_id)
        return StorageStats(total_photos=total_photos, total_size=total_size, storage_used=format_file_size(total_size))

    def voice_storage_usage(self, circle_id: int) -> int:
        """Total bytes of voice notes recorded on the circle's visits."""
        return self.repository.voice_bytes_for_circle(circle_id)
