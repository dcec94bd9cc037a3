"""Upload orchestration: blobs first, metadata second, rollback on failure."""

import asyncio
import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import ClassVar

from app.config import Settings, get_settings
from app.models.attachment import PHOTO, VOICE, VisitAttachment
from app.services.attachment_repository import AttachmentRepository
from app.services.blob_store import BlobExistsError, BlobStore
from app.services.capacity import check_capacity, check_size, normalize_caption
from app.services.errors import (
    AttachmentError,
    MetadataWriteError,
    RejectReason,
    StorageWriteError,
    ValidationError,
    VisitNotFoundError,
)
from app.services.locks import VisitLocks, get_visit_locks
from app.services.naming import photo_paths, voice_file_name, voice_path
from app.services.progress import ProgressCallback, ProgressReporter, UploadProgress

logger = logging.getLogger("visit_media")

DEFAULT_COMPRESSION_QUALITY = 80
THUMBNAIL_MIME_TYPE = "image/jpeg"


@dataclass(frozen=True)
class PhotoArtifact:
    """Compressed photo produced by the capture client."""

    data: bytes
    mime_type: str = "image/jpeg"
    file_name: str = "photo.jpg"
    width: int | None = None
    height: int | None = None
    original_size: int | None = None
    thumbnail: bytes | None = None

    kind: ClassVar[str] = PHOTO


@dataclass(frozen=True)
class VoiceArtifact:
    """Recorded audio clip produced by the capture client."""

    data: bytes
    duration_seconds: float
    mime_type: str = "audio/webm"
    file_name: str | None = None

    kind: ClassVar[str] = VOICE


Artifact = PhotoArtifact | VoiceArtifact


@dataclass(frozen=True)
class UploadOptions:
    visit_id: int
    circle_id: int
    uploader_id: int
    caption: str | None = None
    is_private: bool = False


@dataclass
class UploadResult:
    """Result of an upload attempt."""

    success: bool
    upload_id: str
    attachment: VisitAttachment | None = None
    error: AttachmentError | None = None
    thumbnail_degraded: bool = False
    progress: list[UploadProgress] = field(default_factory=list)


@dataclass(frozen=True)
class OrphanCandidate:
    """Blob that may be left without a metadata row after a failed rollback."""

    path: str
    upload_id: str
    reason: str


OrphanHook = Callable[[OrphanCandidate], None]


_last_stamp: datetime | None = None


def _unique_now() -> datetime:
    """Current UTC time, nudged forward so no two calls share a millisecond."""
    global _last_stamp
    now = datetime.now(timezone.utc)
    now = now.replace(microsecond=now.microsecond // 1000 * 1000)
    if _last_stamp is not None and now <= _last_stamp:
        now = _last_stamp + timedelta(milliseconds=1)
    _last_stamp = now
    return now


class AttachmentUploader:
    """Turns a produced artifact into a stored, recorded attachment.

    Steps run strictly in order: primary blob, optional thumbnail blob,
    metadata row, parent visit flag. A thumbnail failure only degrades the
    result. A metadata failure removes every blob written by this attempt.
    The whole quota check through insert runs under the visit's lock.
    """

    def __init__(
        self,
        repository: AttachmentRepository,
        blob_store: BlobStore,
        settings: Settings | None = None,
        locks: VisitLocks | None = None,
        on_orphan: OrphanHook | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.repository = repository
        self.blob_store = blob_store
        self.settings = settings or get_settings()
        self.locks = locks or get_visit_locks()
        self.on_orphan = on_orphan
        self._clock = clock or _unique_now

    async def upload(
        self,
        artifact: Artifact,
        options: UploadOptions,
        on_progress: ProgressCallback | None = None,
    ) -> UploadResult:
        """Upload ``artifact`` to the visit in ``options``. Never raises AttachmentError."""
        reporter = ProgressReporter(on_progress)
        written: list[str] = []
        try:
            caption = normalize_caption(options.caption)
            self._validate_artifact(artifact)

            async with self.locks.hold(options.visit_id):
                if self.repository.get_visit(options.visit_id) is None:
                    raise VisitNotFoundError(f"Visit {options.visit_id} not found")

                existing = self.repository.count_for_quota(options.visit_id, artifact.kind)
                decision = check_capacity(
                    artifact.kind,
                    existing,
                    len(artifact.data),
                    photo_quota=self.settings.PHOTO_QUOTA,
                    voice_quota=self.settings.VOICE_QUOTA,
                    max_file_size=self.settings.max_attachment_bytes,
                )
                if not decision.allowed:
                    raise decision.to_error()

                reporter.uploading(0)
                attachment, degraded = await self._store_and_record(artifact, options, caption, reporter, written)

        except AttachmentError as e:
            logger.warning("Upload %s to visit %s failed: %s", reporter.upload_id, options.visit_id, e)
            reporter.failed(str(e))
            return UploadResult(success=False, upload_id=reporter.upload_id, error=e, progress=reporter.events)
        except asyncio.CancelledError:
            logger.warning("Upload %s to visit %s cancelled", reporter.upload_id, options.visit_id)
            await self._rollback(written, reporter.upload_id, "cancelled")
            reporter.failed("Upload cancelled")
            raise

        reporter.completed()
        logger.info(
            "Uploaded %s %s to visit %s (%d bytes)",
            artifact.kind,
            attachment.id,
            options.visit_id,
            attachment.file_size,
        )
        return UploadResult(
            success=True,
            upload_id=reporter.upload_id,
            attachment=attachment,
            thumbnail_degraded=degraded,
            progress=reporter.events,
        )

    def _validate_artifact(self, artifact: Artifact) -> None:
        decision = check_size(len(artifact.data), self.settings.max_attachment_bytes)
        if not decision.allowed:
            raise decision.to_error()
        if isinstance(artifact, VoiceArtifact) and artifact.duration_seconds < 0:
            raise ValidationError("Duration cannot be negative", RejectReason.INVALID_DURATION)

    async def _store_and_record(
        self,
        artifact: Artifact,
        options: UploadOptions,
        caption: str | None,
        reporter: ProgressReporter,
        written: list[str],
    ) -> tuple[VisitAttachment, bool]:
        now = self._clock()
        if isinstance(artifact, PhotoArtifact):
            primary_path, thumbnail_path = photo_paths(
                options.circle_id,
                options.visit_id,
                int(now.timestamp() * 1000),
                artifact.thumbnail is not None,
            )
        else:
            primary_path = voice_path(options.circle_id, options.visit_id, now, artifact.mime_type)
            thumbnail_path = None

        reporter.uploading(25)
        try:
            await self._write(primary_path, artifact.data, artifact.mime_type, written)
        except Exception as e:
            # a timed-out write may still have landed
            await self._rollback(written, reporter.upload_id, "primary write failed")
            written.clear()
            raise StorageWriteError(f"Failed to upload {artifact.kind}: {_describe(e)}") from e
        reporter.uploading(50)

        stored_thumbnail = None
        degraded = False
        if isinstance(artifact, PhotoArtifact) and artifact.thumbnail is not None and thumbnail_path:
            try:
                await self._write(thumbnail_path, artifact.thumbnail, THUMBNAIL_MIME_TYPE, written)
            except Exception as e:
                logger.warning("Thumbnail upload failed for %s, continuing without: %s", primary_path, _describe(e))
                degraded = True
                if thumbnail_path in written:
                    written.remove(thumbnail_path)
                    await self._rollback([thumbnail_path], reporter.upload_id, "thumbnail write failed")
            else:
                stored_thumbnail = thumbnail_path

        reporter.processing(75)
        record = self._build_record(artifact, options, caption, primary_path, stored_thumbnail)
        try:
            attachment = self.repository.insert(record)
        except Exception as e:
            await self._rollback(written, reporter.upload_id, "metadata insert failed")
            written.clear()
            if isinstance(e, MetadataWriteError):
                raise
            raise MetadataWriteError(f"Failed to record {artifact.kind}: {_describe(e)}") from e

        if artifact.kind == VOICE:
            try:
                self.repository.set_voice_flag(options.visit_id, True)
            except MetadataWriteError as e:
                logger.error("Could not set has_voice_note on visit %s: %s", options.visit_id, e)

        return attachment, degraded

    def _build_record(
        self,
        artifact: Artifact,
        options: UploadOptions,
        caption: str | None,
        storage_path: str,
        thumbnail_path: str | None,
    ) -> VisitAttachment:
        size = len(artifact.data)
        record = VisitAttachment(
            visit_id=options.visit_id,
            uploader_id=options.uploader_id,
            kind=artifact.kind,
            storage_path=storage_path,
            mime_type=artifact.mime_type,
            file_size=size,
            caption=caption,
            upload_status="completed",
            is_private=options.is_private,
            is_archived=False,
        )
        if isinstance(artifact, PhotoArtifact):
            record.file_name = artifact.file_name
            record.thumbnail_path = thumbnail_path
            record.width = artifact.width
            record.height = artifact.height
            record.compression_quality = DEFAULT_COMPRESSION_QUALITY
            record.original_file_size = artifact.original_size or size
            record.compressed_file_size = size
        else:
            record.file_name = artifact.file_name or voice_file_name(storage_path)
            record.duration_seconds = round(artifact.duration_seconds)
        return record

    async def _write(self, path: str, data: bytes, content_type: str | None, written: list[str]) -> None:
        """Put a blob, tracking its path in ``written`` from the moment the write starts."""
        written.append(path)
        try:
            await self._put(path, data, content_type)
        except BlobExistsError:
            # the object at this path belongs to someone else
            written.remove(path)
            raise

    async def _put(self, path: str, data: bytes, content_type: str | None) -> None:
        await asyncio.wait_for(
            self.blob_store.put(path, data, content_type),
            timeout=self.settings.BLOB_TIMEOUT_SECONDS,
        )

    async def _rollback(self, paths: list[str], upload_id: str, reason: str) -> None:
        """Best-effort removal of blobs written by a failed upload. Retries once."""
        if not paths:
            return
        remaining = list(paths)
        for attempt in (1, 2):
            try:
                remaining = await asyncio.wait_for(
                    self.blob_store.remove(remaining),
                    timeout=self.settings.BLOB_TIMEOUT_SECONDS,
                )
            except Exception as e:
                logger.error("Rollback attempt %d for %s failed: %s", attempt, upload_id, _describe(e))
            if not remaining:
                logger.info("Rolled back %d blob(s) for %s (%s)", len(paths), upload_id, reason)
                return
        for path in remaining:
            self._report_orphan(OrphanCandidate(path=path, upload_id=upload_id, reason=reason))

    def _report_orphan(self, candidate: OrphanCandidate) -> None:
        logger.error(
            "ORPHAN_CANDIDATE path=%s upload_id=%s reason=%s",
            candidate.path,
            candidate.upload_id,
            candidate.reason,
        )
        if self.on_orphan is not None:
            try:
                self.on_orphan(candidate)
            except Exception:
                logger.exception("Orphan hook failed for %s", candidate.path)


def _describe(error: BaseException) -> str:
    if isinstance(error, asyncio.TimeoutError):
        return "timed out"
    return str(error) or error.__class__.__name__
