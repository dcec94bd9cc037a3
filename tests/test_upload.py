"""Tests for upload orchestration."""

import asyncio
from unittest.mock import patch

import pytest
from sqlalchemy.orm import Session

from app.config import Settings
from app.models.attachment import VisitAttachment
from app.models.visit import Visit
from app.services.attachments import AttachmentService
from app.services.blob_store import BlobStoreError, LocalBlobStore
from app.services.errors import (
    MetadataWriteError,
    RejectReason,
    StorageWriteError,
    ValidationError,
    VisitNotFoundError,
)
from app.services.locks import VisitLocks
from app.services.progress import COMPLETED, FAILED, PROCESSING, UPLOADING
from app.services.upload import PhotoArtifact, VoiceArtifact

MB = 1024 * 1024


class RecordingBlobStore(LocalBlobStore):
    """Counts put calls."""

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.puts = []

    async def put(self, path, data, content_type=None):
        self.puts.append(path)
        return await super().put(path, data, content_type)


class FailingThumbnailStore(LocalBlobStore):
    async def put(self, path, data, content_type=None):
        if path.endswith("_thumb.jpg"):
            raise BlobStoreError("thumbnail bucket unavailable")
        return await super().put(path, data, content_type)


class FailingPutStore(LocalBlobStore):
    async def put(self, path, data, content_type=None):
        raise BlobStoreError("storage unavailable")


class StuckRemoveStore(LocalBlobStore):
    """Writes succeed but nothing can be removed."""

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.remove_calls = 0

    async def remove(self, paths):
        self.remove_calls += 1
        return list(paths)


class WriteThenStallStore(LocalBlobStore):
    """The object lands but the acknowledgement never arrives in time."""

    def __init__(self, *args, suffix: str = "", **kwargs):
        super().__init__(*args, **kwargs)
        self.suffix = suffix

    async def put(self, path, data, content_type=None):
        stored = await super().put(path, data, content_type)
        if path.endswith(self.suffix):
            await asyncio.sleep(5)
        return stored


class OccupiedPathStore(LocalBlobStore):
    """Another writer claims every path just before this upload does."""

    async def put(self, path, data, content_type=None):
        await super().put(path, b"someone else", content_type)
        return await super().put(path, data, content_type)


class SlowStore(LocalBlobStore):
    async def put(self, path, data, content_type=None):
        await asyncio.sleep(5)
        return await super().put(path, data, content_type)


class BlockingThumbnailStore(LocalBlobStore):
    """Blocks on the thumbnail write so the upload can be cancelled mid-flight."""

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.primary_written = asyncio.Event()

    async def put(self, path, data, content_type=None):
        if path.endswith("_thumb.jpg"):
            self.primary_written.set()
            await asyncio.sleep(10)
        return await super().put(path, data, content_type)


def photo(size: int = 2 * MB, thumbnail: bool = True) -> PhotoArtifact:
    return PhotoArtifact(
        data=b"\xff" * size,
        width=1920,
        height=1080,
        original_size=size * 3,
        thumbnail=b"\xee" * 1024 if thumbnail else None,
    )


def voice(duration: float = 12.4, mime: str = "audio/webm") -> VoiceArtifact:
    return VoiceArtifact(data=b"\x1a\x45" * 2048, duration_seconds=duration, mime_type=mime)


def make_service(db: Session, store: LocalBlobStore, **kwargs) -> AttachmentService:
    return AttachmentService(db, store, locks=VisitLocks(), **kwargs)


class TestPhotoUpload:
    """Photo uploads through the service."""

    @pytest.mark.asyncio
    async def test_photo_with_thumbnail(self, service: AttachmentService, visit: Visit, test_user: dict):
        result = await service.upload_photo(visit.id, test_user["user_id"], photo(), caption="  In the garden ")

        assert result.success
        attachment = result.attachment
        assert attachment.kind == "photo"
        assert attachment.storage_path.startswith(f"{visit.circle_id}/{visit.id}/")
        assert attachment.storage_path.endswith("_photo.jpg")
        assert attachment.thumbnail_path.endswith("_thumb.jpg")
        assert attachment.original_file_size == 6 * MB
        assert attachment.compressed_file_size == 2 * MB
        assert attachment.file_size == 2 * MB
        assert attachment.compression_quality == 80
        assert attachment.caption == "In the garden"
        assert attachment.upload_status == "completed"
        assert not result.thumbnail_degraded

        stored = await service.blob_store.list(f"{visit.circle_id}/{visit.id}/")
        assert stored == sorted([attachment.storage_path, attachment.thumbnail_path])

    @pytest.mark.asyncio
    async def test_photo_without_thumbnail(self, service: AttachmentService, visit: Visit, test_user: dict):
        result = await service.upload_photo(visit.id, test_user["user_id"], photo(thumbnail=False))
        assert result.success
        assert result.attachment.thumbnail_path is None

    @pytest.mark.asyncio
    async def test_too_large_rejected_before_io(self, db_session, tmp_path, visit: Visit, test_user: dict):
        store = RecordingBlobStore(tmp_path / "blobs", "http://testserver")
        service = make_service(db_session, store)

        result = await service.upload_photo(visit.id, test_user["user_id"], photo(size=12 * MB))

        assert not result.success
        assert isinstance(result.error, ValidationError)
        assert result.error.reason == RejectReason.FILE_TOO_LARGE
        assert store.puts == []
        assert db_session.query(VisitAttachment).count() == 0

    @pytest.mark.asyncio
    async def test_sixth_photo_rejected_until_one_archived(
        self, service: AttachmentService, visit: Visit, test_user: dict
    ):
        uploaded = []
        for _ in range(5):
            result = await service.upload_photo(visit.id, test_user["user_id"], photo(size=1024))
            assert result.success
            uploaded.append(result.attachment)

        result = await service.upload_photo(visit.id, test_user["user_id"], photo(size=1024))
        assert not result.success
        assert result.error.reason == RejectReason.QUOTA_EXCEEDED
        assert "Maximum: 5" in result.error.message

        assert service.archive(uploaded[0].id).success
        result = await service.upload_photo(visit.id, test_user["user_id"], photo(size=1024))
        assert result.success

    @pytest.mark.asyncio
    async def test_thumbnail_failure_degrades(self, db_session, tmp_path, visit: Visit, test_user: dict):
        store = FailingThumbnailStore(tmp_path / "blobs", "http://testserver")
        service = make_service(db_session, store)

        result = await service.upload_photo(visit.id, test_user["user_id"], photo())

        assert result.success
        assert result.thumbnail_degraded
        assert result.attachment.thumbnail_path is None
        assert await store.list() == [result.attachment.storage_path]

    @pytest.mark.asyncio
    async def test_metadata_failure_rolls_back_blobs(self, service: AttachmentService, visit: Visit, test_user: dict):
        with patch.object(service.repository, "insert", side_effect=MetadataWriteError("insert failed")):
            result = await service.upload_photo(visit.id, test_user["user_id"], photo())

        assert not result.success
        assert isinstance(result.error, MetadataWriteError)
        assert await service.blob_store.list(f"{visit.circle_id}/{visit.id}/") == []
        assert service.list_for_visit(visit.id) == []

    @pytest.mark.asyncio
    async def test_failed_rollback_reports_orphans(self, db_session, tmp_path, visit: Visit, test_user: dict):
        store = StuckRemoveStore(tmp_path / "blobs", "http://testserver")
        orphans = []
        service = make_service(db_session, store, on_orphan=orphans.append)

        with patch.object(service.repository, "insert", side_effect=MetadataWriteError("insert failed")):
            result = await service.upload_photo(visit.id, test_user["user_id"], photo())

        assert not result.success
        assert store.remove_calls == 2
        assert sorted(o.path for o in orphans) == await store.list()
        assert {o.upload_id for o in orphans} == {result.upload_id}
        assert all(o.reason == "metadata insert failed" for o in orphans)

    @pytest.mark.asyncio
    async def test_unexpected_insert_error_rolls_back(
        self, service: AttachmentService, visit: Visit, test_user: dict
    ):
        seen = []
        with patch.object(service.repository, "insert", side_effect=RuntimeError("driver crashed")):
            result = await service.upload_photo(visit.id, test_user["user_id"], photo(), on_progress=seen.append)

        assert not result.success
        assert isinstance(result.error, MetadataWriteError)
        assert "driver crashed" in result.error.message
        assert seen[-1].status == FAILED
        assert await service.blob_store.list() == []

    @pytest.mark.asyncio
    async def test_primary_write_timeout_rolls_back(self, db_session, tmp_path, visit: Visit, test_user: dict):
        settings = Settings()
        settings.BLOB_TIMEOUT_SECONDS = 0.05
        store = WriteThenStallStore(tmp_path / "blobs", "http://testserver")
        service = make_service(db_session, store, settings=settings)

        result = await service.upload_photo(visit.id, test_user["user_id"], photo(thumbnail=False))

        assert not result.success
        assert isinstance(result.error, StorageWriteError)
        assert await store.list() == []
        assert db_session.query(VisitAttachment).count() == 0

    @pytest.mark.asyncio
    async def test_thumbnail_timeout_removes_thumbnail(self, db_session, tmp_path, visit: Visit, test_user: dict):
        settings = Settings()
        settings.BLOB_TIMEOUT_SECONDS = 0.05
        store = WriteThenStallStore(tmp_path / "blobs", "http://testserver", suffix="_thumb.jpg")
        service = make_service(db_session, store, settings=settings)

        result = await service.upload_photo(visit.id, test_user["user_id"], photo())

        assert result.success
        assert result.thumbnail_degraded
        assert result.attachment.thumbnail_path is None
        assert await store.list() == [result.attachment.storage_path]

    @pytest.mark.asyncio
    async def test_existing_blob_left_alone(self, db_session, tmp_path, visit: Visit, test_user: dict):
        store = OccupiedPathStore(tmp_path / "blobs", "http://testserver")
        service = make_service(db_session, store)

        result = await service.upload_photo(visit.id, test_user["user_id"], photo(thumbnail=False))

        assert not result.success
        assert isinstance(result.error, StorageWriteError)
        stored = await store.list()
        assert len(stored) == 1
        assert await store.read(stored[0]) == b"someone else"

    @pytest.mark.asyncio
    async def test_primary_write_failure(self, db_session, tmp_path, visit: Visit, test_user: dict):
        store = FailingPutStore(tmp_path / "blobs", "http://testserver")
        service = make_service(db_session, store)

        result = await service.upload_photo(visit.id, test_user["user_id"], photo())

        assert not result.success
        assert isinstance(result.error, StorageWriteError)
        assert db_session.query(VisitAttachment).count() == 0

    @pytest.mark.asyncio
    async def test_blob_timeout(self, db_session, tmp_path, visit: Visit, test_user: dict):
        settings = Settings()
        settings.BLOB_TIMEOUT_SECONDS = 0.05
        store = SlowStore(tmp_path / "blobs", "http://testserver")
        service = make_service(db_session, store, settings=settings)

        result = await service.upload_photo(visit.id, test_user["user_id"], photo(thumbnail=False))

        assert not result.success
        assert isinstance(result.error, StorageWriteError)
        assert "timed out" in result.error.message

    @pytest.mark.asyncio
    async def test_cancel_rolls_back_written_blobs(self, db_session, tmp_path, visit: Visit, test_user: dict):
        store = BlockingThumbnailStore(tmp_path / "blobs", "http://testserver")
        service = make_service(db_session, store)

        task = asyncio.create_task(service.upload_photo(visit.id, test_user["user_id"], photo()))
        await store.primary_written.wait()
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        assert await store.list() == []
        assert db_session.query(VisitAttachment).count() == 0

    @pytest.mark.asyncio
    async def test_missing_visit(self, service: AttachmentService, test_user: dict):
        result = await service.upload_photo(9999, test_user["user_id"], photo())
        assert not result.success
        assert isinstance(result.error, VisitNotFoundError)

    @pytest.mark.asyncio
    async def test_caption_too_long(self, service: AttachmentService, visit: Visit, test_user: dict):
        result = await service.upload_photo(visit.id, test_user["user_id"], photo(), caption="x" * 201)
        assert not result.success
        assert result.error.reason == RejectReason.INVALID_CAPTION


class TestVoiceUpload:
    """Voice note uploads through the service."""

    @pytest.mark.asyncio
    async def test_voice_note_sets_visit_flag(
        self, service: AttachmentService, db_session: Session, visit: Visit, test_user: dict
    ):
        result = await service.upload_voice_note(visit.id, test_user["user_id"], voice(duration=12.6))

        assert result.success
        attachment = result.attachment
        assert attachment.kind == "voice"
        assert attachment.storage_path.startswith(f"{visit.circle_id}/{visit.id}/voice-notes/")
        assert attachment.storage_path.endswith(".webm")
        assert attachment.file_name == attachment.storage_path.rsplit("/", 1)[-1]
        assert attachment.duration_seconds == 13
        assert attachment.thumbnail_path is None

        db_session.refresh(visit)
        assert visit.has_voice_note is True

    @pytest.mark.asyncio
    async def test_metadata_failure_rolls_back_voice_note(
        self, service: AttachmentService, db_session: Session, visit: Visit, test_user: dict
    ):
        with patch.object(service.repository, "insert", side_effect=MetadataWriteError("insert failed")):
            result = await service.upload_voice_note(visit.id, test_user["user_id"], voice())

        assert not result.success
        assert isinstance(result.error, MetadataWriteError)
        assert await service.blob_store.list(f"{visit.circle_id}/{visit.id}/voice-notes/") == []
        assert service.list_for_visit(visit.id, kind="voice") == []
        db_session.refresh(visit)
        assert visit.has_voice_note is False

    @pytest.mark.asyncio
    async def test_mp4_gets_m4a_extension(self, service: AttachmentService, visit: Visit, test_user: dict):
        result = await service.upload_voice_note(visit.id, test_user["user_id"], voice(mime="audio/mp4"))
        assert result.attachment.storage_path.endswith(".m4a")

    @pytest.mark.asyncio
    async def test_fourth_voice_note_rejected(self, service: AttachmentService, visit: Visit, test_user: dict):
        for _ in range(3):
            assert (await service.upload_voice_note(visit.id, test_user["user_id"], voice())).success
        result = await service.upload_voice_note(visit.id, test_user["user_id"], voice())
        assert not result.success
        assert result.error.reason == RejectReason.QUOTA_EXCEEDED

    @pytest.mark.asyncio
    async def test_negative_duration(self, service: AttachmentService, visit: Visit, test_user: dict):
        result = await service.upload_voice_note(visit.id, test_user["user_id"], voice(duration=-1))
        assert not result.success
        assert result.error.reason == RejectReason.INVALID_DURATION

    @pytest.mark.asyncio
    async def test_voice_notes_listed_newest_first(self, service: AttachmentService, visit: Visit, test_user: dict):
        first = (await service.upload_voice_note(visit.id, test_user["user_id"], voice())).attachment
        second = (await service.upload_voice_note(visit.id, test_user["user_id"], voice())).attachment
        listed = service.list_for_visit(visit.id, kind="voice")
        assert [a.id for a in listed] == [second.id, first.id]


class TestProgressAndConcurrency:
    @pytest.mark.asyncio
    async def test_progress_sequence(self, service: AttachmentService, visit: Visit, test_user: dict):
        seen = []
        result = await service.upload_photo(visit.id, test_user["user_id"], photo(), on_progress=seen.append)

        assert [(e.progress, e.status) for e in seen] == [
            (0, UPLOADING),
            (25, UPLOADING),
            (50, UPLOADING),
            (75, PROCESSING),
            (100, COMPLETED),
        ]
        assert seen == result.progress
        assert {e.upload_id for e in seen} == {result.upload_id}

    @pytest.mark.asyncio
    async def test_failed_progress(self, service: AttachmentService, visit: Visit, test_user: dict):
        seen = []
        result = await service.upload_photo(
            visit.id, test_user["user_id"], photo(size=12 * MB), on_progress=seen.append
        )
        assert seen[-1].status == FAILED
        assert seen[-1].progress == 0
        assert seen[-1].error == result.error.message

    @pytest.mark.asyncio
    async def test_concurrent_uploads_respect_quota(
        self, service: AttachmentService, db_session: Session, visit: Visit, test_user: dict
    ):
        results = await asyncio.gather(
            *(service.upload_photo(visit.id, test_user["user_id"], photo(size=1024)) for _ in range(8))
        )

        succeeded = [r for r in results if r.success]
        rejected = [r for r in results if not r.success]
        assert len(succeeded) == 5
        assert all(r.error.reason == RejectReason.QUOTA_EXCEEDED for r in rejected)
        assert service.repository.count_for_quota(visit.id, "photo") == 5
        assert len(service.locks) == 0
