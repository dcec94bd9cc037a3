"""Visit attachment API endpoints."""

import logging

from fastapi import APIRouter, Depends, File, Form, HTTPException, Request, UploadFile

from app.dependencies import CurrentUser, get_attachment_service, get_current_user
from app.models.attachment import ATTACHMENT_KINDS, PHOTO, VOICE, VisitAttachment
from app.rate_limit import limiter
from app.schemas.attachment import (
    AttachmentListResponse,
    AttachmentResponse,
    CaptionUpdateRequest,
    DeleteResponse,
    SignedUrlResponse,
    StorageStatsResponse,
    UploadProgressResponse,
    UploadResponse,
    attachment_response,
)
from app.services.attachments import AttachmentService
from app.services.capacity import check_size
from app.services.errors import (
    AttachmentError,
    AttachmentNotFoundError,
    RejectReason,
    StorageReadError,
    StorageWriteError,
    ValidationError,
    VisitNotFoundError,
)
from app.services.upload import PhotoArtifact, UploadResult, VoiceArtifact

logger = logging.getLogger("visit_media")

router = APIRouter(prefix="/api/v1", tags=["Attachments"])

CHUNK_SIZE = 1024 * 64  # 64KB chunks


def error_status(error: AttachmentError) -> int:
    """HTTP status for an attachment error."""
    if isinstance(error, ValidationError):
        if error.reason == RejectReason.QUOTA_EXCEEDED:
            return 409
        if error.reason == RejectReason.FILE_TOO_LARGE:
            return 413
        return 400
    if isinstance(error, (AttachmentNotFoundError, VisitNotFoundError)):
        return 404
    if isinstance(error, StorageWriteError):
        return 502
    if isinstance(error, StorageReadError):
        return 503
    return 500


def raise_for_error(error: AttachmentError) -> None:
    detail = {"code": error.code, "message": error.message}
    if isinstance(error, ValidationError):
        detail["reason"] = error.reason.value
    raise HTTPException(status_code=error_status(error), detail=detail)


async def read_upload(upload: UploadFile, max_bytes: int) -> bytes:
    """Read an uploaded file in chunks, stopping once it exceeds ``max_bytes``."""
    chunks = []
    size = 0
    while True:
        chunk = await upload.read(CHUNK_SIZE)
        if not chunk:
            break
        size += len(chunk)
        if size > max_bytes:
            decision = check_size(size, max_bytes)
            raise_for_error(decision.to_error())
        chunks.append(chunk)
    return b"".join(chunks)


def visible_to(attachment: VisitAttachment, user: CurrentUser) -> bool:
    return not attachment.is_private or attachment.uploader_id == user.user_id


def get_visible_attachment(service: AttachmentService, attachment_id: str, user: CurrentUser) -> VisitAttachment:
    attachment = service.get(attachment_id)
    if attachment is None or not visible_to(attachment, user):
        raise HTTPException(status_code=404, detail="Attachment not found")
    return attachment


def upload_response(result: UploadResult, thumbnail_dropped: bool = False) -> UploadResponse:
    if not result.success:
        raise_for_error(result.error)
    return UploadResponse(
        upload_id=result.upload_id,
        attachment=attachment_response(result.attachment),
        thumbnail_degraded=result.thumbnail_degraded or thumbnail_dropped,
        progress=[UploadProgressResponse.model_validate(p) for p in result.progress],
    )


@router.post("/visits/{visit_id}/photos", response_model=UploadResponse, status_code=201)
@limiter.limit("20/minute")
async def upload_photo(
    request: Request,
    visit_id: int,
    file: UploadFile,
    thumbnail: UploadFile | None = File(None),
    width: int | None = Form(None),
    height: int | None = Form(None),
    original_size: int | None = Form(None),
    caption: str | None = Form(None),
    is_private: bool = Form(False),
    user: CurrentUser = Depends(get_current_user),
    service: AttachmentService = Depends(get_attachment_service),
) -> UploadResponse:
    """Attach a compressed photo (and optional thumbnail) to a visit."""
    max_bytes = service.settings.max_attachment_bytes
    data = await read_upload(file, max_bytes)
    thumbnail_data = None
    thumbnail_dropped = False
    if thumbnail is not None:
        try:
            thumbnail_data = await read_upload(thumbnail, max_bytes)
        except HTTPException:
            logger.warning("Dropping oversized thumbnail for visit %s, continuing without", visit_id)
            thumbnail_dropped = True

    artifact = PhotoArtifact(
        data=data,
        mime_type=file.content_type or "image/jpeg",
        file_name=file.filename or "photo.jpg",
        width=width,
        height=height,
        original_size=original_size,
        thumbnail=thumbnail_data or None,
    )
    result = await service.upload_photo(visit_id, user.user_id, artifact, caption=caption, is_private=is_private)
    return upload_response(result, thumbnail_dropped=thumbnail_dropped)


@router.post("/visits/{visit_id}/voice-notes", response_model=UploadResponse, status_code=201)
@limiter.limit("20/minute")
async def upload_voice_note(
    request: Request,
    visit_id: int,
    file: UploadFile,
    duration_seconds: float = Form(...),
    caption: str | None = Form(None),
    is_private: bool = Form(False),
    user: CurrentUser = Depends(get_current_user),
    service: AttachmentService = Depends(get_attachment_service),
) -> UploadResponse:
    """Attach a recorded voice note to a visit."""
    data = await read_upload(file, service.settings.max_attachment_bytes)
    artifact = VoiceArtifact(
        data=data,
        duration_seconds=duration_seconds,
        mime_type=file.content_type or "audio/webm",
    )
    result = await service.upload_voice_note(visit_id, user.user_id, artifact, caption=caption, is_private=is_private)
    return upload_response(result)


@router.get("/visits/{visit_id}/attachments", response_model=AttachmentListResponse)
def list_visit_attachments(
    visit_id: int,
    kind: str | None = None,
    include_archived: bool = False,
    user: CurrentUser = Depends(get_current_user),
    service: AttachmentService = Depends(get_attachment_service),
) -> AttachmentListResponse:
    """List a visit's attachments, optionally filtered by kind."""
    if kind is not None and kind not in ATTACHMENT_KINDS:
        raise HTTPException(status_code=400, detail=f"Unknown kind '{kind}'. Allowed: {', '.join(ATTACHMENT_KINDS)}")
    if service.get_visit(visit_id) is None:
        raise HTTPException(status_code=404, detail="Visit not found")

    items = [
        a
        for a in service.list_for_visit(visit_id, kind=kind, include_archived=include_archived)
        if visible_to(a, user)
    ]
    return AttachmentListResponse(items=[attachment_response(a) for a in items], total=len(items))


@router.get("/attachments/{attachment_id}", response_model=AttachmentResponse)
def get_attachment(
    attachment_id: str,
    user: CurrentUser = Depends(get_current_user),
    service: AttachmentService = Depends(get_attachment_service),
):
    """Get a single attachment by ID."""
    return attachment_response(get_visible_attachment(service, attachment_id, user))


@router.get("/attachments/{attachment_id}/url", response_model=SignedUrlResponse)
async def get_attachment_url(
    attachment_id: str,
    ttl: int | None = None,
    user: CurrentUser = Depends(get_current_user),
    service: AttachmentService = Depends(get_attachment_service),
) -> SignedUrlResponse:
    """Get a time-limited URL for the attachment's primary blob."""
    attachment = get_visible_attachment(service, attachment_id, user)
    expires_in = ttl or service.settings.SIGNED_URL_TTL_SECONDS
    if expires_in <= 0:
        raise HTTPException(status_code=400, detail="ttl must be positive")
    url = await service.get_url(attachment.storage_path, expires_in)
    if url is None:
        raise HTTPException(status_code=503, detail="Could not create a URL for this attachment. Try again.")
    return SignedUrlResponse(url=url, expires_in=expires_in)


@router.get("/attachments/{attachment_id}/thumbnail-url", response_model=SignedUrlResponse)
async def get_attachment_thumbnail_url(
    attachment_id: str,
    user: CurrentUser = Depends(get_current_user),
    service: AttachmentService = Depends(get_attachment_service),
) -> SignedUrlResponse:
    """Get a URL for the thumbnail, or the primary blob when there is none."""
    attachment = get_visible_attachment(service, attachment_id, user)
    url = await service.get_thumbnail_url(attachment)
    if url is None:
        raise HTTPException(status_code=503, detail="Could not create a URL for this attachment. Try again.")
    return SignedUrlResponse(url=url, expires_in=service.settings.SIGNED_URL_TTL_SECONDS)


@router.patch("/attachments/{attachment_id}", response_model=AttachmentResponse)
def update_caption(
    attachment_id: str,
    body: CaptionUpdateRequest,
    user: CurrentUser = Depends(get_current_user),
    service: AttachmentService = Depends(get_attachment_service),
):
    """Set or clear an attachment's caption."""
    get_visible_attachment(service, attachment_id, user)
    result = service.update_caption(attachment_id, body.caption)
    if not result.success:
        raise_for_error(result.error)
    return attachment_response(result.attachment)


@router.post("/attachments/{attachment_id}/archive", response_model=AttachmentResponse)
def archive_attachment(
    attachment_id: str,
    user: CurrentUser = Depends(get_current_user),
    service: AttachmentService = Depends(get_attachment_service),
):
    """Archive a photo, hiding it and freeing its quota slot."""
    get_visible_attachment(service, attachment_id, user)
    result = service.archive(attachment_id)
    if not result.success:
        raise_for_error(result.error)
    return attachment_response(result.attachment)


@router.post("/attachments/{attachment_id}/restore", response_model=AttachmentResponse)
async def restore_attachment(
    attachment_id: str,
    user: CurrentUser = Depends(get_current_user),
    service: AttachmentService = Depends(get_attachment_service),
):
    """Restore an archived photo if the visit has room for it."""
    get_visible_attachment(service, attachment_id, user)
    result = await service.restore(attachment_id)
    if not result.success:
        raise_for_error(result.error)
    return attachment_response(result.attachment)


@router.delete("/attachments/{attachment_id}", response_model=DeleteResponse)
async def delete_attachment(
    attachment_id: str,
    user: CurrentUser = Depends(get_current_user),
    service: AttachmentService = Depends(get_attachment_service),
) -> DeleteResponse:
    """Delete an attachment and its stored files."""
    attachment = get_visible_attachment(service, attachment_id, user)
    kind = attachment.kind
    result = await service.delete(attachment_id)
    if not result.success:
        raise_for_error(result.error)
    label = "Voice note" if kind == VOICE else "Photo" if kind == PHOTO else "Attachment"
    return DeleteResponse(
        detail=f"{label} deleted",
        attachment_id=attachment_id,
        has_voice_note=result.has_voice_note,
    )


@router.get("/circles/{circle_id}/storage-stats", response_model=StorageStatsResponse)
def get_storage_stats(
    circle_id: int,
    user: CurrentUser = Depends(get_current_user),
    service: AttachmentService = Depends(get_attachment_service),
) -> StorageStatsResponse:
    """Photo storage usage for a circle."""
    stats = service.get_storage_stats(circle_id)
    return StorageStatsResponse(
        circle_id=circle_id,
        total_photos=stats.total_photos,
        total_size=stats.total_size,
        storage_used=stats.storage_used,
        voice_note_bytes=service.voice_storage_usage(circle_id),
    )
