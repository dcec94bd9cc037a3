"""Pydantic schemas for attachment endpoints."""

from datetime import datetime
from typing import Annotated, Literal

from pydantic import BaseModel, Field


class AttachmentBase(BaseModel):
    id: str
    visit_id: int
    uploader_id: int
    file_name: str
    mime_type: str | None
    file_size: int
    storage_path: str
    caption: str | None
    is_private: bool
    is_archived: bool
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}


class PhotoAttachmentResponse(AttachmentBase):
    kind: Literal["photo"]
    thumbnail_path: str | None
    width: int | None
    height: int | None
    compression_quality: int | None
    original_file_size: int | None
    compressed_file_size: int | None


class VoiceAttachmentResponse(AttachmentBase):
    kind: Literal["voice"]
    duration_seconds: float | None
    transcription: str | None


AttachmentResponse = Annotated[
    PhotoAttachmentResponse | VoiceAttachmentResponse,
    Field(discriminator="kind"),
]


class AttachmentListResponse(BaseModel):
    items: list[AttachmentResponse]
    total: int


class UploadProgressResponse(BaseModel):
    upload_id: str
    progress: int
    status: str
    error: str | None = None

    model_config = {"from_attributes": True}


class UploadResponse(BaseModel):
    upload_id: str
    attachment: AttachmentResponse
    thumbnail_degraded: bool
    progress: list[UploadProgressResponse]


class CaptionUpdateRequest(BaseModel):
    caption: str | None = None


class SignedUrlResponse(BaseModel):
    url: str
    expires_in: int


class DeleteResponse(BaseModel):
    detail: str
    attachment_id: str
    has_voice_note: bool | None = None


class StorageStatsResponse(BaseModel):
    circle_id: int
    total_photos: int
    total_size: int
    storage_used: str
    voice_note_bytes: int


def attachment_response(attachment) -> PhotoAttachmentResponse | VoiceAttachmentResponse:
    """Build the kind-specific response for an attachment row."""
    if attachment.kind == "photo":
        return PhotoAttachmentResponse.model_validate(attachment)
    return VoiceAttachmentResponse.model_validate(attachment)
