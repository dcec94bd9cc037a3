"""Visit attachment model."""

import uuid
from datetime import datetime

from sqlalchemy import Boolean, Column, DateTime, Float, ForeignKey, Integer, String, Text

from app.database import Base

PHOTO = "photo"
VOICE = "voice"
ATTACHMENT_KINDS = (PHOTO, VOICE)

CAPTION_MAX_LENGTH = 200


def _new_id() -> str:
    return str(uuid.uuid4())


class VisitAttachment(Base):
    """Photo or voice note attached to a visit."""

    __tablename__ = "visit_attachment"

    id = Column(String(36), primary_key=True, default=_new_id)
    visit_id = Column(Integer, ForeignKey("visit.id"), nullable=False, index=True)
    uploader_id = Column(Integer, ForeignKey("user.id"), nullable=False, index=True)
    kind = Column(String(16), nullable=False, index=True)  # photo, voice

    # Storage
    storage_path = Column(String(512), nullable=False, unique=True)
    thumbnail_path = Column(String(512), nullable=True, unique=True)

    # Descriptive
    file_name = Column(String(512), nullable=False)
    mime_type = Column(String(128), nullable=True)
    file_size = Column(Integer, nullable=False)
    caption = Column(String(CAPTION_MAX_LENGTH), nullable=True)
    width = Column(Integer, nullable=True)
    height = Column(Integer, nullable=True)
    compression_quality = Column(Integer, nullable=True)
    duration_seconds = Column(Float, nullable=True)
    transcription = Column(Text, nullable=True)

    # Size bookkeeping (photo)
    original_file_size = Column(Integer, nullable=True)
    compressed_file_size = Column(Integer, nullable=True)

    upload_status = Column(String(32), nullable=False, default="completed")
    is_private = Column(Boolean, nullable=False, default=False)
    is_archived = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)
