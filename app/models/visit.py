"""Visit model."""

from datetime import datetime

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Integer, String

from app.database import Base


class Visit(Base):
    """Scheduled care visit that attachments hang off."""

    __tablename__ = "visit"

    id = Column(Integer, primary_key=True, autoincrement=True)
    circle_id = Column(Integer, nullable=False, index=True)
    visitor_id = Column(Integer, ForeignKey("user.id"), nullable=True, index=True)
    scheduled_start = Column(DateTime, nullable=True)
    scheduled_end = Column(DateTime, nullable=True)
    status = Column(String(32), nullable=False, default="scheduled")  # scheduled, completed, cancelled
    # Derived: true iff at least one voice attachment exists for this visit
    has_voice_note = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)
