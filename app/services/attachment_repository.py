"""Metadata store for visit attachments."""

import logging
from datetime import datetime
from typing import Any

from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.models.attachment import PHOTO, VOICE, VisitAttachment
from app.models.visit import Visit
from app.services.errors import MetadataWriteError
from app.services.naming import circle_prefix

logger = logging.getLogger("visit_media")

UPDATABLE_FIELDS = {"caption", "is_private", "is_archived", "transcription"}


class AttachmentRepository:
    """Reads and writes attachment rows and the parent visit's derived flags.

    Every write commits. Database failures roll the session back and surface
    as MetadataWriteError.
    """

    def __init__(self, db: Session) -> None:
        self.db = db

    def _commit(self, action: str) -> None:
        try:
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            raise MetadataWriteError(f"Database error during {action}: {e}") from e

    # --- writes ---

    def insert(self, attachment: VisitAttachment) -> VisitAttachment:
        """Persist a new attachment row and return it refreshed."""
        try:
            self.db.add(attachment)
            self.db.flush()
            self.db.refresh(attachment)
        except SQLAlchemyError as e:
            self.db.rollback()
            raise MetadataWriteError(f"Database error during insert: {e}") from e
        self._commit("insert")
        return attachment

    def update(self, attachment_id: str, **fields: Any) -> VisitAttachment | None:
        """Update whitelisted fields. Returns None when the row is gone."""
        unknown = set(fields) - UPDATABLE_FIELDS
        if unknown:
            raise ValueError(f"Fields not updatable: {', '.join(sorted(unknown))}")
        attachment = self.get(attachment_id)
        if attachment is None:
            return None
        for name, value in fields.items():
            setattr(attachment, name, value)
        attachment.updated_at = datetime.utcnow()
        self._commit("update")
        return attachment

    def delete(self, attachment_id: str) -> bool:
        """Delete a row. Returns False when nothing was deleted."""
        try:
            deleted = self.db.query(VisitAttachment).filter(VisitAttachment.id == attachment_id).delete()
        except SQLAlchemyError as e:
            self.db.rollback()
            raise MetadataWriteError(f"Database error during delete: {e}") from e
        self._commit("delete")
        return bool(deleted)

    def set_voice_flag(self, visit_id: int, value: bool) -> None:
        """Write the visit's derived has_voice_note flag."""
        try:
            self.db.query(Visit).filter(Visit.id == visit_id).update(
                {Visit.has_voice_note: value, Visit.updated_at: datetime.utcnow()}
            )
        except SQLAlchemyError as e:
            self.db.rollback()
            raise MetadataWriteError(f"Database error updating visit {visit_id}: {e}") from e
        self._commit("visit flag update")

    # --- reads ---

    def get(self, attachment_id: str) -> VisitAttachment | None:
        return self.db.query(VisitAttachment).filter(VisitAttachment.id == attachment_id).first()

    def get_visit(self, visit_id: int) -> Visit | None:
        return self.db.query(Visit).filter(Visit.id == visit_id).first()

    def query(self, *criteria: Any, order_by: Any = None) -> list[VisitAttachment]:
        """Generic filtered query, oldest first unless ``order_by`` is given."""
        q = self.db.query(VisitAttachment).filter(*criteria)
        q = q.order_by(order_by if order_by is not None else VisitAttachment.created_at.asc())
        return q.all()

    def list_for_visit(
        self, visit_id: int, kind: str | None = None, include_archived: bool = False
    ) -> list[VisitAttachment]:
        """Attachments of a visit. Photos oldest first, voice notes newest first."""
        criteria = [VisitAttachment.visit_id == visit_id]
        if kind is not None:
            criteria.append(VisitAttachment.kind == kind)
        if not include_archived:
            criteria.append(VisitAttachment.is_archived.is_(False))
        order = VisitAttachment.created_at.desc() if kind == VOICE else VisitAttachment.created_at.asc()
        return self.query(*criteria, order_by=order)

    def count_for_quota(self, visit_id: int, kind: str) -> int:
        """Count the attachments that occupy a quota slot on a visit."""
        q = self.db.query(func.count(VisitAttachment.id)).filter(
            VisitAttachment.visit_id == visit_id, VisitAttachment.kind == kind
        )
        if kind == PHOTO:
            q = q.filter(VisitAttachment.is_archived.is_(False))
        return q.scalar() or 0

    def voice_count(self, visit_id: int) -> int:
        return self.count_for_quota(visit_id, VOICE)

    def photo_stats_for_circle(self, circle_id: int) -> tuple[int, int]:
        """Return (count, total compressed bytes) of live photos stored under a circle."""
        row = (
            self.db.query(
                func.count(VisitAttachment.id),
                func.coalesce(func.sum(VisitAttachment.compressed_file_size), 0),
            )
            .filter(
                VisitAttachment.kind == PHOTO,
                VisitAttachment.is_archived.is_(False),
                VisitAttachment.storage_path.like(f"{circle_prefix(circle_id)}%"),
            )
            .one()
        )
        return int(row[0] or 0), int(row[1] or 0)

    def voice_bytes_for_circle(self, circle_id: int) -> int:
        total = (
            self.db.query(func.coalesce(func.sum(VisitAttachment.file_size), 0))
            .join(Visit, VisitAttachment.visit_id == Visit.id)
            .filter(VisitAttachment.kind == VOICE, Visit.circle_id == circle_id)
            .scalar()
        )
        return int(total or 0)
