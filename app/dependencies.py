"""Request dependencies for FastAPI routes."""

from dataclasses import dataclass

from fastapi import Depends, HTTPException, Request
from sqlalchemy.orm import Session

from app.database import get_db
from app.services.attachments import AttachmentService
from app.services.blob_store import BlobStore, get_blob_store
from app.services.jwt import get_jwt_service


@dataclass
class CurrentUser:
    """Authenticated user context."""

    user_id: int
    email: str
    display_name: str


def get_current_user(request: Request) -> CurrentUser:
    """Extract and validate user from the Bearer token. Raises 401 if invalid."""
    auth_header = request.headers.get("Authorization")
    if not auth_header or not auth_header.startswith("Bearer "):
        raise HTTPException(status_code=401, detail="Not authenticated")

    jwt_service = get_jwt_service()
    payload = jwt_service.decode_token(auth_header[7:])
    if not payload:
        raise HTTPException(status_code=401, detail="Invalid or expired token")

    return CurrentUser(
        user_id=int(payload["sub"]),
        email=payload.get("email", ""),
        display_name=payload.get("displayName", ""),
    )


def get_attachment_service(
    db: Session = Depends(get_db),
    blob_store: BlobStore = Depends(get_blob_store),
) -> AttachmentService:
    """Build an attachment service bound to this request's session."""
    return AttachmentService(db, blob_store)
