"""API routers."""

from app.routers.attachments import router as attachments_router
from app.routers.blobs import router as blobs_router

__all__ = ["attachments_router", "blobs_router"]
