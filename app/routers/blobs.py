"""Signed blob download endpoint."""

import mimetypes

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import Response

from app.services.blob_store import BlobStore, BlobStoreError, get_blob_store
from app.services.jwt import get_jwt_service

router = APIRouter(prefix="/api/v1/blobs", tags=["Blobs"])

# mimetypes maps .webm to video/webm; every stored audio blob is a voice note
AUDIO_TYPES = {".webm": "audio/webm", ".m4a": "audio/mp4", ".wav": "audio/wav"}


@router.get("/{path:path}")
async def download_blob(
    path: str,
    token: str,
    blob_store: BlobStore = Depends(get_blob_store),
) -> Response:
    """Serve a blob to the holder of a valid signed token."""
    if not get_jwt_service().verify_blob_token(token, path):
        raise HTTPException(status_code=403, detail="Invalid or expired link")
    try:
        if not await blob_store.exists(path):
            raise HTTPException(status_code=404, detail="File not found")
        data = await blob_store.read(path)
    except BlobStoreError:
        raise HTTPException(status_code=404, detail="File not found") from None

    extension = path[path.rfind("."):] if "." in path else ""
    media_type = AUDIO_TYPES.get(extension) or mimetypes.guess_type(path)[0] or "application/octet-stream"
    return Response(
        content=data,
        media_type=media_type,
        headers={"Cache-Control": "private, max-age=3600"},
    )
