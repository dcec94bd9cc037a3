"""Storage path derivation for attachment blobs.

Every blob lives under its circle and visit::

    {circle_id}/{visit_id}/{timestamp_ms}_photo.jpg
    {circle_id}/{visit_id}/{timestamp_ms}_thumb.jpg
    {circle_id}/{visit_id}/voice-notes/{iso_timestamp}.{ext}

Nothing here touches the blob store; the timestamp component keeps paths
unique enough that callers do not probe for existing objects.
"""

from datetime import datetime

from app.models.attachment import PHOTO, VOICE

PHOTO_SUFFIX = "_photo"
THUMBNAIL_SUFFIX = "_thumb"
PHOTO_EXTENSION = "jpg"
VOICE_DIR = "voice-notes"
GENERIC_AUDIO_EXTENSION = "audio"


def extension_for_mime(mime_type: str | None) -> str:
    """Infer a voice note file extension from its MIME type."""
    mime = (mime_type or "").lower()
    if "webm" in mime:
        return "webm"
    if "mp4" in mime:
        return "m4a"
    if "wav" in mime:
        return "wav"
    return GENERIC_AUDIO_EXTENSION


def circle_prefix(circle_id: int | str) -> str:
    """Prefix shared by every blob belonging to a circle."""
    return f"{circle_id}/"


def visit_prefix(circle_id: int | str, visit_id: int | str) -> str:
    return f"{circle_id}/{visit_id}/"


def build_path(circle_id: int | str, visit_id: int | str, timestamp: str, kind: str, suffix: str) -> str:
    """Compose a blob path.

    ``timestamp`` is already rendered by the caller. For photos ``suffix`` is
    the name suffix plus extension (``_photo.jpg``); for voice notes it is the
    bare extension.
    """
    if kind == PHOTO:
        return f"{visit_prefix(circle_id, visit_id)}{timestamp}{suffix}"
    if kind == VOICE:
        return f"{visit_prefix(circle_id, visit_id)}{VOICE_DIR}/{timestamp}.{suffix}"
    raise ValueError(f"Unknown attachment kind '{kind}'")


def photo_paths(
    circle_id: int | str, visit_id: int | str, timestamp_ms: int, with_thumbnail: bool
) -> tuple[str, str | None]:
    """Return (primary_path, thumbnail_path) for a photo upload."""
    stamp = str(timestamp_ms)
    primary = build_path(circle_id, visit_id, stamp, PHOTO, f"{PHOTO_SUFFIX}.{PHOTO_EXTENSION}")
    thumbnail = (
        build_path(circle_id, visit_id, stamp, PHOTO, f"{THUMBNAIL_SUFFIX}.{PHOTO_EXTENSION}")
        if with_thumbnail
        else None
    )
    return primary, thumbnail


def voice_path(circle_id: int | str, visit_id: int | str, timestamp: datetime, mime_type: str | None) -> str:
    """Return the blob path for a voice note recorded at ``timestamp``."""
    stamp = timestamp.strftime("%Y-%m-%dT%H-%M-%S-") + f"{timestamp.microsecond // 1000:03d}Z"
    return build_path(circle_id, visit_id, stamp, VOICE, extension_for_mime(mime_type))


def voice_file_name(path: str) -> str:
    """Display file name for a generated voice note path."""
    return path.rsplit("/", 1)[-1]
