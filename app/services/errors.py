"""Error taxonomy for attachment operations.

Orchestrators hand these back inside result objects rather than raising them,
so routers can map ``code`` onto a specific message and status.
"""

from enum import Enum


class RejectReason(str, Enum):
    """Why the capacity policy refused an attachment."""

    QUOTA_EXCEEDED = "quota_exceeded"
    FILE_TOO_LARGE = "file_too_large"
    EMPTY_FILE = "empty_file"
    INVALID_CAPTION = "invalid_caption"
    INVALID_DURATION = "invalid_duration"
    UNSUPPORTED_KIND = "unsupported_kind"


class AttachmentError(Exception):
    """Base class for attachment failures."""

    code = "attachment_error"

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def __str__(self) -> str:
        return self.message


class ValidationError(AttachmentError):
    """Oversized file, exhausted quota or bad input. Raised before any I/O."""

    code = "validation_error"

    def __init__(self, message: str, reason: RejectReason) -> None:
        super().__init__(message)
        self.reason = reason


class StorageWriteError(AttachmentError):
    """Primary blob upload failed."""

    code = "storage_write_error"


class StorageReadError(AttachmentError):
    """Signed URL or blob read failed. Callers may retry."""

    code = "storage_read_error"


class MetadataWriteError(AttachmentError):
    """Insert, update or delete on the metadata store failed."""

    code = "metadata_write_error"


class AttachmentNotFoundError(AttachmentError):
    code = "attachment_not_found"


class VisitNotFoundError(AttachmentError):
    code = "visit_not_found"
