"""Per-visit quota and file size policy."""

from dataclasses import dataclass

from app.models.attachment import CAPTION_MAX_LENGTH, PHOTO, VOICE
from app.services.errors import RejectReason, ValidationError

DEFAULT_PHOTO_QUOTA = 5
DEFAULT_VOICE_QUOTA = 3
DEFAULT_MAX_FILE_SIZE = 10 * 1024 * 1024  # 10 MiB


@dataclass(frozen=True)
class CapacityDecision:
    """Outcome of a capacity check."""

    allowed: bool
    reason: RejectReason | None = None
    message: str | None = None

    def to_error(self) -> ValidationError:
        """Convert a rejection into the error returned to callers."""
        if self.allowed or self.reason is None:
            raise ValueError("Cannot convert an allowed decision into an error")
        return ValidationError(self.message or self.reason.value, self.reason)


ALLOW = CapacityDecision(allowed=True)


def check_size(file_size: int, max_file_size: int = DEFAULT_MAX_FILE_SIZE) -> CapacityDecision:
    """Check only the per-file size limit."""
    if file_size <= 0:
        return CapacityDecision(False, RejectReason.EMPTY_FILE, "File is empty")
    if file_size > max_file_size:
        return CapacityDecision(
            False,
            RejectReason.FILE_TOO_LARGE,
            f"File size ({file_size / (1024 * 1024):.1f}MB) exceeds maximum ({max_file_size // (1024 * 1024)}MB)",
        )
    return ALLOW


def check_capacity(
    kind: str,
    existing_count: int,
    file_size: int,
    *,
    photo_quota: int = DEFAULT_PHOTO_QUOTA,
    voice_quota: int = DEFAULT_VOICE_QUOTA,
    max_file_size: int = DEFAULT_MAX_FILE_SIZE,
) -> CapacityDecision:
    """Decide whether one more attachment of ``kind`` fits on a visit.

    ``existing_count`` is the number of non-archived photos for ``photo`` and
    the number of voice notes for ``voice``. Size is checked before quota.
    """
    size_decision = check_size(file_size, max_file_size)
    if not size_decision.allowed:
        return size_decision

    if kind == PHOTO:
        quota, label = photo_quota, "photos"
    elif kind == VOICE:
        quota, label = voice_quota, "voice notes"
    else:
        raise ValueError(f"Unknown attachment kind '{kind}'")

    if existing_count >= quota:
        return CapacityDecision(
            False,
            RejectReason.QUOTA_EXCEEDED,
            f"Visit already has {existing_count} {label}. Maximum: {quota}",
        )
    return ALLOW


def normalize_caption(caption: str | None) -> str | None:
    """Trim a caption, mapping blank to None. Raises ValidationError if too long."""
    if caption is None:
        return None
    text = caption.strip()
    if not text:
        return None
    if len(text) > CAPTION_MAX_LENGTH:
        raise ValidationError(
            f"Caption is {len(text)} characters. Maximum: {CAPTION_MAX_LENGTH}", RejectReason.INVALID_CAPTION
        )
    return text
