"""Upload progress reporting scoped to a single upload call."""

import logging
import secrets
import string
import time
from collections.abc import Callable
from dataclasses import dataclass

logger = logging.getLogger("visit_media")

UPLOADING = "uploading"
PROCESSING = "processing"
COMPLETED = "completed"
FAILED = "failed"

_BASE36 = string.digits + string.ascii_lowercase


@dataclass(frozen=True)
class UploadProgress:
    """One progress transition of an upload."""

    upload_id: str
    progress: int
    status: str
    error: str | None = None


ProgressCallback = Callable[[UploadProgress], None]


def new_upload_id() -> str:
    """Opaque identifier for one upload attempt."""
    suffix = "".join(secrets.choice(_BASE36) for _ in range(9))
    return f"upload_{int(time.time() * 1000)}_{suffix}"


class ProgressReporter:
    """Records and forwards progress events for one upload.

    A reporter lives exactly as long as the upload that owns it, so there is
    nothing to unregister afterwards. Callback failures are logged and never
    interrupt the upload.
    """

    def __init__(self, callback: ProgressCallback | None = None, upload_id: str | None = None) -> None:
        self.upload_id = upload_id or new_upload_id()
        self._callback = callback
        self.events: list[UploadProgress] = []

    @property
    def latest(self) -> UploadProgress | None:
        return self.events[-1] if self.events else None

    def emit(self, progress: int, status: str, error: str | None = None) -> UploadProgress:
        event = UploadProgress(upload_id=self.upload_id, progress=progress, status=status, error=error)
        self.events.append(event)
        if self._callback is not None:
            try:
                self._callback(event)
            except Exception:
                logger.exception("Progress callback failed for %s at %s@%d", self.upload_id, status, progress)
        return event

    def uploading(self, progress: int) -> UploadProgress:
        return self.emit(progress, UPLOADING)

    def processing(self, progress: int = 75) -> UploadProgress:
        return self.emit(progress, PROCESSING)

    def completed(self) -> UploadProgress:
        return self.emit(100, COMPLETED)

    def failed(self, error: str) -> UploadProgress:
        return self.emit(0, FAILED, error)
