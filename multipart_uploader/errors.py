"""Exception taxonomy for upload attempts."""
from typing import Any, Optional

from .models import UploadState


class UploadError(Exception):
    """Base class for failures that end an upload attempt."""

    stage: UploadState = UploadState.IDLE

    def __init__(self, message: str, cause: Optional[BaseException] = None):
        super().__init__(message)
        self.cause = cause


class InvalidInput(UploadError, ValueError):
    """Bad chunk size or file metadata; raised before any network call."""
    stage = UploadState.IDLE


class InitiateFailed(UploadError):
    stage = UploadState.INITIATING


class TargetsFailed(UploadError):
    """The request-targets call itself failed."""
    stage = UploadState.REQUESTING_TARGETS


class TargetsIncomplete(TargetsFailed):
    """The backend answered with missing or duplicated part numbers."""

    def __init__(self, message: str, missing=(), duplicated=(), unexpected=()):
        super().__init__(message)
        self.missing = tuple(missing)
        self.duplicated = tuple(duplicated)
        self.unexpected = tuple(unexpected)


class TransferFailed(UploadError):
    """One part's transfer did not complete successfully."""
    stage = UploadState.UPLOADING_PARTS

    def __init__(
        self,
        part_number: int,
        message: str,
        cause: Optional[BaseException] = None,
        status_code: Optional[int] = None,
    ):
        super().__init__(f"Part {part_number}: {message}", cause)
        self.part_number = part_number
        self.status_code = status_code

    @property
    def retryable(self) -> bool:
        if self.status_code is not None:
            return self.status_code >= 500
        return self.cause is not None


class PartUploadFailed(UploadError):
    """Aggregate failure of the upload barrier; carries the first part failure."""
    stage = UploadState.UPLOADING_PARTS

    def __init__(self, part_number: int, cause: BaseException):
        super().__init__(f"Upload of part {part_number} failed: {cause}", cause)
        self.part_number = part_number


class FinalizeFailed(UploadError):
    stage = UploadState.FINALIZING

    def __init__(
        self,
        message: str,
        cause: Optional[BaseException] = None,
        server_message: Optional[str] = None,
    ):
        super().__init__(message, cause)
        self.server_message = server_message


class UploadCancelled(UploadError):
    """The attempt was abandoned by ``reset()``."""

    def __init__(self, stage: UploadState):
        super().__init__(f"Upload reset while {stage.value}")
        self.stage = stage


class BackendHTTPError(RuntimeError):
    """Non-success HTTP response from the coordination API."""

    def __init__(self, status_code: int, method: str, endpoint: str, detail: Any = None):
        super().__init__(f"API error {status_code} on {method} {endpoint}: {detail}")
        self.status_code = status_code
        self.method = method
        self.endpoint = endpoint
        self.detail = detail

    @property
    def server_message(self) -> Optional[str]:
        """``error`` / ``message`` / ``detail`` field of a JSON error body."""
        if isinstance(self.detail, dict):
            for key in ("error", "message", "detail"):
                if self.detail.get(key):
                    return str(self.detail[key])
            return None
        if isinstance(self.detail, str) and self.detail:
            return self.detail
        return None


class InvalidTransition(RuntimeError):
    """Progress aggregator was driven through an illegal status change."""
