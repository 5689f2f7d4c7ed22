"""
Models for multipart_uploader.

Immutable dataclasses for everything the backend hands out or the
orchestrator produces; the progress record is the only mutable one.
"""
import mimetypes
import os
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Optional

MB = 1024 * 1024

# S3 rejects non-final parts smaller than this
MIN_PART_SIZE = 5 * MB
DEFAULT_CHUNK_SIZE = 5 * MB
DEFAULT_CONTENT_TYPE = "application/octet-stream"


class UploadState(Enum):
    """State of one upload attempt."""
    IDLE = "idle"
    INITIATING = "initiating"
    PLANNING_PARTS = "planning_parts"
    REQUESTING_TARGETS = "requesting_targets"
    UPLOADING_PARTS = "uploading_parts"
    FINALIZING = "finalizing"
    SUCCEEDED = "succeeded"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (UploadState.SUCCEEDED, UploadState.FAILED)


class PartStatus(Enum):
    """Status of a single part transfer."""
    PENDING = "pending"
    UPLOADING = "uploading"
    COMPLETED = "completed"
    FAILED = "failed"


class OutcomeStatus(Enum):
    SUCCEEDED = "succeeded"
    FAILED = "failed"


@dataclass(frozen=True)
class FileMetadata:
    """What the backend is told about the file on initiate."""
    name: str
    size: int
    content_type: str = DEFAULT_CONTENT_TYPE

    @classmethod
    def from_path(cls, path: Path, content_type: Optional[str] = None) -> "FileMetadata":
        path = Path(path)
        if content_type is None:
            guessed, _ = mimetypes.guess_type(path.name)
            content_type = guessed or DEFAULT_CONTENT_TYPE
        return cls(name=path.name, size=path.stat().st_size, content_type=content_type)


@dataclass(frozen=True)
class UploadSession:
    """Identifiers returned by the backend's initiate call."""
    upload_id: str
    key: str
    bucket: Optional[str] = None


@dataclass(frozen=True)
class PartDescriptor:
    """One contiguous byte range ``[start, end)`` of the source file."""
    part_number: int
    start: int
    end: int

    @property
    def size(self) -> int:
        return self.end - self.start


@dataclass(frozen=True)
class UploadTarget:
    """Short-lived destination for exactly one part."""
    part_number: int
    destination: str


@dataclass(frozen=True)
class CompletionToken:
    """Opaque token (ETag) acknowledging one uploaded part."""
    part_number: int
    token: str

    def to_wire(self) -> Dict[str, Any]:
        return {"PartNumber": self.part_number, "ETag": self.token}


@dataclass
class PartProgressRecord:
    """Progress information for a single part."""
    part_number: int
    size: int
    status: PartStatus = PartStatus.PENDING
    percent: int = 0

    @property
    def bytes_uploaded(self) -> int:
        if self.status == PartStatus.COMPLETED:
            return self.size
        return self.size * self.percent // 100


@dataclass(frozen=True)
class UploadOutcome:
    """Terminal result of one upload attempt."""
    status: OutcomeStatus
    filename: str = ""
    location: Optional[str] = None
    stage: Optional[UploadState] = None
    error: Optional[BaseException] = None
    part_number: Optional[int] = None
    session: Optional[UploadSession] = None

    @property
    def success(self) -> bool:
        return self.status == OutcomeStatus.SUCCEEDED

    @property
    def message(self) -> Optional[str]:
        return str(self.error) if self.error is not None else None

    @classmethod
    def ok(cls, filename: str, location: Optional[str], session: Optional[UploadSession] = None):
        return cls(
            status=OutcomeStatus.SUCCEEDED,
            filename=filename,
            location=location,
            stage=UploadState.SUCCEEDED,
            session=session,
        )

    @classmethod
    def fail(
        cls,
        filename: str,
        stage: UploadState,
        error: BaseException,
        session: Optional[UploadSession] = None,
    ):
        return cls(
            status=OutcomeStatus.FAILED,
            filename=filename,
            stage=stage,
            error=error,
            part_number=getattr(error, "part_number", None),
            session=session,
        )


def _env_int(name: str, default: Optional[int]) -> Optional[int]:
    value = os.getenv(name)
    if value is None or value.strip() == "":
        return default
    return int(value)


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


@dataclass(frozen=True)
class UploadConfig:
    """Immutable configuration for upload operations."""
    chunk_size: int = DEFAULT_CHUNK_SIZE
    max_concurrency: Optional[int] = None  # None = one task per part
    timeout: float = 60.0  # seconds, per network call
    max_attempts: int = 1  # 1 = no retry
    retry_backoff: float = 0.5
    abort_on_failure: bool = False
    progress_step: int = 256 * 1024
    initiate_endpoint: str = "/create-multipart"
    targets_endpoint: str = "/create-presigned-urls"
    complete_endpoint: str = "/complete-multipart"
    abort_endpoint: str = "/abort-multipart"
    headers: Dict[str, str] = field(default_factory=dict)

    @property
    def below_backend_minimum(self) -> bool:
        return self.chunk_size < MIN_PART_SIZE

    @classmethod
    def from_env(cls, **overrides) -> "UploadConfig":
        """Build config from ``MULTIPART_*`` environment variables."""
        values: Dict[str, Any] = {
            "chunk_size": _env_int("MULTIPART_CHUNK_SIZE", DEFAULT_CHUNK_SIZE),
            "max_concurrency": _env_int("MULTIPART_MAX_CONCURRENCY", None),
            "timeout": float(os.getenv("MULTIPART_TIMEOUT") or 60.0),
            "max_attempts": _env_int("MULTIPART_MAX_ATTEMPTS", 1),
            "abort_on_failure": _env_bool("MULTIPART_ABORT_ON_FAILURE", False),
        }
        values.update({k: v for k, v in overrides.items() if v is not None})
        return cls(**values)
