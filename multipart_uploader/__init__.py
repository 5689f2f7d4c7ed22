"""
multipart_uploader - Client-side orchestration of S3-style multipart uploads.

The file is split into fixed-size parts, every part is PUT concurrently to
a presigned URL issued by the backend, and the upload is completed with the
ETags of all parts in part-number order.

Usage:
    from multipart_uploader import UploadOrchestrator, UploadConfig

    async with UploadOrchestrator(api_url) as uploader:
        result = await uploader.upload(path)

    # Progress
    uploader.on("part_progress", lambda record: print(record.part_number, record.percent))
    uploader.on("progress", lambda percent, counts: print(f"{percent}%"))

    # Bounded concurrency, 8 MiB parts
    config = UploadConfig(chunk_size=8 * 1024 * 1024, max_concurrency=4)
    async with UploadOrchestrator(api_url, config=config) as uploader:
        result = await uploader.upload(path)
        if result.success:
            print(result.location)
"""
from .errors import (
    BackendHTTPError,
    FinalizeFailed,
    InitiateFailed,
    InvalidInput,
    PartUploadFailed,
    TargetsFailed,
    TargetsIncomplete,
    TransferFailed,
    UploadCancelled,
    UploadError,
)
from .models import (
    CompletionToken,
    FileMetadata,
    OutcomeStatus,
    PartDescriptor,
    PartProgressRecord,
    PartStatus,
    UploadConfig,
    UploadOutcome,
    UploadSession,
    UploadState,
    UploadTarget,
)
from .orchestrator import PartUploader, ProgressAggregator, UploadOrchestrator
from .planner import plan_parts
from .services import (
    BackendClient,
    BytesByteSource,
    FileByteSource,
    HTTPAPIClient,
    HTTPTransport,
)

__version__ = "0.1.0"
__all__ = [
    # Main
    "UploadOrchestrator",
    "PartUploader",
    "ProgressAggregator",
    "plan_parts",
    # Models
    "CompletionToken",
    "FileMetadata",
    "OutcomeStatus",
    "PartDescriptor",
    "PartProgressRecord",
    "PartStatus",
    "UploadConfig",
    "UploadOutcome",
    "UploadSession",
    "UploadState",
    "UploadTarget",
    # Errors
    "UploadError",
    "InvalidInput",
    "InitiateFailed",
    "TargetsFailed",
    "TargetsIncomplete",
    "TransferFailed",
    "PartUploadFailed",
    "FinalizeFailed",
    "UploadCancelled",
    "BackendHTTPError",
    # Services
    "BackendClient",
    "BytesByteSource",
    "FileByteSource",
    "HTTPAPIClient",
    "HTTPTransport",
]
