"""
Protocols (Interfaces) for Dependency Inversion.

The orchestrator only talks to these; HTTP implementations live in
``multipart_uploader.services``.
"""
from typing import (
    Any,
    AsyncIterator,
    Dict,
    List,
    Mapping,
    Optional,
    Protocol,
    Sequence,
    runtime_checkable,
)

from .models import CompletionToken, FileMetadata, UploadSession, UploadTarget


@runtime_checkable
class IAPIClient(Protocol):
    """Interface for JSON API operations."""

    async def post(self, endpoint: str, json: Dict) -> Any:
        """POST request to API."""
        ...


@runtime_checkable
class IBackendClient(Protocol):
    """The coordination endpoints of the storage backend."""

    async def initiate(self, metadata: FileMetadata) -> UploadSession:
        """Open a multipart upload."""
        ...

    async def request_targets(self, session: UploadSession, parts: int) -> List[UploadTarget]:
        """Ask for one upload target per part number ``1..parts``."""
        ...

    async def complete(self, session: UploadSession, tokens: Sequence[CompletionToken]) -> Optional[str]:
        """Finalize the upload; returns the object location."""
        ...

    async def abort(self, session: UploadSession) -> None:
        """Release parts of an abandoned upload."""
        ...


class TransportResponse(Protocol):
    status_code: int
    headers: Mapping[str, str]


@runtime_checkable
class ITransport(Protocol):
    """Write raw bytes to a destination and wait for acknowledgement."""

    async def put(
        self,
        destination: str,
        body: AsyncIterator[bytes],
        size: int,
    ) -> TransportResponse:
        ...


@runtime_checkable
class IByteSource(Protocol):
    """Random-access reader over the file being uploaded."""

    async def read_range(self, start: int, size: int) -> bytes:
        ...
