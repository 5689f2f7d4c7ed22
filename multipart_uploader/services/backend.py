"""
Backend Client - Single Responsibility: speak the multipart coordination
protocol (initiate, presigned targets, complete, abort).

Wire shapes follow the S3 presigned-URL backend:
    POST /create-multipart       {fileName, fileType, fileSize} -> {uploadId, key, bucket}
    POST /create-presigned-urls  {uploadId, key, parts}         -> {presignedUrls: [{partNumber, url}]}
    POST /complete-multipart     {uploadId, key, parts}         -> {message, location}
"""
import logging
from typing import Any, Dict, List, Optional, Sequence

import httpx

from ..errors import (
    BackendHTTPError,
    FinalizeFailed,
    InitiateFailed,
    TargetsFailed,
)
from ..models import CompletionToken, FileMetadata, UploadConfig, UploadSession, UploadTarget
from ..protocols import IAPIClient

logger = logging.getLogger(__name__)


class BackendClient:
    """
    Client for the storage backend's coordination endpoints.

    Implements IBackendClient protocol. Transport and HTTP errors are
    translated into the stage error of the call that raised them.
    """

    def __init__(self, api_client: IAPIClient, config: Optional[UploadConfig] = None):
        """
        Initialize backend client.

        Args:
            api_client: HTTP client for API calls
            config: Upload configuration (endpoint paths)
        """
        self._api = api_client
        self._config = config or UploadConfig()

    async def initiate(self, metadata: FileMetadata) -> UploadSession:
        try:
            response = await self._api.post(self._config.initiate_endpoint, json={
                "fileName": metadata.name,
                "fileType": metadata.content_type,
                "fileSize": metadata.size,
            })
            data = _json_object(response)
        except (BackendHTTPError, httpx.HTTPError, ValueError) as exc:
            raise InitiateFailed(f"Failed to create multipart upload: {exc}", exc) from exc

        upload_id = data.get("uploadId")
        key = data.get("key")
        if not upload_id or not key:
            raise InitiateFailed(f"Initiate response is missing uploadId/key: {data}")

        return UploadSession(upload_id=str(upload_id), key=str(key), bucket=data.get("bucket"))

    async def request_targets(self, session: UploadSession, parts: int) -> List[UploadTarget]:
        """
        Request presigned URLs for ``parts`` parts.

        Returns the targets as received; completeness is checked by the
        orchestrator.
        """
        try:
            response = await self._api.post(self._config.targets_endpoint, json={
                "uploadId": session.upload_id,
                "key": session.key,
                "parts": parts,
            })
            data = _json_object(response)
            items = data.get("presignedUrls")
            if not isinstance(items, list):
                raise ValueError(f"presignedUrls missing from response: {data}")
            return [
                UploadTarget(part_number=int(item["partNumber"]), destination=str(item["url"]))
                for item in items
            ]
        except (BackendHTTPError, httpx.HTTPError, ValueError, KeyError, TypeError) as exc:
            raise TargetsFailed(f"Failed to get presigned URLs: {exc}", exc) from exc

    async def complete(self, session: UploadSession, tokens: Sequence[CompletionToken]) -> Optional[str]:
        try:
            response = await self._api.post(self._config.complete_endpoint, json={
                "uploadId": session.upload_id,
                "key": session.key,
                "parts": [token.to_wire() for token in tokens],
            })
            data = _json_object(response)
        except BackendHTTPError as exc:
            server_message = exc.server_message
            raise FinalizeFailed(
                server_message or "Failed to complete multipart upload",
                exc,
                server_message=server_message,
            ) from exc
        except (httpx.HTTPError, ValueError) as exc:
            raise FinalizeFailed(f"Failed to complete multipart upload: {exc}", exc) from exc

        if data.get("message"):
            logger.debug(f"Complete: {data['message']}")
        return data.get("location")

    async def abort(self, session: UploadSession) -> None:
        await self._api.post(self._config.abort_endpoint, json={
            "uploadId": session.upload_id,
            "key": session.key,
        })


def _json_object(response: Any) -> Dict[str, Any]:
    data = response.json()
    if not isinstance(data, dict):
        raise ValueError(f"Expected a JSON object, got {type(data).__name__}")
    return data
