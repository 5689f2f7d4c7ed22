"""PUT transport for presigned part URLs."""
from __future__ import annotations

import logging
from typing import AsyncIterator, Optional

import httpx

from .api_client import call_with_deadline

logger = logging.getLogger(__name__)


class HTTPTransport:
    """
    Streams part bodies to presigned URLs with httpx.

    Implements ITransport protocol. The request carries an explicit
    Content-Length so presigned S3 URLs accept it (no chunked encoding).
    ``timeout`` bounds the whole PUT, body upload included.
    """

    def __init__(self, timeout: float = 60, client: Optional[httpx.AsyncClient] = None):
        self._timeout = timeout
        self._client: Optional[httpx.AsyncClient] = client
        self._owns_client = client is None

    async def __aenter__(self):
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=httpx.Timeout(self._timeout))
        return self

    async def __aexit__(self, *args):
        if self._client and self._owns_client:
            await self._client.aclose()
            self._client = None

    async def put(self, destination: str, body: AsyncIterator[bytes], size: int) -> httpx.Response:
        if not self._client:
            raise RuntimeError("HTTPTransport not initialized. Use 'async with' context.")

        logger.debug(f"PUT {size} bytes to {destination.split('?', 1)[0]}")
        return await call_with_deadline(
            self._client.put(
                destination,
                content=body,
                headers={"Content-Length": str(size)},
            ),
            self._timeout,
            f"PUT part ({size} bytes)",
        )
