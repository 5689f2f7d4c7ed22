"""HTTP adapter for coordination API operations."""
from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, Optional

import httpx

from ..errors import BackendHTTPError

logger = logging.getLogger(__name__)


class HTTPAPIClient:
    """
    HTTP client adapter for JSON API calls.

    Implements IAPIClient protocol. Every call is attempted once unless
    ``max_attempts`` is raised; only transport errors and 5xx responses
    are retried, with exponential backoff.
    ``timeout`` bounds each whole call, not only each socket operation.
    """

    def __init__(
        self,
        base_url: str,
        timeout: float = 60,
        max_attempts: int = 1,
        backoff: float = 0.5,
        headers: Optional[Dict[str, str]] = None,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self._base_url = base_url
        self._timeout = timeout
        self._max_attempts = max(1, max_attempts)
        self._backoff = backoff
        self._headers = headers or {}
        self._client: Optional[httpx.AsyncClient] = client
        self._owns_client = client is None

    async def __aenter__(self):
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self._base_url,
                timeout=httpx.Timeout(self._timeout),
                headers=self._headers,
            )
        return self

    async def __aexit__(self, *args):
        if self._client and self._owns_client:
            await self._client.aclose()
            self._client = None

    async def post(self, endpoint: str, json: Dict) -> httpx.Response:
        if not self._client:
            raise RuntimeError("HTTPAPIClient not initialized. Use 'async with' context.")

        for attempt in range(self._max_attempts):
            last_attempt = attempt == self._max_attempts - 1
            try:
                response = await call_with_deadline(
                    self._client.post(endpoint, json=json), self._timeout, f"POST {endpoint}"
                )
            except httpx.RequestError as exc:
                if last_attempt:
                    raise
                logger.warning(f"POST {endpoint} failed ({exc!r}), retrying")
                await asyncio.sleep(self._backoff * (2 ** attempt))
                continue

            if response.status_code >= 500 and not last_attempt:
                logger.warning(f"POST {endpoint} returned {response.status_code}, retrying")
                await asyncio.sleep(self._backoff * (2 ** attempt))
                continue

            if response.status_code >= 400:
                raise BackendHTTPError(response.status_code, "POST", endpoint, _error_detail(response))

            return response

        raise RuntimeError(f"Failed to POST {endpoint} after {self._max_attempts} attempts")


async def call_with_deadline(call, timeout: Optional[float], what: str):
    """Bound the whole call, not just each socket operation."""
    if not timeout:
        return await call
    try:
        return await asyncio.wait_for(call, timeout)
    except asyncio.TimeoutError as exc:
        raise httpx.TimeoutException(f"{what} exceeded {timeout:g}s") from exc


def _error_detail(response: httpx.Response) -> Any:
    try:
        return response.json()
    except ValueError:
        return response.text
