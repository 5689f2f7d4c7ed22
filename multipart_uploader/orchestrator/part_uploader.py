"""Transfer of a single part to its upload target."""
import asyncio
import logging
from typing import AsyncIterator, Callable, Mapping, Optional

from ..errors import TransferFailed
from ..models import CompletionToken, PartDescriptor, UploadConfig, UploadTarget
from ..protocols import IByteSource, ITransport

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[int, int], None]


def _header(headers: Mapping[str, str], name: str) -> Optional[str]:
    value = headers.get(name)
    if value is not None:
        return value
    lowered = name.lower()
    for key, value in headers.items():
        if key.lower() == lowered:
            return value
    return None


class PartUploader:
    """
    Uploads one part: stream its byte range, PUT it, return the ETag.

    The range is read from the source one ``progress_step`` slice at a time
    as the transport consumes the body, so a part never holds more than one
    slice in memory. Progress is reported as slices are handed to the
    transport and is capped at 99 until the destination acknowledges; 100
    is reported once, on success, and nothing is reported after that.
    """

    def __init__(
        self,
        transport: ITransport,
        source: IByteSource,
        config: Optional[UploadConfig] = None,
    ):
        self._transport = transport
        self._source = source
        self._config = config or UploadConfig()

    async def upload(
        self,
        part: PartDescriptor,
        target: UploadTarget,
        on_progress: Optional[ProgressCallback] = None,
    ) -> CompletionToken:
        """
        Upload ``part`` to ``target``.

        Args:
            part: Byte range to send
            target: Presigned destination for this part number
            on_progress: Called as ``on_progress(part_number, percent)``

        Returns:
            CompletionToken carrying the destination's ETag

        Raises:
            TransferFailed: Short read, transport error, non-2xx status or
                missing ETag
        """
        reported = -1

        def report(percent: int) -> None:
            nonlocal reported
            if on_progress is None or percent <= reported:
                return
            reported = percent
            on_progress(part.part_number, percent)

        attempts = max(1, self._config.max_attempts)
        for attempt in range(attempts):
            try:
                token = await self._transfer(part, target, report)
            except TransferFailed as exc:
                if attempt == attempts - 1 or not exc.retryable:
                    raise
                delay = self._config.retry_backoff * (2 ** attempt)
                logger.warning(f"{exc}; retrying in {delay:.1f}s ({attempt + 2}/{attempts})")
                await asyncio.sleep(delay)
                continue

            report(100)
            return token

        raise TransferFailed(part.part_number, f"failed after {attempts} attempts")

    async def _transfer(
        self,
        part: PartDescriptor,
        target: UploadTarget,
        report: Callable[[int], None],
    ) -> CompletionToken:
        body = self._stream(part, report)
        try:
            response = await self._transport.put(target.destination, body, part.size)
        except TransferFailed:
            # Raised by the body itself on a source read error
            raise
        except Exception as exc:
            raise TransferFailed(part.part_number, f"transport error: {exc!r}", exc) from exc

        status = response.status_code
        if not 200 <= status < 300:
            raise TransferFailed(part.part_number, f"HTTP {status}", status_code=status)

        etag = _header(response.headers, "ETag")
        if not etag:
            raise TransferFailed(part.part_number, "no ETag in acknowledgement", status_code=status)

        logger.debug(f"Part {part.part_number} acknowledged ({part.size} bytes, ETag {etag})")
        return CompletionToken(part_number=part.part_number, token=etag)

    async def _stream(self, part: PartDescriptor, report: Callable[[int], None]) -> AsyncIterator[bytes]:
        total = part.size
        step = max(1, self._config.progress_step)
        for offset in range(0, total, step):
            size = min(step, total - offset)
            start = part.start + offset
            try:
                chunk = await self._source.read_range(start, size)
            except OSError as exc:
                raise TransferFailed(part.part_number, f"could not read source: {exc}", exc) from exc
            if len(chunk) != size:
                raise TransferFailed(
                    part.part_number,
                    f"short read: expected {size} bytes at offset {start}, got {len(chunk)}",
                )
            yield chunk
            report(min(99, (offset + size) * 100 // total))
