"""Byte-range readers over the file being uploaded."""
import asyncio
from pathlib import Path


class FileByteSource:
    """
    Reads byte ranges of a local file.

    Reads run in a worker thread so concurrent parts don't block the
    event loop.
    """

    def __init__(self, path: Path):
        self._path = Path(path)

    @property
    def path(self) -> Path:
        return self._path

    async def read_range(self, start: int, size: int) -> bytes:
        def _read() -> bytes:
            with open(self._path, "rb") as f:
                f.seek(start)
                return f.read(size)

        return await asyncio.to_thread(_read)


class BytesByteSource:
    """In-memory source, mostly for tests and generated payloads."""

    def __init__(self, data: bytes):
        self._data = bytes(data)

    def __len__(self) -> int:
        return len(self._data)

    async def read_range(self, start: int, size: int) -> bytes:
        return self._data[start:start + size]
