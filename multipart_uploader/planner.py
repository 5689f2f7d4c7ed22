"""Chunk planning: split a file size into fixed-size parts."""
from typing import List

from .errors import InvalidInput
from .models import PartDescriptor


def part_count(file_size: int, chunk_size: int) -> int:
    """Number of parts ``ceil(file_size / chunk_size)``."""
    return -(-file_size // chunk_size)


def plan_parts(file_size: int, chunk_size: int) -> List[PartDescriptor]:
    """
    Plan the parts of a multipart upload.

    Every part is ``chunk_size`` bytes except the last one, which holds the
    remainder. Ranges are half-open and cover ``[0, file_size)`` exactly.

    Args:
        file_size: Size of the source in bytes (must be positive)
        chunk_size: Size of each part in bytes (must be positive)

    Returns:
        Parts numbered from 1, in order

    Raises:
        InvalidInput: On a non-positive chunk size or an empty file
    """
    if isinstance(chunk_size, bool) or not isinstance(chunk_size, int) or chunk_size <= 0:
        raise InvalidInput(f"chunk_size must be a positive integer, got {chunk_size!r}")
    if isinstance(file_size, bool) or not isinstance(file_size, int) or file_size < 0:
        raise InvalidInput(f"file_size must be a non-negative integer, got {file_size!r}")
    if file_size == 0:
        raise InvalidInput("Cannot upload an empty file")

    return [
        PartDescriptor(
            part_number=index + 1,
            start=start,
            end=min(start + chunk_size, file_size),
        )
        for index, start in enumerate(range(0, file_size, chunk_size))
    ]
