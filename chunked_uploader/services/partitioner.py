"""Chunk partitioning - pure byte-range arithmetic, no I/O."""
from typing import List

from ..exceptions import InvalidInput
from ..models import Chunk


def chunk_count(total_size: int, chunk_size: int) -> int:
    """Number of chunks for a file: ceil(total_size / chunk_size)."""
    _validate(total_size, chunk_size)
    return -(-total_size // chunk_size)


def chunk_bounds(index: int, total_size: int, chunk_size: int) -> tuple:
    """Byte range [start, end) covered by chunk `index`."""
    start = index * chunk_size
    return start, min(start + chunk_size, total_size)


def partition(total_size: int, chunk_size: int) -> List[Chunk]:
    """
    Split a byte range of `total_size` into ordered fixed-size chunks.

    Chunk i covers [i*chunk_size, min((i+1)*chunk_size, total_size)); only the
    last chunk may be shorter. Identical inputs always give identical bounds.

    Raises:
        InvalidInput: chunk_size <= 0 or total_size < 0
    """
    count = chunk_count(total_size, chunk_size)
    return [
        Chunk(index, *chunk_bounds(index, total_size, chunk_size))
        for index in range(count)
    ]


def _validate(total_size: int, chunk_size: int) -> None:
    if not isinstance(chunk_size, int) or chunk_size <= 0:
        raise InvalidInput(f"chunk_size must be a positive integer, got {chunk_size!r}")
    if not isinstance(total_size, int) or total_size < 0:
        raise InvalidInput(f"file size must be >= 0, got {total_size!r}")
