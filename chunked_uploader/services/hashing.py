"""
Content hashing - whole-file fingerprint used as the dedup/session key.

The whole-file hash is one accumulator fed with the file bytes in order. It
is independent of the chunk size and of the per-chunk hashes.
"""
import asyncio
import hashlib
import logging
import time
from pathlib import Path

from blake3 import blake3

from ..exceptions import FileReadError, InvalidInput
from ..models import DEFAULT_READ_WINDOW

log = logging.getLogger(__name__)


def new_hasher(algorithm: str = "blake3"):
    """Fresh hash accumulator. Never share one between chunks."""
    if algorithm == "blake3":
        return blake3()
    if algorithm == "md5":
        return hashlib.md5()
    raise InvalidInput(f"Unsupported hash algorithm: {algorithm!r}")


def hash_bytes(data: bytes, algorithm: str = "blake3") -> str:
    hasher = new_hasher(algorithm)
    hasher.update(data)
    return hasher.hexdigest()


async def hash_file(
    path: Path,
    algorithm: str = "blake3",
    read_window: int = DEFAULT_READ_WINDOW,
) -> str:
    """
    Hash a file asynchronously without loading it into memory.

    Each read window is read in a worker thread so the event loop keeps
    running between windows.

    Raises:
        FileReadError: on any I/O failure
    """
    if read_window <= 0:
        raise InvalidInput(f"read_window must be positive, got {read_window!r}")

    path = Path(path)
    hasher = new_hasher(algorithm)
    started = time.monotonic()
    total = 0

    try:
        f = await asyncio.to_thread(open, path, "rb")
    except OSError as exc:
        raise FileReadError(path, str(exc)) from exc

    try:
        while True:
            try:
                window = await asyncio.to_thread(f.read, read_window)
            except OSError as exc:
                raise FileReadError(path, str(exc)) from exc
            if not window:
                break
            hasher.update(window)
            total += len(window)
    finally:
        f.close()

    digest = hasher.hexdigest()
    log.debug(
        "[hash] %s %s: %d bytes in %.2fs -> %s...",
        algorithm, path.name, total, time.monotonic() - started, digest[:16]
    )
    return digest
