"""Bounded-concurrency part uploads with per-part retry."""
import asyncio
import logging
from pathlib import Path
from typing import Awaitable, Callable, Dict, List, Optional

from chunked_uploader.exceptions import (
    ApiError,
    FileReadError,
    NetworkError,
    SessionFatal,
    SupersededRequest,
    UploadAborted,
)
from chunked_uploader.models import Chunk, UploadSession
from chunked_uploader.protocols import IUploadAPI
from chunked_uploader.utils.events import EventEmitter

logger = logging.getLogger(__name__)

RETRYABLE_PART_ERRORS = (NetworkError, SupersededRequest, ApiError)


class PartUploadCoordinator:
    """
    Uploads the missing parts of a session with a bounded number in flight.

    - At most `max_parallel` part requests run at once; the rest wait for a slot.
    - A failed part is retried up to `max_attempts` times (timeouts, network
      errors, superseded calls and non-fatal API codes).
    - SessionFatal, local read errors and an explicit abort are never retried.
    - The first part that runs out of attempts cancels the rest.
    """

    def __init__(
        self,
        api: IUploadAPI,
        max_parallel: int = 3,
        max_attempts: int = 3,
        retry_backoff: float = 0.5,
        events: Optional[EventEmitter] = None,
    ):
        self._api = api
        self._max_parallel = max_parallel
        self._max_attempts = max_attempts
        self._retry_backoff = retry_backoff
        self._events = events or EventEmitter()
        self._tasks: List[asyncio.Task] = []
        self._aborted = False
        self.attempts: Dict[int, int] = {}

    @property
    def aborted(self) -> bool:
        return self._aborted

    async def upload(
        self,
        session: UploadSession,
        chunks: List[Chunk],
        read_part: Callable[[Chunk], Awaitable[bytes]],
        on_part_done: Callable[[Chunk], Awaitable[None]],
    ) -> int:
        """
        Upload `chunks` for `session`. Returns number of parts uploaded.

        `on_part_done` runs in the caller's task, once per successful part,
        in completion order.
        """
        if not chunks:
            return 0

        logger.info(
            "[parts] %s: uploading %d part(s), max %d parallel",
            session.file_name, len(chunks), self._max_parallel
        )
        semaphore = asyncio.Semaphore(self._max_parallel)
        self._tasks = [
            asyncio.create_task(self._upload_single_part(session, chunk, read_part, semaphore))
            for chunk in chunks
        ]

        uploaded = 0
        try:
            for task in asyncio.as_completed(self._tasks):
                chunk = await task
                uploaded += 1
                await on_part_done(chunk)
        except asyncio.CancelledError:
            await self._cancel_remaining_tasks(self._tasks)
            if self._aborted:
                raise UploadAborted("Upload aborted by user") from None
            raise
        except BaseException:
            await self._cancel_remaining_tasks(self._tasks)
            raise
        finally:
            self._tasks = []

        return uploaded

    def cancel(self) -> None:
        """User-initiated abort: cancel in-flight parts, no retries."""
        self._aborted = True
        for task in self._tasks:
            if not task.done():
                task.cancel()

    async def _upload_single_part(
        self,
        session: UploadSession,
        chunk: Chunk,
        read_part: Callable[[Chunk], Awaitable[bytes]],
        semaphore: asyncio.Semaphore,
    ) -> Chunk:
        async with semaphore:
            data = await read_part(chunk)
            last_error: Optional[Exception] = None

            for attempt in range(1, self._max_attempts + 1):
                if self._aborted:
                    raise UploadAborted("Upload aborted by user")
                self.attempts[chunk.index] = attempt
                try:
                    await self._api.upload_part(
                        session.upload_id,
                        chunk.part_number,
                        data,
                        content_hash=chunk.content_hash,
                    )
                    logger.debug("[parts] part %d/%d uploaded", chunk.part_number, session.chunk_count)
                    return chunk
                except SessionFatal:
                    raise
                except RETRYABLE_PART_ERRORS as exc:
                    last_error = exc
                    logger.warning(
                        "[parts] part %d attempt %d/%d failed: %s",
                        chunk.part_number, attempt, self._max_attempts, exc
                    )
                    await self._events.emit("part_retry", chunk.index, attempt, exc)
                    if attempt < self._max_attempts:
                        await asyncio.sleep(self._retry_backoff * attempt)

            raise last_error

    async def _cancel_remaining_tasks(self, tasks: List[asyncio.Task]) -> None:
        """Cancel all remaining tasks gracefully."""
        for task in tasks:
            if not task.done():
                task.cancel()

        await asyncio.gather(*tasks, return_exceptions=True)


async def read_chunk(path: Path, chunk: Chunk) -> bytes:
    """Read a chunk's raw bytes off the event loop."""
    def _read() -> bytes:
        with open(path, "rb") as f:
            f.seek(chunk.byte_start)
            return f.read(chunk.size)

    try:
        data = await asyncio.to_thread(_read)
    except OSError as exc:
        raise FileReadError(path, str(exc)) from exc
    if len(data) != chunk.size:
        raise FileReadError(path, f"short read for chunk {chunk.index}: {len(data)} of {chunk.size} bytes")
    return data
