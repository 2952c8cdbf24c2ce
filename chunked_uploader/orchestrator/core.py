"""Core orchestrator - fingerprints a file and drives its upload session."""
import asyncio
import logging
from pathlib import Path
from typing import Callable, List, Optional, Tuple

import httpx

from ..exceptions import FileReadError, SessionFatal, SupersededRequest, UploaderError, UploadAborted
from ..models import Chunk, RemoteFile, UploadConfig, UploadResult
from ..protocols import ICredentialStore, IHashCache, INotifier
from ..services.api_client import HTTPAPIClient
from ..services.fingerprint import FingerprintPool
from ..services.hash_cache import HashCache
from ..use_cases.deduplication import ResolveFileHashUseCase
from ..utils.events import EventEmitter
from .session import UploadSessionController

logger = logging.getLogger(__name__)


class LoggingNotifier:
    """Default notifier: terminal failures go to the log."""

    def error(self, message: str) -> None:
        logger.error("Upload failed: %s", message)


class UploadOrchestrator:
    """
    Orchestrates resumable chunked uploads using injected services.

    Usage:
        async with UploadOrchestrator(api_url) as uploader:
            uploader.on("progress", lambda p: print(f"{p.percent:.1f}%"))
            result = await uploader.upload(path)

    Events:
        state(session, state), fingerprint(chunks), part_complete(session, index),
        part_retry(index, attempt, error), progress(TransferProgress)
    """

    def __init__(
        self,
        api_url: str,
        config: Optional[UploadConfig] = None,
        credentials: Optional[ICredentialStore] = None,
        notifier: Optional[INotifier] = None,
        hash_cache: Optional[IHashCache] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        executor_factory: Optional[Callable] = None,
    ):
        """
        Args:
            api_url: Upload backend base URL (e.g. http://host/bunUpload/multipart)
            config: Upload configuration
            credentials: Token/locale store, cleared on session-fatal responses
            notifier: Receives one message per terminal failure
            hash_cache: Whole-file hash cache (default: HashCache when enabled)
            transport: Optional httpx transport (tests)
            executor_factory: Optional executor factory for the fingerprint pool
        """
        self._api_url = api_url
        self._config = config or UploadConfig()
        self._credentials = credentials
        self._notifier = notifier or LoggingNotifier()
        self._hash_cache = hash_cache
        self._transport = transport
        self._events = EventEmitter()
        self._resolve_hash = ResolveFileHashUseCase()
        self._pool = FingerprintPool(
            workers=self._config.hash_workers,
            algorithm=self._config.hash_algorithm,
            executor_factory=executor_factory,
        )

        # Initialized in __aenter__
        self._api: Optional[HTTPAPIClient] = None
        self._owns_cache = False
        self._controller: Optional[UploadSessionController] = None
        self._fingerprint_task: Optional[asyncio.Future] = None
        self._abort_requested = False

    async def __aenter__(self):
        self._api = HTTPAPIClient(
            self._api_url,
            timeout=self._config.request_timeout,
            max_retries=self._config.api_max_retries,
            retry_backoff=self._config.retry_backoff,
            credentials=self._credentials,
            language=self._config.language,
            send_part_hash=self._config.send_part_hash,
            transport=self._transport,
        )
        await self._api.__aenter__()

        if self._hash_cache is None and self._config.use_hash_cache:
            cache = HashCache()
            await cache.load()
            self._hash_cache = cache
            self._owns_cache = True
        return self

    async def __aexit__(self, *args):
        if self._owns_cache:
            await self._hash_cache.save()
        if self._api:
            await self._api.__aexit__(*args)

    @property
    def api(self) -> HTTPAPIClient:
        assert self._api is not None, "Use 'async with UploadOrchestrator(...)'"
        return self._api

    @property
    def events(self) -> EventEmitter:
        return self._events

    def on(self, event_name: str, callback: Callable) -> None:
        self._events.on(event_name, callback)

    async def fingerprint(self, path: Path) -> Tuple[str, List[Chunk]]:
        """
        Whole-file hash and per-chunk hashes, computed concurrently.

        Raises:
            FileReadError / ChunkReadError / InvalidInput
        """
        path = Path(path)
        hash_task = asyncio.create_task(
            self._resolve_hash.execute(
                path,
                self._config.hash_algorithm,
                self._hash_cache,
                self._config.read_window,
            )
        )
        chunks_task = asyncio.create_task(self._pool.fingerprint(path, self._config.chunk_size))

        try:
            (file_hash, from_cache), chunks = await asyncio.gather(hash_task, chunks_task)
        except BaseException:
            for task in (hash_task, chunks_task):
                if not task.done():
                    task.cancel()
            await asyncio.gather(hash_task, chunks_task, return_exceptions=True)
            raise

        logger.info(
            "[fingerprint] %s: %s%s, %d chunk(s)",
            path.name, file_hash[:16], " (cached)" if from_cache else "", len(chunks)
        )
        await self._events.emit("fingerprint", chunks)
        return file_hash, chunks

    async def upload(self, path: Path) -> UploadResult:
        """Upload a file; never raises for upload failures, returns UploadResult."""
        assert self._api is not None, "Use 'async with UploadOrchestrator(...)'"
        path = Path(path)
        file_hash = None
        self._abort_requested = False

        try:
            if not path.is_file():
                raise FileReadError(path, "not a regular file")
            file_hash, chunks = await self._fingerprint_abortable(path)
            if self._abort_requested:
                raise UploadAborted("Upload aborted by user")
            self._controller = UploadSessionController(self._api, self._config, self._events)
            return await self._controller.run(path, file_hash, chunks)
        except SessionFatal as exc:
            message = exc.message or str(exc)
            self._notifier.error(message)
            return UploadResult.fail(path.name, message, file_hash, login_required=True)
        except SupersededRequest as exc:
            logger.info("[upload] %s: superseded by a newer identical request", path.name)
            return UploadResult.fail(path.name, str(exc), file_hash)
        except UploadAborted as exc:
            logger.info("[upload] %s: %s", path.name, exc)
            return UploadResult.fail(path.name, str(exc), file_hash)
        except UploaderError as exc:
            message = getattr(exc, "message", None) or str(exc)
            self._notifier.error(message)
            return UploadResult.fail(path.name, message, file_hash)
        finally:
            self._controller = None

    def abort(self) -> None:
        """Abort the running upload, if any, including while it is still hashing."""
        self._abort_requested = True
        if self._fingerprint_task is not None and not self._fingerprint_task.done():
            self._fingerprint_task.cancel()
        if self._controller is not None:
            self._controller.abort()

    async def _fingerprint_abortable(self, path: Path) -> Tuple[str, List[Chunk]]:
        self._fingerprint_task = asyncio.ensure_future(self.fingerprint(path))
        try:
            return await self._fingerprint_task
        except asyncio.CancelledError:
            if self._abort_requested:
                raise UploadAborted("Upload aborted by user") from None
            raise
        finally:
            self._fingerprint_task = None

    async def list_files(self, file_name: Optional[str] = None) -> List[RemoteFile]:
        return await self.api.list_files(file_name)

    async def delete_file(self, file_id: int):
        return await self.api.delete_file(file_id)
