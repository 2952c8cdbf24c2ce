"""
Upload session controller - the dedup / init / resume / upload / merge state machine.

States:
    CHECKING -> DEDUPLICATED -> COMPLETED
    CHECKING -> SESSION_INIT -> RESUMING -> [UPLOADING] -> MERGING -> COMPLETED
    any non-terminal state -> ABORTED
"""
import logging
from pathlib import Path
from typing import List, Optional

from chunked_uploader.exceptions import InvalidInput, UploadAborted
from chunked_uploader.models import Chunk, UploadConfig, UploadResult, UploadSession, UploadState
from chunked_uploader.protocols import IUploadAPI
from chunked_uploader.use_cases.deduplication import ResolveDedupActionUseCase
from chunked_uploader.utils.events import EventEmitter, TransferProgress

from .parallel import PartUploadCoordinator, read_chunk

logger = logging.getLogger(__name__)


class UploadSessionController:
    """
    Drives one upload attempt for an already fingerprinted file.

    Owns the UploadSession exclusively: only this controller mutates
    `present_parts`. Part uploads are delegated to PartUploadCoordinator.

    Usage:
        controller = UploadSessionController(api, config, events)
        result = await controller.run(path, file_hash, chunks)
    """

    def __init__(
        self,
        api: IUploadAPI,
        config: Optional[UploadConfig] = None,
        events: Optional[EventEmitter] = None,
    ):
        self._api = api
        self._config = config or UploadConfig()
        self._events = events or EventEmitter()
        self._coordinator = PartUploadCoordinator(
            api,
            max_parallel=self._config.max_parallel_parts,
            max_attempts=self._config.part_max_attempts,
            retry_backoff=self._config.retry_backoff,
            events=self._events,
        )
        self._session: Optional[UploadSession] = None
        self._chunks: List[Chunk] = []
        self._abort_requested = False
        self._progress: Optional[TransferProgress] = None

    @property
    def session(self) -> Optional[UploadSession]:
        return self._session

    @property
    def coordinator(self) -> PartUploadCoordinator:
        return self._coordinator

    def abort(self) -> None:
        """Explicit user abort. No further network calls are issued."""
        logger.info("[session] abort requested")
        self._abort_requested = True
        self._coordinator.cancel()

    async def run(self, path: Path, file_hash: str, chunks: List[Chunk]) -> UploadResult:
        """
        Run the state machine to a terminal state.

        Returns the Completed result; any failure moves the session to
        ABORTED and the original error is re-raised.
        """
        path = Path(path)
        self._chunks = list(chunks)
        self._validate_chunks(self._chunks)
        total_size = self._chunks[-1].byte_end if self._chunks else 0

        self._session = UploadSession(
            file_identifier=file_hash,
            total_size=total_size,
            chunk_size=self._config.chunk_size,
            chunk_count=len(self._chunks),
            file_name=path.name,
        )
        self._progress = TransferProgress(
            file_name=path.name,
            total_bytes=total_size,
            total_parts=len(self._chunks),
        )

        try:
            return await self._run(path)
        except BaseException as exc:
            self._abort_session(exc)
            raise
        finally:
            self._chunks = []

    async def _run(self, path: Path) -> UploadResult:
        session = self._session

        # CHECKING
        await self._emit_state()
        task_info = await self._api.check(session.file_identifier)
        self._ensure_not_aborted()
        decision = ResolveDedupActionUseCase.execute(task_info)
        logger.info("[session] %s: check -> %s (%s)", session.file_name, decision.action, decision.reason)

        if decision.action == "deduplicated":
            await self._transition(UploadState.DEDUPLICATED)
            await self._transition(UploadState.COMPLETED)
            return UploadResult.deduplicated(session.file_name, session.file_identifier, decision.url)

        # SESSION_INIT
        await self._transition(UploadState.SESSION_INIT)
        if decision.upload_id:
            session.upload_id = decision.upload_id
            for index in decision.present_parts:
                if index < session.chunk_count:
                    session.mark_present(index)
            logger.info(
                "[session] resuming upload %s with %d/%d part(s) present",
                session.upload_id, len(session.present_parts), session.chunk_count
            )
        else:
            session.upload_id = await self._api.init(
                file_identifier=session.file_identifier,
                total_size=session.total_size,
                chunk_num=session.chunk_count,
                chunk_size=session.chunk_size,
                file_name=session.file_name,
            )
            self._ensure_not_aborted()
        self._progress.bytes_done = sum(self._chunks[i].size for i in session.present_parts)
        self._progress.parts_done = len(session.present_parts)

        # RESUMING
        await self._transition(UploadState.RESUMING)
        missing = session.missing_parts
        uploaded = 0
        if missing:
            await self._transition(UploadState.UPLOADING)
            uploaded = await self._coordinator.upload(
                session,
                [self._chunks[i] for i in missing],
                read_part=lambda chunk: read_chunk(path, chunk),
                on_part_done=self._on_part_done,
            )
            self._ensure_not_aborted()

        # MERGING
        await self._transition(UploadState.MERGING)
        merged = await self._api.merge(session.file_identifier)
        await self._transition(UploadState.COMPLETED)
        logger.info("[session] %s: completed (%d part(s) uploaded)", session.file_name, uploaded)
        return UploadResult.ok(
            session.file_name,
            session.file_identifier,
            str(merged) if merged is not None else None,
            uploaded,
        )

    async def _on_part_done(self, chunk: Chunk) -> None:
        self._session.mark_present(chunk.index)
        self._progress.bytes_done += chunk.size
        self._progress.parts_done += 1
        await self._events.emit("part_complete", self._session, chunk.index)
        await self._events.emit("progress", self._progress)

    async def _transition(self, state: UploadState) -> None:
        self._ensure_not_aborted()
        self._session.transition(state)
        await self._emit_state()

    async def _emit_state(self) -> None:
        logger.debug("[session] %s -> %s", self._session.file_name, self._session.status.value)
        await self._events.emit("state", self._session, self._session.status)

    def _ensure_not_aborted(self) -> None:
        if self._abort_requested:
            raise UploadAborted("Upload aborted by user")

    def _abort_session(self, exc: BaseException) -> None:
        session = self._session
        if session is None or session.status.terminal:
            return
        logger.warning("[session] %s: aborted in %s: %s", session.file_name, session.status.value, exc)
        session.transition(UploadState.ABORTED)
        session.upload_id = None

    @staticmethod
    def _validate_chunks(chunks: List[Chunk]) -> None:
        position = 0
        for expected, chunk in enumerate(chunks):
            if chunk.index != expected or chunk.byte_start != position or chunk.byte_end < chunk.byte_start:
                raise InvalidInput(f"Chunks are not contiguous at index {expected}")
            position = chunk.byte_end
