"""Tests for the upload session state machine and part coordinator."""
import asyncio
from unittest.mock import AsyncMock, Mock

import pytest

from chunked_uploader.exceptions import (
    ApiError,
    FileReadError,
    InvalidInput,
    RequestTimeout,
    SessionFatal,
    SupersededRequest,
    UploadAborted,
)
from chunked_uploader.models import Chunk, UploadConfig, UploadState, UploadStatus
from chunked_uploader.orchestrator.parallel import PartUploadCoordinator, read_chunk
from chunked_uploader.orchestrator.session import UploadSessionController
from chunked_uploader.services.partitioner import partition
from chunked_uploader.utils.events import EventEmitter

FILE_HASH = "f" * 64


def make_config(chunk_size=10, **kwargs):
    kwargs.setdefault("retry_backoff", 0)
    kwargs.setdefault("use_hash_cache", False)
    return UploadConfig(chunk_size=chunk_size, **kwargs)


@pytest.fixture
def data_file(tmp_path):
    path = tmp_path / "movie.mp4"
    path.write_bytes(bytes(range(40)))
    return path


def chunks_for(path, chunk_size=10):
    return partition(path.stat().st_size, chunk_size)


@pytest.mark.asyncio
async def test_new_file_uploads_every_part_then_merges(backend, data_file):
    controller = UploadSessionController(backend, make_config())

    result = await controller.run(data_file, FILE_HASH, chunks_for(data_file))

    assert result.status == UploadStatus.SUCCESS
    assert result.url == f"http://minio/{FILE_HASH}"
    assert result.uploaded_parts == 4
    assert sorted(backend.uploaded_part_numbers()) == [1, 2, 3, 4]
    assert backend.call_names()[:2] == ["check", "init"]
    assert backend.call_names()[-1] == "merge"
    assert backend.objects[FILE_HASH] == data_file.read_bytes()
    assert controller.session.history == [
        UploadState.CHECKING,
        UploadState.SESSION_INIT,
        UploadState.RESUMING,
        UploadState.UPLOADING,
        UploadState.MERGING,
        UploadState.COMPLETED,
    ]


@pytest.mark.asyncio
async def test_init_receives_session_descriptor(backend, data_file):
    await UploadSessionController(backend, make_config()).run(data_file, FILE_HASH, chunks_for(data_file))

    init_call = next(call for call in backend.calls if call[0] == "init")
    assert init_call == ("init", FILE_HASH, 40, 4, 10, "movie.mp4")


@pytest.mark.asyncio
async def test_resume_uploads_only_missing_parts(backend, data_file):
    content = data_file.read_bytes()
    upload_id = backend.start_session(FILE_HASH, 4, {1: content[0:10], 3: content[20:30]})

    controller = UploadSessionController(backend, make_config())
    result = await controller.run(data_file, FILE_HASH, chunks_for(data_file))

    assert result.success
    assert result.uploaded_parts == 2
    assert sorted(backend.uploaded_part_numbers()) == [2, 4]
    assert "init" not in backend.call_names()
    assert controller.session.upload_id == upload_id
    assert controller.session.present_parts == {0, 1, 2, 3}
    assert backend.objects[FILE_HASH] == content


@pytest.mark.asyncio
async def test_resume_with_all_parts_present_skips_uploading(backend, data_file):
    content = data_file.read_bytes()
    backend.start_session(FILE_HASH, 4, {n + 1: content[n * 10:(n + 1) * 10] for n in range(4)})

    controller = UploadSessionController(backend, make_config())
    result = await controller.run(data_file, FILE_HASH, chunks_for(data_file))

    assert result.uploaded_parts == 0
    assert backend.uploaded_part_numbers() == []
    assert UploadState.UPLOADING not in controller.session.history
    assert backend.call_names() == ["check", "merge"]


@pytest.mark.asyncio
async def test_deduplicated_file_issues_no_part_uploads(backend, data_file):
    backend.objects[FILE_HASH] = data_file.read_bytes()
    controller = UploadSessionController(backend, make_config())

    result = await controller.run(data_file, FILE_HASH, chunks_for(data_file))

    assert result.status == UploadStatus.DEDUPLICATED
    assert result.url == f"http://minio/{FILE_HASH}"
    assert backend.call_names() == ["check"]
    assert controller.session.history == [
        UploadState.CHECKING,
        UploadState.DEDUPLICATED,
        UploadState.COMPLETED,
    ]


@pytest.mark.asyncio
async def test_forty_five_mib_scenario_uses_three_parts(backend, tmp_path):
    mib = 1024 * 1024
    path = tmp_path / "big.bin"
    with open(path, "wb") as f:
        f.truncate(45 * mib)

    controller = UploadSessionController(backend, make_config(chunk_size=20 * mib))
    result = await controller.run(path, FILE_HASH, partition(45 * mib, 20 * mib))

    assert result.success
    assert sorted(backend.uploaded_part_numbers()) == [1, 2, 3]
    assert len(backend.objects[FILE_HASH]) == 45 * mib


@pytest.mark.asyncio
async def test_part_timeouts_are_retried_until_success(backend, tmp_path):
    path = tmp_path / "three.bin"
    path.write_bytes(b"a" * 25)
    backend.fail_parts[2] = [RequestTimeout("t1"), RequestTimeout("t2")]
    retries = []
    events = EventEmitter()
    events.on("part_retry", lambda index, attempt, error: retries.append((index, attempt)))

    controller = UploadSessionController(backend, make_config(), events)
    result = await controller.run(path, FILE_HASH, partition(25, 10))

    assert result.status == UploadStatus.SUCCESS
    assert backend.uploaded_part_numbers().count(2) == 3
    assert controller.coordinator.attempts[1] == 3
    assert retries == [(1, 1), (1, 2)]
    assert controller.session.status == UploadState.COMPLETED


@pytest.mark.asyncio
async def test_superseded_and_api_errors_are_retryable(backend, data_file):
    backend.fail_parts[1] = [SupersededRequest("fp"), ApiError(500, "busy")]

    result = await UploadSessionController(backend, make_config()).run(
        data_file, FILE_HASH, chunks_for(data_file)
    )

    assert result.success
    assert backend.uploaded_part_numbers().count(1) == 3


@pytest.mark.asyncio
async def test_part_exhausting_attempts_aborts_session(backend, data_file):
    backend.fail_parts[3] = [RequestTimeout(f"t{i}") for i in range(5)]
    controller = UploadSessionController(backend, make_config(part_max_attempts=2))

    with pytest.raises(RequestTimeout):
        await controller.run(data_file, FILE_HASH, chunks_for(data_file))

    assert backend.uploaded_part_numbers().count(3) == 2
    assert "merge" not in backend.call_names()
    assert controller.session.status == UploadState.ABORTED
    assert controller.session.upload_id is None


@pytest.mark.asyncio
async def test_session_fatal_is_not_retried(backend, data_file):
    backend.fail_parts[1] = [SessionFatal(401, "login expired")]
    controller = UploadSessionController(backend, make_config(max_parallel_parts=1))

    with pytest.raises(SessionFatal):
        await controller.run(data_file, FILE_HASH, chunks_for(data_file))

    assert backend.uploaded_part_numbers().count(1) == 1
    assert controller.session.status == UploadState.ABORTED


@pytest.mark.asyncio
async def test_merge_is_idempotent(backend, data_file):
    await UploadSessionController(backend, make_config()).run(data_file, FILE_HASH, chunks_for(data_file))

    first = await backend.merge(FILE_HASH)
    second = await backend.merge(FILE_HASH)

    assert first == second == f"http://minio/{FILE_HASH}"
    assert len(backend.objects) == 1


@pytest.mark.asyncio
async def test_repeat_merge_response_is_treated_as_success(data_file):
    api = Mock()
    api.check = AsyncMock(return_value={"code": 2002, "uploadId": "u1", "exitPartList": [1, 2, 3, 4]})
    api.upload_part = AsyncMock()
    api.merge = AsyncMock(return_value="http://minio/object")

    for _ in range(2):
        result = await UploadSessionController(api, make_config()).run(
            data_file, FILE_HASH, chunks_for(data_file)
        )
        assert result.success
        assert result.url == "http://minio/object"

    assert api.merge.await_count == 2
    api.upload_part.assert_not_awaited()


@pytest.mark.asyncio
async def test_empty_file_initializes_and_merges(backend, tmp_path):
    path = tmp_path / "empty.bin"
    path.write_bytes(b"")

    result = await UploadSessionController(backend, make_config()).run(path, FILE_HASH, [])

    assert result.success
    assert backend.call_names() == ["check", "init", "merge"]


@pytest.mark.asyncio
async def test_check_failure_aborts_session(data_file):
    api = Mock()
    api.check = AsyncMock(side_effect=ApiError(500, "backend down"))
    controller = UploadSessionController(api, make_config())

    with pytest.raises(ApiError, match="backend down"):
        await controller.run(data_file, FILE_HASH, chunks_for(data_file))
    assert controller.session.status == UploadState.ABORTED


@pytest.mark.asyncio
async def test_progress_and_part_events(backend, data_file):
    events = EventEmitter()
    completed = []
    progress = []
    states = []
    events.on("part_complete", lambda session, index: completed.append(index))
    events.on("progress", lambda p: progress.append((p.bytes_done, p.parts_done)))
    events.on("state", lambda session, state: states.append(state))

    await UploadSessionController(backend, make_config(), events).run(
        data_file, FILE_HASH, chunks_for(data_file)
    )

    assert sorted(completed) == [0, 1, 2, 3]
    assert progress[-1] == (40, 4)
    assert [p[0] for p in progress] == sorted(p[0] for p in progress)
    assert states[0] == UploadState.CHECKING
    assert states[-1] == UploadState.COMPLETED


@pytest.mark.asyncio
async def test_abort_cancels_in_flight_parts(backend, data_file):
    started = asyncio.Event()
    original_upload_part = backend.upload_part

    async def slow_upload_part(*args, **kwargs):
        started.set()
        await asyncio.sleep(10)
        return await original_upload_part(*args, **kwargs)

    backend.upload_part = slow_upload_part
    controller = UploadSessionController(backend, make_config())
    run = asyncio.create_task(controller.run(data_file, FILE_HASH, chunks_for(data_file)))

    await asyncio.wait_for(started.wait(), timeout=5)
    controller.abort()

    with pytest.raises(UploadAborted):
        await run
    assert controller.session.status == UploadState.ABORTED
    assert controller.coordinator.aborted is True
    assert "merge" not in backend.call_names()


@pytest.mark.asyncio
async def test_non_contiguous_chunks_rejected(backend, data_file):
    chunks = [Chunk(0, 0, 10), Chunk(1, 15, 20)]
    with pytest.raises(InvalidInput):
        await UploadSessionController(backend, make_config()).run(data_file, FILE_HASH, chunks)
    assert backend.calls == []


@pytest.mark.asyncio
async def test_coordinator_limits_parallel_parts(backend, data_file):
    in_flight = 0
    peak = 0

    async def tracking_upload_part(upload_id, part_number, data, content_hash=None):
        nonlocal in_flight, peak
        in_flight += 1
        peak = max(peak, in_flight)
        await asyncio.sleep(0.01)
        in_flight -= 1

    api = Mock()
    api.upload_part = tracking_upload_part
    session = Mock(upload_id="u1", chunk_count=4, file_name="movie.mp4")
    coordinator = PartUploadCoordinator(api, max_parallel=2, retry_backoff=0)

    uploaded = await coordinator.upload(
        session,
        chunks_for(data_file),
        read_part=lambda chunk: read_chunk(data_file, chunk),
        on_part_done=AsyncMock(),
    )

    assert uploaded == 4
    assert peak == 2


@pytest.mark.asyncio
async def test_read_chunk_short_read(tmp_path):
    path = tmp_path / "shrunk.bin"
    path.write_bytes(b"abc")
    with pytest.raises(FileReadError):
        await read_chunk(path, Chunk(0, 0, 10))
