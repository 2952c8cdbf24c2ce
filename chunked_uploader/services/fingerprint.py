"""
Fingerprint worker pool - parallel per-chunk content hashing.

The chunk index space is split into T contiguous sub-ranges, one per worker
process. Workers share nothing with the coordinator: a task descriptor goes
in, an ordered list of chunk results comes out. The coordinator joins all
workers and then writes each result at its global index.
"""
import asyncio
import logging
import os
from concurrent.futures import Executor, ProcessPoolExecutor
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Tuple

from ..exceptions import ChunkReadError, InvalidInput
from ..models import Chunk
from .hashing import new_hasher
from .partitioner import chunk_bounds, chunk_count

log = logging.getLogger(__name__)

DEFAULT_PARALLELISM = 4


def available_parallelism() -> int:
    """Hardware concurrency hint, never zero."""
    return os.cpu_count() or DEFAULT_PARALLELISM


def split_ranges(count: int, workers: int) -> List[Tuple[int, int]]:
    """
    Contiguous index sub-ranges for T = min(workers, count) workers.

    Worker k gets [k*ceil(count/T), min((k+1)*ceil(count/T), count)).
    """
    if count <= 0:
        return []
    threads = max(1, min(workers, count))
    per_worker = -(-count // threads)
    ranges = []
    for k in range(threads):
        start = k * per_worker
        end = min(start + per_worker, count)
        if start < end:
            ranges.append((start, end))
    return ranges


def hash_chunk_range(task: Dict[str, Any]) -> List[Dict[str, Any]]:
    """
    Worker entry point.

    Task: {path, chunk_size, start_chunk_index, end_chunk_index, algorithm, total_size}
    Returns [{start, end, index, content_hash}, ...] ordered by index.
    """
    path = task["path"]
    chunk_size = task["chunk_size"]
    total_size = task["total_size"]
    algorithm = task.get("algorithm", "blake3")
    results = []

    with open(path, "rb") as f:
        for index in range(task["start_chunk_index"], task["end_chunk_index"]):
            start, end = chunk_bounds(index, total_size, chunk_size)
            f.seek(start)
            data = f.read(end - start)
            if len(data) != end - start:
                raise OSError(f"short read for chunk {index}: {len(data)} of {end - start} bytes")
            hasher = new_hasher(algorithm)
            hasher.update(data)
            results.append({
                "start": start,
                "end": end,
                "index": index,
                "content_hash": hasher.hexdigest(),
            })
    return results


class FingerprintPool:
    """
    Computes per-chunk hashes in parallel worker processes.

    A new executor with T workers is created for every call and shut down
    when the call finishes.

    Usage:
        pool = FingerprintPool(workers=4)
        chunks = await pool.fingerprint(path, chunk_size=20 * MB)
    """

    def __init__(
        self,
        workers: Optional[int] = None,
        algorithm: str = "blake3",
        executor_factory: Callable[[int], Executor] = None,
    ):
        if workers is not None and workers <= 0:
            raise InvalidInput(f"workers must be positive, got {workers!r}")
        self._workers = workers or available_parallelism()
        self._algorithm = algorithm
        self._executor_factory = executor_factory or (lambda n: ProcessPoolExecutor(max_workers=n))

    async def fingerprint(self, path: Path, chunk_size: int, total_size: Optional[int] = None) -> List[Chunk]:
        """
        Hash every chunk of `path` and return chunks ordered by index.

        Raises:
            InvalidInput: bad chunk size
            ChunkReadError: a worker failed; no partial result is returned
        """
        path = Path(path)
        if total_size is None:
            try:
                total_size = path.stat().st_size
            except OSError as exc:
                raise ChunkReadError(0, 0, str(exc)) from exc

        count = chunk_count(total_size, chunk_size)
        ranges = split_ranges(count, self._workers)
        if not ranges:
            return []

        log.debug(
            "[fingerprint] %s: %d chunks across %d workers",
            path.name, count, len(ranges)
        )

        loop = asyncio.get_running_loop()
        executor = self._executor_factory(len(ranges))
        try:
            futures = [
                loop.run_in_executor(
                    executor,
                    hash_chunk_range,
                    {
                        "path": str(path),
                        "chunk_size": chunk_size,
                        "total_size": total_size,
                        "start_chunk_index": start,
                        "end_chunk_index": end,
                        "algorithm": self._algorithm,
                    },
                )
                for start, end in ranges
            ]
            outcomes = await asyncio.gather(*futures, return_exceptions=True)
        finally:
            executor.shutdown(wait=False, cancel_futures=True)

        result: List[Optional[Chunk]] = [None] * count
        for (start, end), outcome in zip(ranges, outcomes):
            if isinstance(outcome, BaseException):
                log.warning("[fingerprint] worker for chunks [%d, %d) failed: %s", start, end, outcome)
                raise ChunkReadError(start, end, str(outcome)) from outcome
            for item in outcome:
                result[item["index"]] = Chunk(
                    index=item["index"],
                    byte_start=item["start"],
                    byte_end=item["end"],
                    content_hash=item["content_hash"],
                )
        return result
