"""Shared deduplication helpers for hash and resume-state workflows."""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, FrozenSet, Iterable, Literal, Optional, Tuple

from chunked_uploader.models import DEFAULT_READ_WINDOW
from chunked_uploader.services.hashing import hash_file

logger = logging.getLogger(__name__)

# task-info codes returned by the check endpoint
UPLOAD_SUCCESS = 2001
UPLOADING = 2002
NOT_UPLOADED = 2003
UPLOAD_FILE_FAILED = 5001

DedupAction = Literal["deduplicated", "resume", "upload"]


@dataclass(frozen=True)
class DedupDecision:
    """What the check endpoint says about a file hash."""

    action: DedupAction
    reason: str
    upload_id: Optional[str] = None
    present_parts: FrozenSet[int] = field(default_factory=frozenset)
    url: Optional[str] = None


def parse_part_indices(part_list: Optional[Iterable[Any]]) -> FrozenSet[int]:
    """
    Normalize a server part listing into 0-based chunk indices.

    Entries are either S3 part summaries ({"partNumber": n, ...}) or bare
    1-based part numbers.
    """
    indices = set()
    for entry in part_list or ():
        number = entry.get("partNumber") if isinstance(entry, dict) else entry
        try:
            number = int(number)
        except (TypeError, ValueError):
            logger.debug("Ignoring malformed part entry: %r", entry)
            continue
        if number >= 1:
            indices.add(number - 1)
    return frozenset(indices)


class ResolveDedupActionUseCase:
    """Resolve the next step from a check endpoint payload."""

    @staticmethod
    def execute(task_info: Optional[dict]) -> DedupDecision:
        task_info = task_info or {}
        code = task_info.get("code")
        upload_id = task_info.get("uploadId") or None
        url = task_info.get("url") or task_info.get("objectName")

        if code == UPLOAD_SUCCESS:
            return DedupDecision(action="deduplicated", reason="already_uploaded", upload_id=upload_id, url=url)

        if upload_id and code in (UPLOADING, None):
            part_list = task_info.get("exitPartList")
            if part_list is None:
                part_list = task_info.get("existingPartList")
            return DedupDecision(
                action="resume",
                reason="upload_in_progress",
                upload_id=upload_id,
                present_parts=parse_part_indices(part_list),
            )

        if code == UPLOAD_FILE_FAILED:
            return DedupDecision(action="upload", reason="previous_upload_failed")
        return DedupDecision(action="upload", reason="not_uploaded")


class ResolveFileHashUseCase:
    """Resolve whole-file hash with optional cache read/write."""

    async def execute(
        self,
        file_path: Path,
        algorithm: str = "blake3",
        hash_cache: Any = None,
        read_window: int = DEFAULT_READ_WINDOW,
    ) -> Tuple[str, bool]:
        """
        Returns (file_hash, from_cache).

        Raises:
            FileReadError: the file could not be read
        """
        if hash_cache:
            try:
                cached_hash = await hash_cache.get(file_path, algorithm)
                if cached_hash:
                    return cached_hash, True
            except Exception as cache_read_exc:
                logger.debug("Hash cache read failed for %s: %s", file_path.name, cache_read_exc)

        file_hash = await hash_file(file_path, algorithm, read_window)

        if hash_cache:
            try:
                await hash_cache.set(file_path, algorithm, file_hash)
            except Exception as cache_write_exc:
                logger.debug("Hash cache write failed for %s: %s", file_path.name, cache_write_exc)

        return file_hash, False
