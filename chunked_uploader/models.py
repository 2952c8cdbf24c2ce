"""
Models for chunked_uploader.

Chunks and results are immutable dataclasses; the upload session is the one
mutable record and is owned by the session controller.
"""
import os
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional, List, Set, Dict, Any

from .exceptions import InvalidInput

MB = 1024 * 1024
DEFAULT_CHUNK_SIZE = 20 * MB
DEFAULT_READ_WINDOW = 8 * MB
HASH_ALGORITHMS = ("blake3", "md5")


class UploadState(Enum):
    """Upload session state."""
    CHECKING = "checking"
    DEDUPLICATED = "deduplicated"
    SESSION_INIT = "session_init"
    RESUMING = "resuming"
    UPLOADING = "uploading"
    MERGING = "merging"
    COMPLETED = "completed"
    ABORTED = "aborted"

    @property
    def terminal(self) -> bool:
        return self in (UploadState.COMPLETED, UploadState.ABORTED)


@dataclass(frozen=True)
class Chunk:
    """A contiguous byte range [byte_start, byte_end) of a file."""
    index: int
    byte_start: int
    byte_end: int
    content_hash: Optional[str] = None

    @property
    def size(self) -> int:
        return self.byte_end - self.byte_start

    @property
    def part_number(self) -> int:
        """1-based server-side part sequence number."""
        return self.index + 1


@dataclass
class UploadSession:
    """Client-side view of one multipart upload attempt."""
    file_identifier: str
    total_size: int
    chunk_size: int
    chunk_count: int
    file_name: str
    upload_id: Optional[str] = None
    present_parts: Set[int] = field(default_factory=set)
    status: UploadState = UploadState.CHECKING
    history: List[UploadState] = field(default_factory=list)

    def __post_init__(self):
        expected = -(-self.total_size // self.chunk_size) if self.chunk_size > 0 else -1
        if self.chunk_count != expected:
            raise InvalidInput(
                f"chunk_count {self.chunk_count} does not match "
                f"ceil({self.total_size}/{self.chunk_size})"
            )
        if not self.history:
            self.history.append(self.status)

    def transition(self, state: UploadState) -> None:
        if self.status.terminal:
            raise RuntimeError(f"Session already {self.status.value}, cannot move to {state.value}")
        self.status = state
        self.history.append(state)

    def mark_present(self, index: int) -> None:
        # present_parts only grows during a session
        self.present_parts.add(index)

    @property
    def missing_parts(self) -> List[int]:
        return [i for i in range(self.chunk_count) if i not in self.present_parts]


class UploadStatus(Enum):
    """Upload operation outcome."""
    SUCCESS = "success"
    DEDUPLICATED = "deduplicated"
    FAILED = "failed"


@dataclass(frozen=True)
class UploadResult:
    """Immutable result of an upload operation."""
    filename: str
    status: UploadStatus = UploadStatus.SUCCESS
    file_identifier: Optional[str] = None
    url: Optional[str] = None
    uploaded_parts: int = 0
    error: Optional[str] = None
    login_required: bool = False

    @property
    def success(self) -> bool:
        return self.status in (UploadStatus.SUCCESS, UploadStatus.DEDUPLICATED)

    @classmethod
    def ok(cls, filename: str, file_identifier: str, url: Optional[str], uploaded_parts: int):
        return cls(
            filename=filename,
            status=UploadStatus.SUCCESS,
            file_identifier=file_identifier,
            url=url,
            uploaded_parts=uploaded_parts,
        )

    @classmethod
    def deduplicated(cls, filename: str, file_identifier: str, url: Optional[str]):
        return cls(
            filename=filename,
            status=UploadStatus.DEDUPLICATED,
            file_identifier=file_identifier,
            url=url,
        )

    @classmethod
    def fail(cls, filename: str, error: str, file_identifier: str = None, login_required: bool = False):
        return cls(
            filename=filename,
            status=UploadStatus.FAILED,
            file_identifier=file_identifier,
            error=error,
            login_required=login_required,
        )


@dataclass(frozen=True)
class RemoteFile:
    """Entry of the backend file listing."""
    id: int
    origin_file_name: str
    size: int = 0
    url: Optional[str] = None
    upload_time: Optional[str] = None
    md5: Optional[str] = None

    @classmethod
    def from_api(cls, data: Dict[str, Any]) -> "RemoteFile":
        return cls(
            id=int(data["id"]),
            origin_file_name=data.get("originFileName", ""),
            size=int(data.get("size") or 0),
            url=data.get("url"),
            upload_time=data.get("uploadTime"),
            md5=data.get("md5"),
        )


def _env_int(name: str, default: Optional[int]) -> Optional[int]:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError as exc:
        raise InvalidInput(f"{name} must be an integer, got {raw!r}") from exc


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return float(raw)
    except ValueError as exc:
        raise InvalidInput(f"{name} must be a number, got {raw!r}") from exc


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


@dataclass(frozen=True)
class UploadConfig:
    """Immutable configuration for upload operations."""
    chunk_size: int = DEFAULT_CHUNK_SIZE
    read_window: int = DEFAULT_READ_WINDOW
    hash_algorithm: str = "blake3"
    hash_workers: Optional[int] = None  # None -> os.cpu_count()
    max_parallel_parts: int = 3
    part_max_attempts: int = 3
    api_max_retries: int = 3
    request_timeout: float = 20.0
    retry_backoff: float = 0.5
    use_hash_cache: bool = True
    send_part_hash: bool = False
    language: str = "zh-CN"

    def __post_init__(self):
        for name in ("chunk_size", "read_window", "max_parallel_parts", "part_max_attempts", "api_max_retries"):
            value = getattr(self, name)
            if not isinstance(value, int) or value <= 0:
                raise InvalidInput(f"{name} must be a positive integer, got {value!r}")
        if self.hash_workers is not None and self.hash_workers <= 0:
            raise InvalidInput(f"hash_workers must be positive, got {self.hash_workers!r}")
        if self.hash_algorithm not in HASH_ALGORITHMS:
            raise InvalidInput(
                f"Unsupported hash algorithm {self.hash_algorithm!r} (expected one of {HASH_ALGORITHMS})"
            )
        if self.request_timeout <= 0:
            raise InvalidInput("request_timeout must be positive")

    @classmethod
    def from_env(cls, **overrides) -> "UploadConfig":
        """Build config from UPLOADER_* environment variables; kwargs win."""
        values = dict(
            chunk_size=_env_int("UPLOADER_CHUNK_SIZE", DEFAULT_CHUNK_SIZE),
            read_window=_env_int("UPLOADER_READ_WINDOW", DEFAULT_READ_WINDOW),
            hash_algorithm=os.getenv("UPLOADER_HASH_ALGORITHM") or "blake3",
            hash_workers=_env_int("UPLOADER_HASH_WORKERS", None),
            max_parallel_parts=_env_int("UPLOADER_MAX_PARALLEL", 3),
            part_max_attempts=_env_int("UPLOADER_PART_ATTEMPTS", 3),
            api_max_retries=_env_int("UPLOADER_API_RETRIES", 3),
            request_timeout=_env_float("UPLOADER_TIMEOUT", 20.0),
            retry_backoff=_env_float("UPLOADER_RETRY_BACKOFF", 0.5),
            use_hash_cache=_env_bool("UPLOADER_HASH_CACHE", True),
            send_part_hash=_env_bool("UPLOADER_SEND_PART_HASH", False),
            language=os.getenv("UPLOADER_LANGUAGE") or "zh-CN",
        )
        values.update({k: v for k, v in overrides.items() if v is not None})
        return cls(**values)
