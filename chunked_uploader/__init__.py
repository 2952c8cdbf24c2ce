"""
chunked_uploader - Resumable, content-addressed chunked uploads.

Pipeline:
- Partition: file -> fixed-size chunks
- Fingerprint: per-chunk hashes in worker processes + one whole-file hash
- Session: dedup check -> init/resume -> bounded parallel part upload -> merge

Usage:
    from chunked_uploader import UploadOrchestrator, UploadConfig

    async with UploadOrchestrator(api_url, UploadConfig(chunk_size=20 * MB)) as uploader:
        result = await uploader.upload(path)
        if result.success:
            print(result.url)
"""
from .exceptions import (
    ApiError,
    ChunkReadError,
    FileReadError,
    InvalidInput,
    NetworkError,
    RequestTimeout,
    SessionFatal,
    SupersededRequest,
    UploadAborted,
    UploaderError,
)
from .models import (
    MB,
    Chunk,
    RemoteFile,
    UploadConfig,
    UploadResult,
    UploadSession,
    UploadState,
    UploadStatus,
)
from .orchestrator import UploadOrchestrator, UploadSessionController
from .services import (
    FingerprintPool,
    HashCache,
    HTTPAPIClient,
    MemoryCredentialStore,
    RequestCoalescingGuard,
    hash_file,
    partition,
)

__version__ = "0.1.0"
__all__ = [
    # Main
    "UploadOrchestrator",
    "UploadSessionController",
    # Models
    "MB",
    "Chunk",
    "RemoteFile",
    "UploadConfig",
    "UploadResult",
    "UploadSession",
    "UploadState",
    "UploadStatus",
    # Services
    "FingerprintPool",
    "HashCache",
    "HTTPAPIClient",
    "MemoryCredentialStore",
    "RequestCoalescingGuard",
    "hash_file",
    "partition",
    # Errors
    "ApiError",
    "ChunkReadError",
    "FileReadError",
    "InvalidInput",
    "NetworkError",
    "RequestTimeout",
    "SessionFatal",
    "SupersededRequest",
    "UploadAborted",
    "UploaderError",
]
