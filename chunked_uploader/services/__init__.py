"""Services for chunked_uploader."""
from .api_client import HTTPAPIClient
from .coalescing import RequestCoalescingGuard, request_fingerprint
from .credentials import MemoryCredentialStore
from .fingerprint import FingerprintPool
from .hash_cache import HashCache
from .hashing import hash_file, new_hasher
from .partitioner import chunk_count, partition

__all__ = [
    "HTTPAPIClient",
    "RequestCoalescingGuard",
    "request_fingerprint",
    "MemoryCredentialStore",
    "FingerprintPool",
    "HashCache",
    "hash_file",
    "new_hasher",
    "chunk_count",
    "partition",
]
