"""
Protocols (Interfaces) for Dependency Inversion.

Following Interface Segregation Principle - small, focused interfaces.
"""
from pathlib import Path
from typing import Optional, Dict, Any, Protocol, runtime_checkable


@runtime_checkable
class ICredentialStore(Protocol):
    """Interface for the authentication-token/locale store."""

    def get(self, key: str) -> Optional[str]:
        """Read a stored value (e.g. 'Authorization')."""
        ...

    def clear(self) -> None:
        """Drop all stored credentials/session data."""
        ...


@runtime_checkable
class INotifier(Protocol):
    """Interface for the user-facing error sink."""

    def error(self, message: str) -> None:
        """Show a terminal failure to the user."""
        ...


@runtime_checkable
class IUploadAPI(Protocol):
    """Interface for the multipart upload backend."""

    async def check(self, file_hash: str) -> Dict[str, Any]:
        """Dedup + resume-state query."""
        ...

    async def init(
        self,
        file_identifier: str,
        total_size: int,
        chunk_num: int,
        chunk_size: int,
        file_name: str,
    ) -> str:
        """Open an upload session, returns upload id."""
        ...

    async def upload_part(
        self,
        upload_id: str,
        part_number: int,
        data: bytes,
        content_hash: Optional[str] = None,
    ) -> Any:
        """Upload one part."""
        ...

    async def merge(self, file_hash: str) -> Any:
        """Assemble uploaded parts into the final object."""
        ...


@runtime_checkable
class IHashCache(Protocol):
    """Interface for the local whole-file hash cache."""

    async def get(self, file_path: Path, algorithm: str) -> Optional[str]:
        ...

    async def set(self, file_path: Path, algorithm: str, file_hash: str) -> None:
        ...
