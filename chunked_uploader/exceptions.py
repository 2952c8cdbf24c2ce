"""Error taxonomy for the upload engine."""
from typing import Optional


class UploaderError(RuntimeError):
    """Base class for all upload engine errors."""


class InvalidInput(UploaderError, ValueError):
    """Bad configuration or arguments. Never retried."""


class FileReadError(UploaderError):
    """Local I/O failure while reading file bytes."""

    def __init__(self, path, reason: str = ""):
        self.path = path
        self.reason = reason
        super().__init__(f"Failed to read {path}: {reason}" if reason else f"Failed to read {path}")


class ChunkReadError(UploaderError):
    """A fingerprint worker failed to read its chunk range [start_index, end_index)."""

    def __init__(self, start_index: int, end_index: int, reason: str = ""):
        self.start_index = start_index
        self.end_index = end_index
        self.reason = reason
        message = f"Failed to read chunks [{start_index}, {end_index})"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message)


class NetworkError(UploaderError):
    """Transport failure for a single call."""


class RequestTimeout(NetworkError):
    """A call exceeded its timeout."""


class SupersededRequest(UploaderError):
    """The call was cancelled because an identical newer call replaced it."""

    def __init__(self, fingerprint: str = ""):
        self.fingerprint = fingerprint
        super().__init__("Duplicate request was cancelled")


class ApiError(UploaderError):
    """Backend answered with a non-success envelope code."""

    def __init__(self, code: int, message: Optional[str] = None):
        self.code = code
        self.message = message or ""
        super().__init__(f"API error {code}: {self.message}" if self.message else f"API error {code}")


class SessionFatal(ApiError):
    """Credential/auth class response. Aborts the session and clears credentials."""


class UploadAborted(UploaderError):
    """The upload session reached the Aborted state."""

    def __init__(self, reason: str, cause: Optional[BaseException] = None):
        self.reason = reason
        self.cause = cause
        super().__init__(reason)
