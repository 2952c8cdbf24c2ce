"""
Request coalescing guard.

Keeps at most one in-flight call per request fingerprint. When an identical
request is issued while another is pending, the older one is cancelled and
its caller sees SupersededRequest. The table belongs to one API client
instance and lives as long as that client.
"""
import asyncio
import json
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Dict, Mapping, Optional

from ..exceptions import SupersededRequest

logger = logging.getLogger(__name__)


def _serialize(value: Any) -> str:
    if value is None:
        return ""
    return json.dumps(value, sort_keys=True, default=str, separators=(",", ":"))


def request_fingerprint(
    method: str,
    url: str,
    params: Optional[Mapping[str, Any]] = None,
    json_body: Any = None,
    data: Optional[Mapping[str, Any]] = None,
    files: Optional[Mapping[str, Any]] = None,
) -> str:
    """
    Canonical request signature: method + URL + serialized params + serialized body.

    File payloads are represented by field name and byte length, not content.
    """
    body: Dict[str, Any] = {}
    if json_body is not None:
        body["json"] = json_body
    if data:
        body["data"] = dict(data)
    if files:
        body["files"] = {name: _describe_file(value) for name, value in files.items()}
    return "&".join([method.upper(), url, _serialize(params), _serialize(body or None)])


def _describe_file(value: Any) -> Any:
    # httpx accepts bytes or (filename, content[, content_type])
    if isinstance(value, (tuple, list)):
        name = value[0]
        content = value[1] if len(value) > 1 else b""
        return [name, len(content) if isinstance(content, (bytes, bytearray)) else repr(content)]
    if isinstance(value, (bytes, bytearray)):
        return len(value)
    return repr(value)


@dataclass(eq=False)
class CancelToken:
    """Cancellation handle for one in-flight request."""
    task: asyncio.Future
    superseded: bool = False

    def cancel(self) -> None:
        self.superseded = True
        if not self.task.done():
            self.task.cancel()


@dataclass(eq=False)
class PendingRequest:
    fingerprint: str
    cancel_handle: CancelToken


@dataclass
class RequestCoalescingGuard:
    """Table of in-flight requests keyed by fingerprint."""
    _pending: Dict[str, PendingRequest] = field(default_factory=dict)

    def __len__(self) -> int:
        return len(self._pending)

    def __contains__(self, fingerprint: str) -> bool:
        return fingerprint in self._pending

    def register(self, fingerprint: str, token: CancelToken) -> None:
        """Cancel any pending request with this fingerprint, then track `token`."""
        existing = self._pending.pop(fingerprint, None)
        if existing is not None:
            logger.debug("[guard] superseding in-flight request %s", fingerprint[:80])
            existing.cancel_handle.cancel()
        self._pending[fingerprint] = PendingRequest(fingerprint, token)

    def release(self, fingerprint: str, token: CancelToken) -> None:
        """Remove the entry if it still belongs to `token`."""
        entry = self._pending.get(fingerprint)
        if entry is not None and entry.cancel_handle is token:
            del self._pending[fingerprint]

    def cancel_all(self) -> None:
        for entry in list(self._pending.values()):
            entry.cancel_handle.cancel()
        self._pending.clear()

    async def run(self, fingerprint: str, coro: Awaitable) -> Any:
        """
        Run `coro` as the single in-flight request for `fingerprint`.

        Raises:
            SupersededRequest: a newer identical request cancelled this one
        """
        task = asyncio.ensure_future(coro)
        token = CancelToken(task)
        self.register(fingerprint, token)
        try:
            return await task
        except asyncio.CancelledError:
            if token.superseded:
                raise SupersededRequest(fingerprint) from None
            raise
        finally:
            self.release(fingerprint, token)
