"""HTTP adapter for the multipart upload backend."""
from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, List, Optional

import httpx

from ..exceptions import ApiError, NetworkError, RequestTimeout, SessionFatal
from ..models import RemoteFile
from ..protocols import ICredentialStore
from .coalescing import RequestCoalescingGuard, request_fingerprint
from .credentials import MemoryCredentialStore

logger = logging.getLogger(__name__)

SUCCESS_CODE = 200


def is_session_fatal(code: int) -> bool:
    """Credential/auth class envelope codes: 400-407 and 512."""
    return 400 <= code <= 407 or code == 512


class HTTPAPIClient:
    """
    HTTP client adapter for the upload backend.

    Implements IUploadAPI protocol. Every response is a
    {code, data, message} envelope; code 200 yields `data`.

    Usage:
        async with HTTPAPIClient("http://host/bunUpload/multipart") as api:
            info = await api.check(file_hash)
    """

    CHECK_ENDPOINT = "/check/{file_hash}"
    INIT_ENDPOINT = "/init"
    UPLOAD_PART_ENDPOINT = "/uploadPart"
    MERGE_ENDPOINT = "/merge/{file_hash}"
    FILES_ENDPOINT = "/files"

    def __init__(
        self,
        base_url: str,
        timeout: float = 20,
        max_retries: int = 3,
        retry_backoff: float = 0.5,
        credentials: Optional[ICredentialStore] = None,
        language: str = "zh-CN",
        send_part_hash: bool = False,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self._base_url = base_url
        self._timeout = timeout
        self._max_retries = max_retries
        self._retry_backoff = retry_backoff
        self._credentials = credentials if credentials is not None else MemoryCredentialStore()
        self._language = language
        self._send_part_hash = send_part_hash
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None
        self._guard = RequestCoalescingGuard()

    @property
    def guard(self) -> RequestCoalescingGuard:
        return self._guard

    @property
    def credentials(self) -> ICredentialStore:
        return self._credentials

    async def __aenter__(self):
        self._client = httpx.AsyncClient(
            base_url=self._base_url,
            timeout=self._timeout,
            transport=self._transport,
        )
        return self

    async def __aexit__(self, *args):
        self._guard.cancel_all()
        if self._client:
            await self._client.aclose()
            self._client = None

    def _headers(self) -> Dict[str, str]:
        return {
            "Authorization": self._credentials.get("Authorization") or "",
            "Accept-Language": self._credentials.get("Accept-Language") or self._language,
        }

    async def request(
        self,
        method: str,
        endpoint: str,
        *,
        params: Optional[Dict[str, Any]] = None,
        json: Any = None,
        data: Optional[Dict[str, Any]] = None,
        files: Optional[Dict[str, Any]] = None,
        retries: Optional[int] = None,
    ) -> Any:
        """
        Send one request through the coalescing guard and unwrap its envelope.

        Network errors and HTTP 5xx are retried with linear backoff.

        Raises:
            SupersededRequest: an identical newer request replaced this one
            SessionFatal: credential/auth class code (credentials are cleared)
            ApiError: any other non-200 code
            NetworkError / RequestTimeout: transport failure after all retries
        """
        if not self._client:
            raise RuntimeError("HTTPAPIClient not initialized. Use 'async with' context.")

        max_retries = retries or self._max_retries
        fingerprint = request_fingerprint(method, endpoint, params, json, data, files)
        last_exception: Optional[httpx.RequestError] = None

        for attempt in range(max_retries):
            try:
                response = await self._guard.run(
                    fingerprint,
                    self._client.request(
                        method,
                        endpoint,
                        params=params,
                        json=json,
                        data=data,
                        files=files,
                        headers=self._headers(),
                    ),
                )
            except httpx.RequestError as exc:
                last_exception = exc
            else:
                if response.status_code >= 500 and attempt < max_retries - 1:
                    logger.debug("[api] %s %s -> HTTP %d, retrying", method, endpoint, response.status_code)
                    await asyncio.sleep(self._retry_backoff * (attempt + 1))
                    continue
                return self._unwrap(response, method, endpoint)

            if attempt < max_retries - 1:
                logger.debug("[api] %s %s failed (%s), retrying", method, endpoint, last_exception)
                await asyncio.sleep(self._retry_backoff * (attempt + 1))

        if isinstance(last_exception, httpx.TimeoutException):
            raise RequestTimeout(f"Timeout on {method} {endpoint}: {last_exception}") from last_exception
        if last_exception:
            raise NetworkError(f"Network error on {method} {endpoint}: {last_exception}") from last_exception
        raise NetworkError(f"Failed to {method} {endpoint} after {max_retries} attempts")

    def _unwrap(self, response: httpx.Response, method: str, endpoint: str) -> Any:
        try:
            payload = response.json()
        except ValueError:
            payload = None

        if response.status_code >= 400:
            message = response.text
            if isinstance(payload, dict):
                message = payload.get("message") or payload.get("error") or message
                if isinstance(payload.get("code"), int):
                    raise self._envelope_error(payload["code"], message, method, endpoint)
            # no envelope code: a plain HTTP failure, never session-fatal
            logger.debug("[api] %s %s -> HTTP %d: %s", method, endpoint, response.status_code, message)
            raise ApiError(response.status_code, message)

        if not isinstance(payload, dict) or "code" not in payload:
            raise ApiError(response.status_code, f"Malformed response envelope on {method} {endpoint}")

        code = payload.get("code")
        if code == SUCCESS_CODE:
            return payload.get("data")
        raise self._envelope_error(code, payload.get("message"), method, endpoint)

    def _envelope_error(self, code: int, message: Optional[str], method: str, endpoint: str) -> ApiError:
        if isinstance(code, int) and is_session_fatal(code):
            logger.warning("[api] %s %s -> session fatal code %s, clearing credentials", method, endpoint, code)
            self._credentials.clear()
            return SessionFatal(code, message)
        logger.debug("[api] %s %s -> code %s: %s", method, endpoint, code, message)
        return ApiError(code, message)

    async def check(self, file_hash: str) -> Dict[str, Any]:
        data = await self.request("GET", self.CHECK_ENDPOINT.format(file_hash=file_hash))
        if data is None:
            return {}
        if not isinstance(data, dict):
            raise ApiError(SUCCESS_CODE, "Malformed check payload")
        return data

    async def init(
        self,
        file_identifier: str,
        total_size: int,
        chunk_num: int,
        chunk_size: int,
        file_name: str,
    ) -> str:
        upload_id = await self.request(
            "POST",
            self.INIT_ENDPOINT,
            json={
                "fileIdentifier": file_identifier,
                "totalSize": total_size,
                "chunkNum": chunk_num,
                "chunkSize": chunk_size,
                "fileName": file_name,
            },
        )
        if not upload_id:
            raise ApiError(SUCCESS_CODE, "Backend returned no upload id")
        return str(upload_id)

    async def upload_part(
        self,
        upload_id: str,
        part_number: int,
        data: bytes,
        content_hash: Optional[str] = None,
        file_name: Optional[str] = None,
    ) -> Any:
        """Single attempt; the session controller owns part retries."""
        form = {"uploadId": upload_id, "partNumber": str(part_number)}
        if self._send_part_hash and content_hash:
            form["contentHash"] = content_hash
        return await self.request(
            "POST",
            self.UPLOAD_PART_ENDPOINT,
            data=form,
            files={"file": (file_name or f"part-{part_number}", data, "application/octet-stream")},
            retries=1,
        )

    async def merge(self, file_hash: str) -> Any:
        return await self.request("POST", self.MERGE_ENDPOINT.format(file_hash=file_hash))

    async def list_files(self, file_name: Optional[str] = None) -> List[RemoteFile]:
        params = {"fileName": file_name} if file_name else None
        data = await self.request("GET", self.FILES_ENDPOINT, params=params)
        return [RemoteFile.from_api(item) for item in (data or [])]

    async def delete_file(self, file_id: int) -> Any:
        return await self.request("DELETE", f"{self.FILES_ENDPOINT}/{file_id}")
