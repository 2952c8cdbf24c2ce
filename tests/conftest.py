"""Shared fixtures: an in-memory multipart backend."""
from typing import Dict, List, Optional

import pytest

from chunked_uploader.exceptions import ApiError
from chunked_uploader.use_cases.deduplication import NOT_UPLOADED, UPLOAD_SUCCESS, UPLOADING


class FakeBackend:
    """
    In-memory IUploadAPI.

    `fail_parts` maps a part number to a list of exceptions raised on the
    next calls for that part, in order.
    """

    def __init__(self):
        self.objects: Dict[str, bytes] = {}
        self.sessions: Dict[str, dict] = {}
        self.calls: List[tuple] = []
        self.fail_parts: Dict[int, List[Exception]] = {}
        self._next_id = 0

    def start_session(self, file_hash: str, chunk_num: int, parts: Optional[Dict[int, bytes]] = None) -> str:
        self._next_id += 1
        upload_id = f"upload-{self._next_id}"
        self.sessions[file_hash] = {"upload_id": upload_id, "chunk_num": chunk_num, "parts": dict(parts or {})}
        return upload_id

    def _session_for(self, upload_id: str) -> dict:
        for session in self.sessions.values():
            if session["upload_id"] == upload_id:
                return session
        raise ApiError(500, f"unknown upload {upload_id}")

    async def check(self, file_hash):
        self.calls.append(("check", file_hash))
        if file_hash in self.objects:
            return {"code": UPLOAD_SUCCESS, "url": f"http://minio/{file_hash}"}
        session = self.sessions.get(file_hash)
        if session:
            return {
                "code": UPLOADING,
                "uploadId": session["upload_id"],
                "exitPartList": [{"partNumber": n, "size": len(b)} for n, b in sorted(session["parts"].items())],
            }
        return {"code": NOT_UPLOADED}

    async def init(self, file_identifier, total_size, chunk_num, chunk_size, file_name):
        self.calls.append(("init", file_identifier, total_size, chunk_num, chunk_size, file_name))
        return self.start_session(file_identifier, chunk_num)

    async def upload_part(self, upload_id, part_number, data, content_hash=None):
        self.calls.append(("upload_part", upload_id, part_number))
        pending = self.fail_parts.get(part_number)
        if pending:
            raise pending.pop(0)
        self._session_for(upload_id)["parts"][part_number] = bytes(data)
        return True

    async def merge(self, file_hash):
        self.calls.append(("merge", file_hash))
        if file_hash in self.objects:
            return f"http://minio/{file_hash}"
        session = self.sessions.pop(file_hash, None)
        if session is None:
            raise ApiError(500, "nothing to merge")
        self.objects[file_hash] = b"".join(session["parts"][n] for n in sorted(session["parts"]))
        return f"http://minio/{file_hash}"

    def uploaded_part_numbers(self) -> List[int]:
        return [call[2] for call in self.calls if call[0] == "upload_part"]

    def call_names(self) -> List[str]:
        return [call[0] for call in self.calls]


@pytest.fixture
def backend():
    return FakeBackend()


