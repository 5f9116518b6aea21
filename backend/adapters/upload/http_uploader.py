"""
HTTP segment uploader.

POSTs every segment as a multipart form upload:

    POST <upload_url>
    Content-Type: multipart/form-data
    file=<segment bytes>; filename=<segment name>

Any non-2xx response or transport error raises; the upload sink maps it to
UploadError. No retries.
"""

from __future__ import annotations

from typing import Optional

import httpx

from adapters.upload.base import SegmentUploader
from constants import DEFAULT_OUTPUT_CONTENT_TYPE, DEFAULT_UPLOAD_URL, UPLOAD_TIMEOUT_S


class UploadRejected(RuntimeError):
    """The upload service answered with a non-success status."""

    def __init__(self, name: str, status_code: int, body: str) -> None:
        super().__init__(f"{name}: HTTP {status_code}: {body[:200]}")
        self.status_code = status_code


class HttpSegmentUploader(SegmentUploader):
    """
    Uploader for the segment storage service.

    client:
        Optional pre-built httpx.AsyncClient (tests pass one with a mock
        transport). When omitted, one is created and owned by this uploader.
    """

    def __init__(
        self,
        *,
        url: str = DEFAULT_UPLOAD_URL,
        content_type: str = DEFAULT_OUTPUT_CONTENT_TYPE,
        timeout_s: float = UPLOAD_TIMEOUT_S,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self._url = url
        self._content_type = content_type
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=timeout_s)

    async def upload_segment(self, name: str, data: bytes) -> None:
        response = await self._client.post(
            self._url,
            files={"file": (name, data, self._content_type)},
        )
        if not response.is_success:
            raise UploadRejected(name, response.status_code, response.text)

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()
