"""HTTP adapter for object storage operations."""
from __future__ import annotations

import asyncio
from typing import AsyncIterator, Dict, Optional

import httpx

from ..errors import StorageUnavailableError
from ..models import FileHandle
from ..protocols import ProgressCallback

UPLOAD_CHUNK_SIZE = 256 * 1024


class HTTPObjectStorage:
    """
    HTTP object storage client.

    Implements IObjectStorage protocol: ``PUT {base_url}/{path}`` with the
    file body streamed in chunks. The object URL is read from a JSON
    ``{"url": ...}`` response, falling back to the request URL.
    """

    def __init__(
        self,
        base_url: str,
        token: Optional[str] = None,
        timeout: int = 120,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self._base_url = base_url.rstrip("/")
        self._token = token
        self._timeout = timeout
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    async def __aenter__(self):
        headers: Dict[str, str] = {}
        if self._token:
            headers["Authorization"] = f"Bearer {self._token}"
        self._client = httpx.AsyncClient(
            base_url=self._base_url,
            timeout=self._timeout,
            headers=headers,
            transport=self._transport,
        )
        return self

    async def __aexit__(self, *args):
        if self._client:
            await self._client.aclose()
            self._client = None

    def _require_client(self) -> httpx.AsyncClient:
        if not self._client:
            raise RuntimeError("HTTPObjectStorage not initialized. Use 'async with' context.")
        return self._client

    async def ping(self) -> None:
        """Check the storage endpoint answers at all."""
        client = self._require_client()
        try:
            response = await client.get("/")
        except httpx.RequestError as exc:
            raise StorageUnavailableError(f"Cannot reach {self._base_url}: {exc}") from exc
        if response.status_code >= 500:
            raise StorageUnavailableError(
                f"Storage at {self._base_url} answered {response.status_code}"
            )

    async def put_object(
        self,
        path: str,
        file: FileHandle,
        progress_callback: Optional[ProgressCallback] = None,
    ) -> str:
        client = self._require_client()
        total = file.size_bytes

        async def body() -> AsyncIterator[bytes]:
            sent = 0
            handle = await asyncio.to_thread(open, file.path, "rb")
            try:
                while True:
                    chunk = await asyncio.to_thread(handle.read, UPLOAD_CHUNK_SIZE)
                    if not chunk:
                        break
                    sent += len(chunk)
                    if progress_callback:
                        progress_callback(sent, total)
                    yield chunk
            finally:
                handle.close()

        response = await client.put(
            f"/{path.lstrip('/')}",
            content=body(),
            headers={
                "Content-Type": file.mime_type,
                "Content-Length": str(total),
            },
        )

        if response.status_code >= 400:
            try:
                error_detail = response.json()
            except Exception:
                error_detail = response.text
            raise RuntimeError(f"Storage error {response.status_code} on PUT {path}: {error_detail}")

        try:
            payload = response.json()
        except ValueError:
            payload = None
        if isinstance(payload, dict) and payload.get("url"):
            return str(payload["url"])
        return str(response.request.url)
