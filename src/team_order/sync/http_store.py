"""HTTP + WebSocket transport for the remote document store.

Wire protocol (JSON):

- ``GET    {base}/documents/{key}``  -> ``{"document": {...}, "version": n}`` or 404
- ``PATCH  {base}/documents/{key}``  body ``{"fields": {...}}`` (shallow merge)
- ``PUT    {base}/documents/{key}``  body ``{"document": {...}, "if_version": n | null}``;
  412 when ``if_version`` no longer matches (0 means "must not exist")
- ``WS     {ws_base}/documents/{key}/watch`` pushes
  ``{"type": "snapshot", "document": {...} | null, "version": n}``

Connection failures map to ``StoreUnavailableError`` (offline fallback);
timeouts, 5xx responses and dropped streams map to ``TransientStoreError``.
"""

from __future__ import annotations

import json
import logging
from typing import Any, AsyncIterator, Optional

import httpx
import websockets
from websockets import ConnectionClosed

from .store import (
    Document,
    StoreError,
    StoreUnavailableError,
    TransientStoreError,
    UpdateFn,
)

logger = logging.getLogger(__name__)


class VersionConflict(TransientStoreError):
    """Optimistic concurrency check failed (HTTP 412)."""


def _ws_url(base_url: str) -> str:
    if base_url.startswith("https://"):
        return "wss://" + base_url[len("https://"):]
    if base_url.startswith("http://"):
        return "ws://" + base_url[len("http://"):]
    return base_url


class HttpDocumentStore:
    """``DocumentStore`` backed by a small REST API with WebSocket push."""

    MAX_TRANSACTION_ATTEMPTS = 5

    def __init__(
        self,
        server_url: str,
        client: Optional[httpx.AsyncClient] = None,
        request_timeout: float = 15.0,
    ) -> None:
        self.server_url = server_url.rstrip("/")
        self._client = client
        self._request_timeout = request_timeout

    def _get_http_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(base_url=self.server_url, timeout=self._request_timeout)
        return self._client

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    def _path(self, key: str) -> str:
        return f"/documents/{key}"

    async def _request(self, method: str, key: str, body: Optional[dict[str, Any]] = None) -> httpx.Response:
        client = self._get_http_client()
        try:
            response = await client.request(method, self._path(key), json=body)
        except httpx.ConnectError as exc:
            raise StoreUnavailableError(f"cannot reach {self.server_url}: {exc}") from exc
        except httpx.TimeoutException as exc:
            raise TransientStoreError(f"{method} {key} timed out") from exc
        except httpx.RequestError as exc:
            raise TransientStoreError(f"{method} {key} failed: {exc}") from exc

        if response.status_code >= 500:
            raise TransientStoreError(f"{method} {key}: HTTP {response.status_code}")
        if response.status_code == 412:
            raise VersionConflict(f"{method} {key}: version conflict")
        if response.status_code >= 400 and response.status_code != 404:
            raise StoreError(f"{method} {key}: HTTP {response.status_code} {response.text}")
        return response

    async def _get_versioned(self, key: str) -> tuple[Optional[Document], Optional[int]]:
        response = await self._request("GET", key)
        if response.status_code == 404:
            return None, None
        payload = response.json()
        return payload.get("document"), payload.get("version")

    async def get(self, key: str) -> Optional[Document]:
        document, _ = await self._get_versioned(key)
        return document

    async def merge(self, key: str, partial: Document) -> None:
        await self._request("PATCH", key, {"fields": partial})

    async def set(self, key: str, document: Document) -> None:
        await self._request("PUT", key, {"document": document, "if_version": None})

    async def transaction(self, key: str, update: UpdateFn) -> Optional[Document]:
        """Read-modify-write guarded by the document version.

        A 412 means another writer got in first; the update is re-run
        against the fresh document.
        """
        for attempt in range(self.MAX_TRANSACTION_ATTEMPTS):
            current, version = await self._get_versioned(key)
            new_doc = update(current)
            try:
                await self._request(
                    "PUT",
                    key,
                    {"document": new_doc or {}, "if_version": version if version is not None else 0},
                )
            except VersionConflict:
                logger.debug("Transaction on %s lost a race (attempt %d)", key, attempt + 1)
                continue
            return new_doc
        raise VersionConflict(f"transaction on {key} kept conflicting")

    async def watch(self, key: str) -> AsyncIterator[Optional[Document]]:
        uri = f"{_ws_url(self.server_url)}{self._path(key)}/watch"
        try:
            connection = await websockets.connect(uri, open_timeout=self._request_timeout)
        except OSError as exc:
            raise StoreUnavailableError(f"cannot open watch stream {uri}: {exc}") from exc
        except websockets.InvalidHandshake as exc:
            raise TransientStoreError(f"watch handshake failed: {exc}") from exc

        try:
            async for message in connection:
                data = json.loads(message)
                if data.get("type") != "snapshot":
                    continue
                yield data.get("document")
        except ConnectionClosed as exc:
            raise TransientStoreError(f"watch stream for {key} closed: {exc}") from exc
        finally:
            await connection.close()
