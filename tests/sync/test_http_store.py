"""Tests for the HTTP document store transport."""

import json

import httpx
import pytest

from team_order.sync.http_store import HttpDocumentStore, VersionConflict, _ws_url
from team_order.sync.store import StoreError, StoreUnavailableError, TransientStoreError

BASE_URL = "http://orders.test"


def make_store(handler) -> HttpDocumentStore:
    client = httpx.AsyncClient(base_url=BASE_URL, transport=httpx.MockTransport(handler))
    return HttpDocumentStore(BASE_URL, client=client)


class TestRequests:
    @pytest.mark.asyncio
    async def test_get_existing_document(self):
        def handler(request: httpx.Request) -> httpx.Response:
            assert request.method == "GET"
            assert request.url.path == "/documents/sessions/s1"
            return httpx.Response(200, json={"document": {"phase": "setup"}, "version": 3})

        store = make_store(handler)
        assert await store.get("sessions/s1") == {"phase": "setup"}
        await store.aclose()

    @pytest.mark.asyncio
    async def test_get_missing_document_is_none(self):
        store = make_store(lambda request: httpx.Response(404))
        assert await store.get("sessions/none") is None

    @pytest.mark.asyncio
    async def test_merge_sends_patch_with_fields(self):
        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append((request.method, json.loads(request.content)))
            return httpx.Response(204)

        store = make_store(handler)
        await store.merge("sessions/s1", {"participant_orders.m-1": {"items": []}})

        assert seen == [("PATCH", {"fields": {"participant_orders.m-1": {"items": []}}})]

    @pytest.mark.asyncio
    async def test_set_sends_unconditional_put(self):
        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append((request.method, json.loads(request.content)))
            return httpx.Response(200)

        store = make_store(handler)
        await store.set("history/index", {"order_ids": ["a"]})

        assert seen == [("PUT", {"document": {"order_ids": ["a"]}, "if_version": None})]


class TestTransaction:
    @pytest.mark.asyncio
    async def test_reruns_update_after_version_conflict(self):
        versions = iter([1, 2])
        puts = []

        def handler(request: httpx.Request) -> httpx.Response:
            if request.method == "GET":
                version = next(versions)
                return httpx.Response(200, json={"document": {"n": version}, "version": version})
            body = json.loads(request.content)
            puts.append(body)
            if body["if_version"] == 1:
                return httpx.Response(412)
            return httpx.Response(200)

        store = make_store(handler)
        result = await store.transaction("counter", lambda doc: {"n": doc["n"] + 10})

        assert result == {"n": 12}
        assert [p["if_version"] for p in puts] == [1, 2]

    @pytest.mark.asyncio
    async def test_missing_document_requires_absence(self):
        puts = []

        def handler(request: httpx.Request) -> httpx.Response:
            if request.method == "GET":
                return httpx.Response(404)
            puts.append(json.loads(request.content))
            return httpx.Response(200)

        store = make_store(handler)
        await store.transaction("history/index", lambda doc: {"order_ids": ["x"]})

        assert puts == [{"document": {"order_ids": ["x"]}, "if_version": 0}]

    @pytest.mark.asyncio
    async def test_gives_up_after_repeated_conflicts(self):
        def handler(request: httpx.Request) -> httpx.Response:
            if request.method == "GET":
                return httpx.Response(200, json={"document": {}, "version": 1})
            return httpx.Response(412)

        store = make_store(handler)
        with pytest.raises(VersionConflict):
            await store.transaction("k", lambda doc: {"x": 1})


class TestErrorMapping:
    """HTTP failures map onto the store error hierarchy"""

    @pytest.mark.asyncio
    async def test_server_error_is_transient(self):
        store = make_store(lambda request: httpx.Response(503))
        with pytest.raises(TransientStoreError):
            await store.get("k")

    @pytest.mark.asyncio
    async def test_connect_error_is_unavailable(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        store = make_store(handler)
        with pytest.raises(StoreUnavailableError):
            await store.get("k")

    @pytest.mark.asyncio
    async def test_read_timeout_is_transient(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ReadTimeout("slow", request=request)

        store = make_store(handler)
        with pytest.raises(TransientStoreError):
            await store.merge("k", {"a": 1})

    @pytest.mark.asyncio
    async def test_client_error_is_not_retried(self):
        store = make_store(lambda request: httpx.Response(400, text="bad key"))
        with pytest.raises(StoreError) as exc_info:
            await store.set("k", {})
        assert not isinstance(exc_info.value, TransientStoreError)


class TestWebSocketUrl:
    def test_http_becomes_ws(self):
        assert _ws_url("http://localhost:8787") == "ws://localhost:8787"

    def test_https_becomes_wss(self):
        assert _ws_url("https://orders.example.com") == "wss://orders.example.com"

    def test_other_schemes_untouched(self):
        assert _ws_url("ws://already") == "ws://already"
