"""
test_rest.py - Tests for the REST remote store and the HTTP connectivity probe.
"""

import asyncio
import json

import httpx
import pytest

from fieldsync.errors import RemoteError
from fieldsync.remote import HttpConnectivityProbe, RestRemoteStore


class RecordingHandler:
    """httpx.MockTransport handler that records requests."""

    def __init__(self, response: httpx.Response | None = None):
        self.requests: list[httpx.Request] = []
        self.response = response

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.response is not None:
            return self.response
        if request.method == "GET":
            return httpx.Response(200, json=[{"id": 1, "name": "AWS"}])
        return httpx.Response(204)


def run_with_store(handler, action, api_key="secret"):
    async def run():
        store = RestRemoteStore(
            "https://example.supabase.co/", api_key=api_key, transport=httpx.MockTransport(handler)
        )
        try:
            return await action(store)
        finally:
            await store.close()

    return asyncio.run(run())


class TestRestRemoteStore:
    def test_select_active(self):
        handler = RecordingHandler()

        rows = run_with_store(handler, lambda store: store.select_active("companies"))

        assert rows == [{"id": 1, "name": "AWS"}]
        request = handler.requests[0]
        assert request.method == "GET"
        assert request.url.path == "/rest/v1/companies"
        assert request.url.params["select"] == "*"
        assert request.url.params["deleted_at"] == "is.null"
        assert request.headers["apikey"] == "secret"
        assert request.headers["authorization"] == "Bearer secret"

    def test_upsert(self):
        handler = RecordingHandler()

        run_with_store(
            handler,
            lambda store: store.upsert("user_roles", {"user_id": 5, "role_id": 12}, ("user_id", "role_id")),
        )

        request = handler.requests[0]
        assert request.method == "POST"
        assert request.url.params["on_conflict"] == "user_id,role_id"
        assert "resolution=merge-duplicates" in request.headers["prefer"]
        assert json.loads(request.content) == {"user_id": 5, "role_id": 12}

    def test_update_filters(self):
        handler = RecordingHandler()

        run_with_store(
            handler,
            lambda store: store.update("companies", {"id": 9}, {"deleted_at": "2025-02-20T12:00:00.000000Z"}),
        )

        request = handler.requests[0]
        assert request.method == "PATCH"
        assert request.url.params["id"] == "eq.9"
        assert json.loads(request.content) == {"deleted_at": "2025-02-20T12:00:00.000000Z"}

    def test_delete_by_both_keys(self):
        handler = RecordingHandler()

        run_with_store(handler, lambda store: store.delete("user_roles", {"user_id": 5, "role_id": 12}))

        request = handler.requests[0]
        assert request.method == "DELETE"
        assert request.url.params["user_id"] == "eq.5"
        assert request.url.params["role_id"] == "eq.12"

    def test_no_key_headers_without_key(self):
        handler = RecordingHandler()

        run_with_store(handler, lambda store: store.select_active("roles"), api_key=None)

        assert "apikey" not in handler.requests[0].headers

    def test_http_error_maps_to_remote_error(self):
        handler = RecordingHandler(httpx.Response(409, json={"message": "duplicate key"}))

        with pytest.raises(RemoteError) as exc_info:
            run_with_store(handler, lambda store: store.upsert("roles", {"id": 1}, ("id",)))

        assert exc_info.value.status_code == 409
        assert exc_info.value.table == "roles"
        assert "duplicate key" in str(exc_info.value)

    def test_transport_error_maps_to_remote_error(self):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        with pytest.raises(RemoteError) as exc_info:
            run_with_store(handler, lambda store: store.select_active("roles"))

        assert exc_info.value.status_code is None

    def test_unexpected_body(self):
        handler = RecordingHandler(httpx.Response(200, json={"rows": []}))

        with pytest.raises(RemoteError):
            run_with_store(handler, lambda store: store.select_active("roles"))


class TestHttpConnectivityProbe:
    def test_any_response_is_online(self):
        probe = HttpConnectivityProbe(
            "https://example.com", transport=httpx.MockTransport(lambda request: httpx.Response(503))
        )

        assert asyncio.run(probe.is_online())

    def test_network_error_is_offline(self):
        def handler(request):
            raise httpx.ConnectTimeout("timed out", request=request)

        probe = HttpConnectivityProbe("https://example.com", transport=httpx.MockTransport(handler))

        assert not asyncio.run(probe.is_online())
