"""Tests for the httpx-backed table client."""

from __future__ import annotations

import json

import httpx
import pytest

from offline_sync.adapters.remote import RemoteCallError, RemoteTableClient, RestTableClient


def _client(handler) -> RestTableClient:
    return RestTableClient(
        "https://api.example.test/rest/v1/",
        "anon-key",
        access_token="user-token",
        transport=httpx.MockTransport(handler),
    )


@pytest.mark.asyncio
async def test_insert_posts_document_and_returns_first_row() -> None:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(201, json=[{"id": "srv-1", "total": 10}])

    async with _client(handler) as client:
        row = await client.insert("orders", {"total": 10})

    assert row == {"id": "srv-1", "total": 10}
    request = seen[0]
    assert request.method == "POST"
    assert request.url.path == "/rest/v1/orders"
    assert json.loads(request.content) == {"total": 10}
    assert request.headers["apikey"] == "anon-key"
    assert request.headers["Authorization"] == "Bearer user-token"
    assert request.headers["Prefer"] == "return=representation"


@pytest.mark.asyncio
async def test_insert_with_empty_body_returns_none() -> None:
    async with _client(lambda request: httpx.Response(201)) as client:
        assert await client.insert("orders", {"total": 1}) is None


@pytest.mark.asyncio
async def test_update_and_delete_filter_by_id() -> None:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(204)

    async with _client(handler) as client:
        await client.update_by_id("orders", "O1", {"status": "delivered"})
        await client.delete_by_id("carts", 7)

    update, delete = seen
    assert update.method == "PATCH"
    assert update.url.params["id"] == "eq.O1"
    assert json.loads(update.content) == {"status": "delivered"}
    assert delete.method == "DELETE"
    assert delete.url.path.endswith("/carts")
    assert delete.url.params["id"] == "eq.7"


@pytest.mark.asyncio
async def test_select_builds_filters_order_and_limit() -> None:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json=[{"id": "s2"}])

    async with _client(handler) as client:
        rows = await client.select(
            "subscriptions",
            {"organization_id": "org1", "active": True},
            order_by="created_at",
            descending=True,
            limit=1,
        )

    assert rows == [{"id": "s2"}]
    params = seen[0].url.params
    assert params["organization_id"] == "eq.org1"
    assert params["active"] == "eq.true"
    assert params["order"] == "created_at.desc"
    assert params["limit"] == "1"


@pytest.mark.asyncio
@pytest.mark.parametrize(
    ("status", "retryable"),
    [(400, False), (403, False), (409, False), (429, True), (500, True), (503, True)],
)
async def test_http_errors_map_to_remote_call_error(status: int, retryable: bool) -> None:
    async with _client(lambda request: httpx.Response(status, text="nope")) as client:
        with pytest.raises(RemoteCallError) as exc_info:
            await client.update_by_id("orders", "O1", {"status": "x"})

    assert exc_info.value.status_code == status
    assert exc_info.value.retryable is retryable
    assert isinstance(exc_info.value.__cause__, httpx.HTTPStatusError)


@pytest.mark.asyncio
async def test_transport_errors_are_retryable() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    async with _client(handler) as client:
        with pytest.raises(RemoteCallError) as exc_info:
            await client.delete_by_id("orders", "O1")

    assert exc_info.value.retryable is True
    assert exc_info.value.status_code is None


@pytest.mark.asyncio
async def test_client_requires_context_manager() -> None:
    client = RestTableClient("https://api.example.test", "key")

    with pytest.raises(RemoteCallError):
        await client.delete_by_id("orders", "O1")
    assert isinstance(client, RemoteTableClient)
