"""Tests for HttpClientDriver."""

import json

import httpx
import pytest

from conveyor.drivers.http_client import HttpClientDriver
from conveyor.kernel.exceptions import HttpClientError


def echo(request: httpx.Request) -> httpx.Response:
    if request.url.path == "/text":
        return httpx.Response(200, text="plain body")
    if request.url.path == "/broken-json":
        headers = {"content-type": "application/json"}
        return httpx.Response(200, content=b"{not json", headers=headers)
    if request.url.path == "/missing":
        return httpx.Response(404, json={"errors": ["not found"]})
    return httpx.Response(
        200,
        json={
            "method": request.method,
            "params": dict(request.url.params),
            "authorization": request.headers.get("authorization"),
            "body": request.content.decode() or None,
        },
    )


def driver(**kwargs) -> HttpClientDriver:
    return HttpClientDriver(
        base_url="http://collaborator.local", transport=httpx.MockTransport(echo), **kwargs
    )


class TestHttpClientDriver:
    @pytest.mark.asyncio
    async def test_get_parses_json(self) -> None:
        async with driver() as http:
            result = await http.aget("/api/ce/task", params={"id": "T1"})
        assert result["status_code"] == 200
        assert result["body"]["method"] == "GET"
        assert result["body"]["params"] == {"id": "T1"}

    @pytest.mark.asyncio
    async def test_post_json(self) -> None:
        async with driver() as http:
            result = await http.apost("/api", json={"a": 1})
        assert json.loads(result["body"]["body"]) == {"a": 1}

    @pytest.mark.asyncio
    async def test_text_body(self) -> None:
        async with driver() as http:
            assert (await http.aget("/text"))["body"] == "plain body"

    @pytest.mark.asyncio
    async def test_invalid_json_falls_back_to_text(self) -> None:
        async with driver() as http:
            assert (await http.aget("/broken-json"))["body"] == "{not json"

    @pytest.mark.asyncio
    async def test_bearer_token(self) -> None:
        async with driver(bearer_token="tok") as http:
            result = await http.aget("/")
        assert result["body"]["authorization"] == "Bearer tok"

    @pytest.mark.asyncio
    async def test_basic_auth(self) -> None:
        async with driver(basic_auth_username="admin", basic_auth_password="pw") as http:
            result = await http.aget("/")
        assert result["body"]["authorization"].startswith("Basic ")

    @pytest.mark.asyncio
    async def test_basic_auth_needs_both_parts(self) -> None:
        async with driver(basic_auth_username="admin") as http:
            result = await http.aget("/")
        assert result["body"]["authorization"] is None

    @pytest.mark.asyncio
    async def test_error_status_raises(self) -> None:
        async with driver() as http:
            with pytest.raises(HttpClientError) as exc_info:
                await http.aget("/missing")
        assert exc_info.value.status_code == 404
        assert exc_info.value.body == {"errors": ["not found"]}

    @pytest.mark.asyncio
    async def test_error_status_returned_when_not_raising(self) -> None:
        async with driver(raise_for_status=False) as http:
            assert (await http.aget("/missing"))["status_code"] == 404

    @pytest.mark.asyncio
    async def test_transport_error(self) -> None:
        def refuse(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        http = HttpClientDriver(transport=httpx.MockTransport(refuse))
        with pytest.raises(HttpClientError, match="connection refused") as exc_info:
            await http.aget("http://down.local/")
        assert exc_info.value.status_code is None
        await http.aclose()

    @pytest.mark.asyncio
    async def test_close_is_idempotent(self) -> None:
        http = driver()
        await http.aget("/")
        await http.aclose()
        await http.aclose()
