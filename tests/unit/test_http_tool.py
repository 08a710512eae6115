"""Unit tests for the httpx-backed HTTP collaborator."""

from __future__ import annotations

import json

import httpx
import pytest

from flowchord.errors.exceptions import ConfigError, ExternalCallError, InvalidConfigError, TimeoutError
from flowchord.nodes import actions
from flowchord.nodes.base import Collaborators
from flowchord.tools.http import HttpRequestTool
from tests.conftest import make_context, node


def _tool(handler) -> HttpRequestTool:
    return HttpRequestTool(timeout=1.0, transport=httpx.MockTransport(handler))


class TestHttpRequestTool:
    """Tests for HttpRequestTool.request()."""

    @pytest.mark.asyncio
    async def test_json_response(self) -> None:
        """JSON bodies should be decoded."""
        tool = _tool(lambda request: httpx.Response(200, json={"users": [1, 2]}))

        result = await tool.request("get", "https://api.test/users")

        assert result["status"] == 200
        assert result["statusText"] == "OK"
        assert result["data"] == {"users": [1, 2]}
        assert result["headers"]["content-type"] == "application/json"

    @pytest.mark.asyncio
    async def test_text_response(self) -> None:
        """Non-JSON text is returned as-is."""
        tool = _tool(lambda request: httpx.Response(200, text="hello"))

        result = await tool.request("GET", "https://api.test/")

        assert result["data"] == "hello"

    @pytest.mark.asyncio
    async def test_binary_response(self) -> None:
        """Media responses come back as blobs."""
        tool = _tool(
            lambda request: httpx.Response(200, content=b"\x89PNG", headers={"content-type": "image/png"})
        )

        result = await tool.request("GET", "https://cdn.test/cat.png")

        assert result["data"] is None
        assert result["blob"] == b"\x89PNG"
        assert result["imageBlob"] == b"\x89PNG"
        assert result["mimeType"] == "image/png"

    @pytest.mark.asyncio
    async def test_body_sent_as_json(self) -> None:
        """Dict bodies are serialized for non-GET methods."""
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(201, json={"ok": True})

        await _tool(handler).request("POST", "https://api.test/items", body={"name": "x"})

        assert seen[0].method == "POST"
        assert json.loads(seen[0].content) == {"name": "x"}

    @pytest.mark.asyncio
    async def test_get_drops_body(self) -> None:
        """GET requests never carry a body."""
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200)

        result = await _tool(handler).request("GET", "https://api.test/", body={"ignored": True})

        assert seen[0].content == b""
        assert result["data"] is None

    @pytest.mark.asyncio
    async def test_client_errors_returned(self) -> None:
        """4xx responses are data, not failures."""
        tool = _tool(lambda request: httpx.Response(404, json={"error": "missing"}))

        result = await tool.request("GET", "https://api.test/x")

        assert result["status"] == 404

    @pytest.mark.asyncio
    async def test_server_error_raises(self) -> None:
        """5xx responses are retryable external failures."""
        tool = _tool(lambda request: httpx.Response(503))

        with pytest.raises(ExternalCallError) as exc_info:
            await tool.request("GET", "https://api.test/x")

        assert exc_info.value.status_code == 503
        assert exc_info.value.retryable is True

    @pytest.mark.asyncio
    async def test_timeout(self) -> None:
        """Transport timeouts become TimeoutError."""

        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ReadTimeout("too slow", request=request)

        with pytest.raises(TimeoutError) as exc_info:
            await _tool(handler).request("GET", "https://api.test/slow", timeout=0.5)

        assert exc_info.value.timeout_seconds == 0.5

    @pytest.mark.asyncio
    async def test_connection_error(self) -> None:
        """Transport errors become ExternalCallError."""

        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("refused", request=request)

        with pytest.raises(ExternalCallError, match="refused"):
            await _tool(handler).request("GET", "https://api.test/")


class TestHttpRequestNode:
    """Tests for the httpRequest executor."""

    @pytest.mark.asyncio
    async def test_templated_request(self) -> None:
        """URL, headers and body are resolved against the input."""
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json={"id": 7})

        spec = node(
            "h",
            "httpRequest",
            url="https://api.test/users/{{ $json.id }}",
            method="put",
            headers='{"X-Token": "abc"}',
            body={"name": "{{ $json.name }}"},
        )
        context = make_context(spec, collaborators=Collaborators(http=_tool(handler)))

        result = await actions.http_request(context.node, {"id": 7, "name": "Ada"}, context)

        assert result.output["data"] == {"id": 7}
        assert str(seen[0].url) == "https://api.test/users/7"
        assert seen[0].method == "PUT"
        assert seen[0].headers["X-Token"] == "abc"
        assert json.loads(seen[0].content) == {"name": "Ada"}

    @pytest.mark.asyncio
    async def test_missing_url(self) -> None:
        """A node without a URL is misconfigured."""
        context = make_context(node("h", "httpRequest"))

        with pytest.raises(ConfigError):
            await actions.http_request(context.node, None, context)

    @pytest.mark.asyncio
    async def test_bad_headers(self) -> None:
        """Headers must be a JSON object."""
        context = make_context(node("h", "httpRequest", url="https://api.test", headers="not json"))

        with pytest.raises(InvalidConfigError):
            await actions.http_request(context.node, None, context)
