"""Default HTTP collaborator built on httpx."""

from __future__ import annotations

import json
from typing import Any

import httpx

from flowchord.errors.exceptions import ExternalCallError, TimeoutError

BINARY_CONTENT_PREFIXES = ("audio/", "video/", "image/", "application/octet-stream")


class HttpRequestTool:
    """Perform the request described by an ``httpRequest`` node.

    Binary responses come back as ``bytes`` under ``blob`` (plus
    ``audioBlob``/``imageBlob``/``videoBlob`` when the content type says so),
    which the agent loop recognizes as media output.

    Example:
        >>> tool = HttpRequestTool(timeout=10.0)
        >>> result = await tool.request("GET", "https://example.com/api")
    """

    def __init__(
        self,
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._timeout = timeout
        self._transport = transport

    async def request(
        self,
        method: str,
        url: str,
        *,
        headers: dict[str, str] | None = None,
        body: Any = None,
        timeout: float | None = None,
    ) -> dict[str, Any]:
        method = method.upper()
        content: str | None = None
        if method not in ("GET", "HEAD") and body is not None:
            content = body if isinstance(body, str) else json.dumps(body)

        try:
            async with httpx.AsyncClient(
                timeout=timeout or self._timeout,
                transport=self._transport,
            ) as client:
                resp = await client.request(method, url, headers=headers, content=content)
        except httpx.TimeoutException as e:
            raise TimeoutError(
                f"HTTP Request timed out: {method} {url}",
                timeout_seconds=timeout or self._timeout,
                source="httpRequest",
            ) from e
        except httpx.HTTPError as e:
            raise ExternalCallError(
                f"HTTP Request failed: {e}", source="httpRequest"
            ) from e

        if resp.status_code >= 500:
            raise ExternalCallError(
                f"HTTP Request failed: {resp.status_code} {resp.reason_phrase}",
                source="httpRequest",
                status_code=resp.status_code,
            )

        return {
            "status": resp.status_code,
            "statusText": resp.reason_phrase,
            "headers": dict(resp.headers),
            **self._decode(resp),
        }

    @staticmethod
    def _decode(resp: httpx.Response) -> dict[str, Any]:
        content_type = resp.headers.get("content-type", "")
        mime_type = content_type.split(";")[0].strip()

        if content_type.startswith(BINARY_CONTENT_PREFIXES):
            blob = resp.content
            decoded: dict[str, Any] = {"data": None, "blob": blob, "mimeType": mime_type}
            if mime_type.startswith("audio/"):
                decoded["audioBlob"] = blob
            elif mime_type.startswith("image/"):
                decoded["imageBlob"] = blob
            elif mime_type.startswith("video/"):
                decoded["videoBlob"] = blob
            return decoded

        text = resp.text
        try:
            data: Any = json.loads(text) if text else None
        except ValueError:
            data = text
        return {"data": data}
