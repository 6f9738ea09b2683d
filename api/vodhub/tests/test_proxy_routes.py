"""API tests for the media proxy endpoint."""

from __future__ import annotations

from urllib.parse import quote

import httpx
import pytest

from vodhub.api.deps import get_media_proxy
from vodhub.main import app
from vodhub.services.proxy_service import MediaProxy, SpoofProfile
from vodhub.tests.utils import mock_client


def _install_proxy(handler) -> httpx.AsyncClient:
    upstream = mock_client(handler)
    media_proxy = MediaProxy(upstream, profile=SpoofProfile(enabled=True, user_agent="UA", client_ip="202.108.22.5"), backoff_seconds=0)
    app.dependency_overrides[get_media_proxy] = lambda: media_proxy
    return upstream


@pytest.mark.asyncio
async def test_proxy_requires_url(client):
    res = await client.get("/api/proxy")

    assert res.status_code == 400
    assert res.text == "Missing URL parameter"


@pytest.mark.asyncio
async def test_proxy_preflight_returns_cors_headers(client):
    res = await client.options("/api/proxy")

    assert res.status_code == 204
    assert res.headers["access-control-allow-origin"] == "*"
    assert res.headers["access-control-allow-methods"] == "GET, OPTIONS"
    assert res.headers["access-control-allow-headers"] == "Content-Type, Authorization"


@pytest.mark.asyncio
async def test_proxy_rewrites_playlist_through_own_endpoint(client, proxy_endpoint):
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(
            200,
            text="#EXTM3U\n#EXTINF:5,\nseg001.ts\n",
            headers={"Content-Type": "application/vnd.apple.mpegurl"},
        )

    upstream = _install_proxy(handler)
    target = "https://cdn.example.com/a/index.m3u8"
    res = await client.get("/api/proxy", params={"url": target})
    await upstream.aclose()

    assert res.status_code == 200
    assert res.headers["content-type"].startswith("application/vnd.apple.mpegurl")
    assert res.headers["access-control-allow-origin"] == "*"
    lines = res.text.split("\n")
    assert len(lines) == 4
    assert lines[2] == f"{proxy_endpoint}?url=https%3A%2F%2Fcdn.example.com%2Fa%2Fseg001.ts"


@pytest.mark.asyncio
async def test_proxy_streams_binary_content(client):
    payload = bytes(range(256)) * 64

    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, content=payload, headers={"Content-Type": "video/mp2t", "X-Cache": "HIT"})

    upstream = _install_proxy(handler)
    res = await client.get("/api/proxy", params={"url": "https://cdn.example.com/a/seg001.ts"})
    await upstream.aclose()

    assert res.status_code == 200
    assert res.content == payload
    assert res.headers["content-type"] == "video/mp2t"
    assert res.headers["x-cache"] == "HIT"
    assert res.headers["access-control-allow-origin"] == "*"


@pytest.mark.asyncio
async def test_proxy_returns_json_error_after_exhausting_retries(client):
    calls = 0

    def handler(request: httpx.Request) -> httpx.Response:
        nonlocal calls
        calls += 1
        return httpx.Response(503)

    upstream = _install_proxy(handler)
    target = "https://cdn.example.com/a/seg001.ts"
    res = await client.get("/api/proxy", params={"url": target})
    await upstream.aclose()

    assert calls == 5
    assert res.status_code == 500
    body = res.json()
    assert body["error"] == "Proxy failed"
    assert body["url"] == target
    assert "5 attempt" in body["message"]


@pytest.mark.asyncio
async def test_proxy_recovers_from_transient_503(client):
    calls = 0

    def handler(request: httpx.Request) -> httpx.Response:
        nonlocal calls
        calls += 1
        if calls <= 2:
            return httpx.Response(503)
        return httpx.Response(200, content=b"ok", headers={"Content-Type": "video/mp2t"})

    upstream = _install_proxy(handler)
    res = await client.get("/api/proxy", params={"url": "https://cdn.example.com/a/seg.ts"})
    await upstream.aclose()

    assert res.status_code == 200
    assert res.content == b"ok"
    assert calls == 3


@pytest.mark.asyncio
async def test_proxy_unwraps_urls_that_already_point_at_itself(client, proxy_endpoint):
    requested: list[str] = []

    def handler(request: httpx.Request) -> httpx.Response:
        requested.append(str(request.url))
        return httpx.Response(200, content=b"k", headers={"Content-Type": "application/octet-stream"})

    upstream = _install_proxy(handler)
    inner = "https://keys.example.com/k.bin"
    wrapped = f"{proxy_endpoint}?url={quote(inner, safe='')}"
    res = await client.get("/api/proxy", params={"url": wrapped})
    await upstream.aclose()

    assert res.status_code == 200
    assert requested == [inner]


@pytest.mark.asyncio
async def test_proxy_rejects_non_http_targets(client):
    res = await client.get("/api/proxy", params={"url": "file:///etc/passwd"})

    assert res.status_code == 400


@pytest.mark.asyncio
async def test_browser_preflight_reaches_proxy_handler(client):
    res = await client.options(
        "/api/proxy",
        headers={
            "Origin": "http://player.example",
            "Access-Control-Request-Method": "GET",
            "Access-Control-Request-Headers": "Authorization",
        },
    )

    assert res.status_code == 204
    assert res.headers["access-control-allow-origin"] == "*"
    assert res.headers["access-control-allow-methods"] == "GET, OPTIONS"
    assert res.headers["access-control-allow-headers"] == "Content-Type, Authorization"


@pytest.mark.asyncio
async def test_cross_origin_proxy_response_carries_single_cors_origin(client):
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, content=b"ts", headers={"Content-Type": "video/mp2t"})

    upstream = _install_proxy(handler)
    res = await client.get(
        "/api/proxy",
        params={"url": "https://cdn.example.com/a/seg001.ts"},
        headers={"Origin": "http://player.example"},
    )
    await upstream.aclose()

    assert res.status_code == 200
    assert res.headers.get_list("access-control-allow-origin") == ["*"]


@pytest.mark.asyncio
async def test_search_preflight_still_handled_by_api_cors(client):
    res = await client.options(
        "/api/search",
        headers={"Origin": "http://player.example", "Access-Control-Request-Method": "POST"},
    )

    assert res.status_code == 200
    assert "POST" in res.headers["access-control-allow-methods"]


@pytest.mark.asyncio
async def test_ranged_playlist_request_returns_full_rewritten_body(client):
    ranges: list[str | None] = []

    def handler(request: httpx.Request) -> httpx.Response:
        ranges.append(request.headers.get("range"))
        return httpx.Response(
            206,
            text="#EXTM3U\nseg001.ts",
            headers={"Content-Type": "application/vnd.apple.mpegurl", "Content-Range": "bytes 0-16/100"},
        )

    upstream = _install_proxy(handler)
    res = await client.get(
        "/api/proxy",
        params={"url": "https://cdn.example.com/a/index.m3u8"},
        headers={"Range": "bytes=0-16"},
    )
    await upstream.aclose()

    assert ranges == ["bytes=0-16"]
    assert res.status_code == 200
    assert "content-range" not in res.headers
    assert res.text.split("\n")[1].endswith("url=https%3A%2F%2Fcdn.example.com%2Fa%2Fseg001.ts")
