"""Media proxy retry policy, spoofed identity and response shaping."""

from __future__ import annotations

import httpx
import pytest

from vodhub.core.config import Settings
from vodhub.services.proxy_service import (
    CORS_HEADERS,
    MediaProxy,
    ProxyRequest,
    ProxyUpstreamError,
    SpoofProfile,
    is_playlist,
    passthrough_headers,
)
from vodhub.tests.utils import mock_client

PROXY = "http://proxy.local/api/proxy"
PROFILE = SpoofProfile(enabled=True, user_agent="TestAgent/1.0", client_ip="202.108.22.5", send_referer=True)


def _proxy(client: httpx.AsyncClient, **kwargs) -> MediaProxy:
    kwargs.setdefault("backoff_seconds", 0)
    return MediaProxy(client, profile=PROFILE, **kwargs)


@pytest.mark.asyncio
async def test_proxy_retries_503_then_succeeds() -> None:
    calls: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        if len(calls) < 3:
            return httpx.Response(503)
        return httpx.Response(200, content=b"segment-bytes", headers={"Content-Type": "video/mp2t"})

    async with mock_client(handler) as client:
        proxied = await _proxy(client).fetch(ProxyRequest("https://media.example.com/v/seg1.ts"), PROXY)
        body = b"".join([chunk async for chunk in proxied.stream])
        await proxied.aclose()

    assert len(calls) == 3
    assert proxied.status_code == 200
    assert proxied.attempts == 3
    assert body == b"segment-bytes"


@pytest.mark.asyncio
async def test_proxy_gives_up_after_retry_budget() -> None:
    calls = 0

    def handler(request: httpx.Request) -> httpx.Response:
        nonlocal calls
        calls += 1
        return httpx.Response(503)

    async with mock_client(handler) as client:
        with pytest.raises(ProxyUpstreamError) as excinfo:
            await _proxy(client, retry_budget=5).fetch(
                ProxyRequest("https://media.example.com/v/seg1.ts", retry_budget=5), PROXY
            )

    assert calls == 5
    assert excinfo.value.status_code == 503
    assert excinfo.value.attempts == 5
    assert excinfo.value.url == "https://media.example.com/v/seg1.ts"


@pytest.mark.asyncio
async def test_proxy_does_not_retry_other_failures() -> None:
    calls = 0

    def handler(request: httpx.Request) -> httpx.Response:
        nonlocal calls
        calls += 1
        return httpx.Response(404)

    async with mock_client(handler) as client:
        with pytest.raises(ProxyUpstreamError) as excinfo:
            await _proxy(client).fetch(ProxyRequest("https://media.example.com/missing.ts"), PROXY)

    assert calls == 1
    assert excinfo.value.status_code == 404


@pytest.mark.asyncio
async def test_proxy_retries_transport_errors_until_last_attempt() -> None:
    calls = 0

    def handler(request: httpx.Request) -> httpx.Response:
        nonlocal calls
        calls += 1
        raise httpx.ConnectError("connection reset", request=request)

    async with mock_client(handler) as client:
        with pytest.raises(ProxyUpstreamError) as excinfo:
            await _proxy(client, retry_budget=3).fetch(
                ProxyRequest("https://media.example.com/seg.ts", retry_budget=3), PROXY
            )

    assert calls == 3
    assert "ConnectError" in excinfo.value.message


@pytest.mark.asyncio
async def test_proxy_sends_spoofed_identity_headers() -> None:
    seen: dict[str, str] = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen.update(request.headers)
        return httpx.Response(200, content=b"x")

    async with mock_client(handler) as client:
        proxied = await _proxy(client).fetch(
            ProxyRequest("https://media.example.com:8443/path/seg.ts?x=1", range_header="bytes=0-99"), PROXY
        )
        await proxied.aclose()

    assert seen["user-agent"] == "TestAgent/1.0"
    assert seen["x-forwarded-for"] == "202.108.22.5"
    assert seen["client-ip"] == "202.108.22.5"
    assert seen["referer"] == "https://media.example.com:8443"
    assert seen["range"] == "bytes=0-99"


def test_disabled_profile_sends_no_identity_headers() -> None:
    assert SpoofProfile(enabled=False, user_agent="x", client_ip="1.2.3.4").headers_for("https://a.example.com/") == {}


def test_profile_from_settings_uses_configured_ip() -> None:
    configured = Settings(spoof_client_ip="8.8.8.8", spoof_referer=False)

    headers = SpoofProfile.from_settings(configured).headers_for("https://a.example.com/x.ts")

    assert headers["X-Forwarded-For"] == "8.8.8.8"
    assert "Referer" not in headers


@pytest.mark.asyncio
async def test_playlist_is_rewritten_with_fetch_url_as_base() -> None:
    playlist = '#EXTM3U\n#EXT-X-KEY:METHOD=AES-128,URI="key.key"\n#EXTINF:4,\n0001.ts\n#EXT-X-ENDLIST'

    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(
            200,
            text=playlist,
            headers={"Content-Type": "application/vnd.apple.mpegurl", "Content-Length": str(len(playlist))},
        )

    async with mock_client(handler) as client:
        proxied = await _proxy(client).fetch(ProxyRequest("https://cdn.example.com/hls/v1/index.m3u8"), PROXY)

    assert proxied.is_playlist
    assert proxied.headers["Content-Type"] == "application/vnd.apple.mpegurl"
    assert proxied.headers["Access-Control-Allow-Origin"] == "*"
    lines = proxied.body.split("\n")
    assert len(lines) == len(playlist.split("\n"))
    assert lines[3] == f"{PROXY}?url=https%3A%2F%2Fcdn.example.com%2Fhls%2Fv1%2F0001.ts"
    assert "https%3A%2F%2Fcdn.example.com%2Fhls%2Fv1%2Fkey.key" in lines[1]


@pytest.mark.asyncio
async def test_m3u8_suffix_triggers_rewrite_without_content_type() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, content=b"#EXTM3U\nseg.ts", headers={"Content-Type": "text/plain"})

    async with mock_client(handler) as client:
        proxied = await _proxy(client).fetch(ProxyRequest("https://cdn.example.com/x/index.m3u8?sign=1"), PROXY)

    assert proxied.is_playlist
    assert proxied.body.split("\n")[1] == f"{PROXY}?url=https%3A%2F%2Fcdn.example.com%2Fx%2Fseg.ts"


@pytest.mark.asyncio
async def test_passthrough_filters_framing_headers_and_adds_cors() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(
            206,
            content=b"partial",
            headers={
                "Content-Type": "video/mp4",
                "Content-Range": "bytes 0-6/100",
                "Connection": "keep-alive",
                "X-Upstream": "cdn-1",
            },
        )

    async with mock_client(handler) as client:
        proxied = await _proxy(client).fetch(ProxyRequest("https://cdn.example.com/movie.mp4"), PROXY)
        await proxied.aclose()

    lowered = {name.lower(): value for name, value in proxied.headers.items()}
    assert proxied.status_code == 206
    assert not proxied.is_playlist
    assert lowered["content-type"] == "video/mp4"
    assert lowered["content-range"] == "bytes 0-6/100"
    assert lowered["x-upstream"] == "cdn-1"
    assert "content-length" not in lowered
    assert "connection" not in lowered
    for name, value in CORS_HEADERS.items():
        assert proxied.headers[name] == value


def test_passthrough_headers_drop_encoding_and_hop_by_hop() -> None:
    upstream = httpx.Headers(
        {
            "Content-Encoding": "gzip",
            "Transfer-Encoding": "chunked",
            "Content-Length": "10",
            "Keep-Alive": "timeout=5",
            "Cache-Control": "max-age=60",
        }
    )

    headers = passthrough_headers(upstream)

    assert {name.lower() for name in headers} == {
        "cache-control",
        "access-control-allow-origin",
        "access-control-allow-methods",
        "access-control-allow-headers",
    }


def test_playlist_classification() -> None:
    assert is_playlist("https://a.example.com/x", "application/x-mpegURL")
    assert is_playlist("https://a.example.com/x", "application/vnd.apple.mpegurl; charset=utf-8")
    assert is_playlist("https://a.example.com/x/index.m3u8?token=1", None)
    assert not is_playlist("https://a.example.com/x/seg.ts", "video/mp2t")


@pytest.mark.asyncio
async def test_rewritten_playlist_is_never_partial_content() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(206, text="#EXTM3U\nseg.ts", headers={"Content-Type": "application/x-mpegURL"})

    async with mock_client(handler) as client:
        proxied = await _proxy(client).fetch(
            ProxyRequest("https://cdn.example.com/x/index.m3u8", range_header="bytes=0-10"), PROXY
        )

    assert proxied.is_playlist
    assert proxied.status_code == 200
    assert "Content-Range" not in proxied.headers
