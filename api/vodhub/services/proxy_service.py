"""Streaming media proxy with identity spoofing, retry and playlist rewriting.

Invariants:
- Attempts for one request are strictly sequential and bounded by the retry budget.
- Only 503 responses and transport errors are retried; other statuses fail at once.
- A failed request yields a ProxyUpstreamError and never a partial body.
- A rewritten playlist is always a complete 200 body, even when upstream honoured a Range.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from typing import AsyncIterator
from urllib.parse import urlsplit

import httpx
from tenacity import AsyncRetrying, RetryCallState, retry_if_exception_type, stop_after_attempt, wait_fixed

from vodhub.core.config import Settings
from vodhub.services.playlist import rewrite_playlist
from vodhub.utils.redaction import loggable_url
from vodhub.utils.urls import origin_of

logger = logging.getLogger("vodhub.proxy")

DEFAULT_RETRY_BUDGET = 5
DEFAULT_BACKOFF_SECONDS = 0.1
DEFAULT_PLAYLIST_CONTENT_TYPE = "application/vnd.apple.mpegurl"

CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Methods": "GET, OPTIONS",
    "Access-Control-Allow-Headers": "Content-Type, Authorization",
}

EXCLUDED_RESPONSE_HEADERS = {
    "connection",
    "keep-alive",
    "proxy-authenticate",
    "proxy-authorization",
    "te",
    "trailer",
    "trailers",
    "transfer-encoding",
    "upgrade",
    "content-length",
    "content-encoding",
}


class ProxyUpstreamError(Exception):
    """Raised when the upstream media request cannot be satisfied."""

    def __init__(self, url: str, message: str, *, status_code: int | None = None, attempts: int = 0) -> None:
        super().__init__(message)
        self.url = url
        self.message = message
        self.status_code = status_code
        self.attempts = attempts


class UpstreamUnavailable(Exception):
    """Transient 503 from the upstream host."""


@dataclass(slots=True, frozen=True)
class SpoofProfile:
    """Client identity presented to upstream media hosts."""
    enabled: bool = True
    user_agent: str = ""
    client_ip: str | None = None
    send_referer: bool = True

    @classmethod
    def from_settings(cls, settings: Settings) -> "SpoofProfile":
        return cls(
            enabled=settings.spoof_enabled,
            user_agent=settings.spoof_user_agent,
            client_ip=settings.spoof_client_ip,
            send_referer=settings.spoof_referer,
        )

    def headers_for(self, url: str) -> dict[str, str]:
        if not self.enabled:
            return {}
        headers: dict[str, str] = {}
        if self.user_agent:
            headers["User-Agent"] = self.user_agent
        if self.client_ip:
            headers["X-Forwarded-For"] = self.client_ip
            headers["Client-IP"] = self.client_ip
        if self.send_referer:
            try:
                headers["Referer"] = origin_of(url)
            except ValueError:
                pass
        return headers


@dataclass(slots=True)
class ProxyRequest:
    target_url: str
    retry_budget: int = DEFAULT_RETRY_BUDGET
    range_header: str | None = None


@dataclass(slots=True)
class ProxiedResponse:
    """Either a rewritten playlist body or a pass-through byte stream."""
    status_code: int
    headers: dict[str, str]
    body: str | None = None
    stream: AsyncIterator[bytes] | None = None
    attempts: int = 1
    _upstream: httpx.Response | None = field(default=None, repr=False)

    @property
    def is_playlist(self) -> bool:
        return self.body is not None

    async def aclose(self) -> None:
        if self._upstream is not None:
            await self._upstream.aclose()


def is_playlist(url: str, content_type: str | None) -> bool:
    """Classify an upstream response as an HLS playlist."""
    if content_type and "mpegurl" in content_type.lower():
        return True
    try:
        path = urlsplit(url).path
    except ValueError:
        path = url
    return path.lower().endswith(".m3u8") or url.lower().endswith(".m3u8")


def passthrough_headers(upstream: httpx.Headers) -> dict[str, str]:
    headers = {
        name: value
        for name, value in upstream.items()
        if name.lower() not in EXCLUDED_RESPONSE_HEADERS
        and not name.lower().startswith("access-control-")
    }
    headers.update(CORS_HEADERS)
    return headers


def build_proxy_client(settings: Settings) -> httpx.AsyncClient:
    """Outbound client for media hosts; upstream certificates are not verified."""
    return httpx.AsyncClient(
        verify=False,
        follow_redirects=True,
        timeout=settings.proxy_timeout_seconds,
    )


class MediaProxy:
    """Fetch media through the spoofed client and shape the response."""

    def __init__(
        self,
        client: httpx.AsyncClient,
        *,
        profile: SpoofProfile | None = None,
        retry_budget: int = DEFAULT_RETRY_BUDGET,
        backoff_seconds: float = DEFAULT_BACKOFF_SECONDS,
    ) -> None:
        self.client = client
        self.profile = profile or SpoofProfile(enabled=False)
        self.retry_budget = retry_budget
        self.backoff_seconds = backoff_seconds

    @classmethod
    def from_settings(cls, client: httpx.AsyncClient, settings: Settings) -> "MediaProxy":
        return cls(
            client,
            profile=SpoofProfile.from_settings(settings),
            retry_budget=settings.proxy_retry_budget,
            backoff_seconds=settings.proxy_retry_backoff_seconds,
        )

    def upstream_headers(self, request: ProxyRequest) -> dict[str, str]:
        headers = self.profile.headers_for(request.target_url)
        if request.range_header:
            headers["Range"] = request.range_header
        return headers

    def _log_retry(self, request: ProxyRequest):
        def _before_sleep(retry_state: RetryCallState) -> None:
            exc = retry_state.outcome.exception() if retry_state.outcome else None
            payload = {
                "event": "proxy_retry",
                "url": loggable_url(request.target_url),
                "attempt": retry_state.attempt_number,
                "budget": request.retry_budget,
                "reason": str(exc) or exc.__class__.__name__ if exc else None,
            }
            logger.info(json.dumps(payload))

        return _before_sleep

    async def open_upstream(self, request: ProxyRequest) -> tuple[httpx.Response, int]:
        """Send the upstream request, retrying 503s and transport errors."""
        url = request.target_url
        headers = self.upstream_headers(request)
        attempts = 0
        try:
            async for attempt in AsyncRetrying(
                stop=stop_after_attempt(max(1, request.retry_budget)),
                wait=wait_fixed(self.backoff_seconds),
                retry=retry_if_exception_type((UpstreamUnavailable, httpx.TransportError)),
                before_sleep=self._log_retry(request),
                reraise=True,
            ):
                with attempt:
                    attempts = attempt.retry_state.attempt_number
                    outbound = self.client.build_request("GET", url, headers=headers)
                    response = await self.client.send(outbound, stream=True)
                    if response.status_code == 503:
                        await response.aclose()
                        raise UpstreamUnavailable("Upstream responded with 503")
                    if not response.is_success:
                        await response.aclose()
                        raise ProxyUpstreamError(
                            url,
                            f"Upstream responded with {response.status_code}",
                            status_code=response.status_code,
                            attempts=attempts,
                        )
                    return response, attempts
        except UpstreamUnavailable as exc:
            raise ProxyUpstreamError(
                url, f"Upstream unavailable after {attempts} attempt(s)", status_code=503, attempts=attempts
            ) from exc
        except httpx.InvalidURL as exc:
            raise ProxyUpstreamError(url, f"Invalid upstream URL: {exc}", attempts=attempts) from exc
        except httpx.HTTPError as exc:
            raise ProxyUpstreamError(
                url, f"Upstream request failed: {exc.__class__.__name__}", attempts=attempts
            ) from exc
        raise ProxyUpstreamError(url, "Upstream request was not attempted", attempts=attempts)

    async def fetch(self, request: ProxyRequest, proxy_endpoint: str) -> ProxiedResponse:
        """Fetch ``request.target_url`` and return a rewritten or streamed response."""
        try:
            response, attempts = await self.open_upstream(request)
        except ProxyUpstreamError as exc:
            payload = {
                "event": "proxy_failure",
                "url": loggable_url(exc.url),
                "message": exc.message,
                "status_code": exc.status_code,
                "attempts": exc.attempts,
            }
            logger.warning(json.dumps(payload))
            raise

        content_type = response.headers.get("content-type")
        final_url = str(response.url)
        if is_playlist(final_url, content_type) or is_playlist(request.target_url, content_type):
            try:
                await response.aread()
                text = response.text
            except httpx.HTTPError as exc:
                raise ProxyUpstreamError(
                    request.target_url,
                    f"Failed reading playlist: {exc.__class__.__name__}",
                    attempts=attempts,
                ) from exc
            finally:
                await response.aclose()
            body = rewrite_playlist(text, final_url, proxy_endpoint)
            headers = {"Content-Type": content_type or DEFAULT_PLAYLIST_CONTENT_TYPE, **CORS_HEADERS}
            logger.debug("Rewrote playlist %s (%d attempt(s))", loggable_url(final_url), attempts)
            return ProxiedResponse(
                status_code=200, headers=headers, body=body, attempts=attempts
            )

        return ProxiedResponse(
            status_code=response.status_code,
            headers=passthrough_headers(response.headers),
            stream=response.aiter_bytes(),
            attempts=attempts,
            _upstream=response,
        )
