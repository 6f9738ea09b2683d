"""Media proxy endpoint used by players for playlists, segments and keys."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query, Request, Response, status
from fastapi.responses import JSONResponse, PlainTextResponse, StreamingResponse
from starlette.background import BackgroundTask

from vodhub.api.deps import get_media_proxy
from vodhub.core.config import settings
from vodhub.services.proxy_service import CORS_HEADERS, MediaProxy, ProxyRequest, ProxyUpstreamError
from vodhub.utils.urls import is_http_url, unwrap_proxy_url

router = APIRouter()


def proxy_endpoint(request: Request) -> str:
    """Absolute URL of this endpoint as players must see it."""
    endpoint = request.url_for("proxy_media")
    if settings.proxy_public_origin:
        return f"{settings.proxy_public_origin}{endpoint.path}"
    return str(endpoint)


@router.get("", name="proxy_media")
async def proxy_media(
    request: Request,
    url: str | None = Query(default=None),
    media_proxy: MediaProxy = Depends(get_media_proxy),
) -> Response:
    """Fetch ``url`` upstream; rewrite playlists, stream everything else."""
    if not url or not url.strip():
        return PlainTextResponse("Missing URL parameter", status_code=status.HTTP_400_BAD_REQUEST, headers=CORS_HEADERS)
    endpoint = proxy_endpoint(request)
    target = unwrap_proxy_url(url.strip(), endpoint)
    if not is_http_url(target):
        return PlainTextResponse("Invalid URL parameter", status_code=status.HTTP_400_BAD_REQUEST, headers=CORS_HEADERS)

    proxy_request = ProxyRequest(
        target_url=target,
        retry_budget=media_proxy.retry_budget,
        range_header=request.headers.get("range"),
    )
    try:
        proxied = await media_proxy.fetch(proxy_request, endpoint)
    except ProxyUpstreamError as exc:
        return JSONResponse(
            {"error": "Proxy failed", "message": exc.message, "url": exc.url},
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            headers=CORS_HEADERS,
        )

    if proxied.is_playlist:
        return Response(content=proxied.body, status_code=proxied.status_code, headers=proxied.headers)
    return StreamingResponse(
        proxied.stream,
        status_code=proxied.status_code,
        headers=proxied.headers,
        background=BackgroundTask(proxied.aclose),
    )


@router.options("")
async def proxy_preflight() -> Response:
    return Response(status_code=status.HTTP_204_NO_CONTENT, headers=CORS_HEADERS)
