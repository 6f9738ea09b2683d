"""URL helpers shared by the proxy, the playlist rewriter and search responses."""

from __future__ import annotations

from urllib.parse import parse_qs, quote, urljoin, urlsplit

_HTTP_SCHEMES = {"http", "https"}
_MAX_UNWRAP_DEPTH = 8


def is_http_url(value: str | None) -> bool:
    """Return True for absolute http(s) URLs with a host."""
    if not value:
        return False
    try:
        parts = urlsplit(value.strip())
    except ValueError:
        return False
    return parts.scheme.lower() in _HTTP_SCHEMES and bool(parts.netloc)


def origin_of(url: str) -> str:
    """Return ``scheme://host[:port]`` for an absolute URL."""
    parts = urlsplit(url)
    if not parts.scheme or not parts.netloc:
        raise ValueError(f"URL has no origin: {url!r}")
    return f"{parts.scheme}://{parts.netloc}"


def resolve_uri(base_url: str, reference: str) -> str:
    """Resolve ``reference`` against ``base_url``.

    Raises ValueError when the reference cannot be parsed or does not resolve
    to an absolute http(s) URL.
    """
    absolute = urljoin(base_url, reference.strip())
    parts = urlsplit(absolute)
    if parts.scheme.lower() not in _HTTP_SCHEMES or not parts.hostname:
        raise ValueError(f"Cannot resolve {reference!r} against {base_url!r}")
    return absolute


def wrap_proxy_url(proxy_endpoint: str, target_url: str) -> str:
    """Return the proxy URL that fetches ``target_url``."""
    return f"{proxy_endpoint}?url={quote(target_url, safe='')}"


def unwrap_proxy_url(url: str, proxy_endpoint: str) -> str:
    """Strip any layers of this proxy's own wrapping from ``url``."""
    try:
        endpoint = urlsplit(proxy_endpoint)
    except ValueError:
        return url
    current = url
    for _ in range(_MAX_UNWRAP_DEPTH):
        try:
            parts = urlsplit(current)
        except ValueError:
            return current
        same_endpoint = (
            parts.scheme.lower() == endpoint.scheme.lower()
            and parts.netloc.lower() == endpoint.netloc.lower()
            and parts.path.rstrip("/") == endpoint.path.rstrip("/")
        )
        if not same_endpoint:
            return current
        inner = parse_qs(parts.query).get("url")
        if not inner or not inner[0]:
            return current
        current = inner[0]
    return current


def optimized_image_url(url: str | None, optimizer_url: str, *, width: int | None = None, quality: int = 80) -> str | None:
    """Route a poster image through the image optimizer (webp, cached)."""
    if not url:
        return url
    if url.startswith("/") or urlsplit(optimizer_url).netloc in url:
        return url
    bare = url.split("://", 1)[1] if "://" in url else url
    optimized = f"{optimizer_url}?url={quote(bare, safe='')}&output=webp&q={quality}&n=-1"
    if width:
        optimized = f"{optimized}&w={width}"
    return optimized
