"""Service-layer helpers for API operations."""

from . import availability_service, playlist, proxy_service, search_service

__all__ = [
    "availability_service",
    "playlist",
    "proxy_service",
    "search_service",
]
