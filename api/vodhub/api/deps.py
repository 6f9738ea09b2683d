"""Dependency providers for routes: registry snapshot, outbound clients and services."""

from __future__ import annotations

import asyncio
from functools import lru_cache

import httpx
from fastapi import Depends

from vodhub.catalog.observability import source_monitor
from vodhub.catalog.registry import SourceRegistry, load_registry
from vodhub.core.config import settings
from vodhub.services.availability_service import AvailabilityChecker
from vodhub.services.proxy_service import MediaProxy, build_proxy_client
from vodhub.services.search_service import SearchAggregator

_clients: dict[str, httpx.AsyncClient] = {}
_clients_lock = asyncio.Lock()


async def _get_client(name: str) -> httpx.AsyncClient:
    async with _clients_lock:
        client = _clients.get(name)
        if client is None or client.is_closed:
            if name == "proxy":
                client = build_proxy_client(settings)
            else:
                client = httpx.AsyncClient(
                    timeout=settings.search_timeout_seconds,
                    follow_redirects=True,
                    headers={"User-Agent": settings.spoof_user_agent},
                )
            _clients[name] = client
    return client


async def close_clients() -> None:
    """Close every outbound client; called on application shutdown."""
    async with _clients_lock:
        clients = list(_clients.values())
        _clients.clear()
    for client in clients:
        await client.aclose()


@lru_cache
def get_source_registry() -> SourceRegistry:
    return load_registry(settings.sources_file)


async def get_catalog_http() -> httpx.AsyncClient:
    return await _get_client("catalog")


async def get_proxy_http() -> httpx.AsyncClient:
    return await _get_client("proxy")


async def get_availability_checker(
    client: httpx.AsyncClient = Depends(get_catalog_http),
) -> AvailabilityChecker:
    return AvailabilityChecker(
        client,
        concurrency=settings.availability_concurrency,
        timeout_seconds=settings.availability_timeout_seconds,
    )


async def get_search_aggregator(
    registry: SourceRegistry = Depends(get_source_registry),
    client: httpx.AsyncClient = Depends(get_catalog_http),
    checker: AvailabilityChecker = Depends(get_availability_checker),
) -> SearchAggregator:
    return SearchAggregator(
        registry,
        client,
        monitor=source_monitor,
        checker=checker,
        timeout_seconds=settings.search_timeout_seconds,
        retry_attempts=settings.search_retry_attempts,
        optimizer_url=settings.image_optimizer_url if settings.optimize_posters else None,
    )


async def get_media_proxy(client: httpx.AsyncClient = Depends(get_proxy_http)) -> MediaProxy:
    return MediaProxy.from_settings(client, settings)
