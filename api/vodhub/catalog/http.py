from __future__ import annotations

import json
from typing import Any

import httpx
from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt, wait_exponential_jitter


class CatalogError(Exception):
    pass


class CatalogParseError(CatalogError):
    pass


class CatalogServerError(CatalogError):
    pass


async def fetch_text(
    client: httpx.AsyncClient,
    url: str,
    *,
    params: dict[str, Any] | None = None,
    headers: dict[str, str] | None = None,
    attempts: int = 2,
) -> str:
    async for attempt in AsyncRetrying(
        stop=stop_after_attempt(attempts),
        wait=wait_exponential_jitter(initial=0.2, max=1),
        retry=retry_if_exception_type((httpx.TransportError, CatalogServerError)),
        reraise=True,
    ):
        with attempt:
            response = await client.get(url, params=params, headers=headers)
            if response.status_code >= 500:
                raise CatalogServerError(f"Server error {response.status_code}")
            if not response.is_success:
                raise CatalogError(f"Unexpected status {response.status_code}")
            return response.text
    raise CatalogError("Unreachable")


async def fetch_json(
    client: httpx.AsyncClient,
    url: str,
    *,
    params: dict[str, Any] | None = None,
    headers: dict[str, str] | None = None,
    attempts: int = 2,
) -> Any:
    text = await fetch_text(client, url, params=params, headers=headers, attempts=attempts)
    try:
        return json.loads(text.lstrip("\ufeff"))
    except json.JSONDecodeError as exc:
        raise CatalogParseError(f"Invalid JSON payload: {exc}") from exc
