"""Catalog client registry keyed by source family."""

from __future__ import annotations

import httpx

from vodhub.catalog.base import BaseCatalogClient
from vodhub.catalog.maccms_json import MacCMSJsonClient
from vodhub.catalog.maccms_xml import MacCMSXmlClient

_FAMILIES: dict[str, type[BaseCatalogClient]] = {
    MacCMSJsonClient.family: MacCMSJsonClient,
    MacCMSXmlClient.family: MacCMSXmlClient,
}


def get_catalog_client(family: str, client: httpx.AsyncClient, *, retry_attempts: int = 2) -> BaseCatalogClient:
    """Return a catalog client for the given source family."""
    key = family.lower()
    if key not in _FAMILIES:
        raise ValueError(f"Unsupported source family {family}")
    return _FAMILIES[key](client, retry_attempts=retry_attempts)
