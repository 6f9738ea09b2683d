"""Base catalog client primitives for third-party video catalogs."""

from __future__ import annotations

from dataclasses import dataclass, field

import httpx

from vodhub.catalog.registry import SourceDescriptor


@dataclass(slots=True, frozen=True)
class CandidateVideo:
    """Normalized, unverified search hit returned by a catalog source."""
    id: str
    title: str
    source_id: str
    play_urls: tuple[str, ...] = ()
    poster_url: str | None = None
    remarks: str | None = None
    category_name: str | None = None
    source_name: str | None = None
    episode_names: tuple[str, ...] = field(default=())
    year: str | None = None

    @property
    def key(self) -> tuple[str, str]:
        return (self.source_id, self.id)

    @property
    def primary_url(self) -> str | None:
        """First-episode URL used for availability probing."""
        return self.play_urls[0] if self.play_urls else None


class BaseCatalogClient:
    """Abstract client interface for one family of catalog backends."""
    family: str

    def __init__(self, client: httpx.AsyncClient, *, retry_attempts: int = 2) -> None:
        self.client = client
        self.retry_attempts = retry_attempts

    def normalize_query(self, text: str) -> str:
        """Normalize query text before it is sent upstream."""
        return " ".join(text.split())

    async def search(self, source: SourceDescriptor, query: str, page: int = 1) -> list[CandidateVideo]:
        """Return candidates for ``query`` in upstream order."""
        raise NotImplementedError
