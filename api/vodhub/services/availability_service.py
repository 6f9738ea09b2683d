"""Reachability probing for candidate videos under bounded concurrency.

Invariants:
- At most ``concurrency_limit`` checks are in flight at any instant.
- A failed, slow or non-2xx check drops the candidate; nothing is retried.
- The retained set depends only on check outcomes, never on completion order.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Sequence
from urllib.parse import urlsplit

import httpx

from vodhub.catalog.base import CandidateVideo
from vodhub.utils.redaction import loggable_url

logger = logging.getLogger("vodhub.availability")

DEFAULT_CONCURRENCY = 8
CHECK_RANGE = "bytes=0-1023"


def _is_playlist_url(url: str) -> bool:
    return urlsplit(url).path.lower().endswith(".m3u8")


class AvailabilityChecker:
    """Filter candidates down to the ones whose first episode responds."""

    def __init__(
        self,
        client: httpx.AsyncClient,
        *,
        concurrency: int = DEFAULT_CONCURRENCY,
        timeout_seconds: float = 5.0,
    ) -> None:
        self.client = client
        self.concurrency = concurrency
        self.timeout_seconds = timeout_seconds
        self.in_flight = 0
        self.peak_in_flight = 0

    async def check(self, candidate: CandidateVideo) -> bool:
        """Return True when the candidate's first play URL is reachable."""
        url = candidate.primary_url
        if not url:
            return False
        try:
            return await asyncio.wait_for(self._check_url(url), timeout=self.timeout_seconds)
        except (httpx.HTTPError, httpx.InvalidURL, asyncio.TimeoutError, ValueError) as exc:
            logger.debug(
                "Availability check failed for %s/%s at %s: %s",
                candidate.source_id,
                candidate.id,
                loggable_url(url),
                exc.__class__.__name__,
            )
            return False

    async def _check_url(self, url: str) -> bool:
        if _is_playlist_url(url):
            response = await self.client.get(url)
            return response.is_success
        request = self.client.build_request("GET", url, headers={"Range": CHECK_RANGE})
        response = await self.client.send(request, stream=True)
        try:
            return response.is_success
        finally:
            await response.aclose()

    async def _guarded_check(self, semaphore: asyncio.Semaphore, candidate: CandidateVideo) -> bool:
        async with semaphore:
            self.in_flight += 1
            self.peak_in_flight = max(self.peak_in_flight, self.in_flight)
            try:
                return await self.check(candidate)
            finally:
                self.in_flight -= 1

    async def check_many(
        self, candidates: Sequence[CandidateVideo], concurrency_limit: int | None = None
    ) -> list[CandidateVideo]:
        """Return the candidates confirmed playable, in input order."""
        if not candidates:
            return []
        limit = max(1, concurrency_limit or self.concurrency)
        semaphore = asyncio.Semaphore(limit)
        outcomes = await asyncio.gather(
            *(self._guarded_check(semaphore, candidate) for candidate in candidates)
        )
        available = [candidate for candidate, ok in zip(candidates, outcomes) if ok]
        logger.info(
            "Availability check kept %d of %d candidate(s) (limit %d)",
            len(available),
            len(candidates),
            limit,
        )
        return available
