"""Parallel search aggregation across catalog sources.

Invariants:
- Every resolved source is queried concurrently and yields exactly one outcome.
- A source failure is recorded on its outcome and never aborts the run.
- A run completes when completed_count == total_count.
- Invalid input is rejected before any network call.
"""

from __future__ import annotations

import asyncio
import enum
import logging
from dataclasses import dataclass, field
from time import monotonic
from typing import AsyncIterator, Iterable, Sequence

import httpx

from vodhub.catalog import get_catalog_client
from vodhub.catalog.base import CandidateVideo
from vodhub.catalog.observability import SourceMonitor
from vodhub.catalog.registry import SourceDescriptor, SourceRegistry
from vodhub.schema.search import (
    CandidateVideoRead,
    CompleteEvent,
    ProgressEvent,
    SearchEvent,
    SearchResponse,
    SourceResultGroup,
    SourceStat,
    StartEvent,
    VideosEvent,
)
from vodhub.services.availability_service import AvailabilityChecker
from vodhub.utils.urls import optimized_image_url

logger = logging.getLogger("vodhub.search")


class InvalidSearchInput(ValueError):
    """Raised when a search request is rejected before any I/O."""


class RunState(str, enum.Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETE = "complete"


@dataclass(slots=True, frozen=True)
class SearchQuery:
    text: str
    page: int
    source_ids: tuple[str, ...]


@dataclass(slots=True)
class SourceSearchOutcome:
    source_id: str
    candidates: list[CandidateVideo] = field(default_factory=list)
    response_time_ms: float = 0.0
    error: str | None = None

    @property
    def succeeded(self) -> bool:
        return self.error is None


@dataclass(slots=True)
class AggregationRun:
    query: SearchQuery
    registry_version: str
    sources: list[SourceDescriptor]
    outcomes: dict[str, SourceSearchOutcome] = field(default_factory=dict)
    completed_count: int = 0
    state: RunState = RunState.PENDING

    @property
    def total_count(self) -> int:
        return len(self.sources)

    def record(self, outcome: SourceSearchOutcome) -> None:
        self.outcomes[outcome.source_id] = outcome
        self.completed_count += 1
        if self.completed_count == self.total_count:
            self.state = RunState.COMPLETE

    def all_candidates(self) -> list[CandidateVideo]:
        """Union of every outcome's candidates, per-source order preserved."""
        merged: list[CandidateVideo] = []
        for source in self.sources:
            outcome = self.outcomes.get(source.id)
            if outcome:
                merged.extend(outcome.candidates)
        return merged


def build_search_query(text: str | None, source_ids: Iterable[str] | None, page: int | None = 1) -> SearchQuery:
    """Validate raw input and collapse duplicate source ids."""
    if not isinstance(text, str) or not text.strip():
        raise InvalidSearchInput("Invalid or missing query parameter")
    ids: list[str] = []
    for source_id in source_ids or []:
        if not isinstance(source_id, str):
            continue
        normalized = source_id.strip()
        if normalized and normalized not in ids:
            ids.append(normalized)
    if not ids:
        raise InvalidSearchInput("At least one source must be specified")
    resolved_page = 1 if page is None else page
    if resolved_page < 1:
        raise InvalidSearchInput("page must be a positive integer")
    return SearchQuery(text=text.strip(), page=resolved_page, source_ids=tuple(ids))


def candidate_to_read(candidate: CandidateVideo, *, optimizer_url: str | None = None) -> CandidateVideoRead:
    poster = candidate.poster_url
    if optimizer_url:
        poster = optimized_image_url(poster, optimizer_url)
    return CandidateVideoRead(
        id=candidate.id,
        title=candidate.title,
        poster_url=poster,
        remarks=candidate.remarks,
        category_name=candidate.category_name,
        source_id=candidate.source_id,
        source_name=candidate.source_name,
        play_urls=list(candidate.play_urls),
        episode_names=list(candidate.episode_names),
        year=candidate.year,
    )


class SearchAggregator:
    """Fan a query out to every selected source and merge the outcomes."""

    def __init__(
        self,
        registry: SourceRegistry,
        client: httpx.AsyncClient,
        *,
        monitor: SourceMonitor,
        checker: AvailabilityChecker | None = None,
        timeout_seconds: float = 8.0,
        retry_attempts: int = 2,
        optimizer_url: str | None = None,
    ) -> None:
        self.registry = registry
        self.client = client
        self.monitor = monitor
        self.checker = checker
        self.timeout_seconds = timeout_seconds
        self.retry_attempts = retry_attempts
        self.optimizer_url = optimizer_url

    def resolve_sources(self, query: SearchQuery) -> list[SourceDescriptor]:
        sources = self.registry.resolve(query.source_ids)
        if not sources:
            raise InvalidSearchInput("No valid sources found")
        return sources

    def to_read(self, candidate: CandidateVideo) -> CandidateVideoRead:
        return candidate_to_read(candidate, optimizer_url=self.optimizer_url)

    async def search_source(self, source: SourceDescriptor, query: SearchQuery) -> SourceSearchOutcome:
        """Query one source; failures become an outcome, never an exception."""
        start = monotonic()
        try:
            catalog = get_catalog_client(source.family, self.client, retry_attempts=self.retry_attempts)
            candidates = await self.monitor.track(
                source.id,
                lambda: catalog.search(source, query.text, query.page),
                timeout_seconds=self.timeout_seconds,
                context={"query": query.text, "page": query.page},
            )
        except asyncio.TimeoutError:
            error = f"timed out after {self.timeout_seconds:g}s"
        except Exception as exc:  # noqa: BLE001
            error = str(exc) or exc.__class__.__name__
        else:
            return SourceSearchOutcome(
                source_id=source.id,
                candidates=list(candidates),
                response_time_ms=round((monotonic() - start) * 1000, 2),
            )
        return SourceSearchOutcome(
            source_id=source.id,
            response_time_ms=round((monotonic() - start) * 1000, 2),
            error=error,
        )

    async def run(self, query: SearchQuery, *, check_availability: bool = False) -> tuple[AggregationRun, list[CandidateVideo]]:
        """Batch mode: wait for every source, then optionally filter by availability.

        Returns the completed run and the (possibly filtered) candidate list.
        """
        sources = self.resolve_sources(query)
        run = AggregationRun(query=query, registry_version=self.registry.version, sources=sources)
        run.state = RunState.RUNNING
        logger.info(
            "Searching %r across %d source(s) (registry %s)", query.text, run.total_count, run.registry_version
        )
        outcomes = await asyncio.gather(*(self.search_source(source, query) for source in sources))
        for outcome in outcomes:
            run.record(outcome)

        candidates = run.all_candidates()
        if check_availability and self.checker is not None:
            candidates = await self.checker.check_many(candidates)
        failed = sum(1 for outcome in outcomes if not outcome.succeeded)
        logger.info(
            "Search %r complete: %d candidate(s), %d/%d source(s) failed",
            query.text,
            len(candidates),
            failed,
            run.total_count,
        )
        return run, candidates

    def build_batch_response(self, run: AggregationRun, available: Sequence[CandidateVideo]) -> SearchResponse:
        """Regroup survivors by source and recompute per-source counts."""
        by_source: dict[str, list[CandidateVideo]] = {}
        for candidate in available:
            by_source.setdefault(candidate.source_id, []).append(candidate)

        groups: list[SourceResultGroup] = []
        stats: list[SourceStat] = []
        for source in sorted(run.sources, key=lambda s: s.priority):
            outcome = run.outcomes.get(source.id)
            survivors = by_source.get(source.id, [])
            stats.append(
                SourceStat(
                    source_id=source.id,
                    source_name=source.name,
                    count=len(survivors),
                    error=outcome.error if outcome else None,
                )
            )
            if survivors:
                groups.append(
                    SourceResultGroup(
                        results=[self.to_read(candidate) for candidate in survivors],
                        source=source.id,
                        response_time=outcome.response_time_ms if outcome else None,
                    )
                )
        return SearchResponse(
            success=True,
            query=run.query.text,
            page=run.query.page,
            sources=groups,
            total_results=len(available),
            source_stats=stats,
        )

    async def stream(self, query: SearchQuery) -> AsyncIterator[SearchEvent]:
        """Streaming mode: yield events as each source resolves.

        The generator is the only writer of the run counters. Closing it
        cancels any source query still in flight.
        """
        sources = self.resolve_sources(query)
        run = AggregationRun(query=query, registry_version=self.registry.version, sources=sources)
        run.state = RunState.RUNNING
        total_videos = 0
        yield StartEvent(total_sources=run.total_count)

        tasks = [asyncio.create_task(self.search_source(source, query)) for source in sources]
        try:
            for next_done in asyncio.as_completed(tasks):
                outcome = await next_done
                run.record(outcome)
                total_videos += len(outcome.candidates)
                if outcome.candidates:
                    yield VideosEvent(
                        videos=[self.to_read(candidate) for candidate in outcome.candidates],
                        source=outcome.source_id,
                        completed_sources=run.completed_count,
                        total_sources=run.total_count,
                    )
                yield ProgressEvent(
                    completed_sources=run.completed_count,
                    total_sources=run.total_count,
                    total_videos_found=total_videos,
                )
        finally:
            for task in tasks:
                if not task.done():
                    task.cancel()

        logger.info(
            "Streaming search %r complete: %d video(s) from %d/%d source(s)",
            query.text,
            total_videos,
            run.completed_count,
            run.total_count,
        )
        yield CompleteEvent(total_videos_found=total_videos, total_sources=run.total_count)
