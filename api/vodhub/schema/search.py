"""Search request/response schemas and streaming event payloads."""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    """Base model that serializes with camelCase wire names."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class SearchRequest(CamelModel):
    """Aggregated search payload; validated by the search service."""
    query: str | None = None
    sources: list[str] | None = None
    page: int = 1
    check_availability: bool | None = None


class CandidateVideoRead(CamelModel):
    """Candidate video as returned to clients."""
    id: str
    title: str
    poster_url: str | None = None
    remarks: str | None = None
    category_name: str | None = None
    source_id: str
    source_name: str | None = None
    play_urls: list[str] = []
    episode_names: list[str] = []
    year: str | None = None


class SourceResultGroup(CamelModel):
    """Confirmed candidates for one source."""
    results: list[CandidateVideoRead]
    source: str
    response_time: float | None = None


class SourceStat(CamelModel):
    """Per-source counts recomputed from the filtered result set."""
    source_id: str
    source_name: str
    count: int
    error: str | None = None


class SearchResponse(CamelModel):
    success: bool = True
    query: str
    page: int
    sources: list[SourceResultGroup]
    total_results: int
    source_stats: list[SourceStat]


class SearchErrorResponse(CamelModel):
    success: bool = False
    error: str


class SourceRead(CamelModel):
    id: str
    name: str
    base_endpoint: str
    enabled: bool
    priority: int
    family: str


class SourceListResponse(CamelModel):
    version: str
    sources: list[SourceRead]


class StartEvent(CamelModel):
    type: Literal["start"] = "start"
    total_sources: int


class VideosEvent(CamelModel):
    type: Literal["videos"] = "videos"
    videos: list[CandidateVideoRead]
    source: str
    completed_sources: int
    total_sources: int


class ProgressEvent(CamelModel):
    type: Literal["progress"] = "progress"
    completed_sources: int
    total_sources: int
    total_videos_found: int


class CompleteEvent(CamelModel):
    type: Literal["complete"] = "complete"
    total_videos_found: int
    total_sources: int


class ErrorEvent(CamelModel):
    type: Literal["error"] = "error"
    message: str


SearchEvent = StartEvent | VideosEvent | ProgressEvent | CompleteEvent | ErrorEvent
