"""Shared helpers for API and service tests."""

from __future__ import annotations

import json
from typing import Any, Awaitable, Callable

import httpx

from vodhub.catalog.base import CandidateVideo
from vodhub.catalog.registry import SourceDescriptor, SourceRegistry

Handler = Callable[[httpx.Request], httpx.Response | Awaitable[httpx.Response]]


def mock_client(handler: Handler) -> httpx.AsyncClient:
    """AsyncClient whose requests are answered by ``handler``."""
    return httpx.AsyncClient(transport=httpx.MockTransport(handler), follow_redirects=True)


def make_source(source_id: str, *, priority: int = 0, family: str = "maccms_json", enabled: bool = True) -> SourceDescriptor:
    suffix = "/at/xml" if family == "maccms_xml" else ""
    return SourceDescriptor(
        id=source_id,
        name=f"Source {source_id}",
        base_endpoint=f"https://{source_id}.example.com/api.php/provide/vod{suffix}",
        enabled=enabled,
        priority=priority,
        family=family,
    )


def make_registry(*sources: SourceDescriptor) -> SourceRegistry:
    return SourceRegistry.from_descriptors(sources)


def vod_item(video_id: int, title: str, play_url: str, **extra: Any) -> dict[str, Any]:
    item = {
        "vod_id": video_id,
        "vod_name": title,
        "vod_pic": f"https://img.example.com/{video_id}.jpg",
        "vod_remarks": "HD",
        "type_name": "Movie",
        "vod_year": "2023",
        "vod_play_from": "m3u8",
        "vod_play_url": play_url,
    }
    item.update(extra)
    return item


def vod_payload(*items: dict[str, Any]) -> dict[str, Any]:
    return {"code": 1, "msg": "ok", "page": 1, "pagecount": 1, "total": len(items), "list": list(items)}


def make_candidate(source_id: str, video_id: str, url: str | None = None) -> CandidateVideo:
    play_urls = (url,) if url else ()
    return CandidateVideo(id=video_id, title=f"Video {video_id}", source_id=source_id, play_urls=play_urls)


def parse_sse(body: str) -> list[dict[str, Any]]:
    """Decode ``data:`` frames from a server-sent event body."""
    events: list[dict[str, Any]] = []
    for frame in body.split("\n\n"):
        frame = frame.strip()
        if frame.startswith("data: "):
            events.append(json.loads(frame[len("data: "):]))
    return events
