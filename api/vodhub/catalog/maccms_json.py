from __future__ import annotations

from typing import Any

from vodhub.catalog.base import BaseCatalogClient, CandidateVideo
from vodhub.catalog.episodes import parse_play_urls
from vodhub.catalog.http import CatalogParseError, fetch_json
from vodhub.catalog.registry import SourceDescriptor


def _text(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


class MacCMSJsonClient(BaseCatalogClient):
    family = "maccms_json"

    def build_params(self, query: str, page: int) -> dict[str, str]:
        return {"ac": "videolist", "wd": self.normalize_query(query), "pg": str(page)}

    async def search(self, source: SourceDescriptor, query: str, page: int = 1) -> list[CandidateVideo]:
        payload = await fetch_json(
            self.client,
            source.base_endpoint,
            params=self.build_params(query, page),
            attempts=self.retry_attempts,
        )
        return self.parse_payload(source, payload)

    def parse_payload(self, source: SourceDescriptor, payload: Any) -> list[CandidateVideo]:
        if not isinstance(payload, dict):
            raise CatalogParseError("Expected a JSON object")
        items = payload.get("list")
        if items is None:
            return []
        if not isinstance(items, list):
            raise CatalogParseError("Expected 'list' to be an array")
        candidates: list[CandidateVideo] = []
        for item in items:
            if not isinstance(item, dict):
                continue
            video_id = _text(item.get("vod_id"))
            title = _text(item.get("vod_name"))
            if not video_id or not title:
                continue
            names, urls = parse_play_urls(_text(item.get("vod_play_from")), _text(item.get("vod_play_url")))
            candidates.append(
                CandidateVideo(
                    id=video_id,
                    title=title,
                    source_id=source.id,
                    source_name=source.name,
                    play_urls=urls,
                    episode_names=names,
                    poster_url=_text(item.get("vod_pic")),
                    remarks=_text(item.get("vod_remarks")),
                    category_name=_text(item.get("type_name")),
                    year=_text(item.get("vod_year")),
                )
            )
        return candidates
