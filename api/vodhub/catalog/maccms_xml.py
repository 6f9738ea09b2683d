from __future__ import annotations

import xml.etree.ElementTree as ET

from vodhub.catalog.base import BaseCatalogClient, CandidateVideo
from vodhub.catalog.episodes import GROUP_SEPARATOR, parse_play_urls
from vodhub.catalog.http import CatalogParseError, fetch_text
from vodhub.catalog.registry import SourceDescriptor


def _child_text(element: ET.Element, tag: str) -> str | None:
    child = element.find(tag)
    if child is None or child.text is None:
        return None
    text = child.text.strip()
    return text or None


class MacCMSXmlClient(BaseCatalogClient):
    """Legacy XML flavour: ``<rss><list><video>…</video></list></rss>``."""
    family = "maccms_xml"

    def build_params(self, query: str, page: int) -> dict[str, str]:
        return {"ac": "videolist", "wd": self.normalize_query(query), "pg": str(page)}

    async def search(self, source: SourceDescriptor, query: str, page: int = 1) -> list[CandidateVideo]:
        document = await fetch_text(
            self.client,
            source.base_endpoint,
            params=self.build_params(query, page),
            attempts=self.retry_attempts,
        )
        return self.parse_document(source, document)

    def parse_document(self, source: SourceDescriptor, document: str) -> list[CandidateVideo]:
        try:
            root = ET.fromstring(document.lstrip("\ufeff").strip())
        except ET.ParseError as exc:
            raise CatalogParseError(f"Invalid XML payload: {exc}") from exc
        candidates: list[CandidateVideo] = []
        for video in root.iter("video"):
            video_id = _child_text(video, "id")
            title = _child_text(video, "name")
            if not video_id or not title:
                continue
            flags: list[str] = []
            groups: list[str] = []
            for dd in video.iterfind("dl/dd"):
                flags.append(dd.get("flag", ""))
                groups.append((dd.text or "").strip())
            names, urls = parse_play_urls(GROUP_SEPARATOR.join(flags), GROUP_SEPARATOR.join(groups))
            candidates.append(
                CandidateVideo(
                    id=video_id,
                    title=title,
                    source_id=source.id,
                    source_name=source.name,
                    play_urls=urls,
                    episode_names=names,
                    poster_url=_child_text(video, "pic"),
                    remarks=_child_text(video, "note"),
                    category_name=_child_text(video, "type"),
                    year=_child_text(video, "year"),
                )
            )
        return candidates
