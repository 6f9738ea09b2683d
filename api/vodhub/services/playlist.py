"""HLS playlist parsing and proxy rewriting.

Rewriting is a 1:1 line transform: line order and count are preserved and a
line that cannot be resolved is passed through untouched.
"""

from __future__ import annotations

import enum
import re
from dataclasses import dataclass

from vodhub.utils.urls import resolve_uri, wrap_proxy_url

URI_DIRECTIVES = (
    "#EXT-X-KEY:",
    "#EXT-X-SESSION-KEY:",
    "#EXT-X-MAP:",
    "#EXT-X-MEDIA:",
    "#EXT-X-I-FRAME-STREAM-INF:",
)
_QUOTED_URI_RE = re.compile(r'URI="([^"]+)"')


class LineKind(str, enum.Enum):
    BLANK = "blank"
    DIRECTIVE = "directive"
    URI_DIRECTIVE = "uri_directive"
    MEDIA_URI = "media_uri"


@dataclass(slots=True, frozen=True)
class PlaylistLine:
    text: str
    kind: LineKind

    @property
    def uri(self) -> str | None:
        """The URI carried by this line, if any."""
        if self.kind is LineKind.MEDIA_URI:
            return self.text.strip()
        if self.kind is LineKind.URI_DIRECTIVE:
            match = _QUOTED_URI_RE.search(self.text)
            return match.group(1) if match else None
        return None


def classify_line(line: str) -> LineKind:
    stripped = line.strip()
    if not stripped:
        return LineKind.BLANK
    if stripped.startswith("#"):
        if stripped.upper().startswith(URI_DIRECTIVES) and _QUOTED_URI_RE.search(stripped):
            return LineKind.URI_DIRECTIVE
        return LineKind.DIRECTIVE
    return LineKind.MEDIA_URI


@dataclass(slots=True, frozen=True)
class PlaylistDocument:
    lines: tuple[PlaylistLine, ...]

    @classmethod
    def parse(cls, text: str) -> "PlaylistDocument":
        return cls(tuple(PlaylistLine(line, classify_line(line)) for line in text.split("\n")))

    def render(self) -> str:
        return "\n".join(line.text for line in self.lines)


def _rewrite_line(line: PlaylistLine, base_url: str, proxy_endpoint: str) -> str:
    if line.kind is LineKind.URI_DIRECTIVE:
        match = _QUOTED_URI_RE.search(line.text)
        if not match:
            return line.text
        try:
            absolute = resolve_uri(base_url, match.group(1))
        except ValueError:
            return line.text
        proxied = wrap_proxy_url(proxy_endpoint, absolute)
        return line.text[: match.start(1)] + proxied + line.text[match.end(1):]
    if line.kind is LineKind.MEDIA_URI:
        try:
            absolute = resolve_uri(base_url, line.text.strip())
        except ValueError:
            return line.text
        # Keep CRLF playlists CRLF.
        suffix = "\r" if line.text.endswith("\r") else ""
        return wrap_proxy_url(proxy_endpoint, absolute) + suffix
    return line.text


def rewrite_playlist(text: str, base_url: str, proxy_endpoint: str) -> str:
    """Route every segment, nested playlist and key URI through the proxy.

    ``base_url`` is the URL the playlist itself was fetched from; relative
    references resolve against it.
    """
    document = PlaylistDocument.parse(text)
    rewritten = PlaylistDocument(
        tuple(
            PlaylistLine(_rewrite_line(line, base_url, proxy_endpoint), line.kind)
            for line in document.lines
        )
    )
    return rewritten.render()
