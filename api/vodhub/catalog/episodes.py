"""Episode list parsing shared by the MacCMS-style catalog families.

Play lists arrive as ``name$url#name$url`` episode strings, with one group per
player flag joined by ``$$$``.
"""

from __future__ import annotations

from vodhub.utils.urls import is_http_url

GROUP_SEPARATOR = "$$$"
EPISODE_SEPARATOR = "#"
NAME_SEPARATOR = "$"


def _parse_group(group: str) -> list[tuple[str, str]]:
    episodes: list[tuple[str, str]] = []
    for index, chunk in enumerate(group.split(EPISODE_SEPARATOR), start=1):
        chunk = chunk.strip()
        if not chunk:
            continue
        if NAME_SEPARATOR in chunk:
            name, _, url = chunk.partition(NAME_SEPARATOR)
        else:
            name, url = f"EP{index}", chunk
        url = url.strip()
        if not is_http_url(url):
            continue
        episodes.append((name.strip() or f"EP{index}", url))
    return episodes


def _looks_like_hls(flag: str, episodes: list[tuple[str, str]]) -> bool:
    if "m3u8" in flag.lower():
        return True
    return any(".m3u8" in url.lower() for _, url in episodes)


def parse_play_urls(play_from: str | None, play_url: str | None) -> tuple[tuple[str, ...], tuple[str, ...]]:
    """Return ``(episode_names, play_urls)`` for the best playable group.

    The first HLS group wins; otherwise the first group with any http(s) URL.
    Upstream episode order is preserved.
    """
    if not play_url:
        return (), ()
    groups = play_url.split(GROUP_SEPARATOR)
    flags = (play_from or "").split(GROUP_SEPARATOR)
    parsed: list[tuple[str, list[tuple[str, str]]]] = []
    for index, group in enumerate(groups):
        flag = flags[index] if index < len(flags) else ""
        episodes = _parse_group(group)
        if episodes:
            parsed.append((flag, episodes))
    if not parsed:
        return (), ()
    chosen = next((episodes for flag, episodes in parsed if _looks_like_hls(flag, episodes)), parsed[0][1])
    names = tuple(name for name, _ in chosen)
    urls = tuple(url for _, url in chosen)
    return names, urls
