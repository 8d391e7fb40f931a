"""YouTube Data API v3 keyword search."""

from __future__ import annotations

import logging
import re
from typing import Any

import httpx

from ..config import YouTubeConfig
from ..errors import SearchFailure
from .base import check_response
from .models import MatchCandidate, MetadataHint, Source

logger = logging.getLogger(__name__)

SEARCH_URL = "https://www.googleapis.com/youtube/v3/search"
MUSIC_CATEGORY_ID = "10"
MAX_RESULTS = 10

_TITLE_SUFFIX_RES = (
    re.compile(r"\s*\(official\s*(audio|video|music\s*video|lyric\s*video)\)", re.IGNORECASE),
    re.compile(r"\s*\[official\s*(audio|video|music\s*video|lyric\s*video)\]", re.IGNORECASE),
    re.compile(r"\s*-\s*(official\s*)?(audio|video|music\s*video|lyric\s*video)", re.IGNORECASE),
)


def build_query(hint: MetadataHint) -> str:
    """``"{artist} {title}"``, or just the title without an artist."""
    return f"{hint.artist} {hint.title}" if hint.artist else hint.title


def match_confidence(query: str, title: str) -> int:
    """Score a video title against the search query (0-100).

    100 when the whole query appears in the title; otherwise the percentage
    of query words longer than two characters that are contained in, or
    contain, some title word.
    """
    query_lower = query.lower()
    title_lower = title.lower()
    if query_lower in title_lower:
        return 100

    query_words = [w for w in query_lower.split() if len(w) > 2]
    if not query_words:
        return 0
    title_words = title_lower.split()

    matched = [qw for qw in query_words if any(tw in qw or qw in tw for tw in title_words)]
    return round(len(matched) / len(query_words) * 100)


def clean_title(title: str) -> str:
    """Drop "(Official Audio)" style decorations."""
    for pattern in _TITLE_SUFFIX_RES:
        title = pattern.sub("", title)
    return title.strip()


class YouTubeSearcher:
    """Searches music-category videos for a title/artist hint.

    Args:
        config: API credentials (None disables the searcher)
        client: Shared HTTP client
        min_confidence: Results scoring below this are dropped
    """

    source = Source.YOUTUBE

    def __init__(
        self,
        config: YouTubeConfig | None,
        client: httpx.AsyncClient,
        min_confidence: int = 50,
    ) -> None:
        self.config = config
        self.client = client
        self.min_confidence = min_confidence

    @property
    def enabled(self) -> bool:
        return self.config is not None and bool(self.config.api_key)

    async def search(self, hint: MetadataHint) -> list[MatchCandidate]:
        if not self.enabled or self.config is None:
            logger.warning("YouTube API key not configured, skipping search")
            return []

        query = build_query(hint)
        logger.info("YouTube search: %r", query)

        try:
            response = await self.client.get(
                SEARCH_URL,
                params={
                    "part": "snippet",
                    "q": f"{query} official audio",
                    "type": "video",
                    "videoCategoryId": MUSIC_CATEGORY_ID,
                    "maxResults": MAX_RESULTS,
                    "key": self.config.api_key,
                },
            )
        except httpx.HTTPError as e:
            raise SearchFailure(self.source.value, f"search request failed: {e}") from e

        check_response(self.source.value, response, "search")
        items: list[dict[str, Any]] = response.json().get("items") or []

        candidates = [
            candidate
            for candidate in (self._to_candidate(query, item) for item in items)
            if candidate is not None
        ]
        filtered = [c for c in candidates if c.confidence >= self.min_confidence]
        logger.info("YouTube found %d/%d matches", len(filtered), len(items))
        return filtered

    def _to_candidate(self, query: str, item: dict[str, Any]) -> MatchCandidate | None:
        video_id = (item.get("id") or {}).get("videoId")
        snippet = item.get("snippet") or {}
        title = snippet.get("title")
        if not video_id or not title:
            return None

        return MatchCandidate(
            title=clean_title(title),
            artist=snippet.get("channelTitle", ""),
            source=self.source,
            confidence=match_confidence(query, title),
            youtube_id=video_id,
            youtube_url=f"https://www.youtube.com/watch?v={video_id}",
            album_cover_url=((snippet.get("thumbnails") or {}).get("high") or {}).get("url"),
        )
