"""Spotify Web API track search."""

from __future__ import annotations

import logging
from typing import Any

import httpx

from ..config import SpotifyConfig
from ..errors import SearchFailure
from .base import check_response
from .models import MatchCandidate, MetadataHint, Source
from .tokens import ClientCredentialsTokenProvider

logger = logging.getLogger(__name__)

TOKEN_URL = "https://accounts.spotify.com/api/token"
SEARCH_URL = "https://api.spotify.com/v1/search"
SEARCH_LIMIT = 10


def build_query(hint: MetadataHint) -> str:
    """Field-filtered query, e.g. ``track:Title artist:Artist``."""
    if hint.artist:
        return f"track:{hint.title} artist:{hint.artist}"
    return f"track:{hint.title}"


def rank_confidence(index: int, popularity: int) -> int:
    """Average of a rank term (100 - 5 per position, floored at 0) and popularity, capped at 100."""
    position_score = max(0, 100 - index * 5)
    return min(round((position_score + popularity) / 2), 100)


class SpotifySearcher:
    """Searches Spotify tracks for a title/artist hint.

    Args:
        config: Client credentials (None or blank values disable the searcher)
        client: Shared HTTP client
        min_confidence: Results scoring below this are dropped
        token_provider: Override the provider built from ``config``
    """

    source = Source.SPOTIFY

    def __init__(
        self,
        config: SpotifyConfig | None,
        client: httpx.AsyncClient,
        min_confidence: int = 50,
        token_provider: ClientCredentialsTokenProvider | None = None,
    ) -> None:
        self.client = client
        self.min_confidence = min_confidence
        configured = config is not None and bool(config.client_id) and bool(config.client_secret)
        if token_provider is None and config is not None and configured:
            token_provider = ClientCredentialsTokenProvider(
                source=self.source.value,
                token_url=TOKEN_URL,
                client_id=config.client_id,
                client_secret=config.client_secret,
                client=client,
            )
        self.tokens = token_provider

    @property
    def enabled(self) -> bool:
        return self.tokens is not None

    async def search(self, hint: MetadataHint) -> list[MatchCandidate]:
        if self.tokens is None:
            logger.warning("Spotify credentials not configured, skipping search")
            return []

        token = await self.tokens.get_token()
        query = build_query(hint)
        logger.info("Spotify search: %r", query)

        try:
            response = await self.client.get(
                SEARCH_URL,
                params={"q": query, "type": "track", "limit": SEARCH_LIMIT},
                headers={"Authorization": f"Bearer {token}"},
            )
        except httpx.HTTPError as e:
            raise SearchFailure(self.source.value, f"search request failed: {e}") from e

        check_response(self.source.value, response, "search")
        items: list[dict[str, Any]] = (response.json().get("tracks") or {}).get("items") or []
        if not items:
            logger.info("Spotify found no matches")
            return []

        candidates = [self._to_candidate(index, track) for index, track in enumerate(items)]
        filtered = [c for c in candidates if c.confidence >= self.min_confidence]
        logger.info("Spotify found %d/%d matches", len(filtered), len(items))
        return filtered

    def _to_candidate(self, index: int, track: dict[str, Any]) -> MatchCandidate:
        popularity = int(track.get("popularity") or 0)
        album = track.get("album") or {}
        images = album.get("images") or []

        return MatchCandidate(
            title=track.get("name", ""),
            artist=", ".join(a.get("name", "") for a in track.get("artists") or []),
            album=album.get("name"),
            source=self.source,
            confidence=rank_confidence(index, popularity),
            spotify_id=track.get("id"),
            spotify_url=(track.get("external_urls") or {}).get("spotify"),
            spotify_album_id=album.get("id"),
            isrc=(track.get("external_ids") or {}).get("isrc"),
            popularity=popularity,
            preview_url=track.get("preview_url"),
            album_cover_url=images[0].get("url") if images else None,
            release_date=album.get("release_date"),
        )
