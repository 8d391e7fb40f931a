"""Platforms without a usable public search API.

TikTok search needs an approved Creator Marketplace account and SoundCloud
needs per-app OAuth; until those exist these searchers report nothing.
"""

from __future__ import annotations

import logging

from .models import MatchCandidate, MetadataHint, Source

logger = logging.getLogger(__name__)


class _UnavailableSearcher:
    source: Source

    @property
    def enabled(self) -> bool:
        return False

    async def search(self, hint: MetadataHint) -> list[MatchCandidate]:
        logger.debug("%s search not available, skipping %r", self.source.value, hint.title)
        return []


class TikTokSearcher(_UnavailableSearcher):
    source = Source.TIKTOK


class SoundCloudSearcher(_UnavailableSearcher):
    source = Source.SOUNDCLOUD
