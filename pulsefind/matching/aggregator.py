"""Multi-source match aggregation.

Fans each segment out to the fingerprint oracle and each title/artist hint
out to every platform searcher, concurrently. Every call is settled on its
own: a failing, slow or unconfigured source contributes nothing and never
invalidates the others. Surviving candidates are merged on their normalized
identifier or (title, artist) key and ranked by confidence.
"""

from __future__ import annotations

import asyncio
import logging
from collections import Counter
from collections.abc import Awaitable, Sequence
from dataclasses import dataclass, field

import httpx

from ..config import MatchingConfig
from ..errors import RateLimitExceeded, SearchFailure
from ..processor.models import AudioSegment, PCMBuffer
from ..processor.preprocessor import slice_wav
from .base import PlatformSearcher
from .corroboration import Corroborator
from .models import MatchCandidate, MetadataHint
from .oracle import FingerprintOracle

logger = logging.getLogger(__name__)

# Errors that mean "this source has nothing for us right now"
_SOURCE_ERRORS = (SearchFailure, httpx.HTTPError, asyncio.TimeoutError, ValueError)


@dataclass
class AggregationReport:
    """Merged matches plus per-source bookkeeping for one scan."""

    matches: list[MatchCandidate] = field(default_factory=list)
    hints: list[MetadataHint] = field(default_factory=list)
    source_counts: Counter[str] = field(default_factory=Counter)
    segment_matches: dict[str, int] = field(default_factory=dict)
    failed_sources: set[str] = field(default_factory=set)
    rate_limited_sources: set[str] = field(default_factory=set)


def deduplicate(candidates: Sequence[MatchCandidate]) -> list[MatchCandidate]:
    """Collapse candidates that report the same recording.

    Candidates sharing an ISRC, YouTube video id or Spotify track id are the
    same track however their titles are spelled. Candidates with no shared
    identifier fall back to the normalized (title, artist) key. A candidate
    whose identifiers bridge two earlier groups joins them into one.

    The highest-confidence instance of each group survives, enriched with the
    sources and identifiers of its duplicates. First-seen order is kept.
    """
    groups: list[MatchCandidate] = []
    absorbed: set[int] = set()
    owners: dict[tuple[str, ...], int] = {}

    for candidate in candidates:
        identities: list[tuple[str, ...]] = list(candidate.identity_keys)
        name_key = ("title_artist", *candidate.dedup_key)

        slots = sorted({owners[key] for key in identities if key in owners})
        if not slots and name_key in owners:
            slots = [owners[name_key]]

        if not slots:
            slot = len(groups)
            groups.append(candidate)
        else:
            slot = slots[0]
            merged = groups[slot]
            for other in slots[1:]:
                merged = merged.merged_with(groups[other])
                absorbed.add(other)
                for key, owner in owners.items():
                    if owner == other:
                        owners[key] = slot
            groups[slot] = merged.merged_with(candidate)

        for key in identities:
            owners[key] = slot
        owners.setdefault(name_key, slot)

    return [group for index, group in enumerate(groups) if index not in absorbed]


def rank(candidates: Sequence[MatchCandidate]) -> list[MatchCandidate]:
    """Confidence descending; cross-source agreement then popularity break ties."""
    return sorted(
        candidates,
        key=lambda c: (-c.confidence, -len(c.sources), -(c.popularity or 0)),
    )


def hints_from_candidates(candidates: Sequence[MatchCandidate], limit: int) -> list[MetadataHint]:
    """Unique title/artist pairs of the strongest candidates."""
    hints: dict[tuple[str, str], MetadataHint] = {}
    for candidate in rank(candidates):
        hint = MetadataHint(title=candidate.title, artist=candidate.artist or None)
        hints.setdefault(hint.key, hint)
        if len(hints) >= limit:
            break
    return list(hints.values())


class MatchAggregator:
    """Runs the oracle and platform searches for a scan and merges the results.

    Args:
        oracle: Fingerprint oracle (None to skip audio identification)
        searchers: Platform keyword searchers
        config: Timeouts and hint limits
        corroborator: Re-scores low-confidence candidates against the upload
    """

    def __init__(
        self,
        oracle: FingerprintOracle | None,
        searchers: Sequence[PlatformSearcher],
        config: MatchingConfig | None = None,
        corroborator: Corroborator | None = None,
    ) -> None:
        self.oracle = oracle
        self.searchers = list(searchers)
        self.config = config or MatchingConfig()
        self.corroborator = corroborator

    async def find_matches(
        self,
        segments: Sequence[AudioSegment],
        hints: Sequence[MetadataHint] = (),
        buffer: PCMBuffer | None = None,
    ) -> list[MatchCandidate]:
        """Ranked, deduplicated candidates for a scan.

        Args:
            segments: Segments to identify (needs ``buffer`` for their audio)
            hints: Title/artist hints used when the oracle yields none
            buffer: Preprocessed upload the segments index into

        Returns:
            Candidates sorted by confidence descending
        """
        report = await self.aggregate(segments, hints, buffer)
        return report.matches

    async def aggregate(
        self,
        segments: Sequence[AudioSegment],
        hints: Sequence[MetadataHint] = (),
        buffer: PCMBuffer | None = None,
    ) -> AggregationReport:
        """Like :meth:`find_matches`, also returning per-source bookkeeping."""
        report = AggregationReport()

        oracle_matches = await self._identify_segments(segments, buffer, report)

        report.hints = self._select_hints(oracle_matches, hints)
        platform_matches = await self._search_platforms(report.hints, report)

        merged = deduplicate([*oracle_matches, *platform_matches])
        logger.info(
            "Merged %d raw candidates into %d unique matches",
            len(oracle_matches) + len(platform_matches),
            len(merged),
        )

        if self.corroborator is not None and buffer is not None and self.config.corroborate:
            merged = await self.corroborator.corroborate(merged, buffer)

        report.matches = rank(merged)
        return report

    def _select_hints(
        self, oracle_matches: Sequence[MatchCandidate], hints: Sequence[MetadataHint]
    ) -> list[MetadataHint]:
        limit = self.config.max_hint_queries
        selected = {h.key: h for h in hints_from_candidates(oracle_matches, limit)}
        for hint in hints:
            if len(selected) >= limit:
                break
            selected.setdefault(hint.key, hint)
        return list(selected.values())

    async def _identify_segments(
        self,
        segments: Sequence[AudioSegment],
        buffer: PCMBuffer | None,
        report: AggregationReport,
    ) -> list[MatchCandidate]:
        oracle = self.oracle
        if oracle is None or not oracle.enabled or buffer is None or not segments:
            return []

        max_bytes = self.config.oracle_sample_bytes
        calls = [
            oracle.identify(slice_wav(buffer, s.offset, s.duration, max_bytes), s.name)
            for s in segments
        ]
        results = await self._settle("oracle", calls, report)

        matches: list[MatchCandidate] = []
        for segment, result in zip(segments, results):
            report.segment_matches[segment.name] = len(result) if result is not None else -1
            matches.extend(result or [])
        return matches

    async def _search_platforms(
        self, hints: Sequence[MetadataHint], report: AggregationReport
    ) -> list[MatchCandidate]:
        if not hints:
            logger.info("No title/artist hints, skipping platform search")
            return []

        active = [s for s in self.searchers if s.enabled]
        for searcher in self.searchers:
            if not searcher.enabled:
                logger.debug("%s search disabled", searcher.source.value)
        if not active:
            return []

        pairs = [(searcher, hint) for hint in hints for searcher in active]
        logger.info("Searching %d platform(s) for %d hint(s)", len(active), len(hints))

        matches: list[MatchCandidate] = []
        results = await asyncio.gather(
            *(
                self._settle(searcher.source.value, [searcher.search(hint)], report)
                for searcher, hint in pairs
            )
        )
        for (result,) in results:
            matches.extend(result or [])
        return matches

    async def _settle(
        self,
        source: str,
        calls: Sequence[Awaitable[list[MatchCandidate]]],
        report: AggregationReport,
    ) -> list[list[MatchCandidate] | None]:
        """Await all calls with a per-call timeout; failures become None."""
        timeout = self.config.platform_timeout_sec
        results = await asyncio.gather(
            *(asyncio.wait_for(call, timeout=timeout) for call in calls),
            return_exceptions=True,
        )

        settled: list[list[MatchCandidate] | None] = []
        for result in results:
            if isinstance(result, RateLimitExceeded):
                logger.warning("%s rate limited: %s", source, result)
                report.rate_limited_sources.add(source)
                settled.append(None)
            elif isinstance(result, asyncio.TimeoutError):
                logger.warning("%s timed out after %.1fs", source, timeout)
                report.failed_sources.add(source)
                settled.append(None)
            elif isinstance(result, _SOURCE_ERRORS):
                logger.warning("%s search failed: %s", source, result)
                report.failed_sources.add(source)
                settled.append(None)
            elif isinstance(result, Exception):
                logger.error("%s search raised unexpectedly", source, exc_info=result)
                report.failed_sources.add(source)
                settled.append(None)
            elif isinstance(result, BaseException):
                raise result
            else:
                report.source_counts[source] += len(result)
                settled.append(result)
        return settled
