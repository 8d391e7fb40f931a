"""End-to-end scan pipeline.

Upload bytes in, ranked matches out:
preprocess -> select segments -> analyze (tempo, pitch, thresholds) ->
aggregate matches -> filter by matching mode.

CPU-bound stages run in worker threads so the event loop stays free for the
concurrent source searches; each scan works on its own buffers.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from dataclasses import dataclass

import httpx

from ..config import Config, MatchingMode, get_config
from ..matching.aggregator import AggregationReport, MatchAggregator
from ..matching.corroboration import Corroborator
from ..matching.models import ScanMetrics, ScanResult, SegmentReport
from ..matching.oracle import ACRCloudOracle
from ..matching.spotify import SpotifySearcher
from ..matching.stubs import SoundCloudSearcher, TikTokSearcher
from ..matching.youtube import YouTubeSearcher
from ..utils import compute_bytes_hash, derive_metadata_hint
from .features import SpectralFeatures, extract_spectral_features, onset_density, quick_hash
from .models import AudioSegment, PCMBuffer
from .preprocessor import preprocess_with_metrics
from .segmentation import extract_segment_samples, select_segments
from .tempo import estimate_pitch_shift, estimate_tempo
from .thresholds import (
    ConfidenceThresholds,
    analyze_beat_characteristics,
    calculate_adaptive_thresholds,
    static_thresholds,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SignalAnalysis:
    """Whole-upload and per-segment descriptors computed before matching."""

    tempo_bpm: int
    pitch_shift: float
    fingerprint: str
    thresholds: ConfidenceThresholds
    features: SpectralFeatures
    onset_density: float
    segment_tempos: list[tuple[int | None, float | None]]


def analyze_buffer(
    buffer: PCMBuffer, segments: list[AudioSegment], config: Config
) -> SignalAnalysis:
    """Descriptors and confidence thresholds for a scan."""
    samples = buffer.samples
    rate = buffer.sample_rate

    if config.matching.adaptive_thresholds:
        characteristics = analyze_beat_characteristics(samples, rate)
        thresholds = calculate_adaptive_thresholds(characteristics, config.matching)
        tempo = characteristics.tempo
    else:
        thresholds = static_thresholds(config.matching)
        tempo = estimate_tempo(samples, rate)

    segment_tempos: list[tuple[int | None, float | None]] = []
    for segment in segments:
        segment_samples = extract_segment_samples(buffer, segment)
        if len(segment_samples) == 0:
            segment_tempos.append((None, None))
            continue
        segment_tempos.append(
            (estimate_tempo(segment_samples, rate), estimate_pitch_shift(segment_samples, rate))
        )

    return SignalAnalysis(
        tempo_bpm=tempo,
        pitch_shift=estimate_pitch_shift(samples, rate),
        fingerprint=quick_hash(samples),
        thresholds=thresholds,
        features=extract_spectral_features(samples, rate),
        onset_density=onset_density(samples, rate),
        segment_tempos=segment_tempos,
    )


def build_aggregator(config: Config, client: httpx.AsyncClient) -> MatchAggregator:
    """Wire every configured source around one shared HTTP client."""
    min_confidence = config.matching.min_platform_confidence
    searchers = [
        YouTubeSearcher(config.youtube, client, min_confidence=min_confidence),
        SpotifySearcher(config.spotify, client, min_confidence=min_confidence),
        TikTokSearcher(),
        SoundCloudSearcher(),
    ]
    corroborator = Corroborator(
        client,
        threshold=config.matching.corroboration_threshold,
        preprocess_config=config.preprocess,
    )
    return MatchAggregator(
        oracle=ACRCloudOracle(config.acrcloud, client),
        searchers=searchers,
        config=config.matching,
        corroborator=corroborator,
    )


@asynccontextmanager
async def open_aggregator(config: Config) -> AsyncGenerator[MatchAggregator, None]:
    """Aggregator backed by a client that is closed on exit."""
    async with httpx.AsyncClient(timeout=config.matching.platform_timeout_sec) as client:
        yield build_aggregator(config, client)


def _elapsed_ms(started: float) -> float:
    return (time.perf_counter() - started) * 1000


def _segment_reports(
    segments: list[AudioSegment], analysis: SignalAnalysis, report: AggregationReport
) -> list[SegmentReport]:
    reports: list[SegmentReport] = []
    for segment, (tempo, pitch) in zip(segments, analysis.segment_tempos):
        matched = report.segment_matches.get(segment.name)
        attempted = matched is not None
        reports.append(
            SegmentReport(
                name=segment.name,
                offset=segment.offset,
                duration=segment.duration,
                priority=segment.priority.value,
                energy=segment.energy,
                uniqueness=segment.uniqueness,
                tempo_bpm=tempo,
                pitch_shift_semitones=pitch,
                matches=max(0, matched or 0),
                attempted=attempted,
                succeeded=matched is not None and matched >= 0 and segment.duration > 0,
            )
        )
    return reports


async def scan_upload(
    data: bytes,
    filename: str | None = None,
    deep_scan: bool = False,
    matching_mode: MatchingMode = MatchingMode.LOOSE,
    config: Config | None = None,
    aggregator: MatchAggregator | None = None,
) -> ScanResult:
    """Identify published tracks that use an uploaded beat.

    Args:
        data: Raw upload bytes
        filename: Original filename, used for title/artist hints
        deep_scan: Analyze more segments
        matching_mode: Which confidence threshold filters the results
        config: Configuration (global config if None)
        aggregator: Pre-built aggregator (one is built from config if None)

    Returns:
        ScanResult with matches at or above the mode's threshold

    Raises:
        DecodeError: If the upload is not decodable audio
        EmptyAudioError: If nothing audible remains after trimming
        InsufficientAudioError: If the audio is shorter than one analysis window
    """
    config = config or get_config()
    if aggregator is None:
        async with open_aggregator(config) as built:
            return await scan_upload(data, filename, deep_scan, matching_mode, config, built)

    scan_started = time.perf_counter()
    metrics = ScanMetrics()
    logger.info(
        "Scanning %s (%d bytes, %s scan, %s mode)",
        filename or "upload",
        len(data),
        "deep" if deep_scan else "standard",
        matching_mode.value,
    )

    started = time.perf_counter()
    buffer, preprocessing = await asyncio.to_thread(preprocess_with_metrics, data, config.preprocess)
    metrics.preprocess_ms = _elapsed_ms(started)
    metrics.preprocessing = preprocessing
    metrics.quality_score = preprocessing.quality_score

    started = time.perf_counter()
    target_count = config.segments.deep_count if deep_scan else config.segments.standard_count
    segments = await asyncio.to_thread(select_segments, buffer, target_count, deep_scan)
    metrics.segmentation_ms = _elapsed_ms(started)

    started = time.perf_counter()
    analysis = await asyncio.to_thread(analyze_buffer, buffer, segments, config)
    metrics.analysis_ms = _elapsed_ms(started)
    metrics.tempo_bpm = analysis.tempo_bpm
    metrics.pitch_shift_semitones = analysis.pitch_shift
    metrics.fingerprint = analysis.fingerprint
    metrics.spectral = analysis.features
    metrics.onset_density = analysis.onset_density
    metrics.strict_threshold = analysis.thresholds.strict
    metrics.loose_threshold = analysis.thresholds.loose
    metrics.threshold_explanation = analysis.thresholds.explanation

    hint = derive_metadata_hint(filename)
    started = time.perf_counter()
    report = await aggregator.aggregate(segments, [hint] if hint else [], buffer)
    metrics.matching_ms = _elapsed_ms(started)

    threshold = analysis.thresholds.for_mode(matching_mode)
    matches = [m for m in report.matches if m.confidence >= threshold]
    metrics.results_before_filter = len(report.matches)
    metrics.results_after_filter = len(matches)
    metrics.source_counts = dict(report.source_counts)
    metrics.failed_sources = sorted(report.failed_sources)
    metrics.rate_limited_sources = sorted(report.rate_limited_sources)

    segment_reports = _segment_reports(segments, analysis, report)
    metrics.segments_attempted = sum(1 for s in segment_reports if s.attempted)
    metrics.segments_succeeded = sum(1 for s in segment_reports if s.succeeded)
    metrics.total_ms = _elapsed_ms(scan_started)

    logger.info(
        "Scan complete: %d/%d matches at >= %d%% in %.0fms",
        len(matches),
        len(report.matches),
        threshold,
        metrics.total_ms,
    )
    return ScanResult(
        matches=matches,
        segments=segment_reports,
        metrics=metrics,
        matching_mode=matching_mode.value,
        deep_scan=deep_scan,
        upload_hash=compute_bytes_hash(data),
    )
