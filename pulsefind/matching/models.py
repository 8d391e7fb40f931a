"""Data models for match candidates and scan results."""

from __future__ import annotations

import re
import unicodedata
from enum import Enum

from pydantic import BaseModel, Field, model_validator

from ..processor.features import SpectralFeatures
from ..processor.models import PreprocessingMetrics


class Source(str, Enum):
    """Where a candidate came from."""

    ORACLE = "oracle"
    SPOTIFY = "spotify"
    YOUTUBE = "youtube"
    TIKTOK = "tiktok"
    SOUNDCLOUD = "soundcloud"


_PUNCTUATION_RE = re.compile(r"[^\w\s]")


def normalize_text(value: str) -> str:
    """Case-fold, NFKD-decompose, drop combining marks and punctuation, collapse whitespace.

    Non-Latin scripts are kept, so "Beyoncé" and "BEYONCE" fold together while
    Cyrillic/Japanese titles still produce distinct keys.
    """
    decomposed = unicodedata.normalize("NFKD", value.casefold())
    stripped = "".join(ch for ch in decomposed if not unicodedata.combining(ch))
    return " ".join(_PUNCTUATION_RE.sub(" ", stripped).split())


class MetadataHint(BaseModel):
    """A title/artist pair used to drive platform keyword searches."""

    title: str
    artist: str | None = None

    @property
    def key(self) -> tuple[str, str]:
        return normalize_text(self.title), normalize_text(self.artist or "")


# Fields a merged candidate inherits from duplicates when it lacks them
_MERGEABLE_FIELDS = (
    "album",
    "isrc",
    "spotify_id",
    "spotify_url",
    "spotify_album_id",
    "youtube_id",
    "youtube_url",
    "apple_music_id",
    "external_url",
    "popularity",
    "preview_url",
    "album_cover_url",
    "release_date",
    "segment_name",
)

# Identifiers that name the same recording regardless of how its title is spelled
_IDENTITY_FIELDS = ("isrc", "youtube_id", "spotify_id")


class MatchCandidate(BaseModel):
    """A published track that may contain the uploaded beat."""

    title: str
    artist: str
    album: str | None = None
    source: Source
    sources: list[Source] = Field(
        default_factory=list, description="Every source that reported this track"
    )
    confidence: int = Field(..., ge=0, le=100)

    isrc: str | None = None
    spotify_id: str | None = None
    spotify_url: str | None = None
    spotify_album_id: str | None = None
    youtube_id: str | None = None
    youtube_url: str | None = None
    apple_music_id: str | None = None
    external_url: str | None = None
    popularity: int | None = Field(default=None, ge=0, le=100)
    preview_url: str | None = None
    album_cover_url: str | None = None
    release_date: str | None = None

    segment_name: str | None = Field(
        default=None, description="Segment whose fingerprint produced this match"
    )
    corroboration_score: float | None = None
    embedding_similarity: float | None = None
    alignment_score: float | None = None

    @model_validator(mode="after")
    def include_primary_source(self) -> MatchCandidate:
        """``sources`` always contains ``source``."""
        if self.source not in self.sources:
            self.sources.insert(0, self.source)
        return self

    @property
    def dedup_key(self) -> tuple[str, str]:
        """Normalized (title, artist) identity across sources."""
        return normalize_text(self.title), normalize_text(self.artist)

    @property
    def identity_keys(self) -> list[tuple[str, str]]:
        """(field, value) pairs for every catalog identifier this candidate carries."""
        return [
            (name, value) for name in _IDENTITY_FIELDS if (value := getattr(self, name))
        ]

    def merged_with(self, other: MatchCandidate) -> MatchCandidate:
        """Combine two reports of the same track.

        The higher-confidence instance wins (``self`` on ties); it gains the
        union of sources and any identifiers/links it was missing.
        """
        winner, loser = (other, self) if other.confidence > self.confidence else (self, other)

        updates: dict[str, object] = {
            "sources": list(dict.fromkeys([*winner.sources, *loser.sources])),
        }
        for name in _MERGEABLE_FIELDS:
            if getattr(winner, name) is None and getattr(loser, name) is not None:
                updates[name] = getattr(loser, name)
        return winner.model_copy(update=updates)


class SegmentReport(BaseModel):
    """How one selected segment fared during matching."""

    name: str
    offset: float
    duration: float
    priority: str
    energy: float
    uniqueness: float
    tempo_bpm: int | None = None
    pitch_shift_semitones: float | None = None
    matches: int = 0
    attempted: bool = Field(
        default=False, description="Whether the segment was sent to the fingerprint oracle"
    )
    succeeded: bool = False


class ScanMetrics(BaseModel):
    """Timings and diagnostics for one scan."""

    preprocess_ms: float = 0.0
    segmentation_ms: float = 0.0
    analysis_ms: float = 0.0
    matching_ms: float = 0.0
    total_ms: float = 0.0

    segments_attempted: int = 0
    segments_succeeded: int = 0
    quality_score: float = 0.0
    tempo_bpm: int | None = None
    pitch_shift_semitones: float | None = None
    fingerprint: str | None = None
    spectral: SpectralFeatures | None = None
    onset_density: float | None = Field(default=None, description="Detected onsets per second")

    source_counts: dict[str, int] = Field(default_factory=dict)
    failed_sources: list[str] = Field(default_factory=list)
    rate_limited_sources: list[str] = Field(default_factory=list)
    results_before_filter: int = 0
    results_after_filter: int = 0

    strict_threshold: int | None = None
    loose_threshold: int | None = None
    threshold_explanation: str | None = None

    preprocessing: PreprocessingMetrics | None = None


class ScanResult(BaseModel):
    """Ranked matches for one upload."""

    model_config = {"frozen": True}

    matches: list[MatchCandidate]
    segments: list[SegmentReport] = Field(default_factory=list)
    metrics: ScanMetrics = Field(default_factory=ScanMetrics)
    matching_mode: str = "loose"
    deep_scan: bool = False
    upload_hash: str | None = None
