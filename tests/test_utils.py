"""Tests for filename hints, hashing and text normalization."""

from __future__ import annotations

import hashlib

import pytest

from pulsefind.matching.models import MatchCandidate, MetadataHint, Source, normalize_text
from pulsefind.utils import compute_bytes_hash, derive_metadata_hint


class TestDeriveMetadataHint:
    def test_artist_and_title(self) -> None:
        hint = derive_metadata_hint("Metro Boomin - Space Cadet (prod. Metro).mp3")
        assert hint == MetadataHint(title="Space Cadet", artist="Metro Boomin")

    def test_type_beat_noise_is_dropped(self) -> None:
        hint = derive_metadata_hint("dark_trap_type_beat_140bpm.wav")
        assert hint == MetadataHint(title="dark trap", artist=None)

    def test_path_components_are_ignored(self) -> None:
        hint = derive_metadata_hint("/uploads/tmp/Lofi Sunset.flac")
        assert hint is not None
        assert hint.title == "Lofi Sunset"

    @pytest.mark.parametrize("filename", [None, "", "[FREE] type beat.wav", "140bpm.mp3"])
    def test_nothing_useful(self, filename: str | None) -> None:
        assert derive_metadata_hint(filename) is None


def test_compute_bytes_hash() -> None:
    data = b"x" * 20000
    assert compute_bytes_hash(data) == hashlib.sha256(data).hexdigest()


class TestNormalizeText:
    def test_accents_case_and_punctuation(self) -> None:
        assert normalize_text("Beyoncé") == normalize_text("BEYONCE")
        assert normalize_text("  Hello,   World! ") == "hello world"

    def test_non_latin_scripts_survive(self) -> None:
        assert normalize_text("Кино") == "кино"
        assert normalize_text("Кино") != normalize_text("Кина")


class TestMatchCandidate:
    def test_sources_include_primary(self) -> None:
        candidate = MatchCandidate(title="a", artist="b", source=Source.SPOTIFY, confidence=50)
        assert candidate.sources == [Source.SPOTIFY]

    def test_confidence_bounds(self) -> None:
        with pytest.raises(ValueError):
            MatchCandidate(title="a", artist="b", source=Source.SPOTIFY, confidence=101)

    def test_merge_keeps_higher_confidence_and_fills_fields(self) -> None:
        oracle = MatchCandidate(
            title="Song", artist="Artist", source=Source.ORACLE, confidence=60, isrc="US123"
        )
        spotify = MatchCandidate(
            title="song", artist="ARTIST", source=Source.SPOTIFY, confidence=85, spotify_id="sp1"
        )

        merged = oracle.merged_with(spotify)

        assert merged.confidence == 85
        assert merged.source is Source.SPOTIFY
        assert merged.sources == [Source.SPOTIFY, Source.ORACLE]
        assert merged.isrc == "US123"
        assert merged.spotify_id == "sp1"

    def test_merge_tie_keeps_self(self) -> None:
        first = MatchCandidate(title="Song", artist="A", source=Source.YOUTUBE, confidence=70)
        second = MatchCandidate(title="Song", artist="A", source=Source.SPOTIFY, confidence=70)
        assert first.merged_with(second).source is Source.YOUTUBE
