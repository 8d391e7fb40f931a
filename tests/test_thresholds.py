"""Tests for genre detection and adaptive confidence thresholds."""

from __future__ import annotations

import numpy as np
import pytest

from pulsefind.config import MatchingConfig, MatchingMode
from pulsefind.processor.thresholds import (
    BeatCharacteristics,
    Genre,
    analyze_beat_characteristics,
    calculate_adaptive_thresholds,
    detect_genre,
    spectral_complexity,
    static_thresholds,
)

from .helpers import SAMPLE_RATE, click_track


class TestDetectGenre:
    @pytest.mark.parametrize(
        ("tempo", "energy", "complexity", "expected"),
        [
            (140, 0.6, 0.5, Genre.TRAP),
            (145, 0.65, 0.65, Genre.TRAP),  # first matching rule wins
            (152, 0.7, 0.65, Genre.DRILL),
            (150, 0.3, 0.8, Genre.MELODIC),
            (90, 0.5, 0.5, Genre.BOOM_BAP),
            (120, 0.3, 0.4, Genre.UNKNOWN),
        ],
    )
    def test_rules(self, tempo: int, energy: float, complexity: float, expected: Genre) -> None:
        assert detect_genre(tempo, energy, complexity) is expected


class TestAdaptiveThresholds:
    def test_genre_base(self) -> None:
        thresholds = calculate_adaptive_thresholds(
            BeatCharacteristics(tempo=140, energy=0.6, spectral_complexity=0.5, genre=Genre.TRAP)
        )
        assert (thresholds.strict, thresholds.loose) == (87, 45)
        assert thresholds.explanation == "Adaptive thresholds: Trap beat detected. Strict: 87%, Loose: 45%"

    def test_simple_pattern_is_stricter(self) -> None:
        thresholds = calculate_adaptive_thresholds(
            BeatCharacteristics(tempo=120, energy=0.3, spectral_complexity=0.2)
        )
        assert (thresholds.strict, thresholds.loose) == (87, 43)
        assert "simple pattern detected" in thresholds.explanation

    def test_adjustments_are_clamped(self) -> None:
        thresholds = calculate_adaptive_thresholds(
            BeatCharacteristics(tempo=170, energy=0.9, spectral_complexity=0.9, genre=Genre.MELODIC)
        )
        assert (thresholds.strict, thresholds.loose) == (75, 30)
        assert "unusual tempo (170 BPM)" in thresholds.explanation
        assert "high energy with potential distortion" in thresholds.explanation

    def test_neutral_beat_uses_configured_base(self) -> None:
        characteristics = BeatCharacteristics(tempo=120, energy=0.5, spectral_complexity=0.5)

        default = calculate_adaptive_thresholds(characteristics)
        assert (default.strict, default.loose) == (85, 40)
        assert default.explanation == "Standard thresholds: Strict 85%, Loose 40%"

        custom = calculate_adaptive_thresholds(
            characteristics, MatchingConfig(strict_threshold=90, loose_threshold=50)
        )
        assert (custom.strict, custom.loose) == (90, 50)

    def test_for_mode(self) -> None:
        thresholds = static_thresholds(MatchingConfig(strict_threshold=80, loose_threshold=35))
        assert thresholds.for_mode(MatchingMode.STRICT) == 80
        assert thresholds.for_mode(MatchingMode.LOOSE) == 35


class TestBeatCharacteristics:
    def test_silence_has_no_complexity(self) -> None:
        assert spectral_complexity(np.zeros(8192, dtype=np.float32)) == 0.0
        assert spectral_complexity(np.zeros(100, dtype=np.float32)) == 0.0

    def test_click_track(self) -> None:
        characteristics = analyze_beat_characteristics(click_track(120), SAMPLE_RATE)

        assert 60 <= characteristics.tempo <= 180
        assert 0.0 <= characteristics.energy <= 1.0
        assert 0.0 <= characteristics.spectral_complexity <= 1.0
        assert characteristics.genre is detect_genre(
            characteristics.tempo, characteristics.energy, characteristics.spectral_complexity
        )
