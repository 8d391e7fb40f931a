"""Adaptive confidence thresholds.

Beats with distinctive rhythmic signatures (trap, drill) tolerate stricter
cut-offs; dense melodic layering and heavy distortion blur matches and get
looser ones.
"""

from __future__ import annotations

import logging
from enum import Enum

import numpy as np
import numpy.typing as npt
from pydantic import BaseModel, Field

from ..config import MatchingConfig, MatchingMode
from .tempo import MAX_BPM, MIN_BPM, estimate_tempo

logger = logging.getLogger(__name__)

COMPLEXITY_WINDOW_SIZE = 2048
COMPLEXITY_HOP_SIZE = 1024
COMPLEXITY_BANDS = 32

STRICT_BOUNDS = (75, 95)
LOOSE_BOUNDS = (30, 60)


class Genre(str, Enum):
    """Coarse beat style inferred from tempo, energy and complexity."""

    TRAP = "trap"
    DRILL = "drill"
    MELODIC = "melodic"
    BOOM_BAP = "boom-bap"
    UNKNOWN = "unknown"


# (strict, loose) replacing the configured base thresholds
_GENRE_THRESHOLDS: dict[Genre, tuple[int, int]] = {
    Genre.TRAP: (87, 45),
    Genre.DRILL: (88, 50),
    Genre.MELODIC: (82, 35),
    Genre.BOOM_BAP: (86, 42),
}


class BeatCharacteristics(BaseModel):
    """Summary of a beat used to pick thresholds."""

    tempo: int = Field(..., description="BPM clamped to 60-180")
    energy: float = Field(..., ge=0, le=1)
    spectral_complexity: float = Field(..., ge=0, le=1)
    genre: Genre = Genre.UNKNOWN


class ConfidenceThresholds(BaseModel):
    """Strict/loose cut-offs with a human-readable reason."""

    strict: int
    loose: int
    explanation: str

    def for_mode(self, mode: MatchingMode) -> int:
        return self.strict if mode is MatchingMode.STRICT else self.loose


def spectral_complexity(samples: npt.NDArray[np.floating]) -> float:
    """Mean 32-band variance over 2048-sample windows (1024 hop), scaled by 100, capped at 1."""
    n = len(samples)
    if n <= COMPLEXITY_WINDOW_SIZE:
        return 0.0

    squares = np.square(samples.astype(np.float64))
    cumulative = np.concatenate(([0.0], np.cumsum(squares)))
    starts = np.arange(0, n - COMPLEXITY_WINDOW_SIZE, COMPLEXITY_HOP_SIZE)
    band_size = COMPLEXITY_WINDOW_SIZE // COMPLEXITY_BANDS
    edges = starts[:, None] + np.arange(COMPLEXITY_BANDS + 1)[None, :] * band_size
    band_energies = np.diff(cumulative[edges], axis=1)

    average_variance = float(np.mean(np.var(band_energies, axis=1)))
    return min(1.0, average_variance * 100)


def detect_genre(tempo: int, energy: float, complexity: float) -> Genre:
    """First matching rule wins."""
    if 130 <= tempo <= 150 and energy > 0.5:
        return Genre.TRAP
    if 140 <= tempo <= 155 and energy > 0.6 and complexity > 0.6:
        return Genre.DRILL
    if complexity > 0.7:
        return Genre.MELODIC
    if 85 <= tempo <= 100 and 0.4 < energy < 0.7:
        return Genre.BOOM_BAP
    return Genre.UNKNOWN


def analyze_beat_characteristics(
    samples: npt.NDArray[np.floating], sample_rate: int
) -> BeatCharacteristics:
    """Measure tempo, loudness and layering of a beat and guess its style."""
    tempo = int(np.clip(estimate_tempo(samples, sample_rate), MIN_BPM, MAX_BPM))

    if len(samples) > 0:
        rms = float(np.sqrt(np.mean(np.square(samples.astype(np.float64)))))
    else:
        rms = 0.0
    energy = min(1.0, rms * 10)
    complexity = spectral_complexity(samples)

    return BeatCharacteristics(
        tempo=tempo,
        energy=energy,
        spectral_complexity=complexity,
        genre=detect_genre(tempo, energy, complexity),
    )


def _explain(characteristics: BeatCharacteristics, strict: int, loose: int) -> str:
    parts: list[str] = []
    if characteristics.genre is not Genre.UNKNOWN:
        label = characteristics.genre.value
        parts.append(f"{label[0].upper()}{label[1:]} beat detected")

    if characteristics.spectral_complexity > 0.7:
        parts.append("complex layering detected (looser thresholds)")
    elif characteristics.spectral_complexity < 0.3:
        parts.append("simple pattern detected (stricter thresholds)")

    if characteristics.energy > 0.8:
        parts.append("high energy with potential distortion")

    if characteristics.tempo > 160 or characteristics.tempo < 80:
        parts.append(f"unusual tempo ({characteristics.tempo} BPM)")

    if parts:
        return f"Adaptive thresholds: {', '.join(parts)}. Strict: {strict}%, Loose: {loose}%"
    return f"Standard thresholds: Strict {strict}%, Loose {loose}%"


def calculate_adaptive_thresholds(
    characteristics: BeatCharacteristics, config: MatchingConfig | None = None
) -> ConfidenceThresholds:
    """Adjust the strict/loose cut-offs for a beat.

    Args:
        characteristics: Output of :func:`analyze_beat_characteristics`
        config: Supplies the base thresholds used for unrecognised genres

    Returns:
        Thresholds clamped to strict 75-95 and loose 30-60
    """
    config = config or MatchingConfig()
    strict, loose = _GENRE_THRESHOLDS.get(
        characteristics.genre, (config.strict_threshold, config.loose_threshold)
    )

    if characteristics.spectral_complexity > 0.7:
        strict -= 3
        loose -= 5
    elif characteristics.spectral_complexity < 0.3:
        strict += 2
        loose += 3

    if characteristics.energy > 0.8:
        strict -= 2
        loose -= 3

    if characteristics.tempo > 160 or characteristics.tempo < 80:
        strict -= 2
        loose -= 2

    strict = max(STRICT_BOUNDS[0], min(STRICT_BOUNDS[1], strict))
    loose = max(LOOSE_BOUNDS[0], min(LOOSE_BOUNDS[1], loose))

    explanation = _explain(characteristics, strict, loose)
    logger.info(explanation)
    return ConfidenceThresholds(strict=strict, loose=loose, explanation=explanation)


def static_thresholds(config: MatchingConfig | None = None) -> ConfidenceThresholds:
    """Configured thresholds without adaptation."""
    config = config or MatchingConfig()
    return ConfidenceThresholds(
        strict=config.strict_threshold,
        loose=config.loose_threshold,
        explanation=(
            f"Standard thresholds: Strict {config.strict_threshold}%, "
            f"Loose {config.loose_threshold}%"
        ),
    )
