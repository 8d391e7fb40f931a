"""Tempo and pitch estimation and normalization.

Both estimators are deliberately coarse. Tempo autocorrelates a frame-RMS
onset envelope, so it has no sub-beat resolution and favours strong
low-frequency transients. Pitch is derived from the zero-crossing rate and
is only a bias hint, not absolute pitch detection. Normalization is plain
linear-interpolation resampling at the stretch/shift factor, so tempo and
pitch move together.
"""

from __future__ import annotations

import math

import numpy as np
import numpy.typing as npt

from .preprocessor import zero_crossing_count

ONSET_FRAME_SIZE = 2048
ONSET_HOP_SIZE = 512
MIN_BPM = 60
MAX_BPM = 180
REFERENCE_PITCH_HZ = 440.0  # A4


def onset_envelope(
    samples: npt.NDArray[np.floating],
    frame_size: int = ONSET_FRAME_SIZE,
    hop_size: int = ONSET_HOP_SIZE,
) -> npt.NDArray[np.float64]:
    """Root of summed squares per frame.

    Frames start every ``hop_size`` samples while a full frame plus one
    sample remains, so a signal of exactly ``frame_size`` samples has no frames.
    """
    if len(samples) <= frame_size:
        return np.zeros(0, dtype=np.float64)

    squares = np.square(samples.astype(np.float64))
    cumulative = np.concatenate(([0.0], np.cumsum(squares)))
    starts = np.arange(0, len(samples) - frame_size, hop_size)
    frame_energy = cumulative[starts + frame_size] - cumulative[starts]
    return np.sqrt(np.maximum(frame_energy, 0.0))


def estimate_tempo(samples: npt.NDArray[np.floating], sample_rate: int) -> int:
    """Estimate BPM by autocorrelating the onset envelope over 60-180 BPM lags.

    Returns:
        Rounded BPM. When no lag correlates positively the shortest lag wins,
        which maps to just above 180 BPM at 44.1kHz.
    """
    envelope = onset_envelope(samples)

    min_lag = math.floor((60 / MAX_BPM) * sample_rate / ONSET_HOP_SIZE)
    max_lag = math.floor((60 / MIN_BPM) * sample_rate / ONSET_HOP_SIZE)
    min_lag = max(1, min_lag)
    upper = min(max_lag, len(envelope) // 2)

    best_lag = min_lag
    max_correlation = 0.0
    for lag in range(min_lag, upper + 1):
        correlation = float(np.dot(envelope[:-lag], envelope[lag:]))
        if correlation > max_correlation:
            max_correlation = correlation
            best_lag = lag

    return round(60 * sample_rate / (best_lag * ONSET_HOP_SIZE))


def estimate_pitch_shift(samples: npt.NDArray[np.floating], sample_rate: int) -> float:
    """Semitone offset from A4 of the zero-crossing-derived frequency.

    Returns 0.0 for signals with no zero crossings (including empty input).
    """
    if len(samples) == 0 or sample_rate <= 0:
        return 0.0
    crossings = zero_crossing_count(samples)
    if crossings == 0:
        return 0.0

    duration = len(samples) / sample_rate
    frequency = crossings / (2 * duration)
    return 12 * math.log2(frequency / REFERENCE_PITCH_HZ)


def _stretch(samples: npt.NDArray[np.float32], factor: float) -> npt.NDArray[np.float32]:
    """Linear-interpolation resample; output length is ``floor(n / factor)``."""
    n = len(samples)
    output_length = int(math.floor(n / factor))
    if output_length <= 0 or n == 0:
        return np.zeros(0, dtype=np.float32)

    source = np.arange(output_length, dtype=np.float64) * factor
    left = np.minimum(np.floor(source).astype(np.int64), n - 1)
    right = np.minimum(left + 1, n - 1)
    fraction = source - left

    as_float = samples.astype(np.float64)
    output = as_float[left] * (1 - fraction) + as_float[right] * fraction
    return output.astype(np.float32)


def normalize_tempo(
    samples: npt.NDArray[np.float32], from_bpm: float, to_bpm: float
) -> npt.NDArray[np.float32]:
    """Time-stretch from ``from_bpm`` to ``to_bpm``.

    A factor of exactly 1.0 returns ``samples`` itself.

    Raises:
        ValueError: If either tempo is not positive
    """
    if from_bpm <= 0 or to_bpm <= 0:
        raise ValueError(f"Tempos must be positive, got {from_bpm} -> {to_bpm}")
    factor = to_bpm / from_bpm
    if factor == 1.0:
        return samples
    return _stretch(samples, factor)


def normalize_pitch(samples: npt.NDArray[np.float32], semitones: float) -> npt.NDArray[np.float32]:
    """Shift by ``semitones`` through resampling at ``2^(semitones/12)``.

    Zero semitones returns ``samples`` itself.
    """
    if semitones == 0:
        return samples
    return _stretch(samples, 2 ** (semitones / 12))
