"""Segment selection for matching.

Picks a bounded, prioritized set of time ranges from a preprocessed buffer:
the full track, energy peaks ranked by spectral-band variance, and fixed
coverage windows. Everything here works in seconds of the decoded buffer.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

import numpy as np
import numpy.typing as npt
from scipy.signal import find_peaks

from ..errors import InsufficientAudioError
from .models import AudioSegment, PCMBuffer, Priority

logger = logging.getLogger(__name__)

# Analysis parameters
WINDOW_SIZE = 44100  # 1 second at 44.1kHz
HOP_SIZE = 22050  # 50% overlap
NUM_BANDS = 32

PEAK_SEGMENT_SEC = 60.0
MID_SEGMENT_SEC = 40.0
LATE_SEGMENT_SEC = 30.0
COVERAGE_SEGMENT_SEC = 40.0
COVERAGE_POSITIONS = (0.15, 0.35, 0.55, 0.75, 0.90)
DEEP_PEAK_COUNT = 3

FULL_TRACK_NAME = "FULL AUDIO (comprehensive)"


@dataclass(frozen=True)
class SignalProfile:
    """Per-window energy/variance series and the extrema found in it."""

    energies: npt.NDArray[np.float64]
    variances: npt.NDArray[np.float64]
    peaks: list[int]  # window indices
    valleys: list[int]

    @property
    def min_energy(self) -> float:
        return float(np.min(self.energies))

    @property
    def max_energy(self) -> float:
        return float(np.max(self.energies))

    @property
    def avg_energy(self) -> float:
        return float(np.mean(self.energies))

    def peak_sample(self, window_index: int) -> int:
        """Sample index where a window starts."""
        return window_index * HOP_SIZE


def _window_starts(num_samples: int) -> npt.NDArray[np.int64]:
    if num_samples < WINDOW_SIZE:
        return np.empty(0, dtype=np.int64)
    return np.arange(0, num_samples - WINDOW_SIZE + 1, HOP_SIZE, dtype=np.int64)


def analyze_audio_characteristics(samples: npt.NDArray[np.floating]) -> SignalProfile:
    """Slide a 1s window at 0.5s hop, measuring RMS energy and band variance.

    Band variance splits each window into 32 equal contiguous chunks, sums the
    squared samples of each chunk and takes the population variance of those
    32 sums. Peaks and valleys are strict local extrema of the energy series;
    the first and last window never qualify.

    Raises:
        InsufficientAudioError: If the signal is shorter than one window
    """
    starts = _window_starts(len(samples))
    if len(starts) == 0:
        raise InsufficientAudioError(
            f"Need at least {WINDOW_SIZE} samples for segment analysis, got {len(samples)}"
        )

    # Prefix sums of squares make every window/band sum O(1)
    squares = np.square(samples.astype(np.float64))
    cumulative = np.concatenate(([0.0], np.cumsum(squares)))

    window_sums = cumulative[starts + WINDOW_SIZE] - cumulative[starts]
    energies = np.sqrt(np.maximum(window_sums, 0.0) / WINDOW_SIZE)

    band_size = WINDOW_SIZE // NUM_BANDS
    edges = starts[:, None] + np.arange(NUM_BANDS + 1, dtype=np.int64)[None, :] * band_size
    band_sums = np.diff(cumulative[edges], axis=1)
    variances = np.var(band_sums, axis=1)

    # Single-window plateaus only: a peak is strictly above both neighbours
    peaks = find_peaks(energies, plateau_size=(1, 1))[0].tolist()
    valleys = find_peaks(-energies, plateau_size=(1, 1))[0].tolist()

    return SignalProfile(energies=energies, variances=variances, peaks=peaks, valleys=valleys)


def _clamped(offset: float, duration: float, total: float) -> tuple[float, float]:
    offset = min(max(0.0, offset), total)
    return offset, max(0.0, min(duration, total - offset))


def _full_track(profile: SignalProfile, total: float) -> AudioSegment:
    return AudioSegment(
        offset=0.0,
        duration=total,
        energy=profile.avg_energy,
        uniqueness=1.0,
        name=FULL_TRACK_NAME,
        priority=Priority.HIGH,
        is_full_track=True,
    )


def _peaks_by_uniqueness(profile: SignalProfile) -> list[int]:
    # Stable sort keeps earlier peaks first on equal variance
    return sorted(profile.peaks, key=lambda w: -profile.variances[w])


def _peak_segment(
    profile: SignalProfile, window_index: int, sample_rate: int, total: float, name: str
) -> AudioSegment:
    offset, duration = _clamped(
        profile.peak_sample(window_index) / sample_rate, PEAK_SEGMENT_SEC, total
    )
    return AudioSegment(
        offset=offset,
        duration=duration,
        energy=float(profile.energies[window_index]),
        uniqueness=float(profile.variances[window_index]),
        name=name,
        priority=Priority.HIGH,
    )


def _positioned_segment(
    total: float,
    position: float,
    duration: float,
    energy: float,
    uniqueness: float,
    name: str,
    priority: Priority,
) -> AudioSegment:
    offset, duration = _clamped(total * position, duration, total)
    return AudioSegment(
        offset=offset,
        duration=duration,
        energy=energy,
        uniqueness=uniqueness,
        name=name,
        priority=priority,
    )


def _standard_segments(
    profile: SignalProfile, sample_rate: int, total: float
) -> list[AudioSegment]:
    segments = [_full_track(profile, total)]

    ranked = _peaks_by_uniqueness(profile)
    if ranked:
        segments.append(
            _peak_segment(profile, ranked[0], sample_rate, total, "PEAK DROP (highest energy)")
        )

    segments.append(
        _positioned_segment(
            total,
            0.4,
            MID_SEGMENT_SEC,
            profile.avg_energy,
            0.7,
            "MID SECTION (40%)",
            Priority.MEDIUM,
        )
    )
    segments.append(
        _positioned_segment(
            total,
            0.75,
            LATE_SEGMENT_SEC,
            profile.avg_energy * 0.8,
            0.6,
            "LATE SECTION (75%)",
            Priority.MEDIUM,
        )
    )
    return segments


def _deep_segments(profile: SignalProfile, sample_rate: int, total: float) -> list[AudioSegment]:
    segments = [_full_track(profile, total)]

    for i, window_index in enumerate(_peaks_by_uniqueness(profile)[:DEEP_PEAK_COUNT]):
        segments.append(
            _peak_segment(profile, window_index, sample_rate, total, f"PEAK {i + 1} (high energy)")
        )

    for idx, position in enumerate(COVERAGE_POSITIONS):
        segments.append(
            _positioned_segment(
                total,
                position,
                COVERAGE_SEGMENT_SEC,
                # Later positions get a linearly decayed weight
                profile.avg_energy * (1 - position * 0.3),
                0.6,
                f"COVERAGE {int(position * 100)}%",
                Priority.MEDIUM if idx < 2 else Priority.LOW,
            )
        )
    return segments


def _sort_key(segment: AudioSegment) -> tuple[int, bool, float]:
    # Full track leads its priority group regardless of energy
    return (segment.priority.rank, not segment.is_full_track, -segment.energy)


def select_segments(
    buffer: PCMBuffer, target_count: int, deep_scan: bool = False
) -> list[AudioSegment]:
    """Choose the segments to submit for matching.

    Args:
        buffer: Preprocessed mono buffer
        target_count: Maximum number of segments to return
        deep_scan: Add top-3 peaks and five coverage windows

    Returns:
        Segments ordered by priority (high first), then energy descending,
        with the full track always first

    Raises:
        InsufficientAudioError: If the buffer is shorter than one analysis window
    """
    profile = analyze_audio_characteristics(buffer.samples)
    total = buffer.duration
    logger.info(
        "Energy profile: min=%.3f, max=%.3f, avg=%.3f, %d peaks, %d valleys",
        profile.min_energy,
        profile.max_energy,
        profile.avg_energy,
        len(profile.peaks),
        len(profile.valleys),
    )

    if deep_scan:
        segments = _deep_segments(profile, buffer.sample_rate, total)
    else:
        segments = _standard_segments(profile, buffer.sample_rate, total)

    segments.sort(key=_sort_key)
    selected = segments[: max(0, target_count)]

    for segment in selected:
        logger.info(
            "  %s: offset=%.1fs, duration=%.1fs, energy=%.3f, uniqueness=%.3f, priority=%s",
            segment.name,
            segment.offset,
            segment.duration,
            segment.energy,
            segment.uniqueness,
            segment.priority.value,
        )
    return selected


def extract_segment_samples(buffer: PCMBuffer, segment: AudioSegment) -> npt.NDArray[np.float32]:
    """Samples of ``buffer`` covered by ``segment`` (clamped to the buffer)."""
    start, stop = segment.sample_range(buffer.sample_rate, len(buffer))
    return buffer.samples[start:stop]
