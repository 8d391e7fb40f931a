"""Data models for the audio processing stages."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

import numpy as np
import numpy.typing as npt
from pydantic import BaseModel

TARGET_SAMPLE_RATE = 44100


class Priority(str, Enum):
    """Matching priority of a selected segment."""

    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"

    @property
    def rank(self) -> int:
        """Sort rank (high first)."""
        return _PRIORITY_RANK[self]


_PRIORITY_RANK = {Priority.HIGH: 0, Priority.MEDIUM: 1, Priority.LOW: 2}


@dataclass(frozen=True)
class PCMBuffer:
    """Decoded mono audio.

    Samples are float32 in [-1.0, 1.0]; after preprocessing the sample rate
    is always 44100 Hz.
    """

    samples: npt.NDArray[np.float32]
    sample_rate: int = TARGET_SAMPLE_RATE

    @property
    def duration(self) -> float:
        """Duration in seconds."""
        if self.sample_rate <= 0:
            return 0.0
        return len(self.samples) / self.sample_rate

    def __len__(self) -> int:
        return len(self.samples)


@dataclass(frozen=True)
class AudioSegment:
    """A time range of the decoded buffer selected for matching.

    ``offset`` and ``duration`` are seconds into the decoded PCM buffer,
    never positions in the original (compressed) upload.
    """

    offset: float
    duration: float
    energy: float
    uniqueness: float
    name: str
    priority: Priority
    is_full_track: bool = False

    @property
    def end(self) -> float:
        return self.offset + self.duration

    def sample_range(self, sample_rate: int, total_samples: int) -> tuple[int, int]:
        """Clamp the segment to ``[start, stop)`` sample indices of a buffer."""
        start = min(max(0, int(round(self.offset * sample_rate))), total_samples)
        stop = min(total_samples, start + int(round(self.duration * sample_rate)))
        return start, stop


class PreprocessingMetrics(BaseModel):
    """Diagnostics gathered while normalizing an upload."""

    original_bytes: int
    processed_bytes: int
    original_sample_rate: int
    original_channels: int
    original_duration: float
    processed_duration: float
    silence_trimmed_ms: float
    volume_normalized: bool
    quality_score: float
