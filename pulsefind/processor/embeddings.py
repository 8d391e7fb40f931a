"""Spectral embeddings for tempo/pitch-tolerant similarity.

A segment is framed, windowed and reduced to a log mel spectrum per frame;
the frames are then summarised per band as mean, std, max and mean absolute
frame-to-frame delta.

The per-frame spectrum is a direct DFT evaluated on every 4th time sample,
not an FFT. Embedding values (and any similarity thresholds calibrated on
them) depend on that approximation, so replacing it is a breaking change.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from functools import lru_cache

import numpy as np
import numpy.typing as npt
from numpy.lib.stride_tricks import sliding_window_view

from .tempo import estimate_tempo, normalize_tempo

logger = logging.getLogger(__name__)

LOG_EPSILON = 1e-10
REFERENCE_BPM = 120
DFT_TIME_STEP = 4
FRAME_CHUNK = 1024


@dataclass(frozen=True)
class EmbeddingConfig:
    """Framing parameters. Embeddings are comparable only under equal configs."""

    frame_size: int = 512
    hop_size: int = 256
    num_bands: int = 128

    @property
    def dimensions(self) -> int:
        return self.num_bands * 4


DEFAULT_EMBEDDING_CONFIG = EmbeddingConfig()


@dataclass(frozen=True)
class Embedding:
    """A fixed-length segment summary: [mean | std | max | delta] per band."""

    vector: npt.NDArray[np.float32]
    config: EmbeddingConfig = field(default=DEFAULT_EMBEDDING_CONFIG)
    frame_count: int = 0

    def __len__(self) -> int:
        return len(self.vector)

    def similarity(self, other: Embedding) -> float:
        """Cosine similarity, or 0.0 when the embeddings are not comparable."""
        if self.config != other.config:
            return 0.0
        return cosine_similarity(self.vector, other.vector)


@lru_cache(maxsize=8)
def _dft_basis(frame_size: int) -> tuple[npt.NDArray[np.float64], npt.NDArray[np.float64]]:
    """Cosine/sine basis of shape (frame_size // DFT_TIME_STEP, frame_size // 2)."""
    t = np.arange(0, frame_size, DFT_TIME_STEP, dtype=np.float64)
    k = np.arange(frame_size // 2, dtype=np.float64)
    angle = -2.0 * np.pi * np.outer(t, k) / frame_size
    return np.cos(angle), np.sin(angle)


@lru_cache(maxsize=8)
def _mel_filterbank(sample_rate: int, num_bins: int, num_bands: int) -> npt.NDArray[np.float64]:
    """Rectangular mel bands as a (num_bins, num_bands) 0/1 matrix.

    Bands are equal-width on the mel scale up to Nyquist, divided into
    ``num_bands + 1`` steps; band ``b`` covers steps ``b`` to ``b + 1``.
    Adjacent bands share their edge bin.
    """
    mel_max = 2595.0 * np.log10(1.0 + (sample_rate / 2) / 700.0)
    mel_step = mel_max / (num_bands + 1)

    filterbank = np.zeros((num_bins, num_bands), dtype=np.float64)
    for band in range(num_bands):
        freq_low = 700.0 * (10 ** (band * mel_step / 2595.0) - 1)
        freq_high = 700.0 * (10 ** ((band + 1) * mel_step / 2595.0) - 1)
        bin_low = int(np.floor(freq_low * num_bins * 2 / sample_rate))
        bin_high = int(np.ceil(freq_high * num_bins * 2 / sample_rate))
        filterbank[bin_low : min(bin_high, num_bins), band] = 1.0
    return filterbank


def mel_frames(
    samples: npt.NDArray[np.floating],
    sample_rate: int,
    config: EmbeddingConfig = DEFAULT_EMBEDDING_CONFIG,
) -> npt.NDArray[np.float64]:
    """Log mel spectrum per frame, shape (frames, num_bands).

    Frames start every ``hop_size`` samples while a full frame plus one
    sample remains.
    """
    n = len(samples)
    if n <= config.frame_size:
        return np.zeros((0, config.num_bands), dtype=np.float64)

    frames = sliding_window_view(samples, config.frame_size)
    frames = frames[0 : n - config.frame_size : config.hop_size]
    window = np.hamming(config.frame_size)[::DFT_TIME_STEP]
    cos_basis, sin_basis = _dft_basis(config.frame_size)
    filterbank = _mel_filterbank(sample_rate, config.frame_size // 2, config.num_bands)

    # At most FRAME_CHUNK frames are transformed at a time
    mel = np.empty((len(frames), config.num_bands), dtype=np.float64)
    for start in range(0, len(frames), FRAME_CHUNK):
        chunk = frames[start : start + FRAME_CHUNK, ::DFT_TIME_STEP].astype(np.float64) * window
        real = chunk @ cos_basis
        imag = chunk @ sin_basis
        magnitude = np.sqrt(real**2 + imag**2)
        mel[start : start + len(chunk)] = np.log(magnitude @ filterbank + LOG_EPSILON)
    return mel


def aggregate_frame_statistics(frames: npt.NDArray[np.float64], num_bands: int) -> npt.NDArray[np.float32]:
    """Concatenate per-band mean, std, max and mean |delta| into one vector.

    ``max`` is floored at zero, so all-negative log bands report 0. With a
    single frame the delta block is zero. No frames gives a zero vector.
    """
    if len(frames) == 0:
        return np.zeros(num_bands * 4, dtype=np.float32)

    mean = frames.mean(axis=0)
    std = frames.std(axis=0)
    peak = np.maximum(frames.max(axis=0), 0.0)
    if len(frames) > 1:
        delta = np.abs(np.diff(frames, axis=0)).sum(axis=0) / (len(frames) - 1)
    else:
        delta = np.zeros(num_bands, dtype=np.float64)

    return np.concatenate([mean, std, peak, delta]).astype(np.float32)


def extract_embedding(
    samples: npt.NDArray[np.floating],
    sample_rate: int,
    config: EmbeddingConfig = DEFAULT_EMBEDDING_CONFIG,
) -> Embedding:
    """Summarise a segment as a ``4 * num_bands`` vector.

    Args:
        samples: Mono samples
        sample_rate: Sample rate in Hz
        config: Framing parameters

    Returns:
        Embedding (all zeros if the segment is shorter than one frame)
    """
    frames = mel_frames(samples, sample_rate, config)
    vector = aggregate_frame_statistics(frames, config.num_bands)
    return Embedding(vector=vector, config=config, frame_count=len(frames))


def extract_tempo_normalized_embedding(
    samples: npt.NDArray[np.float32],
    sample_rate: int,
    target_bpm: float = REFERENCE_BPM,
    config: EmbeddingConfig = DEFAULT_EMBEDDING_CONFIG,
) -> Embedding:
    """Stretch to ``target_bpm`` before embedding, for sped-up/slowed beats."""
    current_bpm = estimate_tempo(samples, sample_rate)
    logger.debug("Normalizing tempo %d -> %s BPM before embedding", current_bpm, target_bpm)
    stretched = normalize_tempo(samples, current_bpm, target_bpm)
    return extract_embedding(stretched, sample_rate, config)


def cosine_similarity(a: npt.ArrayLike, b: npt.ArrayLike) -> float:
    """Cosine similarity of two vectors.

    Returns 0.0 if the lengths differ or either vector has zero norm.
    """
    first = np.asarray(a, dtype=np.float64).ravel()
    second = np.asarray(b, dtype=np.float64).ravel()
    if len(first) != len(second):
        return 0.0

    norm_first = float(np.linalg.norm(first))
    norm_second = float(np.linalg.norm(second))
    if norm_first == 0.0 or norm_second == 0.0:
        return 0.0
    return float(np.dot(first, second) / (norm_first * norm_second))
