"""Supplementary time-domain descriptors and the upload fingerprint hash.

These are the same simplified, non-FFT approximations the rest of the
processor uses: "spectral" here means statistics of sample magnitudes.
"""

from __future__ import annotations

import numpy as np
import numpy.typing as npt
from pydantic import BaseModel

from .audio_utils import quantize_pcm16
from .preprocessor import zero_crossing_count

CENTROID_FRAME_SIZE = 2048
ROLLOFF_ENERGY_FRACTION = 0.9
FLUX_FRAME_SIZE = 2048
FLUX_DECIMATION = 4
QUICK_HASH_POINTS = 100


class SpectralFeatures(BaseModel):
    """Brightness/texture descriptors of a segment."""

    centroid: float
    rolloff: float
    flux: float
    zcr: float


def spectral_centroid(samples: npt.NDArray[np.floating], sample_rate: int) -> float:
    """Magnitude-weighted "frequency" over the first 2048 samples.

    Sample ``i`` is assigned frequency ``i * sample_rate / 2048``.
    """
    head = np.abs(samples[: min(CENTROID_FRAME_SIZE, len(samples))].astype(np.float64))
    denominator = float(head.sum())
    if denominator <= 0:
        return 0.0
    frequencies = np.arange(len(head), dtype=np.float64) * sample_rate / CENTROID_FRAME_SIZE
    return float(np.dot(frequencies, head) / denominator)


def spectral_rolloff(samples: npt.NDArray[np.floating], sample_rate: int) -> float:
    """Fraction of magnitude-sorted samples holding 90% of the energy, scaled to Nyquist."""
    if len(samples) == 0:
        return 0.0
    magnitudes = np.sort(np.abs(samples.astype(np.float64)))[::-1]
    cumulative = np.cumsum(magnitudes**2)
    total = cumulative[-1]
    index = int(np.searchsorted(cumulative, ROLLOFF_ENERGY_FRACTION * total, side="left"))
    index = min(index, len(magnitudes) - 1)
    return index / len(magnitudes) * (sample_rate / 2)


def extract_spectral_features(
    samples: npt.NDArray[np.floating], sample_rate: int
) -> SpectralFeatures:
    """Centroid, rolloff, positive magnitude flux and zero-crossing rate."""
    if len(samples) == 0:
        return SpectralFeatures(centroid=0.0, rolloff=0.0, flux=0.0, zcr=0.0)

    magnitudes = np.abs(samples.astype(np.float64))
    flux = float(np.clip(np.diff(magnitudes), 0.0, None).sum() / len(samples))

    return SpectralFeatures(
        centroid=spectral_centroid(samples, sample_rate),
        rolloff=spectral_rolloff(samples, sample_rate),
        flux=flux,
        zcr=zero_crossing_count(samples) / len(samples),
    )


def spectral_flux(
    samples: npt.NDArray[np.floating], frame_size: int = FLUX_FRAME_SIZE
) -> npt.NDArray[np.float64]:
    """Per-frame onset strength.

    Non-overlapping frames, magnitudes taken from every 4th sample; each
    frame's value is the sum of positive increases over the previous frame
    (the first frame is 0). Trailing partial frames are dropped.
    """
    num_frames = len(samples) // frame_size
    if num_frames == 0:
        return np.zeros(0, dtype=np.float64)

    frames = samples[: num_frames * frame_size].astype(np.float64).reshape(num_frames, frame_size)
    magnitudes = np.abs(frames[:, ::FLUX_DECIMATION])

    flux = np.zeros(num_frames, dtype=np.float64)
    flux[1:] = np.clip(np.diff(magnitudes, axis=0), 0.0, None).sum(axis=1)
    return flux


def onset_density(
    samples: npt.NDArray[np.floating], sample_rate: int, frame_size: int = FLUX_FRAME_SIZE
) -> float:
    """Flux frames rising more than one standard deviation above the mean, per second."""
    flux = spectral_flux(samples, frame_size)
    if len(flux) == 0 or sample_rate <= 0:
        return 0.0
    threshold = float(flux.mean() + flux.std())
    onsets = int(np.count_nonzero(flux > threshold))
    return onsets / (len(samples) / sample_rate)


def quick_hash(samples: npt.NDArray[np.floating]) -> str:
    """Coarse loudness signature: ~100 windowed RMS values of the 16-bit signal.

    Each window's RMS is quantized to ``floor(rms * 100)`` and the values are
    joined with ``-``. Identical uploads give identical hashes; it is not
    robust to any re-encoding.
    """
    if len(samples) == 0:
        return ""

    pcm = quantize_pcm16(samples).astype(np.float64) / 32768
    step = max(1, len(pcm) // QUICK_HASH_POINTS)

    signature: list[str] = []
    for start in range(0, len(pcm), step):
        window = pcm[start : start + step]
        rms = float(np.sqrt(np.mean(window**2)))
        signature.append(str(int(np.floor(rms * 100))))
    return "-".join(signature)
