"""Upload normalization: decode, mono, peak-normalize, trim, resample.

The output of this stage is the only audio representation the rest of the
pipeline sees: mono float32 at 44.1kHz, framed as 16-bit PCM WAV on demand.
"""

from __future__ import annotations

import logging

import numpy as np
import numpy.typing as npt

from ..config import PreprocessConfig
from ..errors import EmptyAudioError
from .audio_utils import WAV_HEADER_SIZE, decode_audio, encode_wav
from .models import TARGET_SAMPLE_RATE, PCMBuffer, PreprocessingMetrics

logger = logging.getLogger(__name__)

DEFAULT_TARGET_PEAK = 0.9
DEFAULT_SILENCE_THRESHOLD = 0.01


def to_mono(audio: npt.NDArray[np.floating]) -> npt.NDArray[np.float32]:
    """Average all channels into one."""
    if audio.ndim == 1:
        return audio.astype(np.float32, copy=False)
    return np.mean(audio, axis=1, dtype=np.float64).astype(np.float32)


def normalize_volume(
    samples: npt.NDArray[np.float32], target_peak: float = DEFAULT_TARGET_PEAK
) -> npt.NDArray[np.float32]:
    """Scale so the loudest sample sits at ``target_peak``.

    An all-zero (or empty) buffer is returned unchanged.
    """
    if len(samples) == 0:
        return samples
    peak = float(np.max(np.abs(samples)))
    if peak == 0.0:
        return samples
    gain = target_peak / peak
    return (samples.astype(np.float64) * gain).astype(np.float32)


def detect_silence(
    samples: npt.NDArray[np.float32], threshold: float = DEFAULT_SILENCE_THRESHOLD
) -> tuple[int, int]:
    """Locate the audible region.

    Returns:
        ``(start, stop)`` sample indices of the first and one past the last
        sample whose magnitude exceeds ``threshold``; ``(0, 0)`` if none does.
    """
    audible = np.flatnonzero(np.abs(samples) > threshold)
    if len(audible) == 0:
        return 0, 0
    return int(audible[0]), int(audible[-1]) + 1


def resample(
    samples: npt.NDArray[np.float32], source_rate: int, target_rate: int = TARGET_SAMPLE_RATE
) -> npt.NDArray[np.float32]:
    """Resample by linear interpolation.

    Output length is ``ceil(len(samples) * target_rate / source_rate)``.
    """
    if source_rate == target_rate or len(samples) == 0:
        return samples

    output_length = int(np.ceil(len(samples) * target_rate / source_rate))
    positions = np.arange(output_length, dtype=np.float64) * (source_rate / target_rate)
    resampled = np.interp(positions, np.arange(len(samples), dtype=np.float64), samples)
    return resampled.astype(np.float32)


def analyze_quality(samples: npt.NDArray[np.floating]) -> float:
    """Diagnostic quality score in [0, 1].

    Average of a loudness term (RMS * 10, capped at 1) and a complexity term
    (zero-crossing rate * 100, capped at 1). Not used for accept/reject.
    """
    if len(samples) == 0:
        return 0.0
    as_float = samples.astype(np.float64)
    rms = float(np.sqrt(np.mean(as_float**2)))
    zcr = zero_crossing_count(as_float) / len(as_float)

    rms_score = min(rms * 10.0, 1.0)
    zcr_score = min(zcr * 100.0, 1.0)
    return (rms_score + zcr_score) / 2.0


def zero_crossing_count(samples: npt.NDArray[np.floating]) -> int:
    """Count sign changes, treating 0 as positive."""
    if len(samples) < 2:
        return 0
    non_negative = samples >= 0
    return int(np.count_nonzero(non_negative[1:] != non_negative[:-1]))


def preprocess_with_metrics(
    data: bytes, config: PreprocessConfig | None = None
) -> tuple[PCMBuffer, PreprocessingMetrics]:
    """Normalize an upload and report what was done to it.

    Args:
        data: Raw upload bytes (any container soundfile or ffmpeg can read)
        config: Preprocessing settings (defaults if None)

    Returns:
        Tuple of (buffer, metrics)

    Raises:
        DecodeError: If the container/codec cannot be parsed
        EmptyAudioError: If nothing audible remains after trimming
    """
    config = config or PreprocessConfig()

    audio, source_rate = decode_audio(data)
    if audio.size == 0:
        raise EmptyAudioError("Decoded audio contains no samples")

    channels = audio.shape[1] if audio.ndim > 1 else 1
    original_duration = audio.shape[0] / source_rate
    logger.info(
        "Decoded upload: %d bytes, %.2fs, %d Hz, %d channel(s)",
        len(data),
        original_duration,
        source_rate,
        channels,
    )

    mono = to_mono(audio)
    normalized = normalize_volume(mono, config.target_peak)

    start, stop = detect_silence(normalized, config.silence_threshold)
    if stop <= start:
        raise EmptyAudioError("Audio is silent after trimming")
    trimmed = normalized[start:stop]
    silence_trimmed_ms = (len(normalized) - len(trimmed)) / source_rate * 1000.0

    resampled = resample(trimmed, source_rate, config.target_sample_rate)
    if len(resampled) == 0:
        raise EmptyAudioError("Audio is empty after resampling")

    clipped = np.clip(resampled, -1.0, 1.0).astype(np.float32, copy=False)
    buffer = PCMBuffer(samples=clipped, sample_rate=config.target_sample_rate)

    metrics = PreprocessingMetrics(
        original_bytes=len(data),
        processed_bytes=WAV_HEADER_SIZE + 2 * len(clipped),
        original_sample_rate=source_rate,
        original_channels=channels,
        original_duration=original_duration,
        processed_duration=buffer.duration,
        silence_trimmed_ms=silence_trimmed_ms,
        volume_normalized=normalized is not mono,
        quality_score=analyze_quality(clipped),
    )
    logger.info(
        "Preprocessed: %.2fs, trimmed %.0fms of silence, quality %.2f",
        metrics.processed_duration,
        metrics.silence_trimmed_ms,
        metrics.quality_score,
    )
    return buffer, metrics


def preprocess(data: bytes, config: PreprocessConfig | None = None) -> PCMBuffer:
    """Decode and normalize an upload to mono 44.1kHz.

    Raises:
        DecodeError: If the container/codec cannot be parsed
        EmptyAudioError: If nothing audible remains after trimming
    """
    buffer, _metrics = preprocess_with_metrics(data, config)
    return buffer


def to_wav_bytes(buffer: PCMBuffer) -> bytes:
    """Render a buffer as a 16-bit mono PCM WAV file."""
    return encode_wav(buffer.samples, buffer.sample_rate)


def slice_wav(
    buffer: PCMBuffer, offset: float, duration: float, max_bytes: int | None = None
) -> bytes:
    """Render ``[offset, offset + duration)`` seconds of a buffer as its own WAV.

    The range is clamped to the buffer; an out-of-range slice yields a WAV with
    an empty data chunk. With ``max_bytes`` the slice is shortened from the end
    so the whole file, header included, fits in that many bytes.
    """
    start = min(max(0, int(round(offset * buffer.sample_rate))), len(buffer))
    stop = min(len(buffer), start + max(0, int(round(duration * buffer.sample_rate))))
    if max_bytes is not None:
        stop = min(stop, start + max(0, (max_bytes - WAV_HEADER_SIZE) // 2))
    return encode_wav(buffer.samples[start:stop], buffer.sample_rate)
