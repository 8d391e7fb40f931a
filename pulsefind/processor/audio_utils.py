"""Audio decoding and WAV framing.

Uploads are decoded with soundfile (libsndfile) when the container is one it
understands (WAV, FLAC, OGG, AIFF, recent builds also MP3). Anything else is
piped through ffmpeg/ffprobe. Output is always framed as a canonical 44-byte
header PCM WAV, written by hand so the header layout is exact.
"""

from __future__ import annotations

import io
import logging
import struct
import subprocess

import numpy as np
import numpy.typing as npt
import soundfile as sf  # pyright: ignore[reportMissingTypeStubs]

from ..errors import DecodeError

logger = logging.getLogger(__name__)

WAV_HEADER_SIZE = 44
BITS_PER_SAMPLE = 16


def decode_audio(data: bytes) -> tuple[npt.NDArray[np.float32], int]:
    """Decode raw upload bytes to float samples.

    Args:
        data: Raw file contents

    Returns:
        Tuple of (audio_data, sample_rate) where audio_data has shape
        (samples, channels) and dtype float32.

    Raises:
        DecodeError: If neither soundfile nor ffmpeg can parse the input
    """
    if not data:
        raise DecodeError("Empty upload")

    try:
        with sf.SoundFile(io.BytesIO(data)) as audio_file:
            sample_rate = int(audio_file.samplerate)
            audio = audio_file.read(dtype="float32", always_2d=True)
        return audio, sample_rate
    except (sf.SoundFileError, RuntimeError) as e:
        logger.debug("soundfile could not decode upload (%s), trying ffmpeg", e)

    return _decode_with_ffmpeg(data)


def _decode_with_ffmpeg(data: bytes) -> tuple[npt.NDArray[np.float32], int]:
    """Decode via ffmpeg, reading the upload from stdin."""
    try:
        sample_rate, channels = _probe_stream(data)

        cmd = [
            "ffmpeg",
            "-v",
            "error",
            "-i",
            "pipe:0",
            "-f",
            "f32le",  # 32-bit float PCM
            "-acodec",
            "pcm_f32le",
            "-",  # Output to stdout
        ]
        result = subprocess.run(cmd, input=data, check=True, capture_output=True)
    except FileNotFoundError as e:
        raise DecodeError("Unsupported audio format and ffmpeg is not installed") from e
    except subprocess.CalledProcessError as e:
        stderr = e.stderr.decode(errors="replace").strip() if e.stderr else ""
        raise DecodeError(f"Could not decode audio: {stderr or e}") from e

    audio = np.frombuffer(result.stdout, dtype=np.float32)
    usable = len(audio) - len(audio) % channels
    return audio[:usable].reshape(-1, channels), sample_rate


def _probe_stream(data: bytes) -> tuple[int, int]:
    """Get (sample_rate, channels) of the first audio stream using ffprobe.

    Raises:
        DecodeError: If no audio stream is found
        subprocess.CalledProcessError: If ffprobe fails
    """
    cmd = [
        "ffprobe",
        "-v",
        "error",
        "-select_streams",
        "a:0",
        "-show_entries",
        "stream=sample_rate,channels",
        "-of",
        "default=noprint_wrappers=1",
        "-i",
        "pipe:0",
    ]
    result = subprocess.run(cmd, input=data, check=True, capture_output=True)

    fields: dict[str, str] = {}
    for line in result.stdout.decode(errors="replace").splitlines():
        key, _, value = line.partition("=")
        fields[key.strip()] = value.strip()

    try:
        sample_rate = int(fields["sample_rate"])
        channels = int(fields["channels"])
    except (KeyError, ValueError) as e:
        raise DecodeError("No audio stream found in upload") from e

    if sample_rate <= 0 or channels <= 0:
        raise DecodeError(f"Invalid stream parameters: {sample_rate} Hz, {channels} channels")
    return sample_rate, channels


def quantize_pcm16(samples: npt.NDArray[np.floating]) -> npt.NDArray[np.int16]:
    """Clamp to [-1, 1] and convert to signed 16-bit.

    Negative values scale by 32768 and positive by 32767, truncating toward zero.
    """
    clipped = np.clip(samples.astype(np.float64), -1.0, 1.0)
    scaled = np.where(clipped < 0, clipped * 0x8000, clipped * 0x7FFF)
    return np.trunc(scaled).astype(np.int16)


def encode_wav(samples: npt.NDArray[np.floating], sample_rate: int) -> bytes:
    """Frame mono samples as a 16-bit PCM WAV file.

    Args:
        samples: Mono float samples
        sample_rate: Sample rate in Hz

    Returns:
        Canonical WAV bytes (44-byte header + little-endian PCM)
    """
    pcm = quantize_pcm16(samples).astype("<i2").tobytes()
    data_length = len(pcm)
    channels = 1
    block_align = channels * BITS_PER_SAMPLE // 8
    byte_rate = sample_rate * block_align

    header = struct.pack(
        "<4sI4s4sIHHIIHH4sI",
        b"RIFF",
        36 + data_length,
        b"WAVE",
        b"fmt ",
        16,  # fmt chunk size
        1,  # PCM format tag
        channels,
        sample_rate,
        byte_rate,
        block_align,
        BITS_PER_SAMPLE,
        b"data",
        data_length,
    )
    return header + pcm
