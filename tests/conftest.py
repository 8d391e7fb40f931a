"""Pytest configuration and fixtures."""

from __future__ import annotations

import pytest

from pulsefind.config import Config, MatchingConfig
from pulsefind.processor.audio_utils import encode_wav
from pulsefind.processor.models import PCMBuffer

from .helpers import SAMPLE_RATE, sine


@pytest.fixture
def test_config() -> Config:
    """Configuration with no credentials and no corroboration."""
    return Config(matching=MatchingConfig(corroborate=False, adaptive_thresholds=False))


@pytest.fixture
def sine_wav() -> bytes:
    """Ten seconds of a 440 Hz sine at half scale, as 16-bit WAV."""
    return encode_wav(sine(duration_sec=10.0), SAMPLE_RATE)


@pytest.fixture
def beat_buffer() -> PCMBuffer:
    """Thirty seconds of quiet tone with a loud one-second hit at 15s."""
    samples = sine(duration_sec=30.0, amplitude=0.1)
    start = 15 * SAMPLE_RATE
    samples[start : start + SAMPLE_RATE] *= 9.0
    return PCMBuffer(samples=samples, sample_rate=SAMPLE_RATE)
