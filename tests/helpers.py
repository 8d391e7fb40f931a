"""Synthetic audio and HTTP helpers shared by the tests."""

from __future__ import annotations

from collections.abc import Callable

import httpx
import numpy as np

SAMPLE_RATE = 44100


def sine(
    frequency: float = 440.0,
    duration_sec: float = 1.0,
    amplitude: float = 0.5,
    sr: int = SAMPLE_RATE,
) -> np.ndarray:
    """Generate a sine wave as a float32 array."""
    t = np.arange(int(sr * duration_sec)) / sr
    return (np.sin(2 * np.pi * frequency * t) * amplitude).astype(np.float32)


def click_track(bpm: float, duration_sec: float = 10.0, sr: int = SAMPLE_RATE) -> np.ndarray:
    """Short bursts of noise on every beat."""
    rng = np.random.default_rng(0)
    samples = np.zeros(int(sr * duration_sec), dtype=np.float32)
    interval = int(round(60 / bpm * sr))
    for start in range(0, len(samples) - 256, interval):
        samples[start : start + 256] = rng.uniform(-0.8, 0.8, 256)
    return samples


def mock_client(handler: Callable[[httpx.Request], httpx.Response]) -> httpx.AsyncClient:
    """AsyncClient whose requests are answered by ``handler``."""
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))
