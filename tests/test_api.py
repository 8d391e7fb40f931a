"""Tests for the scan HTTP API."""

from __future__ import annotations

import numpy as np
from litestar.status_codes import (
    HTTP_200_OK,
    HTTP_201_CREATED,
    HTTP_400_BAD_REQUEST,
    HTTP_422_UNPROCESSABLE_ENTITY,
)
from litestar.testing import TestClient

from pulsefind import __version__
from pulsefind.api.app import create_app
from pulsefind.config import Config
from pulsefind.processor.audio_utils import encode_wav

from .helpers import SAMPLE_RATE


def test_health_lists_unconfigured_sources(test_config: Config) -> None:
    with TestClient(app=create_app(test_config)) as client:
        response = client.get("/api/health")

    assert response.status_code == HTTP_200_OK
    body = response.json()
    assert body["status"] == "ok"
    assert body["version"] == __version__
    assert body["sources"] == {
        "youtube": False,
        "spotify": False,
        "tiktok": False,
        "soundcloud": False,
        "oracle": False,
    }


def test_scan_without_sources(test_config: Config, sine_wav: bytes) -> None:
    with TestClient(app=create_app(test_config)) as client:
        response = client.post(
            "/api/scan",
            files={"audio": ("beat.wav", sine_wav, "audio/wav")},
            data={"matching_mode": "strict"},
        )

    assert response.status_code == HTTP_201_CREATED
    body = response.json()
    assert body["matches"] == []
    assert body["matching_mode"] == "strict"
    assert body["deep_scan"] is False
    assert body["segments"][0]["name"] == "FULL AUDIO (comprehensive)"
    # No oracle is configured, so no segment was fingerprinted
    assert body["metrics"]["segments_attempted"] == 0
    assert body["metrics"]["segments_succeeded"] == 0
    assert all(not s["attempted"] and not s["succeeded"] for s in body["segments"])


def test_silent_upload_is_unprocessable(test_config: Config) -> None:
    silent = encode_wav(np.zeros(SAMPLE_RATE, dtype=np.float32), SAMPLE_RATE)
    with TestClient(app=create_app(test_config)) as client:
        response = client.post("/api/scan", files={"audio": ("quiet.wav", silent, "audio/wav")})

    assert response.status_code == HTTP_422_UNPROCESSABLE_ENTITY
    assert response.json()["error"] == "EmptyAudioError"


def test_unsupported_extension_is_rejected(test_config: Config) -> None:
    with TestClient(app=create_app(test_config)) as client:
        response = client.post(
            "/api/scan", files={"audio": ("notes.txt", b"hello", "text/plain")}
        )

    assert response.status_code == HTTP_400_BAD_REQUEST
