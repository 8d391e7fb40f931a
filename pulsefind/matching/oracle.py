"""Fingerprint oracle: identifies commercial tracks from an audio sample."""

from __future__ import annotations

import base64
import hashlib
import hmac
import logging
import time
from collections.abc import Callable
from typing import Any, Protocol, runtime_checkable

import httpx

from ..config import ACRCloudConfig
from ..errors import SearchFailure
from .base import check_response
from .models import MatchCandidate, Source

logger = logging.getLogger(__name__)

IDENTIFY_PATH = "/v1/identify"
DATA_TYPE = "audio"
SIGNATURE_VERSION = "1"


@runtime_checkable
class FingerprintOracle(Protocol):
    """Opaque identification service fed one WAV segment at a time."""

    @property
    def enabled(self) -> bool: ...

    async def identify(self, wav_bytes: bytes, segment_name: str) -> list[MatchCandidate]:
        """Identify a mono 16-bit PCM WAV segment.

        Raises:
            RateLimitExceeded: If the service answers 429
            SearchFailure: On network or protocol errors
        """
        ...


def sign_request(access_key: str, access_secret: str, timestamp: int) -> str:
    """Base64 HMAC-SHA1 signature for an identify request."""
    string_to_sign = "\n".join(
        ["POST", IDENTIFY_PATH, access_key, DATA_TYPE, SIGNATURE_VERSION, str(timestamp)]
    )
    digest = hmac.new(access_secret.encode(), string_to_sign.encode(), hashlib.sha1).digest()
    return base64.b64encode(digest).decode()


def _track_to_candidate(track: dict[str, Any], segment_name: str) -> MatchCandidate | None:
    title = track.get("title")
    if not title:
        return None

    external = track.get("external_metadata") or {}
    spotify = external.get("spotify") or {}
    apple = external.get("applemusic") or external.get("apple_music") or {}
    youtube_id = (external.get("youtube") or {}).get("vid")

    return MatchCandidate(
        title=title,
        artist=", ".join(a.get("name", "") for a in track.get("artists") or []),
        album=(track.get("album") or {}).get("name"),
        source=Source.ORACLE,
        confidence=max(0, min(100, int(track.get("score", 0)))),
        isrc=(track.get("external_ids") or {}).get("isrc"),
        spotify_id=(spotify.get("track") or {}).get("id"),
        spotify_album_id=(spotify.get("album") or {}).get("id"),
        apple_music_id=(apple.get("track") or {}).get("id"),
        youtube_id=youtube_id,
        youtube_url=f"https://www.youtube.com/watch?v={youtube_id}" if youtube_id else None,
        release_date=track.get("release_date"),
        segment_name=segment_name,
    )


class ACRCloudOracle:
    """ACRCloud identify API client.

    Args:
        config: Credentials (None or blank keys disable the oracle)
        client: Shared HTTP client
        clock: Wall-clock source for request timestamps
    """

    source = Source.ORACLE

    def __init__(
        self,
        config: ACRCloudConfig | None,
        client: httpx.AsyncClient,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.config = config
        self.client = client
        self._clock = clock

    @property
    def enabled(self) -> bool:
        return (
            self.config is not None
            and bool(self.config.access_key)
            and bool(self.config.access_secret)
        )

    async def identify(self, wav_bytes: bytes, segment_name: str) -> list[MatchCandidate]:
        if not self.enabled or self.config is None:
            logger.debug("Fingerprint oracle not configured")
            return []

        timestamp = int(self._clock())
        signature = sign_request(self.config.access_key, self.config.access_secret, timestamp)

        logger.info("Identifying %s (%d bytes)", segment_name, len(wav_bytes))
        started = time.perf_counter()
        try:
            response = await self.client.post(
                f"https://{self.config.host}{IDENTIFY_PATH}",
                files={"sample": ("segment.wav", wav_bytes, "audio/wav")},
                data={
                    "access_key": self.config.access_key,
                    "data_type": DATA_TYPE,
                    "signature_version": SIGNATURE_VERSION,
                    "signature": signature,
                    "sample_bytes": str(len(wav_bytes)),
                    "timestamp": str(timestamp),
                },
            )
        except httpx.HTTPError as e:
            raise SearchFailure(self.source.value, f"identify request failed: {e}") from e
        elapsed_ms = (time.perf_counter() - started) * 1000

        check_response(self.source.value, response, "identify")
        data: dict[str, Any] = response.json()

        status = data.get("status") or {}
        code = status.get("code", -1)
        if code != 0:
            logger.info(
                "%s: oracle status %s: %s (%.0fms)", segment_name, code, status.get("msg"), elapsed_ms
            )
            return []

        music = (data.get("metadata") or {}).get("music") or []
        candidates = [
            candidate
            for candidate in (_track_to_candidate(track, segment_name) for track in music)
            if candidate is not None
        ]
        logger.info("%s: oracle found %d results (%.0fms)", segment_name, len(candidates), elapsed_ms)
        return candidates
