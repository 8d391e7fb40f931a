"""Interfaces shared by match sources."""

from __future__ import annotations

from typing import Protocol, runtime_checkable

import httpx

from ..errors import RateLimitExceeded, SearchFailure
from .models import MatchCandidate, MetadataHint, Source


@runtime_checkable
class PlatformSearcher(Protocol):
    """Keyword search against one platform.

    Implementations compute their own confidence and drop candidates below
    their minimum before returning. A searcher without credentials reports
    ``enabled = False`` and returns an empty list without any I/O.
    """

    source: Source

    @property
    def enabled(self) -> bool: ...

    async def search(self, hint: MetadataHint) -> list[MatchCandidate]:
        """Search for tracks matching a title/artist hint.

        Raises:
            RateLimitExceeded: If the platform answers 429
            SearchFailure: On network, auth or payload errors
        """
        ...


def retry_after_seconds(response: httpx.Response) -> float | None:
    """Parse a numeric Retry-After header."""
    value = response.headers.get("Retry-After")
    if value is None:
        return None
    try:
        return float(value)
    except ValueError:
        return None


def check_response(source: str, response: httpx.Response, action: str = "request") -> None:
    """Raise the pipeline's error types for a failed upstream response.

    Raises:
        RateLimitExceeded: On HTTP 429
        SearchFailure: On any other 4xx/5xx
    """
    if response.status_code == 429:
        raise RateLimitExceeded(source, retry_after_seconds(response))
    if response.is_error:
        detail = _error_detail(response)
        raise SearchFailure(
            source,
            f"{action} failed: {response.status_code} {response.reason_phrase}"
            + (f" ({detail})" if detail else ""),
        )


def _error_detail(response: httpx.Response) -> str:
    """Message from a Google/Spotify style JSON error body, if any."""
    try:
        payload = response.json()
    except ValueError:
        return ""
    error = payload.get("error") if isinstance(payload, dict) else None
    if isinstance(error, dict):
        return str(error.get("message", ""))
    return str(error) if error else ""
