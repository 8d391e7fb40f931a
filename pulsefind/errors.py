"""Exception taxonomy for the scan pipeline.

Audio-level errors abort a scan and are surfaced to the caller. Source-level
errors are recovered by the aggregator as empty result sets.
"""

from __future__ import annotations


class PulseFindError(Exception):
    """Base class for all pulsefind errors."""


class DecodeError(PulseFindError):
    """The uploaded bytes could not be parsed as audio."""


class EmptyAudioError(PulseFindError):
    """Nothing audible is left after decoding and silence trimming."""


class InsufficientAudioError(PulseFindError):
    """The buffer is shorter than one analysis window."""


class SearchFailure(PulseFindError):
    """A single match source failed (network, auth, quota, bad payload)."""

    def __init__(self, source: str, message: str):
        self.source = source
        self.message = message
        super().__init__(f"{source}: {message}")


class RateLimitExceeded(SearchFailure):
    """An upstream API refused the request with a rate-limit status.

    Never retried automatically; callers are expected to back off.
    """

    def __init__(self, source: str, retry_after: float | None = None):
        self.retry_after = retry_after
        detail = "rate limit exceeded"
        if retry_after is not None:
            detail += f" (retry after {retry_after:g}s)"
        super().__init__(source, detail)
