"""Shared utility functions."""

from __future__ import annotations

import hashlib
import logging
import re
from pathlib import Path
from typing import TYPE_CHECKING

from .matching.models import MetadataHint

if TYPE_CHECKING:
    from .config import LoggingConfig

# Upload-name decorations that carry no title/artist information
_BRACKETED_RE = re.compile(r"[\(\[][^\)\]]*[\)\]]")
_NOISE_RE = re.compile(
    r"\b(?:free|type\s+beat|instrumental|official\s+audio|beat|prod\.?\s+by\s+\S+|prod\.?\s+\S+|\d{2,3}\s*bpm)\b",
    re.IGNORECASE,
)
_ARTIST_SEPARATOR_RE = re.compile(r"\s+[-–—]\s+")


def compute_bytes_hash(data: bytes) -> str:
    """Compute SHA256 hash of an upload for deduplication.

    Args:
        data: Raw upload bytes

    Returns:
        Hex digest of SHA256 hash
    """
    sha256 = hashlib.sha256()
    for start in range(0, len(data), 8192):
        sha256.update(data[start : start + 8192])
    return sha256.hexdigest()


def derive_metadata_hint(filename: str | None) -> MetadataHint | None:
    """Guess a title/artist pair from an upload's filename.

    Producers commonly name files like ``"Artist - Title (prod. Someone).mp3"``
    or ``"dark_trap_type_beat_140bpm.wav"``. Bracketed tags, tempo markers and
    marketing words are dropped; an ``Artist - Title`` split is honoured when
    present.

    Args:
        filename: Original upload filename (path components are ignored)

    Returns:
        A hint, or None if nothing meaningful remains
    """
    if not filename:
        return None

    name = Path(filename).stem
    name = name.replace("_", " ")
    name = _BRACKETED_RE.sub(" ", name)

    parts = _ARTIST_SEPARATOR_RE.split(name, maxsplit=1)
    cleaned = [" ".join(_NOISE_RE.sub(" ", part).split()) for part in parts]

    if len(cleaned) == 2 and cleaned[0] and cleaned[1]:
        return MetadataHint(title=cleaned[1], artist=cleaned[0])

    title = " ".join(part for part in cleaned if part)
    if not title:
        return None
    return MetadataHint(title=title, artist=None)


def setup_logging(config: LoggingConfig) -> None:
    """Setup application logging.

    Args:
        config: Logging configuration
    """
    handlers: list[logging.Handler] = [logging.StreamHandler()]
    if config.file:
        handlers.append(logging.FileHandler(config.file))

    logging.basicConfig(
        level=getattr(logging, config.level),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        handlers=handlers,
    )
