"""Acoustic corroboration of low-confidence candidates.

Text search only proves that a track with a similar name exists. When a
candidate links a preview clip, the clip is compared against the upload
itself: tempo-normalized embeddings give a timbral similarity and DTW over
onset envelopes gives a rhythmic one. The blend moves the candidate's
confidence towards what the audio actually supports.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass

import httpx
import numpy as np
import numpy.typing as npt

from ..config import PreprocessConfig
from ..errors import PulseFindError
from ..processor.alignment import alignment_score, downsample, z_normalize
from ..processor.embeddings import Embedding, extract_tempo_normalized_embedding
from ..processor.models import PCMBuffer
from ..processor.preprocessor import preprocess
from ..processor.tempo import onset_envelope
from .models import MatchCandidate

logger = logging.getLogger(__name__)

EMBEDDING_WEIGHT = 0.7
ALIGNMENT_WEIGHT = 0.3
ENVELOPE_POINTS = 256
MAX_PREVIEW_BYTES = 10 * 1024 * 1024


@dataclass(frozen=True)
class AudioProfile:
    """What a recording is compared on."""

    embedding: Embedding
    envelope: npt.NDArray[np.float64]


def build_profile(samples: npt.NDArray[np.float32], sample_rate: int) -> AudioProfile:
    """Tempo-normalized embedding plus a short z-normalized onset envelope."""
    embedding = extract_tempo_normalized_embedding(samples, sample_rate)
    envelope = z_normalize(downsample(onset_envelope(samples), ENVELOPE_POINTS))
    return AudioProfile(embedding=embedding, envelope=envelope)


def corroboration_score(reference: AudioProfile, candidate: AudioProfile) -> tuple[float, float, float]:
    """Compare two profiles.

    Returns:
        Tuple of (score 0-100, embedding similarity 0-1, alignment score 0-1)
    """
    similarity = float(np.clip(reference.embedding.similarity(candidate.embedding), 0.0, 1.0))
    alignment = alignment_score(reference.envelope, candidate.envelope)
    score = 100 * (EMBEDDING_WEIGHT * similarity + ALIGNMENT_WEIGHT * alignment)
    return score, similarity, alignment


def blend_confidence(confidence: int, score: float) -> int:
    """Average a text-search confidence with an acoustic score, clamped to 0-100."""
    return max(0, min(100, round((confidence + score) / 2)))


class Corroborator:
    """Downloads preview clips and re-scores candidates against the upload.

    Args:
        client: Shared HTTP client
        threshold: Only candidates below this confidence are checked
        preprocess_config: Settings used to normalize preview audio
    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        threshold: int = 70,
        preprocess_config: PreprocessConfig | None = None,
    ) -> None:
        self.client = client
        self.threshold = threshold
        self.preprocess_config = preprocess_config or PreprocessConfig()

    def needs_check(self, candidate: MatchCandidate) -> bool:
        return bool(candidate.preview_url) and candidate.confidence < self.threshold

    async def corroborate(
        self, candidates: list[MatchCandidate], reference: PCMBuffer
    ) -> list[MatchCandidate]:
        """Re-score eligible candidates; the rest pass through untouched.

        Each download/analysis runs independently; a failure leaves that
        candidate as it was.
        """
        eligible = [i for i, c in enumerate(candidates) if self.needs_check(c)]
        if not eligible:
            return list(candidates)

        logger.info("Corroborating %d candidate(s) against upload audio", len(eligible))
        reference_profile = await asyncio.to_thread(
            build_profile, reference.samples, reference.sample_rate
        )

        results = await asyncio.gather(
            *(self._check(candidates[i], reference_profile) for i in eligible),
            return_exceptions=True,
        )

        updated = list(candidates)
        for index, result in zip(eligible, results):
            if isinstance(result, BaseException):
                if not isinstance(result, Exception):
                    raise result
                logger.warning(
                    "Corroboration failed for %r: %s", candidates[index].title, result
                )
                continue
            updated[index] = result
        return updated

    async def _check(self, candidate: MatchCandidate, reference: AudioProfile) -> MatchCandidate:
        preview = await self._download(candidate.preview_url or "")

        try:
            profile = await asyncio.to_thread(self._profile_preview, preview)
        except PulseFindError as e:
            logger.warning("Preview for %r is not usable audio: %s", candidate.title, e)
            return candidate

        score, similarity, alignment = corroboration_score(reference, profile)
        confidence = blend_confidence(candidate.confidence, score)
        logger.info(
            "Corroborated %r: similarity=%.2f alignment=%.2f score=%.0f confidence %d -> %d",
            candidate.title,
            similarity,
            alignment,
            score,
            candidate.confidence,
            confidence,
        )
        return candidate.model_copy(
            update={
                "confidence": confidence,
                "corroboration_score": score,
                "embedding_similarity": similarity,
                "alignment_score": alignment,
            }
        )

    async def _download(self, url: str) -> bytes:
        """Fetch a preview, giving up as soon as it passes MAX_PREVIEW_BYTES."""
        chunks: list[bytes] = []
        received = 0
        async with self.client.stream("GET", url, follow_redirects=True) as response:
            response.raise_for_status()
            declared = int(response.headers.get("Content-Length") or 0)
            if declared > MAX_PREVIEW_BYTES:
                raise ValueError(f"Preview too large ({declared} bytes)")
            async for chunk in response.aiter_bytes():
                received += len(chunk)
                if received > MAX_PREVIEW_BYTES:
                    raise ValueError(f"Preview exceeds {MAX_PREVIEW_BYTES} bytes")
                chunks.append(chunk)
        return b"".join(chunks)

    def _profile_preview(self, data: bytes) -> AudioProfile:
        buffer = preprocess(data, self.preprocess_config)
        return build_profile(buffer.samples, buffer.sample_rate)
