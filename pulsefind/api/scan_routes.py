"""API endpoints for scanning uploads."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Annotated, Any

from litestar import Request, Response, get, post
from litestar.enums import RequestEncodingType
from litestar.exceptions import ValidationException
from litestar.params import Body
from litestar.status_codes import HTTP_422_UNPROCESSABLE_ENTITY, HTTP_429_TOO_MANY_REQUESTS

from .. import __version__
from ..errors import DecodeError, EmptyAudioError, InsufficientAudioError, RateLimitExceeded
from ..matching.models import ScanResult
from ..processor.core import scan_upload
from .models import ErrorResponse, HealthResponse, ScanForm
from .state import AppState

logger = logging.getLogger(__name__)

MAX_FILE_SIZE = 50 * 1024 * 1024
ALLOWED_EXTENSIONS = {".wav", ".wave", ".flac", ".mp3", ".m4a", ".aac", ".ogg", ".opus", ".aiff"}


@post("/api/scan")
async def scan(
    data: Annotated[ScanForm, Body(media_type=RequestEncodingType.MULTI_PART)],
    state: AppState,
) -> ScanResult:
    """Scan an uploaded beat for published songs that use it.

    Args:
        data: Multipart form with the ``audio`` file and scan options
        state: Litestar application state

    Returns:
        Ranked matches and scan metrics

    Raises:
        ValidationException: If the file is missing, too large or of an unsupported type
    """
    upload = data.audio
    file_ext = Path(upload.filename or "").suffix.lower()
    if file_ext and file_ext not in ALLOWED_EXTENSIONS:
        raise ValidationException(
            f"Unsupported file type: {file_ext}. Allowed: {', '.join(sorted(ALLOWED_EXTENSIONS))}"
        )

    content = await upload.read()
    if not content:
        raise ValidationException("Uploaded file is empty")
    if len(content) > MAX_FILE_SIZE:
        raise ValidationException(
            f"File too large: {len(content) / 1024 / 1024:.1f}MB. "
            + f"Maximum: {MAX_FILE_SIZE // 1024 // 1024}MB"
        )

    return await scan_upload(
        content,
        filename=upload.filename,
        deep_scan=data.deep_scan,
        matching_mode=data.matching_mode,
        config=state.config,
        aggregator=state.aggregator,
    )


@get("/api/health")
async def health(state: AppState) -> HealthResponse:
    """Report liveness and which match sources are configured."""
    aggregator = state.aggregator
    sources = {searcher.source.value: searcher.enabled for searcher in aggregator.searchers}
    sources["oracle"] = aggregator.oracle is not None and aggregator.oracle.enabled
    return HealthResponse(status="ok", version=__version__, sources=sources)


def audio_error_handler(
    _request: Request[Any, Any, Any],  # pyright: ignore[reportExplicitAny]
    exc: DecodeError | EmptyAudioError | InsufficientAudioError,
) -> Response[ErrorResponse]:
    """Unusable audio is the client's problem: 422."""
    logger.info("Rejected upload: %s", exc)
    return Response(
        ErrorResponse(error=type(exc).__name__, detail=str(exc)),
        status_code=HTTP_422_UNPROCESSABLE_ENTITY,
    )


def rate_limit_handler(
    _request: Request[Any, Any, Any],  # pyright: ignore[reportExplicitAny]
    exc: RateLimitExceeded,
) -> Response[ErrorResponse]:
    """Upstream quota exhausted: 429 so the caller backs off."""
    headers: dict[str, str] = {}
    if exc.retry_after is not None:
        headers["Retry-After"] = str(int(exc.retry_after))
    return Response(
        ErrorResponse(error="RateLimitExceeded", detail=str(exc), retry_after=exc.retry_after),
        status_code=HTTP_429_TOO_MANY_REQUESTS,
        headers=headers,
    )
