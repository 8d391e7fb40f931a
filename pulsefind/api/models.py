"""Pydantic models for API requests and responses."""

from __future__ import annotations

from dataclasses import dataclass

from litestar.datastructures import UploadFile
from pydantic import BaseModel

from ..config import MatchingMode


@dataclass
class ScanForm:
    """Multipart body of a scan request."""

    audio: UploadFile
    deep_scan: bool = False
    matching_mode: MatchingMode = MatchingMode.LOOSE


class HealthResponse(BaseModel):
    """Service liveness and which sources are configured."""

    status: str
    version: str
    sources: dict[str, bool]


class ErrorResponse(BaseModel):
    """Error body for rejected scans."""

    error: str
    detail: str
    retry_after: float | None = None
