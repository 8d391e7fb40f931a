"""Litestar app configuration and lifecycle management."""

from __future__ import annotations

import logging
import os
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

import httpx
from litestar import Litestar
from litestar.config.cors import CORSConfig

from ..config import Config, get_config
from ..errors import DecodeError, EmptyAudioError, InsufficientAudioError, RateLimitExceeded
from ..processor.core import build_aggregator
from .scan_routes import audio_error_handler, health, rate_limit_handler, scan
from .state import AppState

logger = logging.getLogger(__name__)


@asynccontextmanager
async def http_client_lifespan(app: Litestar) -> AsyncGenerator[None, None]:
    """Open the shared HTTP client on startup and close it on shutdown.

    Every source adapter (and its cached OAuth token) lives as long as the app.
    """
    config: Config = app.state.config
    async with httpx.AsyncClient(timeout=config.matching.platform_timeout_sec) as client:
        app.state.aggregator = build_aggregator(config, client)
        logger.info("Match sources initialized")
        try:
            yield
        finally:
            logger.info("Closing match source HTTP client")


def create_app(config: Config | None = None) -> Litestar:
    """Build the scan API.

    Args:
        config: Configuration (global config if None)
    """
    config = config or get_config()

    allowed_origins = ["http://localhost:5173", "http://localhost:3000"]
    frontend_url = os.getenv("FRONTEND_URL")
    if frontend_url and frontend_url not in allowed_origins:
        allowed_origins.append(frontend_url)

    cors_config = CORSConfig(
        allow_origins=allowed_origins,
        allow_methods=["GET", "POST"],
        allow_headers=["*"],
    )

    return Litestar(
        route_handlers=[scan, health],
        cors_config=cors_config,
        state=AppState({"config": config}),
        exception_handlers={
            DecodeError: audio_error_handler,
            EmptyAudioError: audio_error_handler,
            InsufficientAudioError: audio_error_handler,
            RateLimitExceeded: rate_limit_handler,
        },
        request_max_body_size=1024 * 1024 * 60,  # a little above the 50MB file limit
        lifespan=[http_client_lifespan],
    )
