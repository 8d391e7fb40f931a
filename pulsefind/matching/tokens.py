"""OAuth client-credentials token provider.

One provider per credential set. The cached token is shared by every caller
of that provider and refreshed transparently once it is within the safety
margin of expiry; concurrent callers wait on a single refresh.
"""

from __future__ import annotations

import asyncio
import base64
import logging
import time
from collections.abc import Callable
from dataclasses import dataclass

import httpx

from ..errors import SearchFailure
from .base import check_response

logger = logging.getLogger(__name__)

DEFAULT_EXPIRY_MARGIN_SEC = 60.0


@dataclass(frozen=True)
class AccessToken:
    value: str
    expires_at: float  # clock() time after which the token must be refreshed

    def is_valid(self, now: float) -> bool:
        return now < self.expires_at


class ClientCredentialsTokenProvider:
    """Fetches and caches a bearer token via the client-credentials grant.

    Args:
        source: Source name used in errors and logs
        token_url: OAuth token endpoint
        client_id: Application client ID
        client_secret: Application client secret
        client: Shared HTTP client (the provider does not close it)
        expiry_margin_sec: Refresh this long before the server-side expiry
        clock: Monotonic time source, injectable for tests
    """

    def __init__(
        self,
        source: str,
        token_url: str,
        client_id: str,
        client_secret: str,
        client: httpx.AsyncClient,
        expiry_margin_sec: float = DEFAULT_EXPIRY_MARGIN_SEC,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.source = source
        self.token_url = token_url
        self._credentials = base64.b64encode(f"{client_id}:{client_secret}".encode()).decode()
        self._client = client
        self._expiry_margin = expiry_margin_sec
        self._clock = clock
        self._token: AccessToken | None = None
        self._lock = asyncio.Lock()

    @property
    def cached(self) -> AccessToken | None:
        return self._token

    async def get_token(self) -> str:
        """Return a valid access token, refreshing it if needed.

        Raises:
            RateLimitExceeded: If the token endpoint answers 429
            SearchFailure: If the token cannot be obtained
        """
        token = self._token
        if token is not None and token.is_valid(self._clock()):
            return token.value

        async with self._lock:
            # Another caller may have refreshed while we waited
            token = self._token
            if token is not None and token.is_valid(self._clock()):
                return token.value

            self._token = await self._fetch()
            return self._token.value

    async def _fetch(self) -> AccessToken:
        logger.debug("Requesting %s access token", self.source)
        try:
            response = await self._client.post(
                self.token_url,
                headers={
                    "Authorization": f"Basic {self._credentials}",
                    "Content-Type": "application/x-www-form-urlencoded",
                },
                data={"grant_type": "client_credentials"},
            )
        except httpx.HTTPError as e:
            raise SearchFailure(self.source, f"token request failed: {e}") from e

        check_response(self.source, response, "token request")

        data = response.json()
        value = data.get("access_token")
        if not value:
            raise SearchFailure(self.source, "token response did not contain an access token")

        expires_in = float(data.get("expires_in", 3600))
        expires_at = self._clock() + expires_in - self._expiry_margin
        logger.info("Obtained %s access token (expires in %.0fs)", self.source, expires_in)
        return AccessToken(value=value, expires_at=expires_at)
