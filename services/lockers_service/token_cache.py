"""
Bearer token cache for the Harbor Lockers API.

Harbor issues short-lived (300s) tokens through an OAuth2 client-credentials
exchange. One cache instance is shared by the whole process and handed to
callers through `get_token_cache()`.
"""

import asyncio
import time
from abc import ABC, abstractmethod
from functools import lru_cache
from typing import Callable, Optional

import httpx
from libs.common.config import get_settings
from libs.common.logging import get_logger
from services.lockers_service.errors import CredentialError

logger = get_logger(__name__)

DEFAULT_EXPIRES_IN = 300


class TokenProvider(ABC):
    """Source of bearer tokens for provider API calls."""

    @abstractmethod
    async def get_token(self) -> str:
        """Return a token that is valid for at least the safety margin."""

    @abstractmethod
    def invalidate(self) -> None:
        """Drop the cached token so the next call performs an exchange."""


class HarborTokenCache(TokenProvider):
    """
    Client-credentials token cache with single-flight refresh.

    Concurrent callers that find the token stale all await the same exchange.
    A caller being cancelled does not cancel the shared exchange.
    """

    def __init__(
        self,
        token_url: str,
        client_id: str,
        client_secret: str,
        scope: str = "service_provider",
        safety_margin_seconds: float = 60,
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.token_url = token_url
        self.client_id = client_id
        self.client_secret = client_secret
        self.scope = scope
        self.safety_margin_seconds = safety_margin_seconds
        self.timeout = timeout
        self._transport = transport
        self._clock = clock

        self._token: Optional[str] = None
        self._expires_at: float = 0.0
        self._inflight: Optional[asyncio.Future] = None

    @classmethod
    def from_settings(cls) -> "HarborTokenCache":
        settings = get_settings()
        return cls(
            token_url=settings.HARBOR_TOKEN_URL,
            client_id=settings.HARBOR_CLIENT_ID,
            client_secret=settings.HARBOR_CLIENT_SECRET,
            scope=settings.HARBOR_SCOPE,
            safety_margin_seconds=settings.HARBOR_TOKEN_SAFETY_MARGIN_SECONDS,
            timeout=settings.HARBOR_TIMEOUT_SECONDS,
        )

    def is_fresh(self) -> bool:
        return (
            self._token is not None
            and self._clock() < self._expires_at - self.safety_margin_seconds
        )

    async def get_token(self) -> str:
        if self.is_fresh():
            return self._token

        if self._inflight is None:
            self._inflight = asyncio.ensure_future(self._exchange())
            self._inflight.add_done_callback(self._clear_inflight)

        return await asyncio.shield(self._inflight)

    def invalidate(self) -> None:
        self._token = None
        self._expires_at = 0.0

    def _clear_inflight(self, future: asyncio.Future) -> None:
        if self._inflight is future:
            self._inflight = None
        # Mark the exception retrieved when every waiter was cancelled
        if not future.cancelled():
            future.exception()

    async def _exchange(self) -> str:
        if not self.client_id or not self.client_secret:
            raise CredentialError("Harbor client credentials are not configured")

        form = {
            "grant_type": "client_credentials",
            "scope": self.scope,
            "client_id": self.client_id,
            "client_secret": self.client_secret,
        }

        try:
            async with httpx.AsyncClient(
                timeout=self.timeout, transport=self._transport
            ) as client:
                response = await client.post(self.token_url, data=form)
        except httpx.HTTPError as e:
            logger.error("Harbor token exchange failed: %s", e)
            raise CredentialError(f"Token exchange failed: {e}") from e

        if not response.is_success:
            logger.error(
                "Harbor token exchange rejected: %s - %s",
                response.status_code,
                response.text[:200],
            )
            raise CredentialError(
                f"Token exchange rejected with status {response.status_code}"
            )

        try:
            data = response.json()
        except ValueError as e:
            raise CredentialError("Token response is not JSON") from e

        token = data.get("access_token")
        if not token:
            raise CredentialError("Token response has no access_token")

        expires_in = data.get("expires_in") or DEFAULT_EXPIRES_IN
        self._token = token
        self._expires_at = self._clock() + float(expires_in)
        logger.info("Obtained Harbor access token (expires in %ss)", expires_in)
        return token


@lru_cache
def get_token_cache() -> HarborTokenCache:
    """Process-wide token cache."""
    return HarborTokenCache.from_settings()
