#!/usr/bin/env python3
"""Access Token Holder for the Content Cloud API.

The client never acquires tokens itself: the caller supplies an access token
(directly or via CONTENT_ACCESS_TOKEN) and, optionally, an async callback that
returns a fresh one. TokenManager caches the current token and serializes
refreshes so concurrent requests that all hit a 401 trigger one refresh.

Security Notes:
    - Tokens are kept in memory only
    - Token ID in log output is a SHA-256 prefix, never the token itself

Example:
    >>> manager = TokenManager("my-token")
    >>> token = await manager.get_token()

    >>> async def refresh() -> str:
    ...     return await my_oauth_flow()
    >>> manager = TokenManager(refresh_callback=refresh)
"""
import asyncio
import hashlib
import logging
import os
import time
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Optional

from dotenv import load_dotenv

from .exceptions import InvalidCredentialsError, TokenExpiredError

load_dotenv()

logger = logging.getLogger(__name__)

RefreshCallback = Callable[[], Awaitable[str]]


@dataclass
class CachedToken:
    """Container for the access token currently in use.

    Attributes:
        access_token: The bearer token string.
        acquired_at: Unix timestamp when the token was handed to the manager.
    """
    access_token: str
    acquired_at: float = field(default_factory=time.time)

    @property
    def token_id(self) -> str:
        """Safe identifier for logging (SHA-256 hash, first 8 chars)."""
        return hashlib.sha256(self.access_token.encode()).hexdigest()[:8]

    @property
    def age(self) -> float:
        return time.time() - self.acquired_at


class TokenManager:
    """Holds the access token and refreshes it through a caller-supplied callback.

    Attributes:
        refresh_callback: Optional coroutine function returning a new token.
            Without it, an invalidated token cannot be replaced and the next
            get_token() raises TokenExpiredError.
    """

    def __init__(
        self,
        access_token: Optional[str] = None,
        refresh_callback: Optional[RefreshCallback] = None,
    ):
        token = access_token or os.getenv("CONTENT_ACCESS_TOKEN")
        if not token and refresh_callback is None:
            raise InvalidCredentialsError(
                "No access token configured. Provide access_token, a refresh_callback, "
                "or set CONTENT_ACCESS_TOKEN.",
                details={"missing_keys": ["CONTENT_ACCESS_TOKEN"]},
            )

        self.refresh_callback = refresh_callback
        self._cached_token: Optional[CachedToken] = CachedToken(token) if token else None
        self._invalidated = False
        self._lock = asyncio.Lock()

    @property
    def can_refresh(self) -> bool:
        return self.refresh_callback is not None

    async def get_token(self) -> str:
        """Return the current token, refreshing it first if it was invalidated.

        Raises:
            TokenExpiredError: If the token was invalidated and no refresh
                callback is configured.
        """
        if self._cached_token and not self._invalidated:
            return self._cached_token.access_token

        async with self._lock:
            if self._cached_token and not self._invalidated:
                return self._cached_token.access_token

            if not self.refresh_callback:
                raise TokenExpiredError()

            self._cached_token = CachedToken(await self.refresh_callback())
            self._invalidated = False
            logger.info(f"Access token refreshed (id={self._cached_token.token_id})")
            return self._cached_token.access_token

    def invalidate(self):
        """Mark the current token as rejected by the API."""
        if self._cached_token:
            logger.warning(f"Access token rejected (id={self._cached_token.token_id})")
        self._invalidated = True

    @property
    def token_info(self) -> Optional[dict]:
        """Info about the current token for debugging, without the token itself."""
        if not self._cached_token:
            return None
        return {
            "token_id": self._cached_token.token_id,
            "invalidated": self._invalidated,
            "age_seconds": round(self._cached_token.age, 1),
            "can_refresh": self.can_refresh,
        }
