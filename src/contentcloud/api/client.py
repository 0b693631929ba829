#!/usr/bin/env python3
"""Async HTTP Client for the Content Cloud API.

This module provides the transport every manager and component is built on:

    - Bearer authentication via TokenManager
    - Token refresh and single replay on 401 responses (when a refresh
      callback is configured)
    - Retry of temporary failures (408, 429, 5xx except 507, network errors)
      with exponential backoff or the server's Retry-After
    - Connection pooling via a shared aiohttp session
    - Circuit breaker for resilience against API outages
    - Typed exceptions for transport and response failures

Design Philosophy:
    This client knows HOW to talk to the API, not WHAT to fetch. send()
    returns the response as received so callers can act on the status codes
    their operation expects; request_json() is the default handler for
    everything else.

Usage:
    async with ContentClient(TokenManager()) as client:
        response = await client.get("/folders/0/items", params={"limit": 100})

        folder = await client.request_json("GET", "/folders/0")
"""
import asyncio
import json
import logging
import os
from typing import Any, Optional

import aiohttp
from dotenv import load_dotenv

from .auth import TokenManager
from .exceptions import (
    APIError,
    ConfigurationError,
    ConnectionError,
    NetworkError,
    TimeoutError,
    TokenExpiredError,
    build_api_error,
    is_recoverable_status,
)
from .request import APIResponse, RequestDescriptor
from .resilience import CircuitBreaker, is_retryable, retry_delay_seconds

load_dotenv()

logger = logging.getLogger(__name__)

# ============================================
# Configuration
# ============================================

DEFAULT_MAX_RETRIES = 5
DEFAULT_RETRY_INTERVAL = 2.0
DEFAULT_REQUEST_TIMEOUT = 60.0


def _env_number(name: str, default: float, cast=float):
    raw = os.getenv(name)
    if raw in (None, ""):
        return default
    try:
        return cast(raw)
    except ValueError as e:
        raise ConfigurationError(
            f"{name} must be a number, got {raw!r}",
            details={"key": name},
            cause=e,
        )


# ============================================
# The Client
# ============================================

class ContentClient:
    """Async HTTP client for the Content Cloud API.

    Use it as an async context manager so the HTTP session is closed:

        async with ContentClient(token_manager) as client:
            data = await client.request_json("GET", "/folders/0")

    Attributes:
        token_manager: Supplies the bearer token
        base_url: API base URL (e.g., "https://api.example.com/2.0")
        upload_url: Base URL for upload-session endpoints
        max_retries: Retries for temporary failures (not counting the first try)
        retry_interval: Base backoff interval in seconds
        request_timeout: Default total timeout per request in seconds
    """

    def __init__(
        self,
        token_manager: TokenManager,
        base_url: Optional[str] = None,
        upload_url: Optional[str] = None,
        max_retries: Optional[int] = None,
        retry_interval: Optional[float] = None,
        request_timeout: Optional[float] = None,
        enable_circuit_breaker: bool = True,
        circuit_failure_threshold: int = 5,
        circuit_timeout: float = 60.0,
    ):
        """Initialize the client.

        Every setting falls back to its environment variable:
        CONTENT_API_URL, CONTENT_UPLOAD_URL, CONTENT_MAX_RETRIES,
        CONTENT_RETRY_INTERVAL and CONTENT_REQUEST_TIMEOUT.

        Raises:
            ConfigurationError: If no base URL is configured or a numeric
                setting cannot be parsed.
        """
        self.token_manager = token_manager
        self.base_url = (base_url or os.getenv("CONTENT_API_URL", "")).rstrip("/")

        if not self.base_url:
            raise ConfigurationError(
                "Base URL is required. Provide base_url parameter or set CONTENT_API_URL environment variable.",
                missing_keys=["CONTENT_API_URL"],
            )

        self.upload_url = (upload_url or os.getenv("CONTENT_UPLOAD_URL") or self.base_url).rstrip("/")
        self.max_retries = (
            max_retries if max_retries is not None
            else _env_number("CONTENT_MAX_RETRIES", DEFAULT_MAX_RETRIES, int)
        )
        self.retry_interval = (
            retry_interval if retry_interval is not None
            else _env_number("CONTENT_RETRY_INTERVAL", DEFAULT_RETRY_INTERVAL)
        )
        self.request_timeout = (
            request_timeout if request_timeout is not None
            else _env_number("CONTENT_REQUEST_TIMEOUT", DEFAULT_REQUEST_TIMEOUT)
        )

        self._session: Optional[aiohttp.ClientSession] = None

        self._circuit_breaker: Optional[CircuitBreaker] = None
        if enable_circuit_breaker:
            self._circuit_breaker = CircuitBreaker(
                failure_threshold=circuit_failure_threshold,
                timeout=circuit_timeout,
                name="content_api",
            )

    # ----------------------------------------
    # Context Manager Protocol
    # ----------------------------------------

    async def __aenter__(self) -> "ContentClient":
        self._session = aiohttp.ClientSession(
            connector=aiohttp.TCPConnector(
                limit=10,
                limit_per_host=10,
            ),
            timeout=aiohttp.ClientTimeout(
                total=self.request_timeout,
                connect=10,
            ),
        )
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        if self._session:
            await self._session.close()
            self._session = None

    # ----------------------------------------
    # URL Helpers
    # ----------------------------------------

    def build_url(self, path: str, upload: bool = False) -> str:
        """Resolve an API path against the API or upload base URL."""
        if path.startswith(("http://", "https://")):
            return path
        base = self.upload_url if upload else self.base_url
        return f"{base}/{path.lstrip('/')}"

    def describe(
        self,
        method: str,
        path: str,
        params: Optional[dict] = None,
        json_body: Optional[Any] = None,
        data: Optional[bytes] = None,
        headers: Optional[dict] = None,
        upload: bool = False,
    ) -> RequestDescriptor:
        """Build the RequestDescriptor for a call without sending it."""
        return RequestDescriptor.from_url(
            method,
            self.build_url(path, upload=upload),
            params=params,
            headers=headers,
            json=json_body,
            data=data,
        )

    # ----------------------------------------
    # Low-Level Request Methods
    # ----------------------------------------

    async def _send_once(
        self,
        request: RequestDescriptor,
        timeout: Optional[float],
    ) -> APIResponse:
        """Issue a single HTTP request (no retry logic).

        Raises:
            RuntimeError: If called outside of async context manager
            ConnectionError: If connection to server fails
            TimeoutError: If request times out
            NetworkError: For any other transport failure
            RateLimitError, ServerError: For retryable statuses, so the
                circuit breaker sees them; the error carries the response
        """
        if not self._session:
            raise RuntimeError(
                "ContentClient must be used as async context manager: "
                "async with ContentClient(...) as client:"
            )

        token = await self.token_manager.get_token()
        headers = {**request.headers, "Authorization": f"Bearer {token}"}
        effective_timeout = timeout if timeout is not None else self.request_timeout

        try:
            async with self._session.request(
                method=request.method,
                url=request.url,
                params=request.params or None,
                headers=headers,
                json=request.json,
                data=request.data,
                timeout=aiohttp.ClientTimeout(total=effective_timeout),
            ) as response:
                text = await response.text()
                body: Any = text or None
                if text and "json" in response.content_type:
                    body = json.loads(text)

                result = APIResponse(
                    status_code=response.status,
                    headers=dict(response.headers),
                    body=body,
                    request=request,
                )

        except aiohttp.ClientConnectionError as e:
            raise ConnectionError(
                f"Failed to connect during {request.method} {request.url}: {e}",
                host=request.url,
                cause=e,
            )

        except asyncio.TimeoutError as e:
            raise TimeoutError(
                f"{request.method} {request.url} timed out",
                timeout_seconds=effective_timeout,
                cause=e,
            )

        except aiohttp.ClientError as e:
            raise NetworkError(
                f"Network error during {request.method} {request.url}: {e}",
                cause=e,
            )

        except json.JSONDecodeError as e:
            raise NetworkError(
                f"Malformed JSON in response to {request.method} {request.url}",
                cause=e,
            )

        if is_recoverable_status(result.status_code):
            raise build_api_error(result)

        return result

    def _retry_delay(self, error: Exception, attempt: int) -> float:
        if isinstance(error, APIError) and error.response is not None:
            retry_after = error.response.retry_after()
            if retry_after is not None:
                return retry_after
        return retry_delay_seconds(attempt, self.retry_interval)

    async def send(
        self,
        request: RequestDescriptor,
        timeout: Optional[float] = None,
        max_retries: Optional[int] = None,
    ) -> APIResponse:
        """Send a request with retries, token refresh and circuit breaker.

        Temporary failures are retried up to max_retries times. When the
        retries of a retryable status run out, the last response is
        returned so the caller can decide what it means; exhausted
        transport errors are raised.

        Args:
            request: What to send
            timeout: Total timeout in seconds for each attempt
            max_retries: Override the client's retry count (0 disables retries)

        Returns:
            The APIResponse as received

        Raises:
            TokenExpiredError: On a 401 that cannot be recovered by a refresh
            CircuitOpenError: If the circuit breaker is open
            NetworkError: If a transport error persists after retries
        """
        retries = self.max_retries if max_retries is None else max_retries
        attempt = 0
        refreshed = False

        while True:
            attempt += 1
            try:
                if self._circuit_breaker:
                    response = await self._circuit_breaker.call(self._send_once, request, timeout)
                else:
                    response = await self._send_once(request, timeout)

            except Exception as e:
                if not is_retryable(e):
                    raise

                if attempt > retries:
                    if isinstance(e, APIError) and e.response is not None:
                        logger.warning(
                            f"{request.method} {request.url} still failing after "
                            f"{attempt} attempts: HTTP {e.status_code}"
                        )
                        return e.response
                    raise

                delay = self._retry_delay(e, attempt)
                logger.warning(
                    f"{request.method} {request.url} failed: {e}. Retrying in {delay:.1f}s "
                    f"(attempt {attempt}/{retries + 1})"
                )
                await asyncio.sleep(delay)
                continue

            if response.status_code == 401:
                self.token_manager.invalidate()
                if self.token_manager.can_refresh and not refreshed:
                    refreshed = True
                    logger.warning(f"Token rejected for {request.method} {request.url}, refreshing")
                    continue
                raise TokenExpiredError(
                    details={"endpoint": request.url, "method": request.method},
                )

            return response

    @property
    def circuit_status(self) -> Optional[dict[str, Any]]:
        """Get circuit breaker status for monitoring."""
        if self._circuit_breaker:
            return self._circuit_breaker.get_status()
        return None

    # ----------------------------------------
    # High-Level Request Methods
    # ----------------------------------------

    async def get(self, path: str, params: Optional[dict] = None, **kwargs) -> APIResponse:
        return await self._call("GET", path, params=params, **kwargs)

    async def post(
        self,
        path: str,
        json_body: Optional[Any] = None,
        params: Optional[dict] = None,
        **kwargs,
    ) -> APIResponse:
        return await self._call("POST", path, params=params, json_body=json_body, **kwargs)

    async def put(
        self,
        path: str,
        json_body: Optional[Any] = None,
        params: Optional[dict] = None,
        **kwargs,
    ) -> APIResponse:
        return await self._call("PUT", path, params=params, json_body=json_body, **kwargs)

    async def delete(self, path: str, params: Optional[dict] = None, **kwargs) -> APIResponse:
        return await self._call("DELETE", path, params=params, **kwargs)

    async def options(self, path: str, params: Optional[dict] = None, **kwargs) -> APIResponse:
        return await self._call("OPTIONS", path, params=params, **kwargs)

    async def _call(
        self,
        method: str,
        path: str,
        params: Optional[dict] = None,
        json_body: Optional[Any] = None,
        data: Optional[bytes] = None,
        headers: Optional[dict] = None,
        upload: bool = False,
        timeout: Optional[float] = None,
        max_retries: Optional[int] = None,
    ) -> APIResponse:
        request = self.describe(
            method, path,
            params=params, json_body=json_body, data=data, headers=headers, upload=upload,
        )
        return await self.send(request, timeout=timeout, max_retries=max_retries)

    async def request_json(self, method: str, path: str, **kwargs) -> Any:
        """Send a request and return the body of a 2xx response.

        Raises:
            APIError: The typed subclass for any non-2xx status
        """
        response = await self._call(method, path, **kwargs)
        if not response.ok:
            raise build_api_error(response)
        return response.body


if __name__ == "__main__":
    async def demo():
        logging.basicConfig(level=logging.INFO)
        async with ContentClient(TokenManager()) as client:
            folder = await client.request_json("GET", "/folders/0")
            print(f"Root folder: {folder.get('name')} ({folder.get('item_collection', {}).get('total_count')} items)")
            print(f"Circuit: {client.circuit_status}")

    asyncio.run(demo())
