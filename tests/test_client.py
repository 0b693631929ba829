#!/usr/bin/env python3
"""Unit tests for ContentClient.

Tests cover:
    - Configuration from arguments and environment
    - URL building for API and upload endpoints
    - A single HTTP exchange against a mocked aiohttp session
    - Retry of temporary failures, Retry-After, and exhaustion
    - Token refresh and replay on 401
    - Status to exception mapping in request_json()

Note: The aiohttp session is mocked; no HTTP requests are made.
"""
import asyncio
import json
import sys
from unittest.mock import AsyncMock, MagicMock, patch

import aiohttp
import pytest

sys.path.insert(0, str(__file__).rsplit("/tests", 1)[0])
from src.contentcloud.api.auth import TokenManager
from src.contentcloud.api.client import ContentClient
from src.contentcloud.api.exceptions import (
    ConfigurationError,
    ConnectionError,
    NotFoundError,
    RateLimitError,
    ServerError,
    TimeoutError,
    TokenExpiredError,
    UnexpectedResponseError,
    ValidationError,
)
from src.contentcloud.api.paging import PagingIterator
from src.contentcloud.api.request import APIResponse, RequestDescriptor

API_URL = "https://api.example.test/2.0"
UPLOAD_URL = "https://upload.example.test/api/2.0"


def make_client(token_manager=None, **kwargs):
    kwargs.setdefault("retry_interval", 0.001)
    kwargs.setdefault("enable_circuit_breaker", False)
    return ContentClient(
        token_manager or TokenManager("test-token"),
        base_url=API_URL,
        upload_url=UPLOAD_URL,
        **kwargs,
    )


def mock_http_response(status=200, body=None, headers=None, content_type="application/json"):
    """aiohttp response usable as `async with session.request(...) as response`."""
    response = MagicMock()
    response.status = status
    response.headers = headers or {}
    response.content_type = content_type
    text = body if isinstance(body, str) else (json.dumps(body) if body is not None else "")
    response.text = AsyncMock(return_value=text)
    response.__aenter__ = AsyncMock(return_value=response)
    response.__aexit__ = AsyncMock(return_value=None)
    return response


def with_session(client, *responses):
    """Attach a mocked session returning the given responses (or raising exceptions)."""
    session = MagicMock()
    session.request = MagicMock(side_effect=list(responses))
    client._session = session
    return session


# ============================================
# Configuration Tests
# ============================================

class TestConfiguration:
    """Test settings resolution."""

    def test_missing_base_url_raises(self, monkeypatch):
        monkeypatch.delenv("CONTENT_API_URL", raising=False)
        with pytest.raises(ConfigurationError) as exc_info:
            ContentClient(TokenManager("t"))
        assert "CONTENT_API_URL" in str(exc_info.value)

    def test_settings_from_environment(self, monkeypatch):
        monkeypatch.setenv("CONTENT_API_URL", "https://env.example.test/2.0/")
        monkeypatch.delenv("CONTENT_UPLOAD_URL", raising=False)
        monkeypatch.setenv("CONTENT_MAX_RETRIES", "2")
        monkeypatch.setenv("CONTENT_RETRY_INTERVAL", "0.5")
        monkeypatch.setenv("CONTENT_REQUEST_TIMEOUT", "30")

        client = ContentClient(TokenManager("t"))

        assert client.base_url == "https://env.example.test/2.0"
        assert client.upload_url == client.base_url
        assert client.max_retries == 2
        assert client.retry_interval == 0.5
        assert client.request_timeout == 30.0

    def test_invalid_number_raises(self, monkeypatch):
        monkeypatch.setenv("CONTENT_MAX_RETRIES", "many")
        with pytest.raises(ConfigurationError):
            ContentClient(TokenManager("t"), base_url=API_URL)

    def test_build_url(self):
        client = make_client()
        assert client.build_url("/folders/0") == f"{API_URL}/folders/0"
        assert client.build_url("files/upload_sessions", upload=True) == f"{UPLOAD_URL}/files/upload_sessions"
        assert client.build_url("https://other.example.test/x") == "https://other.example.test/x"

    def test_describe(self):
        request = make_client().describe(
            "get", "/folders/0/items?fields=name", params={"limit": "50"},
            headers={"Authorization": "Bearer leaked"},
        )
        assert request.method == "GET"
        assert request.url == f"{API_URL}/folders/0/items"
        assert request.params == {"fields": "name", "limit": 50}
        assert request.headers == {}


# ============================================
# Single Exchange Tests
# ============================================

class TestSendOnce:
    """Test one HTTP exchange through the mocked session."""

    @pytest.mark.asyncio
    async def test_requires_context_manager(self):
        with pytest.raises(RuntimeError):
            await make_client().get("/folders/0")

    @pytest.mark.asyncio
    async def test_adds_bearer_and_parses_json(self):
        client = make_client()
        session = with_session(client, mock_http_response(body={"id": "0", "type": "folder"}))

        response = await client.get("/folders/0", params={"fields": "name"})

        assert response.status_code == 200
        assert response.body == {"id": "0", "type": "folder"}
        assert response.request.url == f"{API_URL}/folders/0"
        kwargs = session.request.call_args.kwargs
        assert kwargs["method"] == "GET"
        assert kwargs["headers"]["Authorization"] == "Bearer test-token"
        assert kwargs["params"] == {"fields": "name"}
        # The recorded request never carries the token
        assert "Authorization" not in response.request.headers

    @pytest.mark.asyncio
    async def test_non_json_body_is_text(self):
        client = make_client()
        with_session(client, mock_http_response(body="plain", content_type="text/plain"))

        response = await client.get("/ping")

        assert response.body == "plain"

    @pytest.mark.asyncio
    async def test_empty_body_is_none(self):
        client = make_client()
        with_session(client, mock_http_response(status=204))

        response = await client.delete("/files/1")

        assert response.status_code == 204
        assert response.body is None

    @pytest.mark.asyncio
    async def test_connection_error_is_wrapped(self):
        client = make_client(max_retries=0)
        with_session(client, aiohttp.ClientConnectionError("refused"))

        with pytest.raises(ConnectionError) as exc_info:
            await client.get("/folders/0")
        assert isinstance(exc_info.value.cause, aiohttp.ClientConnectionError)

    @pytest.mark.asyncio
    async def test_timeout_is_wrapped(self):
        client = make_client(max_retries=0)
        with_session(client, asyncio.TimeoutError())

        with pytest.raises(TimeoutError) as exc_info:
            await client.get("/folders/0", timeout=5)
        assert exc_info.value.details["timeout_seconds"] == 5


# ============================================
# Retry Tests
# ============================================

class TestRetries:
    """Test retry behavior in send()."""

    @pytest.mark.asyncio
    async def test_retries_server_errors(self):
        client = make_client(max_retries=3)
        session = with_session(
            client,
            mock_http_response(status=503, body={"code": "unavailable"}),
            mock_http_response(status=500),
            mock_http_response(body={"ok": True}),
        )

        response = await client.get("/folders/0")

        assert response.status_code == 200
        assert session.request.call_count == 3

    @pytest.mark.asyncio
    async def test_returns_last_response_when_retries_exhausted(self):
        client = make_client(max_retries=1)
        session = with_session(
            client,
            mock_http_response(status=502),
            mock_http_response(status=502, body={"code": "bad_gateway"}),
        )

        response = await client.get("/folders/0")

        assert response.status_code == 502
        assert session.request.call_count == 2

    @pytest.mark.asyncio
    async def test_does_not_retry_client_errors(self):
        client = make_client(max_retries=3)
        session = with_session(client, mock_http_response(status=404, body={"code": "not_found"}))

        response = await client.get("/folders/404")

        assert response.status_code == 404
        assert session.request.call_count == 1

    @pytest.mark.asyncio
    async def test_insufficient_storage_is_not_retried(self):
        client = make_client(max_retries=3)
        session = with_session(client, mock_http_response(status=507))

        response = await client.post("/files/content")

        assert response.status_code == 507
        assert session.request.call_count == 1

    @pytest.mark.asyncio
    @pytest.mark.parametrize("status", [501, 505, 520])
    async def test_uncommon_server_errors_are_retried(self, status):
        client = make_client(max_retries=2)
        session = with_session(
            client,
            mock_http_response(status=status),
            mock_http_response(body={"ok": True}),
        )

        response = await client.get("/folders/0")

        assert response.status_code == 200
        assert session.request.call_count == 2

    @pytest.mark.asyncio
    @pytest.mark.parametrize("status", [501, 520])
    async def test_uncommon_server_error_returned_when_exhausted(self, status):
        client = make_client(max_retries=1)
        session = with_session(
            client,
            mock_http_response(status=status),
            mock_http_response(status=status, body={"code": "server_error"}),
        )

        response = await client.get("/folders/0")

        assert response.status_code == status
        assert response.body == {"code": "server_error"}
        assert session.request.call_count == 2

    @pytest.mark.asyncio
    async def test_exhausted_page_fetch_is_unexpected_response(self):
        client = make_client(max_retries=0)
        first_page = APIResponse(
            status_code=200,
            body={"entries": [{"id": "1"}], "offset": 0, "limit": 1, "total_count": 2},
            request=RequestDescriptor.from_url("GET", f"{API_URL}/folders/0/items", params={"limit": 1}),
        )
        iterator = PagingIterator(first_page, client)
        with_session(client, mock_http_response(status=501))

        assert (await iterator.next()).value == {"id": "1"}
        with pytest.raises(UnexpectedResponseError):
            await iterator.next()

    @pytest.mark.asyncio
    async def test_retry_after_header_is_honored(self):
        client = make_client(max_retries=1)
        with_session(
            client,
            mock_http_response(status=429, headers={"Retry-After": "7"}),
            mock_http_response(body={}),
        )

        with patch("src.contentcloud.api.client.asyncio.sleep", new=AsyncMock()) as sleep:
            await client.get("/folders/0")

        sleep.assert_awaited_once_with(7.0)

    @pytest.mark.asyncio
    async def test_max_retries_zero_disables_retries(self):
        client = make_client(max_retries=5)
        session = with_session(client, mock_http_response(status=500))

        response = await client.get("/folders/0", max_retries=0)

        assert response.status_code == 500
        assert session.request.call_count == 1

    @pytest.mark.asyncio
    async def test_network_errors_raise_after_retries(self):
        client = make_client(max_retries=1)
        session = with_session(
            client,
            aiohttp.ClientConnectionError("reset"),
            aiohttp.ClientConnectionError("reset"),
        )

        with pytest.raises(ConnectionError):
            await client.get("/folders/0")
        assert session.request.call_count == 2

    @pytest.mark.asyncio
    async def test_circuit_breaker_sees_retryable_failures(self):
        client = make_client(max_retries=0, enable_circuit_breaker=True, circuit_failure_threshold=1)
        with_session(client, mock_http_response(status=503))

        await client.get("/folders/0")

        assert client.circuit_status["state"] == "open"


# ============================================
# Authentication Tests
# ============================================

class TestUnauthorized:
    """Test 401 handling."""

    @pytest.mark.asyncio
    async def test_refreshes_and_replays_once(self):
        manager = TokenManager("old", refresh_callback=AsyncMock(return_value="new"))
        client = make_client(manager)
        session = with_session(
            client,
            mock_http_response(status=401),
            mock_http_response(body={"id": "0"}),
        )

        response = await client.get("/folders/0")

        assert response.body == {"id": "0"}
        auth_headers = [c.kwargs["headers"]["Authorization"] for c in session.request.call_args_list]
        assert auth_headers == ["Bearer old", "Bearer new"]

    @pytest.mark.asyncio
    async def test_second_401_raises_token_expired(self):
        manager = TokenManager("old", refresh_callback=AsyncMock(return_value="new"))
        client = make_client(manager)
        with_session(client, mock_http_response(status=401), mock_http_response(status=401))

        with pytest.raises(TokenExpiredError) as exc_info:
            await client.get("/folders/0")
        assert exc_info.value.auth_expired

    @pytest.mark.asyncio
    async def test_401_without_refresh_raises(self):
        client = make_client(TokenManager("only"))
        session = with_session(client, mock_http_response(status=401))

        with pytest.raises(TokenExpiredError):
            await client.get("/folders/0")
        assert session.request.call_count == 1


# ============================================
# request_json Tests
# ============================================

class TestRequestJson:
    """Test the default status handling."""

    @pytest.mark.asyncio
    async def test_returns_body(self):
        client = make_client()
        client.send = AsyncMock(return_value=APIResponse(status_code=201, body={"id": "9"}))

        assert await client.request_json("POST", "/folders", json_body={"name": "n"}) == {"id": "9"}

    @pytest.mark.asyncio
    @pytest.mark.parametrize("status, error_class", [
        (400, ValidationError),
        (404, NotFoundError),
        (429, RateLimitError),
        (500, ServerError),
    ])
    async def test_maps_status_to_exception(self, status, error_class):
        client = make_client()
        client.send = AsyncMock(return_value=APIResponse(
            status_code=status,
            body={"code": "x", "message": "failed", "request_id": "abc"},
        ))

        with pytest.raises(error_class) as exc_info:
            await client.request_json("GET", "/folders/1")
        assert exc_info.value.status_code == status
        assert exc_info.value.response.status_code == status
