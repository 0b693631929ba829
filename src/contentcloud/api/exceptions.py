#!/usr/bin/env python3
"""Exception Hierarchy for the Content Cloud API client.

This module provides a structured exception hierarchy for handling errors
across the client: configuration, authentication, API responses, network
failures, paging, event streams and chunked uploads.

Design Principles:
    - All exceptions inherit from ContentCloudError
    - Exceptions preserve context (original error, response, details)
    - Exceptions are categorized by recoverability
    - API errors carry the response that produced them for inspection

Exception Hierarchy:
    ContentCloudError (base)
    ├── ConfigurationError (unrecoverable - fix config)
    ├── AuthenticationError
    │   ├── TokenExpiredError
    │   └── InvalidCredentialsError
    ├── APIError (may be recoverable - retry)
    │   ├── ResponseError
    │   │   └── UnexpectedResponseError
    │   ├── RateLimitError
    │   ├── NotFoundError
    │   ├── ValidationError
    │   └── ServerError
    ├── NetworkError (recoverable - retry)
    │   ├── ConnectionError
    │   └── TimeoutError
    ├── PagingError
    │   └── NotPageableError
    ├── StreamError
    ├── UploadError
    │   ├── PartUploadError
    │   ├── UploadIncompleteError
    │   ├── UploadAbortedError
    │   └── InvalidUploadStateError
    └── CircuitOpenError
"""
from datetime import datetime, timezone
from http import HTTPStatus
from typing import TYPE_CHECKING, Any, Optional

if TYPE_CHECKING:
    from .request import APIResponse

# 507 (insufficient storage) is a permanent account condition.
NON_RECOVERABLE_SERVER_STATUS = 507


def is_recoverable_status(status_code: int) -> bool:
    """Check whether a status indicates a transient condition worth retrying."""
    if status_code in (408, 429):
        return True
    return 500 <= status_code <= 599 and status_code != NON_RECOVERABLE_SERVER_STATUS


# ============================================
# Base Exception
# ============================================

class ContentCloudError(Exception):
    """Base exception for all client errors.

    Attributes:
        message: Human-readable error description
        code: Machine-readable error code (e.g., "TOKEN_EXPIRED")
        details: Additional context as a dictionary
        timestamp: When the error occurred
        cause: The original exception that caused this error
        recoverable: Whether this error might be recoverable with retry
    """

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
        cause: Optional[Exception] = None,
        recoverable: bool = False,
    ):
        super().__init__(message)
        self.message = message
        self.code = code or self.__class__.__name__.upper()
        self.details = details or {}
        self.timestamp = datetime.now(timezone.utc)
        self.cause = cause
        self.recoverable = recoverable

        if cause:
            self.__cause__ = cause

    def __str__(self) -> str:
        parts = [self.message]
        if self.code:
            parts.insert(0, f"[{self.code}]")
        if self.details:
            detail_str = ", ".join(f"{k}={v}" for k, v in self.details.items())
            parts.append(f"({detail_str})")
        return " ".join(parts)

    def __repr__(self) -> str:
        return (
            f"{self.__class__.__name__}("
            f"message={self.message!r}, "
            f"code={self.code!r}, "
            f"details={self.details!r}, "
            f"recoverable={self.recoverable})"
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert exception to dictionary for logging/serialization."""
        return {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "code": self.code,
            "details": self.details,
            "timestamp": self.timestamp.isoformat(),
            "recoverable": self.recoverable,
            "cause": str(self.cause) if self.cause else None,
        }


# ============================================
# Configuration Errors (Unrecoverable)
# ============================================

class ConfigurationError(ContentCloudError):
    """Raised when configuration is missing or invalid."""

    def __init__(
        self,
        message: str,
        missing_keys: Optional[list[str]] = None,
        **kwargs,
    ):
        details = kwargs.pop("details", {})
        if missing_keys:
            details["missing_keys"] = missing_keys
        super().__init__(
            message,
            code="CONFIGURATION_ERROR",
            details=details,
            recoverable=False,
            **kwargs,
        )


# ============================================
# Authentication Errors
# ============================================

class AuthenticationError(ContentCloudError):
    """Base class for authentication-related errors."""

    def __init__(self, message: str, **kwargs):
        kwargs.setdefault("recoverable", False)
        super().__init__(message, **kwargs)


class TokenExpiredError(AuthenticationError):
    """Raised when the access token was rejected and could not be refreshed.

    Attributes:
        auth_expired: Always True; lets stream consumers tell auth failures
            apart from transient ones without isinstance checks.
    """

    auth_expired = True

    def __init__(self, message: str = "Expired Auth: access token has expired", **kwargs):
        super().__init__(message, code="TOKEN_EXPIRED", **kwargs)


class InvalidCredentialsError(AuthenticationError):
    """Raised when no usable credential was configured."""

    def __init__(self, message: str = "Invalid or missing access token", **kwargs):
        super().__init__(message, code="INVALID_CREDENTIALS", **kwargs)


# ============================================
# API Errors
# ============================================

class APIError(ContentCloudError):
    """Base class for API response errors.

    Attributes:
        status_code: HTTP status code
        endpoint: API endpoint that was called
        method: HTTP verb of the failed request
        response_body: Raw response body (may be truncated)
        response: The APIResponse that produced the error, if any
    """

    def __init__(
        self,
        message: str,
        status_code: int,
        endpoint: Optional[str] = None,
        response_body: Optional[str] = None,
        method: str = "GET",
        response: Optional["APIResponse"] = None,
        **kwargs,
    ):
        details = kwargs.pop("details", {})
        details["status_code"] = status_code
        if endpoint:
            details["endpoint"] = endpoint
        if method:
            details["method"] = method
        if response_body:
            details["response_body"] = response_body[:500] if len(response_body) > 500 else response_body

        kwargs.setdefault("recoverable", is_recoverable_status(status_code))
        kwargs.setdefault("code", f"API_ERROR_{status_code}")

        super().__init__(
            message,
            details=details,
            **kwargs,
        )
        self.status_code = status_code
        self.endpoint = endpoint
        self.response_body = response_body
        self.method = method
        self.response = response


class ResponseError(APIError):
    """Raised when a response carries an error the caller must inspect.

    The message is composed the same way for every API failure:
    ``<message> [<status> <reason> | <request_id>] <code> - <api message>``
    """

    def __init__(self, message: str = "API Response Error", **kwargs):
        kwargs.setdefault("code", "RESPONSE_ERROR")
        super().__init__(message, **kwargs)


class UnexpectedResponseError(ResponseError):
    """Raised when an operation receives a status outside its expected set."""

    def __init__(self, message: str = "Unexpected API Response", **kwargs):
        kwargs.setdefault("code", "UNEXPECTED_RESPONSE")
        super().__init__(message, **kwargs)


class RateLimitError(APIError):
    """Raised when API rate limit is exceeded (HTTP 429).

    Attributes:
        retry_after: Seconds to wait before retrying (from Retry-After header)
    """

    def __init__(
        self,
        message: str = "Rate limit exceeded",
        retry_after: Optional[float] = None,
        **kwargs,
    ):
        kwargs.setdefault("status_code", 429)
        details = kwargs.pop("details", {})
        if retry_after:
            details["retry_after_seconds"] = retry_after
        super().__init__(
            message,
            code="RATE_LIMIT_EXCEEDED",
            details=details,
            **kwargs,
        )
        self.retry_after = retry_after


class NotFoundError(APIError):
    """Raised when requested resource is not found (HTTP 404)."""

    def __init__(
        self,
        resource_type: str,
        resource_id: Optional[str] = None,
        **kwargs,
    ):
        message = f"{resource_type} not found"
        if resource_id:
            message = f"{resource_type} '{resource_id}' not found"

        kwargs.setdefault("status_code", 404)
        details = kwargs.pop("details", {})
        details["resource_type"] = resource_type
        if resource_id:
            details["resource_id"] = resource_id

        super().__init__(
            message,
            code="NOT_FOUND",
            details=details,
            recoverable=False,
            **kwargs,
        )


class ValidationError(APIError):
    """Raised when API validation fails (HTTP 400/422) or a request is malformed locally."""

    def __init__(
        self,
        message: str,
        field: Optional[str] = None,
        **kwargs,
    ):
        kwargs.setdefault("status_code", 400)
        details = kwargs.pop("details", {})
        if field:
            details["field"] = field

        super().__init__(
            message,
            code="VALIDATION_ERROR",
            details=details,
            recoverable=False,
            **kwargs,
        )


class ServerError(APIError):
    """Raised when server returns 5xx error."""

    def __init__(
        self,
        message: str = "Server error",
        **kwargs,
    ):
        kwargs.setdefault("status_code", 500)
        status_code = kwargs["status_code"]
        super().__init__(
            message,
            code="SERVER_ERROR",
            recoverable=is_recoverable_status(status_code),
            **kwargs,
        )


# ============================================
# Network Errors (Usually Recoverable)
# ============================================

class NetworkError(ContentCloudError):
    """Base class for network-related errors.

    These errors are typically transient and recoverable with retry.
    """

    def __init__(self, message: str, **kwargs):
        kwargs.setdefault("recoverable", True)
        super().__init__(message, **kwargs)


class ConnectionError(NetworkError):
    """Raised when connection to server fails."""

    def __init__(
        self,
        message: str = "Failed to connect to server",
        host: Optional[str] = None,
        **kwargs,
    ):
        details = kwargs.pop("details", {})
        if host:
            details["host"] = host
        super().__init__(
            message,
            code="CONNECTION_ERROR",
            details=details,
            **kwargs,
        )


class TimeoutError(NetworkError):
    """Raised when request times out."""

    def __init__(
        self,
        message: str = "Request timed out",
        timeout_seconds: Optional[float] = None,
        **kwargs,
    ):
        details = kwargs.pop("details", {})
        if timeout_seconds:
            details["timeout_seconds"] = timeout_seconds
        super().__init__(
            message,
            code="TIMEOUT_ERROR",
            details=details,
            **kwargs,
        )


# ============================================
# Paging Errors
# ============================================

class PagingError(ContentCloudError):
    """Base class for paging iterator errors."""


class NotPageableError(PagingError):
    """Raised when a response has no ``entries`` array to page over."""

    def __init__(self, message: str = "Cannot create paging iterator for non-paged response", **kwargs):
        super().__init__(message, code="NOT_PAGEABLE", **kwargs)


# ============================================
# Stream Errors
# ============================================

class StreamError(ContentCloudError):
    """Raised when an event stream stops on a non-retryable failure."""

    def __init__(self, message: str, position: Any = None, **kwargs):
        details = kwargs.pop("details", {})
        if position is not None:
            details["stream_position"] = position
        kwargs.setdefault("code", "STREAM_ERROR")
        super().__init__(message, details=details, **kwargs)
        self.position = position


# ============================================
# Upload Errors
# ============================================

class UploadError(ContentCloudError):
    """Base class for chunked upload errors.

    Attributes:
        session_id: ID of the upload session the error belongs to
    """

    def __init__(self, message: str, session_id: Optional[str] = None, **kwargs):
        details = kwargs.pop("details", {})
        if session_id:
            details["session_id"] = session_id
        super().__init__(message, details=details, **kwargs)
        self.session_id = session_id


class PartUploadError(UploadError):
    """Raised when one or more parts could not be uploaded.

    The session is left open: the caller may start the uploader again to
    re-send only the failed parts, or abort the session.

    Attributes:
        failed_offsets: Byte offsets of the parts that failed
        errors: The individual errors, in the same order
    """

    def __init__(
        self,
        message: str,
        failed_offsets: Optional[list[int]] = None,
        errors: Optional[list[Exception]] = None,
        **kwargs,
    ):
        details = kwargs.pop("details", {})
        details["failed_offsets"] = failed_offsets or []
        if errors:
            details["sample_errors"] = [str(e)[:100] for e in errors[:5]]
        super().__init__(
            message,
            code="PART_UPLOAD_FAILED",
            details=details,
            recoverable=True,
            **kwargs,
        )
        self.failed_offsets = failed_offsets or []
        self.errors = errors or []


class UploadIncompleteError(UploadError):
    """Raised when uploaded parts do not exactly tile the file before commit."""

    def __init__(self, message: str, gaps: Optional[list[tuple[int, int]]] = None, **kwargs):
        details = kwargs.pop("details", {})
        if gaps:
            details["gaps"] = gaps
        super().__init__(message, code="UPLOAD_INCOMPLETE", details=details, **kwargs)
        self.gaps = gaps or []


class UploadAbortedError(UploadError):
    """Raised from start() when the upload was aborted while running."""

    def __init__(self, message: str = "Upload was aborted", **kwargs):
        super().__init__(message, code="UPLOAD_ABORTED", **kwargs)


class InvalidUploadStateError(UploadError):
    """Raised when an operation is not allowed in the session's current status."""

    def __init__(self, message: str, status: Optional[str] = None, **kwargs):
        details = kwargs.pop("details", {})
        if status:
            details["status"] = status
        super().__init__(message, code="INVALID_UPLOAD_STATE", details=details, **kwargs)


# ============================================
# Circuit Breaker
# ============================================

class CircuitOpenError(ContentCloudError):
    """Raised when circuit breaker is open and requests are being rejected.

    Attributes:
        reset_at: When the circuit breaker will attempt to close
    """

    def __init__(
        self,
        message: str = "Circuit breaker is open, requests rejected",
        reset_at: Optional[datetime] = None,
        failure_count: int = 0,
        **kwargs,
    ):
        details = kwargs.pop("details", {})
        if reset_at:
            details["reset_at"] = reset_at.isoformat()
        details["failure_count"] = failure_count

        super().__init__(
            message,
            code="CIRCUIT_OPEN",
            details=details,
            recoverable=True,
            **kwargs,
        )
        self.reset_at = reset_at
        self.failure_count = failure_count


# ============================================
# Error Builders
# ============================================

def describe_response(response: "APIResponse") -> tuple[str, str]:
    """Return the bracketed status summary and the API's own message."""
    status = response.status_code
    try:
        reason = HTTPStatus(status).phrase
    except ValueError:
        reason = ""

    body = response.body if isinstance(response.body, dict) else {}
    request_id = f" | {body['request_id']}" if body.get("request_id") else ""

    api_message = ""
    if body.get("code"):
        api_message += f" {body['code']}"
    if body.get("message"):
        api_message += f" - {body['message']}"

    return f"[{status} {reason}{request_id}]".replace(" ]", "]"), api_message


def build_response_error(
    response: "APIResponse",
    message: str = "API Response Error",
    error_class: type = ResponseError,
) -> ResponseError:
    """Build a response error carrying the response and its request context."""
    summary, api_message = describe_response(response)
    request = response.request
    return error_class(
        f"{message} {summary}{api_message}",
        status_code=response.status_code,
        endpoint=request.url if request else None,
        method=request.method if request else "GET",
        response_body=response.text_preview(),
        response=response,
    )


def build_unexpected_response_error(response: "APIResponse") -> UnexpectedResponseError:
    """Shortcut for the error raised when a status is outside an operation's expected set."""
    return build_response_error(
        response,
        "Unexpected API Response",
        error_class=UnexpectedResponseError,
    )


def build_api_error(response: "APIResponse") -> APIError:
    """Create the APIError subclass matching the response status."""
    status = response.status_code
    request = response.request
    method = request.method if request else "GET"
    endpoint = request.url if request else None
    summary, api_message = describe_response(response)
    common = dict(
        endpoint=endpoint,
        method=method,
        response_body=response.text_preview(),
        response=response,
    )

    if status == 404:
        return NotFoundError(
            resource_type="Resource",
            resource_id=endpoint,
            status_code=status,
            **common,
        )

    if status == 429:
        return RateLimitError(
            f"Rate limit exceeded {summary}{api_message}",
            retry_after=response.retry_after(),
            **common,
        )

    if status in (400, 422):
        return ValidationError(
            f"Validation failed for {method} {endpoint} {summary}{api_message}",
            status_code=status,
            **common,
        )

    if status >= 500:
        return ServerError(
            f"Server error {summary}{api_message}",
            status_code=status,
            **common,
        )

    if status == 408:
        return APIError(
            f"Request timeout {summary}{api_message}",
            status_code=status,
            **common,
        )

    return build_response_error(response)


__all__ = [
    "NON_RECOVERABLE_SERVER_STATUS",
    "is_recoverable_status",
    # Base
    "ContentCloudError",
    "ConfigurationError",
    # Authentication
    "AuthenticationError",
    "TokenExpiredError",
    "InvalidCredentialsError",
    # API
    "APIError",
    "ResponseError",
    "UnexpectedResponseError",
    "RateLimitError",
    "NotFoundError",
    "ValidationError",
    "ServerError",
    # Network
    "NetworkError",
    "ConnectionError",
    "TimeoutError",
    # Components
    "PagingError",
    "NotPageableError",
    "StreamError",
    "UploadError",
    "PartUploadError",
    "UploadIncompleteError",
    "UploadAbortedError",
    "InvalidUploadStateError",
    "CircuitOpenError",
    # Builders
    "describe_response",
    "build_response_error",
    "build_unexpected_response_error",
    "build_api_error",
]
