"""Content Cloud API modules.

This package provides the async HTTP client for the Content Cloud API and the
stateful components built on it.

Classes:
    ContentClient: HTTP client with retry, token refresh and circuit breaker
    TokenManager: Holds the access token, refreshes via a caller callback
    PagingIterator: Lazy iteration over offset- or marker-paged collections
    EventStream: Deduplicating, self-reconnecting long-poll event stream
    EnterpriseEventStream: Admin log polling stream
    ChunkedUploader: Parallel part upload and commit of large files

    FilesManager: Upload sessions and chunked uploader factories
    EventsManager: Events, long-poll discovery and stream factories
    FoldersManager: Folder info and paged folder listings

Exceptions:
    ContentCloudError: Base exception for all client errors
    ConfigurationError: Missing or invalid configuration
    AuthenticationError: Authentication failures
    APIError: API request failures
    ResponseError: Error response with its APIResponse attached
    NetworkError: Network connectivity issues
    PagingError: Response cannot be paged
    StreamError: Event stream failures
    UploadError: Chunked upload failures

Resilience:
    get_retry_timeout: Exponential backoff with jitter
    CircuitBreaker: Stop calling an API that keeps failing
"""
from .auth import CachedToken, TokenManager
from .chunked_uploader import (
    ChunkedUploader,
    UploadOptions,
    UploadPart,
    UploadSessionState,
    UploadStatus,
)
from .client import ContentClient
from .emitter import Emitter
from .enterprise_event_stream import (
    EnterpriseEventStream,
    EnterpriseStreamOptions,
    EnterpriseStreamState,
)
from .event_stream import EventStream, EventStreamOptions
from .events import CURRENT_STREAM_POSITION, EventsManager, EventType, LongPollInfo
from .exceptions import (
    APIError,
    AuthenticationError,
    CircuitOpenError,
    ConfigurationError,
    ConnectionError,
    ContentCloudError,
    InvalidCredentialsError,
    InvalidUploadStateError,
    NetworkError,
    NotFoundError,
    NotPageableError,
    PagingError,
    PartUploadError,
    RateLimitError,
    ResponseError,
    ServerError,
    StreamError,
    TimeoutError,
    TokenExpiredError,
    UnexpectedResponseError,
    UploadAbortedError,
    UploadError,
    UploadIncompleteError,
    ValidationError,
    build_api_error,
    build_response_error,
    build_unexpected_response_error,
    is_recoverable_status,
)
from .files import FilesManager
from .folders import FoldersManager
from .paging import IteratorResult, PagingIterator, PagingMode
from .request import APIResponse, RequestDescriptor
from .resilience import (
    CircuitBreaker,
    CircuitState,
    get_retry_timeout,
    is_retryable,
    retry_async,
)
from .streaming import StreamState
from .webhooks import WebhookSignatureKeys, validate_message

__all__ = [
    # Client & auth
    "ContentClient",
    "TokenManager",
    "CachedToken",
    "RequestDescriptor",
    "APIResponse",
    # Paging
    "PagingIterator",
    "PagingMode",
    "IteratorResult",
    # Streams
    "Emitter",
    "StreamState",
    "EventStream",
    "EventStreamOptions",
    "EnterpriseEventStream",
    "EnterpriseStreamOptions",
    "EnterpriseStreamState",
    # Uploads
    "ChunkedUploader",
    "UploadOptions",
    "UploadPart",
    "UploadSessionState",
    "UploadStatus",
    # Managers
    "FilesManager",
    "EventsManager",
    "FoldersManager",
    "EventType",
    "LongPollInfo",
    "CURRENT_STREAM_POSITION",
    # Webhooks
    "WebhookSignatureKeys",
    "validate_message",
    # Resilience
    "CircuitBreaker",
    "CircuitState",
    "get_retry_timeout",
    "is_retryable",
    "retry_async",
    # Exceptions
    "ContentCloudError",
    "ConfigurationError",
    "AuthenticationError",
    "TokenExpiredError",
    "InvalidCredentialsError",
    "APIError",
    "ResponseError",
    "UnexpectedResponseError",
    "RateLimitError",
    "NotFoundError",
    "ValidationError",
    "ServerError",
    "NetworkError",
    "ConnectionError",
    "TimeoutError",
    "PagingError",
    "NotPageableError",
    "StreamError",
    "UploadError",
    "PartUploadError",
    "UploadIncompleteError",
    "UploadAbortedError",
    "InvalidUploadStateError",
    "CircuitOpenError",
    "build_api_error",
    "build_response_error",
    "build_unexpected_response_error",
    "is_recoverable_status",
]
