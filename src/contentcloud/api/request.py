"""Request and response value objects shared by the client and the components.

RequestDescriptor is immutable: components that replay a request (the paging
iterator) derive new descriptors with with_param() instead of mutating the
captured one.
"""
import json
import math
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from typing import Any, Mapping, Optional
from urllib.parse import parse_qsl, urlsplit, urlunsplit

# Query parameters that the API always treats as integers
NUMERIC_PARAMS = ("limit", "offset")


def _normalize_params(params: Mapping[str, Any]) -> dict[str, Any]:
    normalized = dict(params)
    for key in NUMERIC_PARAMS:
        value = normalized.get(key)
        if isinstance(value, str) and value.isdigit():
            normalized[key] = int(value)
    return normalized


@dataclass(frozen=True)
class RequestDescriptor:
    """Everything needed to (re)issue an HTTP request.

    Attributes:
        method: HTTP verb, upper case
        url: Absolute URL without query string
        params: Query parameters
        headers: Request headers (never the Authorization header; the client adds it)
        json: JSON body, if any
        data: Raw body bytes, if any
    """
    method: str
    url: str
    params: dict[str, Any] = field(default_factory=dict)
    headers: dict[str, str] = field(default_factory=dict)
    json: Optional[Any] = None
    data: Optional[bytes] = None

    @classmethod
    def from_url(cls, method: str, url: str, **kwargs) -> "RequestDescriptor":
        """Build a descriptor from a URL that may carry its own query string.

        Query values from the URL are merged under explicit params; numeric
        limit/offset values are converted to ints.
        """
        parts = urlsplit(url)
        params = dict(parse_qsl(parts.query, keep_blank_values=True))
        params.update(kwargs.pop("params", None) or {})
        bare_url = urlunsplit((parts.scheme, parts.netloc, parts.path, "", ""))
        headers = {
            k: v for k, v in (kwargs.pop("headers", None) or {}).items()
            if k.lower() != "authorization"
        }
        return cls(
            method=method.upper(),
            url=bare_url,
            params=_normalize_params(params),
            headers=headers,
            **kwargs,
        )

    @property
    def carries_json_body(self) -> bool:
        return self.method != "GET" and isinstance(self.json, dict)

    def with_param(self, name: str, value: Any) -> "RequestDescriptor":
        """Return a copy with one paging parameter set.

        GET requests carry the parameter in the query string; requests with
        a JSON object body carry it in the body.
        """
        if self.carries_json_body:
            return replace(self, json={**self.json, name: value})
        return replace(self, params={**self.params, name: value})

    def get_param(self, name: str) -> Any:
        if self.carries_json_body:
            return self.json.get(name)
        return self.params.get(name)

    def without_auth(self) -> "RequestDescriptor":
        headers = {k: v for k, v in self.headers.items() if k.lower() != "authorization"}
        return replace(self, headers=headers)


@dataclass
class APIResponse:
    """A received HTTP response with its body already read.

    Attributes:
        status_code: HTTP status
        headers: Response headers
        body: Parsed JSON when the response was JSON, else text (or None if empty)
        request: The descriptor of the request that produced this response
    """
    status_code: int
    headers: Mapping[str, str] = field(default_factory=dict)
    body: Any = None
    request: Optional[RequestDescriptor] = None

    @property
    def ok(self) -> bool:
        return 200 <= self.status_code < 300

    def header(self, name: str, default: Optional[str] = None) -> Optional[str]:
        """Case-insensitive header lookup."""
        lowered = name.lower()
        for key, value in self.headers.items():
            if key.lower() == lowered:
                return value
        return default

    def retry_after(self, now: Optional[datetime] = None) -> Optional[float]:
        """Seconds to wait from the Retry-After header, or None if absent or unreadable.

        Both forms are accepted: delta-seconds and an HTTP-date. A date in
        the past yields 0.
        """
        value = self.header("Retry-After")
        if not value:
            return None
        value = value.strip()
        try:
            seconds = float(value)
        except ValueError:
            try:
                when = parsedate_to_datetime(value)
            except (TypeError, ValueError):
                return None
            if when.tzinfo is None:
                when = when.replace(tzinfo=timezone.utc)
            now = now or datetime.now(timezone.utc)
            return max(0.0, (when - now).total_seconds())
        if not math.isfinite(seconds) or seconds < 0:
            return None
        return seconds

    def text_preview(self, limit: int = 500) -> Optional[str]:
        if self.body is None:
            return None
        text = self.body if isinstance(self.body, str) else json.dumps(self.body, default=str)
        return text[:limit]
