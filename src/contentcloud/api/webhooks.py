#!/usr/bin/env python3
"""Webhook message verification.

Every webhook delivery is signed with HMAC-SHA256 over the raw body followed
by the delivery timestamp, once with the primary key and once with the
secondary key. Two keys let an application rotate one key at a time: a
message is authentic if either signature matches.

Usage:
    keys = WebhookSignatureKeys(primary=os.getenv("WEBHOOK_PRIMARY_KEY"))
    if not validate_message(request_body, request_headers, keys):
        return 403
"""
import base64
import hashlib
import hmac
import json
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Mapping, Optional, Union

logger = logging.getLogger(__name__)

MAX_MESSAGE_AGE = 10 * 60
SIGNATURE_VERSION = "1"
SIGNATURE_ALGORITHM = "HmacSHA256"

HEADER_TIMESTAMP = "box-delivery-timestamp"
HEADER_VERSION = "box-signature-version"
HEADER_ALGORITHM = "box-signature-algorithm"
HEADER_PRIMARY = "box-signature-primary"
HEADER_SECONDARY = "box-signature-secondary"


@dataclass(frozen=True)
class WebhookSignatureKeys:
    """Signature keys configured for the application's webhooks."""
    primary: Optional[str] = None
    secondary: Optional[str] = None


def _header(headers: Mapping[str, str], name: str) -> Optional[str]:
    for key, value in headers.items():
        if key.lower() == name:
            return value
    return None


def serialize_body(body: Any) -> str:
    """Re-serialize a parsed JSON body the way the sender signed it.

    Non-ASCII characters (and DEL) are written as \\uXXXX escapes and forward
    slashes as \\/.
    """
    text = json.dumps(body, separators=(",", ":"), ensure_ascii=True)
    return text.replace("/", "\\/")


def compute_signature(body: str, headers: Mapping[str, str], key: Optional[str]) -> Optional[str]:
    """Base64 HMAC-SHA256 of body + delivery timestamp, or None if it cannot be computed."""
    if not key:
        return None
    if _header(headers, HEADER_VERSION) != SIGNATURE_VERSION:
        return None
    if _header(headers, HEADER_ALGORITHM) != SIGNATURE_ALGORITHM:
        return None

    timestamp = _header(headers, HEADER_TIMESTAMP) or ""
    digest = hmac.new(key.encode("utf-8"), (body + timestamp).encode("utf-8"), hashlib.sha256).digest()
    return base64.b64encode(digest).decode("ascii")


def validate_signature(body: str, headers: Mapping[str, str], keys: WebhookSignatureKeys) -> bool:
    for key, header in ((keys.primary, HEADER_PRIMARY), (keys.secondary, HEADER_SECONDARY)):
        expected = compute_signature(body, headers, key)
        received = _header(headers, header)
        if expected and received and hmac.compare_digest(expected, received):
            return True
    return False


def validate_delivery_timestamp(
    headers: Mapping[str, str],
    max_message_age: float,
    now: Optional[datetime] = None,
) -> bool:
    raw = _header(headers, HEADER_TIMESTAMP)
    if not raw:
        return False
    try:
        delivered_at = datetime.fromisoformat(raw)
    except ValueError:
        logger.warning(f"Unparseable webhook delivery timestamp: {raw!r}")
        return False
    if delivered_at.tzinfo is None:
        delivered_at = delivered_at.replace(tzinfo=timezone.utc)

    age = ((now or datetime.now(timezone.utc)) - delivered_at).total_seconds()
    return age <= max_message_age


def validate_message(
    body: Union[str, bytes, dict, list],
    headers: Mapping[str, str],
    keys: WebhookSignatureKeys,
    max_message_age: float = MAX_MESSAGE_AGE,
) -> bool:
    """Check that a webhook message is authentic and recent.

    Args:
        body: The raw body, or the body already parsed from JSON
        headers: The delivery's HTTP headers (any case)
        keys: Primary and/or secondary signature keys
        max_message_age: Oldest acceptable delivery, in seconds

    Returns:
        True if a signature matches and the message is not too old
    """
    if isinstance(body, bytes):
        body = body.decode("utf-8")
    elif not isinstance(body, str):
        body = serialize_body(body)

    if not validate_signature(body, headers, keys):
        logger.debug("Webhook signature mismatch")
        return False

    if not validate_delivery_timestamp(headers, max_message_age):
        logger.debug("Webhook message too old")
        return False

    return True
