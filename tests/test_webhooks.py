#!/usr/bin/env python3
"""Unit tests for webhook signature verification.

Tests cover:
    - Primary and secondary key matching (key rotation)
    - Signature version/algorithm checks
    - Delivery timestamp age
    - Body re-serialization for parsed JSON bodies
"""
import base64
import hashlib
import hmac
import sys
from datetime import datetime, timedelta, timezone

sys.path.insert(0, str(__file__).rsplit("/tests", 1)[0])
from src.contentcloud.api.webhooks import (
    WebhookSignatureKeys,
    serialize_body,
    validate_delivery_timestamp,
    validate_message,
)

BODY = '{"type":"webhook_event","webhook":{"id":"1234567890"},"trigger":"FILE.UPLOADED"}'


def sign(body, timestamp, key):
    digest = hmac.new(key.encode(), (body + timestamp).encode(), hashlib.sha256).digest()
    return base64.b64encode(digest).decode()


def make_headers(body=BODY, primary_key="SamplePrimaryKey", secondary_key="SampleSecondaryKey",
                 timestamp=None, **overrides):
    timestamp = timestamp or datetime.now(timezone.utc).isoformat(timespec="seconds")
    headers = {
        "BOX-DELIVERY-ID": "f96bb54b-ee16-4fc5-aa65-8c2d9e5b546f",
        "BOX-DELIVERY-TIMESTAMP": timestamp,
        "BOX-SIGNATURE-ALGORITHM": "HmacSHA256",
        "BOX-SIGNATURE-PRIMARY": sign(body, timestamp, primary_key),
        "BOX-SIGNATURE-SECONDARY": sign(body, timestamp, secondary_key),
        "BOX-SIGNATURE-VERSION": "1",
    }
    headers.update(overrides)
    return headers


# ============================================
# Signature Tests
# ============================================

class TestSignature:
    """Test HMAC verification with both keys."""

    def test_valid_with_primary_key(self):
        keys = WebhookSignatureKeys(primary="SamplePrimaryKey")
        assert validate_message(BODY, make_headers(), keys)

    def test_valid_with_secondary_key_only(self):
        """A rotated-out primary key still validates through the secondary."""
        keys = WebhookSignatureKeys(primary="OldKey", secondary="SampleSecondaryKey")
        assert validate_message(BODY, make_headers(), keys)

    def test_wrong_keys_rejected(self):
        keys = WebhookSignatureKeys(primary="nope", secondary="also-nope")
        assert not validate_message(BODY, make_headers(), keys)

    def test_no_keys_rejected(self):
        assert not validate_message(BODY, make_headers(), WebhookSignatureKeys())

    def test_tampered_body_rejected(self):
        keys = WebhookSignatureKeys(primary="SamplePrimaryKey")
        assert not validate_message(BODY.replace("UPLOADED", "DELETED"), make_headers(), keys)

    def test_unknown_version_rejected(self):
        keys = WebhookSignatureKeys(primary="SamplePrimaryKey")
        headers = make_headers(**{"BOX-SIGNATURE-VERSION": "2"})
        assert not validate_message(BODY, headers, keys)

    def test_unknown_algorithm_rejected(self):
        keys = WebhookSignatureKeys(primary="SamplePrimaryKey")
        headers = make_headers(**{"BOX-SIGNATURE-ALGORITHM": "HmacSHA1"})
        assert not validate_message(BODY, headers, keys)

    def test_bytes_body(self):
        keys = WebhookSignatureKeys(primary="SamplePrimaryKey")
        assert validate_message(BODY.encode("utf-8"), make_headers(), keys)

    def test_parsed_body_is_reserialized(self):
        parsed = {"type": "webhook_event", "webhook": {"id": "1234567890"}, "trigger": "FILE.UPLOADED"}
        keys = WebhookSignatureKeys(primary="SamplePrimaryKey")
        assert validate_message(parsed, make_headers(), keys)


# ============================================
# Timestamp Tests
# ============================================

class TestDeliveryTimestamp:
    """Test message age checks."""

    def test_old_message_rejected(self):
        keys = WebhookSignatureKeys(primary="SamplePrimaryKey")
        headers = make_headers(timestamp="2020-01-01T00:00:00-08:00")
        assert not validate_message(BODY, headers, keys)

    def test_custom_max_age(self):
        keys = WebhookSignatureKeys(primary="SamplePrimaryKey")
        stamp = (datetime.now(timezone.utc) - timedelta(hours=2)).isoformat(timespec="seconds")
        headers = make_headers(timestamp=stamp)
        assert not validate_message(BODY, headers, keys)
        assert validate_message(BODY, headers, keys, max_message_age=3 * 3600)

    def test_age_boundary(self):
        now = datetime(2024, 5, 1, 12, 0, 0, tzinfo=timezone.utc)
        headers = {"box-delivery-timestamp": "2024-05-01T04:50:00-07:00"}  # 11:50 UTC
        assert validate_delivery_timestamp(headers, 600, now=now)
        assert not validate_delivery_timestamp(headers, 599, now=now)

    def test_naive_timestamp_is_utc(self):
        now = datetime(2024, 5, 1, 12, 0, 0, tzinfo=timezone.utc)
        headers = {"box-delivery-timestamp": "2024-05-01T11:59:00"}
        assert validate_delivery_timestamp(headers, 600, now=now)

    def test_missing_or_garbage_timestamp(self):
        assert not validate_delivery_timestamp({}, 600)
        assert not validate_delivery_timestamp({"box-delivery-timestamp": "yesterday"}, 600)


# ============================================
# Serialization Tests
# ============================================

class TestSerializeBody:
    """Test the canonical JSON form used for parsed bodies."""

    def test_compact_separators(self):
        assert serialize_body({"a": 1, "b": [1, 2]}) == '{"a":1,"b":[1,2]}'

    def test_escapes_slashes_and_non_ascii(self):
        assert serialize_body({"path": "a/b", "name": "café\x7f"}) == (
            '{"path":"a\\/b","name":"caf\\u00e9\\u007f"}'
        )
