"""HMAC-SHA256 signing of webhook payloads.

The signature covers the canonical JSON encoding of the payload without its
``signature`` field: keys sorted, no insignificant whitespace, UTF-8. A
receiver verifies by removing ``signature`` from the parsed body,
re-encoding it the same way and comparing HMACs.
"""

from __future__ import annotations

import hashlib
import hmac
import json
import uuid
from collections.abc import Mapping
from datetime import datetime, timezone
from typing import Any

from hireflow.events.types import TEST_EVENT_CODE, TEST_EVENT_DESCRIPTION, DomainEvent

PAYLOAD_VERSION = "1.0"
SIGNATURE_PREFIX = "sha256="


def _json_default(value: Any) -> str:
    if isinstance(value, datetime):
        return value.isoformat()
    return str(value)


def canonical_bytes(payload: Mapping[str, Any]) -> bytes:
    unsigned = {k: v for k, v in payload.items() if k != "signature"}
    return json.dumps(
        unsigned,
        sort_keys=True,
        separators=(",", ":"),
        ensure_ascii=False,
        default=_json_default,
    ).encode("utf-8")


def sign(payload: Mapping[str, Any], secret: str) -> str:
    digest = hmac.new(secret.encode("utf-8"), canonical_bytes(payload), hashlib.sha256)
    return SIGNATURE_PREFIX + digest.hexdigest()


def verify(payload: Mapping[str, Any] | bytes | str, secret: str, signature: str | None = None) -> bool:
    """Check a signature against a payload (parsed or raw body)."""
    if isinstance(payload, (bytes, str)):
        try:
            payload = json.loads(payload)
        except ValueError:
            return False
    if not isinstance(payload, Mapping):
        return False
    expected = signature if signature is not None else payload.get("signature")
    if not isinstance(expected, str):
        return False
    return hmac.compare_digest(sign(payload, secret), expected)


def build_payload(
    event: DomainEvent,
    *,
    data: Mapping[str, Any] | None = None,
    event_type: str | None = None,
) -> dict[str, Any]:
    return {
        "event_id": event.event_id,
        "event_type": event_type or event.type_code,
        "timestamp": event.timestamp.isoformat(),
        "data": dict(event.payload if data is None else data),
        "version": PAYLOAD_VERSION,
    }


def signed_body(payload: Mapping[str, Any], secret: str) -> tuple[bytes, str]:
    """Return the JSON request body (signature included) and the signature."""
    signature = sign(payload, secret)
    body = dict(payload)
    body["signature"] = signature
    return (
        json.dumps(body, separators=(",", ":"), ensure_ascii=False, default=_json_default).encode(
            "utf-8"
        ),
        signature,
    )


def build_test_payload(webhook_id: str) -> dict[str, Any]:
    return {
        "event_id": uuid.uuid4().hex,
        "event_type": TEST_EVENT_CODE,
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "data": {"message": TEST_EVENT_DESCRIPTION, "webhook_id": webhook_id, "_test": True},
        "version": PAYLOAD_VERSION,
    }
