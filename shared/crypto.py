"""
Cryptographic helpers - API key hashing and webhook payload signing.

API keys are hashed with HMAC-SHA-256 keyed by a server-side pepper: the
result is deterministic (so keys can be looked up by hash) and cannot be
recomputed from a leaked database without the pepper.

Webhook bodies are signed with HMAC-SHA-256 using the endpoint's secret and
sent as ``sha256=<hex>``.
"""

from __future__ import annotations

import hashlib
import hmac
import json
from typing import Any

SIGNATURE_PREFIX = "sha256="


def hash_api_key(api_key: str, pepper: str) -> str:
    """Return the hex-encoded HMAC-SHA-256 of *api_key* keyed by *pepper*.

    Returns:
        64-character lowercase hex string.
    """
    return hmac.new(
        pepper.encode("utf-8"), api_key.encode("utf-8"), hashlib.sha256
    ).hexdigest()


def canonical_json(payload: Any) -> bytes:
    """Serialize *payload* to the canonical JSON bytes used on the wire.

    Keys are sorted and separators carry no whitespace so the same payload
    always produces the same bytes (and therefore the same signature).
    """
    return json.dumps(
        payload, sort_keys=True, separators=(",", ":"), ensure_ascii=False, default=str
    ).encode("utf-8")


def sign_payload(body: bytes, secret: str) -> str:
    """Return the ``sha256=<hex>`` signature header value for *body*."""
    digest = hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()
    return f"{SIGNATURE_PREFIX}{digest}"


def verify_signature(body: bytes, secret: str, signature_header: str) -> bool:
    """Constant-time check of a received signature header against *body*."""
    if not signature_header or not signature_header.startswith(SIGNATURE_PREFIX):
        return False
    return hmac.compare_digest(sign_payload(body, secret), signature_header)
