"""
Random key, secret and identifier generators - pure, side-effect-free functions.

All generators use cryptographically secure sources (``secrets`` module).
"""

from __future__ import annotations

import secrets
import string
import uuid

API_KEY_PREFIX = "cb_"
API_KEY_TOKEN_LENGTH = 32
API_KEY_DISPLAY_LENGTH = len(API_KEY_PREFIX) + 8

_API_KEY_ALPHABET = string.ascii_letters + string.digits


def generate_api_key(
    prefix: str = API_KEY_PREFIX, length: int = API_KEY_TOKEN_LENGTH
) -> str:
    """Generate a new plaintext API key.

    Args:
        prefix: Fixed, human-recognisable prefix (default ``cb_``).
        length: Number of random alphanumeric characters after the prefix.

    Returns:
        ``prefix`` followed by *length* characters from ``[A-Za-z0-9]``.
    """
    return prefix + "".join(secrets.choice(_API_KEY_ALPHABET) for _ in range(length))


def api_key_display_prefix(api_key: str) -> str:
    """Return the short, non-secret prefix stored for display."""
    return api_key[:API_KEY_DISPLAY_LENGTH]


def generate_webhook_secret() -> str:
    """Generate a 32-character hex signing secret for a webhook endpoint."""
    return secrets.token_hex(16)


def generate_delivery_id() -> str:
    return str(uuid.uuid4())


def generate_request_id() -> str:
    return str(uuid.uuid4())
