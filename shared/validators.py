"""
API key and webhook URL validators - framework-agnostic.

The API key check is a pure function that runs before any storage access.
The webhook URL check is async because, outside development, hostnames are
resolved and every resolved address must be public.
"""

from __future__ import annotations

import asyncio
import ipaddress
import re
import socket
from typing import Awaitable, Callable, Optional
from urllib.parse import urlsplit

import validators as _validators

from errors import WebhookUrlInvalidError
from shared.generators import API_KEY_PREFIX, API_KEY_TOKEN_LENGTH

API_KEY_PATTERN = re.compile(
    rf"^{re.escape(API_KEY_PREFIX)}[A-Za-z0-9]{{{API_KEY_TOKEN_LENGTH}}}$"
)

Resolver = Callable[[str], Awaitable[list[str]]]


def validate_api_key_format(api_key: str) -> bool:
    """Return True if *api_key* is ``cb_`` followed by exactly 32 alphanumerics."""
    return bool(API_KEY_PATTERN.match(api_key))


async def resolve_host(hostname: str) -> list[str]:
    """Resolve *hostname* to the list of its IP address strings."""
    loop = asyncio.get_running_loop()
    infos = await loop.getaddrinfo(hostname, None, type=socket.SOCK_STREAM)
    return sorted({info[4][0] for info in infos})


def is_public_address(address: str) -> bool:
    """False for loopback, private, link-local, reserved and unspecified IPs."""
    ip = ipaddress.ip_address(address)
    return not (
        ip.is_loopback
        or ip.is_private
        or ip.is_link_local
        or ip.is_reserved
        or ip.is_multicast
        or ip.is_unspecified
    )


async def validate_webhook_url(
    url: str,
    *,
    development: bool = False,
    resolver: Optional[Resolver] = None,
) -> str:
    """Validate a webhook target URL and return it unchanged.

    Rules:
    - Must be an absolute ``http``/``https`` URL with a host.
    - Outside development: scheme must be ``https``, the host must not be
      ``localhost`` and every address it resolves to must be public.

    Raises:
        WebhookUrlInvalidError: when any rule is violated.
    """
    parts = urlsplit(url)
    if parts.scheme not in ("http", "https") or not parts.hostname:
        raise WebhookUrlInvalidError("Invalid webhook URL format", field="url")

    if development:
        return url

    if parts.scheme != "https":
        raise WebhookUrlInvalidError("Webhook URLs must use HTTPS", field="url")

    hostname = parts.hostname.lower()
    if hostname == "localhost" or hostname.endswith(".localhost"):
        raise WebhookUrlInvalidError(
            "Private IP addresses and localhost are not allowed", field="url"
        )

    try:
        addresses = [str(ipaddress.ip_address(hostname))]
    except ValueError:
        if not _validators.url(url):
            raise WebhookUrlInvalidError("Invalid webhook URL format", field="url")
        try:
            addresses = await (resolver or resolve_host)(hostname)
        except OSError:
            raise WebhookUrlInvalidError(
                f"Webhook host {hostname!r} could not be resolved", field="url"
            )

    if not addresses or not all(is_public_address(addr) for addr in addresses):
        raise WebhookUrlInvalidError(
            "Private IP addresses and localhost are not allowed", field="url"
        )
    return url
