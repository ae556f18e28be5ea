"""
Client address for usage rows.

The gateway runs behind one reverse proxy, which appends the caller to
``X-Forwarded-For`` and sets ``X-Real-IP``. Only those headers are read;
values that are not IP addresses are ignored rather than stored.
"""

from __future__ import annotations

import ipaddress
from typing import Optional, Sequence

from fastapi import Request

TRUSTED_IP_HEADERS: tuple[str, ...] = ("X-Forwarded-For", "X-Real-IP")


def _as_ip(value: str) -> Optional[str]:
    try:
        return str(ipaddress.ip_address(value.strip()))
    except ValueError:
        return None


def get_client_ip(
    request: Request, trusted_headers: Sequence[str] = TRUSTED_IP_HEADERS
) -> Optional[str]:
    """First valid address from ``trusted_headers``, else the socket peer.

    For ``X-Forwarded-For`` the left-most entry is the original caller.
    Returns None when nothing usable is found.
    """
    for header in trusted_headers:
        value = request.headers.get(header)
        if not value:
            continue
        ip = _as_ip(value.split(",")[0])
        if ip is not None:
            return ip

    if request.client and request.client.host:
        return _as_ip(request.client.host)
    return None
