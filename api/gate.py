"""
FastAPI binding for the access gate.

    @router.get("/data/summary")
    async def summary(credential: CredentialDoc = Depends(require_api_key("read:data"))):
        ...

The rate-limit counter is keyed by the mounted route template
(``/api/v1/webhooks/{endpoint_id}``), not the concrete path, so ids in the
URL do not split one key's quota.
"""

from __future__ import annotations

from typing import Callable

import structlog
from fastapi import Depends, Request

from dependencies import get_services
from schemas.models.credential import CredentialDoc
from services.access_gate import ScopeMode
from services.container import Services


def endpoint_key(method: str, template: str) -> str:
    return f"{method.upper()} {template}"


def route_template(request: Request) -> str:
    """Full request path with each path parameter put back as ``{name}``.

    Built from the concrete URL rather than the matched route object, whose
    ``path`` may or may not include the prefixes of enclosing routers.
    """
    path = request.url.path
    if not request.path_params:
        return path
    names = {str(value): name for name, value in request.path_params.items()}
    return "/".join(
        "{%s}" % names[segment] if segment in names else segment
        for segment in path.split("/")
    )


def require_api_key(
    *scopes: str, mode: ScopeMode = ScopeMode.ALL
) -> Callable[..., object]:
    """Dependency factory: authenticate, authorize ``scopes`` and charge the rate limit."""

    async def dependency(
        request: Request, services: Services = Depends(get_services)
    ) -> CredentialDoc:
        endpoint = endpoint_key(request.method, route_template(request))
        grant = await services.gate.authorize(request.headers, endpoint, scopes, mode)
        request.state.credential = grant.credential
        request.state.rate_limit_headers = grant.headers
        request.state.gated_endpoint = endpoint
        structlog.contextvars.bind_contextvars(key_prefix=grant.credential.key_prefix)
        return grant.credential

    return dependency
