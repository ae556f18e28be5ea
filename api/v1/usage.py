"""API usage for the calling key: current rate-limit standing plus hourly history."""

from __future__ import annotations

from datetime import timedelta
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request

from api.gate import endpoint_key, require_api_key
from dependencies import get_services
from schemas.dto.responses.usage import (
    RateLimitStatusResponse,
    UsageAnalyticsResponse,
    UsageResponse,
)
from schemas.models.credential import CredentialDoc
from services.container import Services

router = APIRouter(prefix="/usage", tags=["usage"])

# Route name of the endpoint reported when the caller does not pick one.
DEFAULT_STATUS_ROUTE = "data_summary"


@router.get("", response_model=UsageResponse)
async def get_usage(
    request: Request,
    endpoint: Optional[str] = Query(default=None),
    hours: int = Query(default=24, ge=1, le=24 * 31),
    credential: CredentialDoc = Depends(require_api_key()),
    services: Services = Depends(get_services),
) -> UsageResponse:
    """
    Usage for the key making the call.

    - ``endpoint``: which gated endpoint to report the live counter for,
      written as ``"<METHOD> <route>"``, e.g.
      ``"GET /api/v1/data/summary"``. Defaults to the data summary.
    - ``hours``: how far back the hourly history goes.
    """
    if endpoint is None:
        endpoint = endpoint_key("GET", request.app.url_path_for(DEFAULT_STATUS_ROUTE))
    now = services.clock()
    start = now - timedelta(hours=hours)
    status = await services.limiter.status(credential, endpoint)
    analytics = await services.limiter.analytics(credential.user_id, start, now)
    tier = await services.tiers.resolve(credential.user_id)
    return UsageResponse(
        key_id=credential.str_id,
        tier=tier.name,
        period_start=start,
        period_end=now,
        rate_limit=RateLimitStatusResponse(
            endpoint=endpoint,
            limit=status.limit,
            remaining=status.remaining,
            reset_at=status.reset_at,
            retry_after=status.retry_after,
            in_burst=status.used_burst,
        ),
        analytics=UsageAnalyticsResponse(**analytics),
    )
