"""Response DTOs for GET /api/v1/usage."""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import BaseModel


class RateLimitStatusResponse(BaseModel):
    endpoint: str
    limit: int
    remaining: int
    reset_at: datetime
    retry_after: Optional[int] = None
    in_burst: bool


class HourlyUsage(BaseModel):
    window_start: datetime
    endpoint: str
    request_count: int
    tier_limit: int


class UsageAnalyticsResponse(BaseModel):
    total_requests: int
    windows: int
    rate_limited_windows: int
    average_per_window: float
    peak_per_window: int
    hourly: list[HourlyUsage]


class UsageResponse(BaseModel):
    key_id: str
    tier: str
    period_start: datetime
    period_end: datetime
    rate_limit: RateLimitStatusResponse
    analytics: UsageAnalyticsResponse
