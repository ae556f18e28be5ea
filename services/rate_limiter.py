"""
Per-credential, per-endpoint admission control.

Two counters are consulted, both incremented atomically in the counter store:

1. the hourly window (hour-aligned UTC); its tier_limit is snapshotted when
   the window document is created;
2. once the hourly quota is spent, a short burst bucket
   (``burst_window_seconds``, default 60) allowing ``burst_allowance`` more.

When both are spent the request is rejected with retry_after = seconds until
the hour window ends. Counts are never decremented: a request is charged when
it is attempted, whatever its outcome downstream.

What happens when the counter store itself fails is a named policy,
DegradedModeBehavior, rather than a side effect of exception handling.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Optional

from errors import StorageUnavailableError
from repositories.counters import CounterStore
from schemas.models.credential import CredentialDoc
from services.tiers import TierResolver
from shared.datetime_utils import Clock, seconds_until, to_epoch, utcnow, window_bounds
from shared.logging import get_logger

log = get_logger(__name__)

WINDOW_SECONDS = 3600


class DegradedModeBehavior(str, Enum):
    FAIL_OPEN = "fail_open"
    FAIL_CLOSED = "fail_closed"


@dataclass(frozen=True)
class RateLimitResult:
    allowed: bool
    limit: int
    remaining: int
    reset_at: datetime
    retry_after: Optional[int] = None
    used_burst: bool = False
    degraded: bool = False


class RateLimiter:
    def __init__(
        self,
        counters: CounterStore,
        tiers: TierResolver,
        *,
        degraded_mode: DegradedModeBehavior = DegradedModeBehavior.FAIL_OPEN,
        burst_window_seconds: int = 60,
        clock: Clock = utcnow,
    ) -> None:
        self._counters = counters
        self._tiers = tiers
        self._degraded_mode = DegradedModeBehavior(degraded_mode)
        self._burst_window_seconds = burst_window_seconds
        self._clock = clock

    @property
    def degraded_mode(self) -> DegradedModeBehavior:
        return self._degraded_mode

    async def check(self, credential: CredentialDoc, endpoint: str) -> RateLimitResult:
        """Charge one request to (credential, endpoint) and decide admission."""
        tier = await self._tiers.resolve(credential.user_id)
        credential_id = credential.str_id
        now = self._clock()
        window_start, window_end = window_bounds(now, WINDOW_SECONDS)

        try:
            window = await self._counters.increment_window(
                credential_id=credential_id,
                user_id=credential.user_id,
                endpoint=endpoint,
                window_start=window_start,
                window_end=window_end,
                tier_limit=tier.requests_per_hour,
            )
            limit = window.tier_limit
            if window.request_count <= limit:
                return RateLimitResult(
                    allowed=True,
                    limit=limit,
                    remaining=limit - window.request_count,
                    reset_at=window_end,
                )

            bucket_start, bucket_end = window_bounds(now, self._burst_window_seconds)
            burst_used = await self._counters.increment_burst(
                credential_id=credential_id,
                endpoint=endpoint,
                window_start=window_start,
                bucket_start=bucket_start,
                bucket_end=bucket_end,
            )
        except StorageUnavailableError as e:
            return self._degraded(e, tier.requests_per_hour, window_end, credential_id, endpoint)

        if burst_used <= tier.burst_allowance:
            return RateLimitResult(
                allowed=True,
                limit=limit,
                remaining=tier.burst_allowance - burst_used,
                reset_at=window_end,
                used_burst=True,
            )

        retry_after = seconds_until(window_end, now)
        log.info(
            "rate_limit_exceeded",
            key_id=credential_id,
            user_id=credential.user_id,
            endpoint=endpoint,
            limit=limit,
            retry_after=retry_after,
        )
        return RateLimitResult(
            allowed=False,
            limit=limit,
            remaining=0,
            reset_at=window_end,
            retry_after=retry_after,
            used_burst=True,
        )

    def _degraded(
        self,
        error: StorageUnavailableError,
        limit: int,
        reset_at: datetime,
        credential_id: str,
        endpoint: str,
    ) -> RateLimitResult:
        log.warning(
            "rate_limit_degraded",
            policy=self._degraded_mode.value,
            key_id=credential_id,
            endpoint=endpoint,
            error=str(error),
        )
        if self._degraded_mode is DegradedModeBehavior.FAIL_CLOSED:
            raise error
        return RateLimitResult(
            allowed=True,
            limit=limit,
            remaining=max(0, limit - 1),
            reset_at=reset_at,
            degraded=True,
        )

    async def status(self, credential: CredentialDoc, endpoint: str) -> RateLimitResult:
        """Current standing for (credential, endpoint) without charging a request."""
        tier = await self._tiers.resolve(credential.user_id)
        now = self._clock()
        window_start, window_end = window_bounds(now, WINDOW_SECONDS)

        window = await self._counters.get_window(
            credential_id=credential.str_id, endpoint=endpoint, window_start=window_start
        )
        limit = window.tier_limit if window else tier.requests_per_hour
        used = window.request_count if window else 0
        if used < limit:
            return RateLimitResult(
                allowed=True, limit=limit, remaining=limit - used, reset_at=window_end
            )

        bucket_start, _ = window_bounds(now, self._burst_window_seconds)
        burst_used = await self._counters.get_burst(
            credential_id=credential.str_id,
            endpoint=endpoint,
            window_start=window_start,
            bucket_start=bucket_start,
        )
        remaining = max(0, tier.burst_allowance - burst_used)
        return RateLimitResult(
            allowed=remaining > 0,
            limit=limit,
            remaining=remaining,
            reset_at=window_end,
            retry_after=None if remaining else seconds_until(window_end, now),
            used_burst=True,
        )

    async def analytics(
        self, account_id: str, start: datetime, end: datetime
    ) -> dict[str, Any]:
        """Aggregate hourly windows for one account over ``[start, end)``."""
        windows = await self._counters.list_windows(user_id=account_id, start=start, end=end)
        counts = [w.request_count for w in windows]
        total = sum(counts)
        return {
            "total_requests": total,
            "windows": len(windows),
            "rate_limited_windows": sum(
                1 for w in windows if w.request_count > w.tier_limit
            ),
            "average_per_window": round(total / len(windows), 2) if windows else 0,
            "peak_per_window": max(counts, default=0),
            "hourly": [
                {
                    "window_start": w.window_start,
                    "endpoint": w.endpoint,
                    "request_count": w.request_count,
                    "tier_limit": w.tier_limit,
                }
                for w in windows
            ],
        }

    @staticmethod
    def headers(result: RateLimitResult) -> dict[str, str]:
        headers = {
            "X-RateLimit-Limit": str(result.limit),
            "X-RateLimit-Remaining": str(result.remaining),
            "X-RateLimit-Reset": str(to_epoch(result.reset_at)),
        }
        if not result.allowed and result.retry_after is not None:
            headers["Retry-After"] = str(result.retry_after)
        return headers
