"""
Rate-limit counter storage.

Hourly windows always live in MongoDB (`rate_limit_windows`) because they are
kept for usage analytics. Burst counters are short-lived; they go to Redis
when a client is available (INCR + EXPIREAT in one MULTI) and to the
`rate_limit_bursts` collection otherwise.

Every increment is a single atomic server-side operation.
"""

from __future__ import annotations

from datetime import datetime
from typing import Optional, Protocol

import redis.asyncio as aioredis
from redis.exceptions import RedisError

from errors import StorageUnavailableError
from repositories.filters import Eq, Gte, Lt
from repositories.store import DocumentStore
from schemas.models.rate_limit import RateLimitWindowDoc
from shared.logging import get_logger

log = get_logger(__name__)

# Redis burst keys outlive their bucket by this much so late reads still see them
_BURST_KEY_GRACE_SECONDS = 60


class CounterStore(Protocol):
    async def increment_window(
        self,
        *,
        credential_id: str,
        user_id: str,
        endpoint: str,
        window_start: datetime,
        window_end: datetime,
        tier_limit: int,
    ) -> RateLimitWindowDoc: ...

    async def get_window(
        self, *, credential_id: str, endpoint: str, window_start: datetime
    ) -> Optional[RateLimitWindowDoc]: ...

    async def increment_burst(
        self,
        *,
        credential_id: str,
        endpoint: str,
        window_start: datetime,
        bucket_start: datetime,
        bucket_end: datetime,
    ) -> int: ...

    async def get_burst(
        self,
        *,
        credential_id: str,
        endpoint: str,
        window_start: datetime,
        bucket_start: datetime,
    ) -> int: ...

    async def list_windows(
        self, *, user_id: str, start: datetime, end: datetime
    ) -> list[RateLimitWindowDoc]: ...


class MongoCounterStore:
    def __init__(
        self,
        windows: DocumentStore,
        bursts: DocumentStore,
        redis_client: Optional[aioredis.Redis] = None,
    ) -> None:
        self._windows = windows
        self._bursts = bursts
        self._redis = redis_client

    @staticmethod
    def _window_key(credential_id: str, endpoint: str, window_start: datetime) -> list:
        return [
            Eq("credential_id", credential_id),
            Eq("endpoint", endpoint),
            Eq("window_start", window_start),
        ]

    @staticmethod
    def _burst_redis_key(credential_id: str, endpoint: str, bucket_start: datetime) -> str:
        return f"ratelimit:burst:{credential_id}:{endpoint}:{int(bucket_start.timestamp())}"

    async def increment_window(
        self,
        *,
        credential_id: str,
        user_id: str,
        endpoint: str,
        window_start: datetime,
        window_end: datetime,
        tier_limit: int,
    ) -> RateLimitWindowDoc:
        data = await self._windows.increment(
            self._window_key(credential_id, endpoint, window_start),
            {"request_count": 1},
            set_on_insert={
                "user_id": user_id,
                "window_end": window_end,
                "tier_limit": tier_limit,
            },
        )
        return RateLimitWindowDoc.from_mongo(data)

    async def get_window(
        self, *, credential_id: str, endpoint: str, window_start: datetime
    ) -> Optional[RateLimitWindowDoc]:
        data = await self._windows.find_one(
            self._window_key(credential_id, endpoint, window_start)
        )
        return RateLimitWindowDoc.from_mongo(data)

    async def increment_burst(
        self,
        *,
        credential_id: str,
        endpoint: str,
        window_start: datetime,
        bucket_start: datetime,
        bucket_end: datetime,
    ) -> int:
        if self._redis is not None:
            key = self._burst_redis_key(credential_id, endpoint, bucket_start)
            try:
                async with self._redis.pipeline(transaction=True) as pipe:
                    pipe.incr(key)
                    pipe.expireat(key, int(bucket_end.timestamp()) + _BURST_KEY_GRACE_SECONDS)
                    count, _ = await pipe.execute()
                return int(count)
            except RedisError as e:
                log.error("burst_counter_redis_error", error=str(e), error_type=type(e).__name__)
                raise StorageUnavailableError("Burst counter store unavailable.") from e

        data = await self._bursts.increment(
            [
                Eq("credential_id", credential_id),
                Eq("endpoint", endpoint),
                Eq("bucket_start", bucket_start),
            ],
            {"count": 1},
            set_on_insert={"window_start": window_start},
        )
        return int(data["count"])

    async def get_burst(
        self,
        *,
        credential_id: str,
        endpoint: str,
        window_start: datetime,
        bucket_start: datetime,
    ) -> int:
        if self._redis is not None:
            try:
                raw = await self._redis.get(
                    self._burst_redis_key(credential_id, endpoint, bucket_start)
                )
            except RedisError as e:
                raise StorageUnavailableError("Burst counter store unavailable.") from e
            return int(raw) if raw else 0

        data = await self._bursts.find_one(
            [
                Eq("credential_id", credential_id),
                Eq("endpoint", endpoint),
                Eq("bucket_start", bucket_start),
            ]
        )
        return int(data["count"]) if data else 0

    async def list_windows(
        self, *, user_id: str, start: datetime, end: datetime
    ) -> list[RateLimitWindowDoc]:
        docs = await self._windows.find(
            [Eq("user_id", user_id), Gte("window_start", start), Lt("window_start", end)],
            sort=("window_start", False),
        )
        return [RateLimitWindowDoc.from_mongo(d) for d in docs]
