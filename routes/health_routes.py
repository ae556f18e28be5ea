"""
Health check endpoint.

GET /health - checks MongoDB and Redis connectivity and the retry backlog.
Rules:
- MongoDB failure → "unhealthy" (503): credentials cannot be validated.
- Redis failure → "degraded" (200): the rate limiter runs under its
  degraded-mode policy until Redis is back.
- Redis not configured → healthy (burst counters live in MongoDB).
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Response
from pymongo.errors import PyMongoError
from redis.exceptions import RedisError

from dependencies import get_db, get_redis
from repositories.indexes import WEBHOOK_RETRY_QUEUE
from schemas.dto.responses.common import HealthResponse
from schemas.models.webhook import RETRY_PENDING
from shared.logging import get_logger

log = get_logger(__name__)

router = APIRouter(tags=["health"])


@router.get(
    "/health",
    response_model=HealthResponse,
    response_model_exclude_none=True,
    responses={503: {"model": HealthResponse}},
)
async def health_check(
    response: Response, db=Depends(get_db), redis=Depends(get_redis)
) -> HealthResponse:
    checks: dict[str, str] = {}
    overall = "healthy"
    backlog = None

    try:
        await db.client.admin.command("ping")
        checks["mongodb"] = "ok"
        backlog = await db[WEBHOOK_RETRY_QUEUE].count_documents(
            {"status": RETRY_PENDING}
        )
    except PyMongoError as e:
        log.error("health_mongodb_failed", error=str(e))
        checks["mongodb"] = "error"
        overall = "unhealthy"

    if redis is None:
        checks["redis"] = "not_configured"
    else:
        try:
            await redis.ping()
            checks["redis"] = "ok"
        except (RedisError, OSError) as e:
            log.warning("health_redis_failed", error=str(e))
            checks["redis"] = "error"
            if overall == "healthy":
                overall = "degraded"

    if overall == "unhealthy":
        response.status_code = 503
    return HealthResponse(status=overall, checks=checks, webhook_retry_backlog=backlog)
