"""
FastAPI application factory.
create_app() is the single entry point for building the app.
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

import sentry_sdk
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from pymongo.asynchronous.mongo_client import AsyncMongoClient

from api.v1 import api_v1
from config import AppSettings
from errors import register_error_handlers
from infrastructure.redis_client import create_redis_client
from middleware import RequestContextMiddleware
from repositories.indexes import ensure_indexes
from routes.health_routes import router as health_router
from services.container import build_services
from shared.logging import get_logger, setup_logging

log = get_logger(__name__)


def create_app(settings: Optional[AppSettings] = None) -> FastAPI:
    """Create and return a fully configured FastAPI application."""
    if settings is None:
        settings = AppSettings()

    setup_logging(settings.logging.log_level, settings.logging.log_format)

    # Initialise Sentry before anything else so it captures startup errors
    if settings.sentry.sentry_dsn:
        sentry_sdk.init(
            dsn=settings.sentry.sentry_dsn,
            send_default_pii=settings.sentry.sentry_send_pii,
            traces_sample_rate=settings.sentry.sentry_traces_sample_rate,
            profiles_sample_rate=settings.sentry.sentry_profile_sample_rate,
            environment=settings.env,
        )

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        # ── Startup ──────────────────────────────────────────────────────────
        mongo_client: AsyncMongoClient = AsyncMongoClient(
            settings.db.mongodb_uri, tz_aware=True
        )
        app.state.mongo_client = mongo_client
        app.state.db = mongo_client[settings.db.db_name]
        app.state.settings = settings

        # Redis is optional; without it burst counters live in MongoDB
        redis_client = await create_redis_client(settings.redis.redis_uri)
        app.state.redis = redis_client

        await ensure_indexes(app.state.db)
        app.state.services = build_services(settings, app.state.db, redis_client)
        log.info("app_started", env=settings.env, redis=redis_client is not None)

        yield

        # ── Shutdown ─────────────────────────────────────────────────────────
        await app.state.services.aclose()
        await mongo_client.close()
        if redis_client is not None:
            await redis_client.aclose()

    app = FastAPI(
        title=settings.app_name,
        version="1.0.0",
        docs_url=settings.docs_url,
        redoc_url=None,
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=[
            "X-Request-ID",
            "X-RateLimit-Limit",
            "X-RateLimit-Remaining",
            "X-RateLimit-Reset",
            "Retry-After",
        ],
    )
    app.add_middleware(RequestContextMiddleware)

    register_error_handlers(app)
    app.include_router(health_router)
    app.include_router(api_v1)

    return app
