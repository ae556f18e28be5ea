"""
Component wiring.

build_services() constructs every component once from explicit handles
(settings, database, optional Redis). The FastAPI lifespan and the retry
worker both go through it; tests build Services from in-memory stores.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional

import redis.asyncio as aioredis
from pymongo.asynchronous.database import AsyncDatabase

from config import AppSettings
from infrastructure.http_client import HttpClient
from infrastructure.webhook.http_sender import HttpWebhookSender
from infrastructure.webhook.protocol import WebhookSender
from repositories import indexes
from repositories.activity import AuditRepository, UsageRepository
from repositories.counters import MongoCounterStore
from repositories.credentials import CredentialRepository
from repositories.store import MongoDocumentStore
from repositories.webhooks import (
    DeliveryAttemptRepository,
    RetryJobRepository,
    WebhookEndpointRepository,
)
from services.access_gate import AccessGate
from services.audit import AuditLogger, UsageRecorder
from services.credential_store import CredentialStore
from services.rate_limiter import DegradedModeBehavior, RateLimiter
from services.tiers import SubscriptionTierProvider, TierProvider, TierResolver
from services.webhook_delivery import WebhookDeliveryEngine
from shared.datetime_utils import Clock, utcnow
from shared.tasks import BackgroundTasks


@dataclass
class Services:
    tasks: BackgroundTasks
    tiers: TierResolver
    audit: AuditLogger
    usage: UsageRecorder
    credentials: CredentialStore
    limiter: RateLimiter
    gate: AccessGate
    webhooks: WebhookDeliveryEngine
    http_client: Optional[HttpClient] = field(default=None)
    clock: Clock = field(default=utcnow)

    async def aclose(self) -> None:
        await self.tasks.drain()
        if self.http_client is not None:
            await self.http_client.aclose()


def build_services(
    settings: AppSettings,
    db: AsyncDatabase,
    redis_client: Optional[aioredis.Redis] = None,
    *,
    tier_provider: Optional[TierProvider] = None,
    sender: Optional[WebhookSender] = None,
    clock: Clock = utcnow,
) -> Services:
    def store(name: str) -> MongoDocumentStore:
        return MongoDocumentStore(db[name])

    tasks = BackgroundTasks()
    tiers = TierResolver(
        tier_provider or SubscriptionTierProvider(store(indexes.SUBSCRIPTIONS)),
        overrides=settings.tiers.tier_overrides,
    )
    audit = AuditLogger(AuditRepository(store(indexes.AUDIT_LOG)), tasks, clock)
    usage = UsageRecorder(UsageRepository(store(indexes.API_USAGE)), tasks, clock)

    credentials = CredentialStore(
        CredentialRepository(store(indexes.API_KEYS)),
        tiers,
        audit,
        pepper=settings.secret_key,
        clock=clock,
    )

    burst_redis = redis_client if settings.rate_limit.rate_limit_use_redis_for_burst else None
    limiter = RateLimiter(
        MongoCounterStore(
            store(indexes.RATE_LIMIT_WINDOWS),
            store(indexes.RATE_LIMIT_BURSTS),
            burst_redis,
        ),
        tiers,
        degraded_mode=DegradedModeBehavior(settings.rate_limit.rate_limit_degraded_mode),
        burst_window_seconds=settings.rate_limit.rate_limit_burst_window_seconds,
        clock=clock,
    )

    http_client = None
    if sender is None:
        http_client = HttpClient(timeout=settings.webhooks.webhook_timeout_seconds)
        sender = HttpWebhookSender(
            http_client, response_body_limit=settings.webhooks.webhook_response_body_limit
        )

    webhooks = WebhookDeliveryEngine(
        WebhookEndpointRepository(store(indexes.WEBHOOK_ENDPOINTS)),
        DeliveryAttemptRepository(store(indexes.WEBHOOK_DELIVERIES)),
        RetryJobRepository(store(indexes.WEBHOOK_RETRY_QUEUE)),
        tiers,
        sender,
        audit,
        development=settings.is_development,
        user_agent=settings.webhooks.webhook_user_agent,
        source=settings.webhooks.webhook_source,
        clock=clock,
    )

    return Services(
        tasks=tasks,
        tiers=tiers,
        audit=audit,
        usage=usage,
        credentials=credentials,
        limiter=limiter,
        gate=AccessGate(credentials, limiter),
        webhooks=webhooks,
        http_client=http_client,
        clock=clock,
    )
