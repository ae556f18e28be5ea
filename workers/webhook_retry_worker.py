"""
Webhook retry worker.

Polls ``webhook_retry_queue`` for jobs whose next_attempt_at has passed and
runs them through WebhookDeliveryEngine.process_due_retries(). Jobs are
claimed atomically, so any number of workers can run side by side.
"""

from __future__ import annotations

import asyncio
from typing import Optional

from pymongo.asynchronous.mongo_client import AsyncMongoClient

from config import AppSettings
from errors import StorageUnavailableError
from repositories.indexes import ensure_indexes
from services.container import build_services
from services.webhook_delivery import WebhookDeliveryEngine
from shared.logging import get_logger, setup_logging

log = get_logger(__name__)


async def poll_retries(
    engine: WebhookDeliveryEngine,
    stop: asyncio.Event,
    *,
    interval: float = 5.0,
    batch_size: int = 50,
) -> None:
    """Run due retries until ``stop`` is set. A full batch polls again at once."""
    while not stop.is_set():
        try:
            processed = await engine.process_due_retries(limit=batch_size)
        except StorageUnavailableError as e:
            log.warning("webhook_retry_poll_failed", error=str(e))
            processed = 0

        if processed:
            log.info("webhook_retries_processed", count=processed)
        if processed >= batch_size:
            continue
        try:
            await asyncio.wait_for(stop.wait(), timeout=interval)
        except asyncio.TimeoutError:
            pass


async def run_retry_worker(
    settings: Optional[AppSettings] = None, stop: Optional[asyncio.Event] = None
) -> None:
    settings = settings or AppSettings()
    stop = stop or asyncio.Event()
    setup_logging(settings.logging.log_level, settings.logging.log_format)

    client: AsyncMongoClient = AsyncMongoClient(settings.db.mongodb_uri, tz_aware=True)
    db = client[settings.db.db_name]
    await ensure_indexes(db)
    services = build_services(settings, db)

    log.info(
        "webhook_retry_worker_started",
        poll_interval=settings.webhooks.webhook_retry_poll_interval_seconds,
        batch_size=settings.webhooks.webhook_retry_batch_size,
    )
    try:
        await poll_retries(
            services.webhooks,
            stop,
            interval=settings.webhooks.webhook_retry_poll_interval_seconds,
            batch_size=settings.webhooks.webhook_retry_batch_size,
        )
    finally:
        await services.aclose()
        await client.close()
        log.info("webhook_retry_worker_stopped")
