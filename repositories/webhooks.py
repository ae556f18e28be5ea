"""
Repositories for webhook endpoints, delivery attempts and the retry queue.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Optional

from bson import ObjectId

from repositories.filters import Contains, Eq, Lte
from repositories.store import DocumentStore
from schemas.models.webhook import (
    RETRY_PENDING,
    RETRY_PROCESSING,
    WebhookDeliveryAttemptDoc,
    WebhookEndpointDoc,
    WebhookRetryJobDoc,
)


class WebhookEndpointRepository:
    def __init__(self, store: DocumentStore) -> None:
        self._store = store

    async def insert(self, doc: WebhookEndpointDoc) -> WebhookEndpointDoc:
        return WebhookEndpointDoc.from_mongo(await self._store.insert_one(doc.to_mongo()))

    async def get_by_id(self, endpoint_id: ObjectId) -> Optional[WebhookEndpointDoc]:
        return WebhookEndpointDoc.from_mongo(
            await self._store.find_one([Eq("_id", endpoint_id)])
        )

    async def list_by_user(self, user_id: str) -> list[WebhookEndpointDoc]:
        docs = await self._store.find([Eq("user_id", user_id)], sort=("created_at", True))
        return [WebhookEndpointDoc.from_mongo(d) for d in docs]

    async def count_active(self, user_id: str) -> int:
        return await self._store.count([Eq("user_id", user_id), Eq("is_active", True)])

    async def find_subscribed(
        self, event_type: str, user_id: Optional[str] = None
    ) -> list[WebhookEndpointDoc]:
        filters = [Eq("is_active", True), Contains("events", event_type)]
        if user_id is not None:
            filters.append(Eq("user_id", user_id))
        return [WebhookEndpointDoc.from_mongo(d) for d in await self._store.find(filters)]

    async def update(
        self, endpoint_id: ObjectId, user_id: str, fields: dict[str, Any]
    ) -> Optional[WebhookEndpointDoc]:
        data = await self._store.update_one(
            [Eq("_id", endpoint_id), Eq("user_id", user_id)], set_fields=fields
        )
        return WebhookEndpointDoc.from_mongo(data)

    async def record_outcome(
        self,
        endpoint_id: ObjectId,
        *,
        now: datetime,
        new_delivery: bool = False,
        succeeded: bool = False,
        terminally_failed: bool = False,
    ) -> None:
        inc: dict[str, int] = {}
        if new_delivery:
            inc["delivery_stats.total_deliveries"] = 1
        if succeeded:
            inc["delivery_stats.successful_deliveries"] = 1
        if terminally_failed:
            inc["delivery_stats.failed_deliveries"] = 1
        await self._store.update_one(
            [Eq("_id", endpoint_id)],
            set_fields={"last_delivery_at": now},
            inc_fields=inc or None,
        )


class DeliveryAttemptRepository:
    def __init__(self, store: DocumentStore) -> None:
        self._store = store

    async def insert(self, doc: WebhookDeliveryAttemptDoc) -> WebhookDeliveryAttemptDoc:
        return WebhookDeliveryAttemptDoc.from_mongo(
            await self._store.insert_one(doc.to_mongo())
        )

    async def list_for_endpoint(
        self, endpoint_id: str, limit: int = 50
    ) -> list[WebhookDeliveryAttemptDoc]:
        docs = await self._store.find(
            [Eq("webhook_endpoint_id", endpoint_id)],
            sort=("created_at", True),
            limit=limit,
        )
        return [WebhookDeliveryAttemptDoc.from_mongo(d) for d in docs]


class RetryJobRepository:
    """The durable retry queue.

    claim_due() moves one job from pending to processing in a single
    find-and-modify, so two workers can never run the same delivery at once.
    """

    def __init__(self, store: DocumentStore) -> None:
        self._store = store

    async def enqueue(self, job: WebhookRetryJobDoc) -> WebhookRetryJobDoc:
        return WebhookRetryJobDoc.from_mongo(await self._store.insert_one(job.to_mongo()))

    async def claim_due(self, now: datetime) -> Optional[WebhookRetryJobDoc]:
        data = await self._store.update_one(
            [Eq("status", RETRY_PENDING), Lte("next_attempt_at", now)],
            set_fields={"status": RETRY_PROCESSING, "updated_at": now},
            sort=("next_attempt_at", False),
        )
        return WebhookRetryJobDoc.from_mongo(data)

    async def reschedule(
        self,
        job_id: ObjectId,
        *,
        attempt_number: int,
        next_attempt_at: datetime,
        last_error: Optional[str],
        now: datetime,
    ) -> None:
        await self._store.update_one(
            [Eq("_id", job_id), Eq("status", RETRY_PROCESSING)],
            set_fields={
                "status": RETRY_PENDING,
                "attempt_number": attempt_number,
                "next_attempt_at": next_attempt_at,
                "last_error": last_error,
                "updated_at": now,
            },
        )

    async def finish(
        self, job_id: ObjectId, *, status: str, last_error: Optional[str], now: datetime
    ) -> None:
        await self._store.update_one(
            [Eq("_id", job_id)],
            set_fields={"status": status, "last_error": last_error, "updated_at": now},
        )

    async def release_stale(self, older_than: datetime, now: datetime) -> int:
        """Return jobs stuck in processing (worker died mid-attempt) to pending."""
        return await self._store.update_many(
            [Eq("status", RETRY_PROCESSING), Lte("updated_at", older_than)],
            set_fields={"status": RETRY_PENDING, "updated_at": now},
        )
