"""
Webhook document models.

webhook_endpoints    - WebhookEndpointDoc, one per registered target URL
webhook_deliveries   - WebhookDeliveryAttemptDoc, one per HTTP attempt
webhook_retry_queue  - WebhookRetryJobDoc, durable "next attempt due at" rows
                       polled by the retry worker
"""

from __future__ import annotations

from typing import Any, Optional

from pydantic import BaseModel, Field

from schemas.models.base import MongoBaseModel, UtcDatetime

WEBHOOK_EVENTS = frozenset(
    {
        "data.updated",
        "alert.triggered",
        "export.completed",
        "pattern.detected",
    }
)

RETRY_PENDING = "pending"
RETRY_PROCESSING = "processing"
RETRY_COMPLETED = "completed"
RETRY_FAILED = "failed"


class DeliveryStats(BaseModel):
    total_deliveries: int = 0
    successful_deliveries: int = 0
    failed_deliveries: int = 0


class WebhookEndpointDoc(MongoBaseModel):
    """Document model for the `webhook_endpoints` collection.

    filters maps an event type to a list of filter specs (see
    repositories.filters.parse_filter) that the event's ``data`` must satisfy.
    """

    user_id: str
    url: str
    events: list[str]
    filters: dict[str, list[dict[str, Any]]] = {}
    secret: str
    is_active: bool = True
    created_at: Optional[UtcDatetime] = None
    last_delivery_at: Optional[UtcDatetime] = None
    delivery_stats: DeliveryStats = Field(default_factory=DeliveryStats)


class WebhookDeliveryAttemptDoc(MongoBaseModel):
    webhook_endpoint_id: str
    delivery_id: str
    event_type: str
    payload: dict[str, Any]
    attempt_number: int = 1
    response_status: Optional[int] = None
    response_body: Optional[str] = None
    error: Optional[str] = None
    duration_ms: Optional[int] = None
    is_test: bool = False
    created_at: Optional[UtcDatetime] = None
    sent_at: Optional[UtcDatetime] = None
    delivered_at: Optional[UtcDatetime] = None
    failed_at: Optional[UtcDatetime] = None
    next_retry_at: Optional[UtcDatetime] = None

    @property
    def succeeded(self) -> bool:
        return self.delivered_at is not None


class WebhookRetryJobDoc(MongoBaseModel):
    delivery_id: str
    webhook_endpoint_id: str
    payload: dict[str, Any]
    attempt_number: int
    next_attempt_at: UtcDatetime
    status: str = RETRY_PENDING
    last_error: Optional[str] = None
    created_at: Optional[UtcDatetime] = None
    updated_at: Optional[UtcDatetime] = None
