"""
Response DTOs for webhook endpoints and their delivery history.

The signing ``secret`` is returned by create only; list/get show a masked form.
"""

from __future__ import annotations

from typing import Any, Optional

from pydantic import BaseModel, ConfigDict

from schemas.models.webhook import WebhookDeliveryAttemptDoc, WebhookEndpointDoc
from services.webhook_delivery import DeliveryResult
from shared.datetime_utils import to_epoch


class DeliveryStatsResponse(BaseModel):
    total_deliveries: int
    successful_deliveries: int
    failed_deliveries: int


class WebhookResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: str
    url: str
    events: list[str]
    filters: dict[str, list[dict[str, Any]]]
    is_active: bool
    created_at: Optional[int] = None
    last_delivery_at: Optional[int] = None
    delivery_stats: DeliveryStatsResponse
    secret_hint: str

    @classmethod
    def from_doc(cls, doc: WebhookEndpointDoc) -> "WebhookResponse":
        return cls(
            id=doc.str_id,
            url=doc.url,
            events=doc.events,
            filters=doc.filters,
            is_active=doc.is_active,
            created_at=to_epoch(doc.created_at),
            last_delivery_at=to_epoch(doc.last_delivery_at),
            delivery_stats=DeliveryStatsResponse(**doc.delivery_stats.model_dump()),
            secret_hint=f"{doc.secret[:4]}…{doc.secret[-4:]}",
        )


class WebhookCreatedResponse(WebhookResponse):
    secret: str

    @classmethod
    def from_created(cls, doc: WebhookEndpointDoc) -> "WebhookCreatedResponse":
        return cls(**WebhookResponse.from_doc(doc).model_dump(), secret=doc.secret)


class WebhooksListResponse(BaseModel):
    webhooks: list[WebhookResponse]


class DeliveryAttemptResponse(BaseModel):
    id: str
    delivery_id: str
    event_type: str
    attempt_number: int
    response_status: Optional[int] = None
    response_body: Optional[str] = None
    error: Optional[str] = None
    duration_ms: Optional[int] = None
    is_test: bool
    sent_at: Optional[int] = None
    delivered_at: Optional[int] = None
    failed_at: Optional[int] = None
    next_retry_at: Optional[int] = None

    @classmethod
    def from_doc(cls, doc: WebhookDeliveryAttemptDoc) -> "DeliveryAttemptResponse":
        return cls(
            id=doc.str_id,
            delivery_id=doc.delivery_id,
            event_type=doc.event_type,
            attempt_number=doc.attempt_number,
            response_status=doc.response_status,
            response_body=doc.response_body,
            error=doc.error,
            duration_ms=doc.duration_ms,
            is_test=doc.is_test,
            sent_at=to_epoch(doc.sent_at),
            delivered_at=to_epoch(doc.delivered_at),
            failed_at=to_epoch(doc.failed_at),
            next_retry_at=to_epoch(doc.next_retry_at),
        )


class DeliveryHistoryResponse(BaseModel):
    deliveries: list[DeliveryAttemptResponse]


class DeliveryResultResponse(BaseModel):
    success: bool
    status_code: Optional[int] = None
    error: Optional[str] = None
    response_body: Optional[str] = None
    delivery_id: str
    attempt_number: int
    duration_ms: int

    @classmethod
    def from_result(cls, result: DeliveryResult) -> "DeliveryResultResponse":
        return cls(
            success=result.success,
            status_code=result.status_code,
            error=result.error,
            response_body=result.body,
            delivery_id=result.delivery_id,
            attempt_number=result.attempt_number,
            duration_ms=result.duration_ms,
        )
