"""
Webhook endpoint management and signed event delivery.

Delivery model
--------------
- One payload = one delivery_id, shared by every attempt made for it.
- Each HTTP attempt writes exactly one row to ``webhook_deliveries``.
- A failed attempt n < MAX_ATTEMPTS persists a job in ``webhook_retry_queue``
  due at ``now + RETRY_DELAYS[n - 1]``. The retry worker picks it up via
  process_due_retries(), so scheduled retries survive a restart.
- Attempt MAX_ATTEMPTS failing is terminal: no further job is written.

Endpoint delivery_stats count payloads, not attempts: total on the first
attempt, successful when any attempt succeeds, failed once on terminal
failure. Test deliveries never touch stats and never retry.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Optional, Sequence

from errors import (
    ForbiddenError,
    NotFoundError,
    QuotaExceededError,
    TierForbiddenError,
    ValidationError,
)
from infrastructure.webhook.protocol import SendOutcome, WebhookSender
from repositories.filters import matches, parse_filter
from repositories.webhooks import (
    DeliveryAttemptRepository,
    RetryJobRepository,
    WebhookEndpointRepository,
)
from schemas.models.base import to_object_id
from schemas.models.webhook import (
    RETRY_COMPLETED,
    RETRY_FAILED,
    WEBHOOK_EVENTS,
    WebhookDeliveryAttemptDoc,
    WebhookEndpointDoc,
    WebhookRetryJobDoc,
)
from services.audit import AuditLogger
from services.tiers import TierResolver
from shared.crypto import canonical_json, sign_payload
from shared.datetime_utils import Clock, utcnow
from shared.generators import generate_delivery_id, generate_webhook_secret
from shared.logging import get_logger
from shared.validators import Resolver, validate_webhook_url

log = get_logger(__name__)

RETRY_DELAYS = (30, 300, 1800)  # seconds, indexed by the attempt that just failed
MAX_ATTEMPTS = 3
STALE_PROCESSING_SECONDS = 600
TEST_SOURCE = "webhook_test"


@dataclass(frozen=True)
class DeliveryResult:
    success: bool
    status_code: Optional[int]
    body: Optional[str]
    error: Optional[str]
    delivery_id: str
    attempt_number: int
    duration_ms: int
    next_retry_at: Optional[datetime] = None


def _validate_events(events: Sequence[str]) -> list[str]:
    unique = list(dict.fromkeys(events))
    if not unique:
        raise ValidationError("At least one event type is required", field="events")
    unknown = [e for e in unique if e not in WEBHOOK_EVENTS]
    if unknown:
        raise ValidationError(
            "Unknown event type(s)",
            field="events",
            details={"unknown": unknown, "allowed": sorted(WEBHOOK_EVENTS)},
        )
    return unique


def _validate_filters(
    filters: Optional[dict[str, list[dict[str, Any]]]], events: Sequence[str]
) -> dict[str, list[dict[str, Any]]]:
    if not filters:
        return {}
    for event_type, specs in filters.items():
        if event_type not in events:
            raise ValidationError(
                f"Filter given for unsubscribed event {event_type!r}", field="filters"
            )
        for spec in specs:
            try:
                parse_filter(spec)
            except ValueError as e:
                raise ValidationError(str(e), field="filters", details={"filter": spec})
    return {k: list(v) for k, v in filters.items()}


def endpoint_accepts(endpoint: WebhookEndpointDoc, event_type: str, data: dict[str, Any]) -> bool:
    """True when the endpoint subscribes to the event and its filters match ``data``."""
    if not endpoint.is_active or event_type not in endpoint.events:
        return False
    specs = endpoint.filters.get(event_type) or []
    return matches(data, [parse_filter(spec) for spec in specs])


class WebhookDeliveryEngine:
    def __init__(
        self,
        endpoints: WebhookEndpointRepository,
        attempts: DeliveryAttemptRepository,
        retries: RetryJobRepository,
        tiers: TierResolver,
        sender: WebhookSender,
        audit: AuditLogger,
        *,
        development: bool = False,
        user_agent: str = "BEMS-Webhooks/1.0",
        source: str = "bems_platform",
        resolver: Optional[Resolver] = None,
        clock: Clock = utcnow,
    ) -> None:
        self._endpoints = endpoints
        self._attempts = attempts
        self._retries = retries
        self._tiers = tiers
        self._sender = sender
        self._audit = audit
        self._development = development
        self._user_agent = user_agent
        self._source = source
        self._resolver = resolver
        self._clock = clock

    async def _check_url(self, url: str) -> str:
        return await validate_webhook_url(
            url, development=self._development, resolver=self._resolver
        )

    async def _owned(self, account_id: str, endpoint_id: str) -> WebhookEndpointDoc:
        oid = to_object_id(endpoint_id)
        endpoint = await self._endpoints.get_by_id(oid) if oid is not None else None
        if endpoint is None:
            raise NotFoundError("Webhook endpoint not found")
        if endpoint.user_id != account_id:
            raise ForbiddenError("You do not have access to this webhook endpoint")
        return endpoint

    # ── Endpoint management ─────────────────────────────────────────────────

    async def register(
        self,
        account_id: str,
        url: str,
        events: Sequence[str],
        filters: Optional[dict[str, list[dict[str, Any]]]] = None,
    ) -> WebhookEndpointDoc:
        tier = await self._tiers.resolve(account_id)
        if tier.max_webhooks <= 0:
            raise TierForbiddenError(
                f"Webhooks are not available on the {tier.name} plan",
                details={"tier": tier.name},
            )
        active = await self._endpoints.count_active(account_id)
        if active >= tier.max_webhooks:
            raise QuotaExceededError(
                f"Maximum of {tier.max_webhooks} webhook endpoints reached",
                details={"tier": tier.name, "limit": tier.max_webhooks, "active": active},
            )

        events = _validate_events(events)
        filters = _validate_filters(filters, events)
        url = await self._check_url(url)

        endpoint = await self._endpoints.insert(
            WebhookEndpointDoc(
                user_id=account_id,
                url=url,
                events=events,
                filters=filters,
                secret=generate_webhook_secret(),
                created_at=self._clock(),
            )
        )
        log.info(
            "webhook_registered",
            user_id=account_id,
            webhook_id=endpoint.str_id,
            events=events,
        )
        self._audit.record(
            account_id,
            "webhook.created",
            "webhook_endpoint",
            endpoint.str_id,
            {"url": url, "events": events},
        )
        return endpoint

    async def list_endpoints(self, account_id: str) -> list[WebhookEndpointDoc]:
        return await self._endpoints.list_by_user(account_id)

    async def get_endpoint(self, account_id: str, endpoint_id: str) -> WebhookEndpointDoc:
        return await self._owned(account_id, endpoint_id)

    async def update_endpoint(
        self,
        account_id: str,
        endpoint_id: str,
        *,
        url: Optional[str] = None,
        events: Optional[Sequence[str]] = None,
        filters: Optional[dict[str, list[dict[str, Any]]]] = None,
        is_active: Optional[bool] = None,
    ) -> WebhookEndpointDoc:
        endpoint = await self._owned(account_id, endpoint_id)
        fields: dict[str, Any] = {}
        if url is not None:
            fields["url"] = await self._check_url(url)
        new_events = _validate_events(events) if events is not None else endpoint.events
        if events is not None:
            fields["events"] = new_events
        if filters is not None:
            fields["filters"] = _validate_filters(filters, new_events)
        elif events is not None:
            # drop filters for events no longer subscribed
            fields["filters"] = {
                k: v for k, v in endpoint.filters.items() if k in new_events
            }
        if is_active is not None:
            if is_active and not endpoint.is_active:
                tier = await self._tiers.resolve(account_id)
                if await self._endpoints.count_active(account_id) >= tier.max_webhooks:
                    raise QuotaExceededError(
                        f"Maximum of {tier.max_webhooks} webhook endpoints reached",
                        details={"tier": tier.name, "limit": tier.max_webhooks},
                    )
            fields["is_active"] = is_active
        if not fields:
            return endpoint

        updated = await self._endpoints.update(endpoint.id, account_id, fields)
        if updated is None:
            raise NotFoundError("Webhook endpoint not found")
        self._audit.record(
            account_id,
            "webhook.updated",
            "webhook_endpoint",
            updated.str_id,
            {"fields": sorted(fields)},
        )
        return updated

    async def delete_endpoint(self, account_id: str, endpoint_id: str) -> None:
        endpoint = await self._owned(account_id, endpoint_id)
        if not endpoint.is_active:
            return
        await self._endpoints.update(endpoint.id, account_id, {"is_active": False})
        log.info("webhook_deleted", user_id=account_id, webhook_id=endpoint.str_id)
        self._audit.record(account_id, "webhook.deleted", "webhook_endpoint", endpoint.str_id)

    async def delivery_history(
        self, account_id: str, endpoint_id: str, limit: int = 50
    ) -> list[WebhookDeliveryAttemptDoc]:
        endpoint = await self._owned(account_id, endpoint_id)
        return await self._attempts.list_for_endpoint(endpoint.str_id, limit=limit)

    # ── Delivery ────────────────────────────────────────────────────────────

    def build_payload(self, event_type: str, data: dict[str, Any]) -> dict[str, Any]:
        return {
            "event": event_type,
            "timestamp": self._clock().isoformat(),
            "data": data,
            "source": self._source,
        }

    def _headers(
        self,
        endpoint: WebhookEndpointDoc,
        event_type: str,
        timestamp: str,
        body: bytes,
        delivery_id: str,
        attempt_number: int,
    ) -> dict[str, str]:
        return {
            "Content-Type": "application/json",
            "User-Agent": self._user_agent,
            "X-Webhook-Event": event_type,
            "X-Webhook-Delivery": delivery_id,
            "X-Webhook-Timestamp": timestamp,
            "X-Webhook-Signature": sign_payload(body, endpoint.secret),
            "X-Webhook-Attempt": str(attempt_number),
        }

    async def _attempt(
        self,
        endpoint: WebhookEndpointDoc,
        payload: dict[str, Any],
        *,
        attempt_number: int,
        delivery_id: str,
        is_test: bool,
    ) -> DeliveryResult:
        """Make one HTTP attempt, record it, update stats, decide on a retry."""
        event_type = str(payload.get("event", ""))
        body = canonical_json(payload)
        sent_at = self._clock()
        outcome: SendOutcome = await self._sender.send(
            endpoint.url,
            body,
            self._headers(
                endpoint,
                event_type,
                str(payload.get("timestamp", "")),
                body,
                delivery_id,
                attempt_number,
            ),
        )
        now = self._clock()

        next_retry_at = None
        if not outcome.success and not is_test and attempt_number < MAX_ATTEMPTS:
            next_retry_at = now + timedelta(seconds=RETRY_DELAYS[attempt_number - 1])

        await self._attempts.insert(
            WebhookDeliveryAttemptDoc(
                webhook_endpoint_id=endpoint.str_id,
                delivery_id=delivery_id,
                event_type=event_type,
                payload=payload,
                attempt_number=attempt_number,
                response_status=outcome.status_code,
                response_body=outcome.body,
                error=outcome.error,
                duration_ms=outcome.duration_ms,
                is_test=is_test,
                created_at=sent_at,
                sent_at=sent_at,
                delivered_at=now if outcome.success else None,
                failed_at=None if outcome.success else now,
                next_retry_at=next_retry_at,
            )
        )

        if not is_test:
            terminal = not outcome.success and next_retry_at is None
            await self._endpoints.record_outcome(
                endpoint.id,
                now=now,
                new_delivery=attempt_number == 1,
                succeeded=outcome.success,
                terminally_failed=terminal,
            )
            if outcome.success:
                log.info(
                    "webhook_delivered",
                    webhook_id=endpoint.str_id,
                    delivery_id=delivery_id,
                    attempt=attempt_number,
                    status_code=outcome.status_code,
                    duration_ms=outcome.duration_ms,
                )
            elif terminal:
                log.warning(
                    "webhook_delivery_failed",
                    webhook_id=endpoint.str_id,
                    delivery_id=delivery_id,
                    attempt=attempt_number,
                    status_code=outcome.status_code,
                    error=outcome.error,
                )
            else:
                log.info(
                    "webhook_retry_scheduled",
                    webhook_id=endpoint.str_id,
                    delivery_id=delivery_id,
                    attempt=attempt_number,
                    next_retry_at=next_retry_at.isoformat(),
                    error=outcome.error,
                )

        return DeliveryResult(
            success=outcome.success,
            status_code=outcome.status_code,
            body=outcome.body,
            error=outcome.error,
            delivery_id=delivery_id,
            attempt_number=attempt_number,
            duration_ms=outcome.duration_ms,
            next_retry_at=next_retry_at,
        )

    async def deliver(
        self,
        endpoint: WebhookEndpointDoc,
        payload: dict[str, Any],
        *,
        attempt_number: int = 1,
        delivery_id: Optional[str] = None,
        is_test: bool = False,
    ) -> DeliveryResult:
        """Send one signed attempt; on a retryable failure, persist the next one."""
        result = await self._attempt(
            endpoint,
            payload,
            attempt_number=attempt_number,
            delivery_id=delivery_id or generate_delivery_id(),
            is_test=is_test,
        )
        if result.next_retry_at is not None:
            now = self._clock()
            await self._retries.enqueue(
                WebhookRetryJobDoc(
                    delivery_id=result.delivery_id,
                    webhook_endpoint_id=endpoint.str_id,
                    payload=payload,
                    attempt_number=attempt_number + 1,
                    next_attempt_at=result.next_retry_at,
                    last_error=result.error,
                    created_at=now,
                    updated_at=now,
                )
            )
        return result

    async def trigger(
        self,
        event_type: str,
        data: dict[str, Any],
        account_id: Optional[str] = None,
    ) -> list[DeliveryResult]:
        """Fan an event out to every matching endpoint. Never raises to the producer."""
        try:
            candidates = await self._endpoints.find_subscribed(event_type, account_id)
            targets = [e for e in candidates if endpoint_accepts(e, event_type, data)]
            if not targets:
                return []

            payload = self.build_payload(event_type, data)
            outcomes = await asyncio.gather(
                *(self.deliver(endpoint, payload) for endpoint in targets),
                return_exceptions=True,
            )
        except Exception as e:
            log.error(
                "webhook_trigger_failed",
                event_type=event_type,
                error=str(e),
                error_type=type(e).__name__,
            )
            return []

        results: list[DeliveryResult] = []
        for endpoint, outcome in zip(targets, outcomes):
            if isinstance(outcome, BaseException):
                log.error(
                    "webhook_delivery_error",
                    webhook_id=endpoint.str_id,
                    event_type=event_type,
                    error=str(outcome),
                    error_type=type(outcome).__name__,
                )
                continue
            results.append(outcome)
        log.info(
            "webhook_event_triggered",
            event_type=event_type,
            endpoints=len(targets),
            delivered=sum(1 for r in results if r.success),
        )
        return results

    async def test(
        self,
        account_id: str,
        endpoint_id: str,
        event_type: Optional[str] = None,
        data: Optional[dict[str, Any]] = None,
    ) -> DeliveryResult:
        endpoint = await self._owned(account_id, endpoint_id)
        if event_type is not None and event_type not in WEBHOOK_EVENTS:
            raise ValidationError(
                "Unknown event type",
                field="event_type",
                details={"allowed": sorted(WEBHOOK_EVENTS)},
            )
        event_type = event_type or (endpoint.events[0] if endpoint.events else "data.updated")
        payload = {
            "event": event_type,
            "timestamp": self._clock().isoformat(),
            "data": data
            or {
                "message": "This is a test webhook delivery",
                "webhook_id": endpoint.str_id,
            },
            "source": TEST_SOURCE,
        }
        result = await self.deliver(endpoint, payload, is_test=True)
        log.info(
            "webhook_test_sent",
            webhook_id=endpoint.str_id,
            success=result.success,
            status_code=result.status_code,
        )
        return result

    # ── Retry queue ─────────────────────────────────────────────────────────

    async def process_due_retries(self, limit: int = 50) -> int:
        """Run up to ``limit`` due retry jobs; returns how many were attempted."""
        now = self._clock()
        released = await self._retries.release_stale(
            now - timedelta(seconds=STALE_PROCESSING_SECONDS), now
        )
        if released:
            log.warning("webhook_retry_jobs_released", count=released)

        processed = 0
        while processed < limit:
            job = await self._retries.claim_due(self._clock())
            if job is None:
                break
            processed += 1
            await self._run_job(job)
        return processed

    async def _run_job(self, job: WebhookRetryJobDoc) -> None:
        oid = to_object_id(job.webhook_endpoint_id)
        endpoint = await self._endpoints.get_by_id(oid) if oid is not None else None
        if endpoint is None or not endpoint.is_active:
            await self._retries.finish(
                job.id, status=RETRY_FAILED, last_error="endpoint inactive", now=self._clock()
            )
            log.info(
                "webhook_retry_dropped",
                delivery_id=job.delivery_id,
                webhook_id=job.webhook_endpoint_id,
            )
            return

        result = await self._attempt(
            endpoint,
            job.payload,
            attempt_number=job.attempt_number,
            delivery_id=job.delivery_id,
            is_test=False,
        )
        now = self._clock()
        if result.success:
            await self._retries.finish(job.id, status=RETRY_COMPLETED, last_error=None, now=now)
        elif result.next_retry_at is not None:
            await self._retries.reschedule(
                job.id,
                attempt_number=job.attempt_number + 1,
                next_attempt_at=result.next_retry_at,
                last_error=result.error,
                now=now,
            )
        else:
            await self._retries.finish(
                job.id, status=RETRY_FAILED, last_error=result.error, now=now
            )
