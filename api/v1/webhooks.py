"""
Webhook endpoint management, gated by an API key with ``write:webhooks``.

The account is the key's owner; endpoints of other accounts answer 403.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query

from api.gate import require_api_key
from dependencies import get_services
from errors import DeliveryFailedError
from schemas.dto.requests.webhook import (
    CreateWebhookRequest,
    TestWebhookRequest,
    UpdateWebhookRequest,
)
from schemas.dto.responses.api_key import ApiKeyActionResponse
from schemas.dto.responses.webhook import (
    DeliveryAttemptResponse,
    DeliveryHistoryResponse,
    DeliveryResultResponse,
    WebhookCreatedResponse,
    WebhookResponse,
    WebhooksListResponse,
)
from schemas.models.credential import CredentialDoc
from services.container import Services
from services.tiers import SCOPE_WRITE_WEBHOOKS

router = APIRouter(prefix="/webhooks", tags=["webhooks"])

webhook_key = require_api_key(SCOPE_WRITE_WEBHOOKS)


@router.post("", status_code=201, response_model=WebhookCreatedResponse)
async def create_webhook(
    body: CreateWebhookRequest,
    credential: CredentialDoc = Depends(webhook_key),
    services: Services = Depends(get_services),
) -> WebhookCreatedResponse:
    """
    Register a webhook endpoint.

    - URL must be https and resolve to public addresses (outside development).
    - The signing ``secret`` is returned ONLY in this response; every delivery
      carries ``X-Webhook-Signature: sha256=<hmac of the raw body>``.
    """
    endpoint = await services.webhooks.register(
        credential.user_id, body.url, body.events, body.filters
    )
    return WebhookCreatedResponse.from_created(endpoint)


@router.get("", response_model=WebhooksListResponse)
async def list_webhooks(
    credential: CredentialDoc = Depends(webhook_key),
    services: Services = Depends(get_services),
) -> WebhooksListResponse:
    endpoints = await services.webhooks.list_endpoints(credential.user_id)
    return WebhooksListResponse(webhooks=[WebhookResponse.from_doc(e) for e in endpoints])


@router.get("/{endpoint_id}", response_model=WebhookResponse)
async def get_webhook(
    endpoint_id: str,
    credential: CredentialDoc = Depends(webhook_key),
    services: Services = Depends(get_services),
) -> WebhookResponse:
    endpoint = await services.webhooks.get_endpoint(credential.user_id, endpoint_id)
    return WebhookResponse.from_doc(endpoint)


@router.patch("/{endpoint_id}", response_model=WebhookResponse)
async def update_webhook(
    endpoint_id: str,
    body: UpdateWebhookRequest,
    credential: CredentialDoc = Depends(webhook_key),
    services: Services = Depends(get_services),
) -> WebhookResponse:
    endpoint = await services.webhooks.update_endpoint(
        credential.user_id,
        endpoint_id,
        url=body.url,
        events=body.events,
        filters=body.filters,
        is_active=body.is_active,
    )
    return WebhookResponse.from_doc(endpoint)


@router.delete("/{endpoint_id}", response_model=ApiKeyActionResponse)
async def delete_webhook(
    endpoint_id: str,
    credential: CredentialDoc = Depends(webhook_key),
    services: Services = Depends(get_services),
) -> ApiKeyActionResponse:
    await services.webhooks.delete_endpoint(credential.user_id, endpoint_id)
    return ApiKeyActionResponse(success=True, action="deleted")


@router.post("/{endpoint_id}/test", response_model=DeliveryResultResponse)
async def test_webhook(
    endpoint_id: str,
    body: TestWebhookRequest | None = None,
    credential: CredentialDoc = Depends(webhook_key),
    services: Services = Depends(get_services),
) -> DeliveryResultResponse:
    """Send a synthetic event now. Not retried and not counted in delivery stats.

    A rejected or unreachable target answers 502 with the attempt in ``details``.
    """
    body = body or TestWebhookRequest()
    result = await services.webhooks.test(
        credential.user_id, endpoint_id, body.event_type, body.data
    )
    response = DeliveryResultResponse.from_result(result)
    if not result.success:
        raise DeliveryFailedError(
            f"Test delivery failed: {result.error or 'no response'}",
            details=response.model_dump(),
        )
    return response


@router.get("/{endpoint_id}/deliveries", response_model=DeliveryHistoryResponse)
async def webhook_deliveries(
    endpoint_id: str,
    limit: int = Query(default=50, ge=1, le=200),
    credential: CredentialDoc = Depends(webhook_key),
    services: Services = Depends(get_services),
) -> DeliveryHistoryResponse:
    attempts = await services.webhooks.delivery_history(
        credential.user_id, endpoint_id, limit=limit
    )
    return DeliveryHistoryResponse(
        deliveries=[DeliveryAttemptResponse.from_doc(a) for a in attempts]
    )
