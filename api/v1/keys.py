"""
API key management.

Keys are managed from the dashboard, so these routes are authenticated by the
account session (``X-Account-Id`` from the upstream session layer), not by an
API key.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Optional, Union

from fastapi import APIRouter, Depends

from dependencies import get_account_id, get_services
from errors import InvalidExpiryError
from schemas.dto.requests.api_key import CreateApiKeyRequest, UpdateApiKeyRequest
from schemas.dto.responses.api_key import (
    ApiKeyActionResponse,
    ApiKeyCreatedResponse,
    ApiKeyResponse,
    ApiKeysListResponse,
)
from services.container import Services
from shared.datetime_utils import parse_datetime

router = APIRouter(prefix="/keys", tags=["api-keys"])


def _parse_expiry(value: Optional[Union[str, int, float]]) -> Optional[datetime]:
    if value is None:
        return None
    parsed = parse_datetime(value)
    if parsed is None:
        raise InvalidExpiryError(
            "expires_at must be an ISO 8601 datetime or Unix timestamp",
            field="expires_at",
        )
    return parsed


@router.post("", status_code=201, response_model=ApiKeyCreatedResponse)
async def create_api_key(
    body: CreateApiKeyRequest,
    account_id: str = Depends(get_account_id),
    services: Services = Depends(get_services),
) -> ApiKeyCreatedResponse:
    """
    Create a new API key.

    - Requires a plan that grants API keys (free plans get 403 ``tier_forbidden``).
    - Active keys are capped per plan (409 ``quota_exceeded``).
    - Requested scopes the plan does not grant are dropped, not rejected.
    - The full ``token`` is returned ONLY in this response.
    """
    issued = await services.credentials.issue(
        account_id, body.name, body.scopes, _parse_expiry(body.expires_at)
    )
    return ApiKeyCreatedResponse.from_issued(issued.credential, issued.secret)


@router.get("", response_model=ApiKeysListResponse)
async def list_api_keys(
    account_id: str = Depends(get_account_id),
    services: Services = Depends(get_services),
) -> ApiKeysListResponse:
    docs = await services.credentials.list_for_account(account_id)
    return ApiKeysListResponse(keys=[ApiKeyResponse.from_doc(d) for d in docs])


@router.get("/{key_id}", response_model=ApiKeyResponse)
async def get_api_key(
    key_id: str,
    account_id: str = Depends(get_account_id),
    services: Services = Depends(get_services),
) -> ApiKeyResponse:
    return ApiKeyResponse.from_doc(await services.credentials.get(account_id, key_id))


@router.patch("/{key_id}", response_model=ApiKeyResponse)
async def update_api_key(
    key_id: str,
    body: UpdateApiKeyRequest,
    account_id: str = Depends(get_account_id),
    services: Services = Depends(get_services),
) -> ApiKeyResponse:
    """Rename, re-scope or change the expiry. ``"expires_at": null`` clears it."""
    kwargs: dict[str, Any] = {"name": body.name, "scopes": body.scopes}
    if "expires_at" in body.model_fields_set:
        kwargs["expires_at"] = _parse_expiry(body.expires_at)
    doc = await services.credentials.update(account_id, key_id, **kwargs)
    return ApiKeyResponse.from_doc(doc)


@router.post("/{key_id}/rotate", response_model=ApiKeyCreatedResponse)
async def rotate_api_key(
    key_id: str,
    account_id: str = Depends(get_account_id),
    services: Services = Depends(get_services),
) -> ApiKeyCreatedResponse:
    """Replace the key's secret. The previous token stops working immediately."""
    issued = await services.credentials.rotate(account_id, key_id)
    return ApiKeyCreatedResponse.from_issued(issued.credential, issued.secret)


@router.delete("/{key_id}", response_model=ApiKeyActionResponse)
async def revoke_api_key(
    key_id: str,
    account_id: str = Depends(get_account_id),
    services: Services = Depends(get_services),
) -> ApiKeyActionResponse:
    await services.credentials.revoke(account_id, key_id)
    return ApiKeyActionResponse(success=True, action="revoked")
