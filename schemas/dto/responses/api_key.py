"""
Response DTOs for API key management endpoints.

ApiKeyResponse        - one key entry in GET /api/v1/keys list
ApiKeyCreatedResponse - POST /api/v1/keys (201) and rotate - includes ``token`` once
ApiKeysListResponse   - GET /api/v1/keys (200)
ApiKeyActionResponse  - DELETE /api/v1/keys/{key_id} (200)

Timestamps are Unix epoch integers.
"""

from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, ConfigDict

from schemas.models.credential import CredentialDoc
from shared.datetime_utils import to_epoch


class ApiKeyResponse(BaseModel):
    """A single API key entry. Only the display prefix of the key is returned."""

    model_config = ConfigDict(populate_by_name=True)

    id: str
    name: str
    scopes: list[str]
    rate_limit_tier: str
    key_prefix: str
    created_at: Optional[int] = None
    expires_at: Optional[int] = None
    last_used_at: Optional[int] = None
    rotated_at: Optional[int] = None
    is_active: bool
    total_requests: int = 0

    @classmethod
    def from_doc(cls, doc: CredentialDoc) -> "ApiKeyResponse":
        return cls(
            id=doc.str_id,
            name=doc.name,
            scopes=doc.scopes,
            rate_limit_tier=doc.rate_limit_tier,
            key_prefix=doc.key_prefix,
            created_at=to_epoch(doc.created_at),
            expires_at=to_epoch(doc.expires_at),
            last_used_at=to_epoch(doc.last_used_at),
            rotated_at=to_epoch(doc.rotated_at),
            is_active=doc.is_active,
            total_requests=doc.usage_stats.total_requests,
        )


class ApiKeyCreatedResponse(ApiKeyResponse):
    """Adds the full ``token``. This is the ONLY time the token is returned."""

    token: str

    @classmethod
    def from_issued(cls, doc: CredentialDoc, token: str) -> "ApiKeyCreatedResponse":
        return cls(**ApiKeyResponse.from_doc(doc).model_dump(), token=token)


class ApiKeysListResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    keys: list[ApiKeyResponse]


class ApiKeyActionResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    success: bool
    action: str
