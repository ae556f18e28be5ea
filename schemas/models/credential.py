"""
API key (credential) document model.

Maps to the `api_keys` MongoDB collection.

key_hash stores HMAC-SHA-256(pepper, raw_key); the raw key is shown once at
creation/rotation and never stored. key_prefix (first 11 chars, e.g.
``cb_AbCdEfGh``) is stored for display purposes.
"""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field

from schemas.models.base import MongoBaseModel, UtcDatetime


class UsageStats(BaseModel):
    total_requests: int = 0
    last_request_at: Optional[UtcDatetime] = None


class CredentialDoc(MongoBaseModel):
    """Document model for the `api_keys` collection."""

    user_id: str
    name: str
    key_hash: str
    key_prefix: str
    scopes: list[str] = []
    rate_limit_tier: str = "free"
    created_at: Optional[UtcDatetime] = None
    expires_at: Optional[UtcDatetime] = None
    last_used_at: Optional[UtcDatetime] = None
    rotated_at: Optional[UtcDatetime] = None
    is_active: bool = True
    usage_stats: UsageStats = Field(default_factory=UsageStats)

    def is_expired(self, now: datetime) -> bool:
        return self.expires_at is not None and self.expires_at <= now
