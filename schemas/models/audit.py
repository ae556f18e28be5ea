"""
Append-only activity documents.

audit_log - who did what to which key/webhook, and when
api_usage - one row per gated request (endpoint, status, latency)
"""

from __future__ import annotations

from typing import Any, Optional

from schemas.models.base import MongoBaseModel, UtcDatetime


class AuditEventDoc(MongoBaseModel):
    user_id: str
    action: str
    resource: str
    resource_id: Optional[str] = None
    details: dict[str, Any] = {}
    timestamp: UtcDatetime


class ApiUsageDoc(MongoBaseModel):
    credential_id: str
    user_id: str
    endpoint: str
    method: str
    response_status: int
    response_time_ms: int
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    timestamp: UtcDatetime
