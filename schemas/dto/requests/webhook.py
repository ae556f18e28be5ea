"""
Request DTOs for webhook endpoint management.

CreateWebhookRequest - POST /api/v1/webhooks
UpdateWebhookRequest - PATCH /api/v1/webhooks/{endpoint_id}
TestWebhookRequest   - POST /api/v1/webhooks/{endpoint_id}/test

``filters`` maps an event type to a list of conditions on the event data:

    {"alert.triggered": [{"field": "severity", "op": "in", "values": ["high"]}]}
"""

from __future__ import annotations

from typing import Any, Optional

from pydantic import BaseModel, ConfigDict


class CreateWebhookRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    url: str
    events: list[str]
    filters: Optional[dict[str, list[dict[str, Any]]]] = None


class UpdateWebhookRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    url: Optional[str] = None
    events: Optional[list[str]] = None
    filters: Optional[dict[str, list[dict[str, Any]]]] = None
    is_active: Optional[bool] = None


class TestWebhookRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    event_type: Optional[str] = None
    data: Optional[dict[str, Any]] = None
