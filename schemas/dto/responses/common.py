"""
Common response DTOs shared across multiple endpoints.

ErrorEnvelope    - standard error shape produced by errors.register_error_handlers
HealthResponse   - GET /health
"""

from __future__ import annotations

from typing import Any, Optional

from pydantic import BaseModel, ConfigDict


class ErrorBody(BaseModel):
    code: str
    message: str
    field: Optional[str] = None
    details: Optional[Any] = None
    suggestions: Optional[list[str]] = None


class ResponseMeta(BaseModel):
    request_id: str
    timestamp: str


class ErrorEnvelope(BaseModel):
    """Standard error JSON body produced by the AppError exception handler."""

    model_config = ConfigDict(populate_by_name=True)

    success: bool = False
    error: ErrorBody
    meta: ResponseMeta


class HealthResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    status: str
    checks: dict[str, str]
    webhook_retry_backlog: Optional[int] = None
