"""
Fire-and-forget recorders for the audit trail and per-request API usage.

Both schedule the write on a BackgroundTasks set and return immediately; a
failed write is logged by BackgroundTasks and never reaches the caller.
"""

from __future__ import annotations

from typing import Any, Optional

from repositories.activity import AuditRepository, UsageRepository
from schemas.models.audit import ApiUsageDoc, AuditEventDoc
from shared.datetime_utils import Clock, utcnow
from shared.tasks import BackgroundTasks


class AuditLogger:
    def __init__(
        self,
        repo: AuditRepository,
        tasks: BackgroundTasks,
        clock: Clock = utcnow,
    ) -> None:
        self._repo = repo
        self._tasks = tasks
        self._clock = clock

    def record(
        self,
        user_id: str,
        action: str,
        resource: str,
        resource_id: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        event = AuditEventDoc(
            user_id=user_id,
            action=action,
            resource=resource,
            resource_id=resource_id,
            details=details or {},
            timestamp=self._clock(),
        )
        self._tasks.spawn(self._repo.append(event), name=f"audit:{action}")


class UsageRecorder:
    def __init__(
        self,
        repo: UsageRepository,
        tasks: BackgroundTasks,
        clock: Clock = utcnow,
    ) -> None:
        self._repo = repo
        self._tasks = tasks
        self._clock = clock

    def record(
        self,
        *,
        credential_id: str,
        user_id: str,
        endpoint: str,
        method: str,
        response_status: int,
        response_time_ms: int,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> None:
        usage = ApiUsageDoc(
            credential_id=credential_id,
            user_id=user_id,
            endpoint=endpoint,
            method=method,
            response_status=response_status,
            response_time_ms=response_time_ms,
            ip_address=ip_address,
            user_agent=user_agent,
            timestamp=self._clock(),
        )
        self._tasks.spawn(self._repo.append(usage), name="api_usage")
