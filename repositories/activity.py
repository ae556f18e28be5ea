"""Append-only repositories: audit trail and per-request API usage."""

from __future__ import annotations

from repositories.store import DocumentStore
from schemas.models.audit import ApiUsageDoc, AuditEventDoc


class AuditRepository:
    def __init__(self, store: DocumentStore) -> None:
        self._store = store

    async def append(self, event: AuditEventDoc) -> None:
        await self._store.insert_one(event.to_mongo())


class UsageRepository:
    def __init__(self, store: DocumentStore) -> None:
        self._store = store

    async def append(self, usage: ApiUsageDoc) -> None:
        await self._store.insert_one(usage.to_mongo())
