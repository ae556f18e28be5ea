"""Repository for the `api_keys` collection."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Optional

from bson import ObjectId

from repositories.filters import Eq
from repositories.store import DocumentStore
from schemas.models.credential import CredentialDoc


class CredentialRepository:
    def __init__(self, store: DocumentStore) -> None:
        self._store = store

    async def insert(self, doc: CredentialDoc) -> CredentialDoc:
        data = await self._store.insert_one(doc.to_mongo())
        return CredentialDoc.from_mongo(data)

    async def get_by_id(self, key_id: ObjectId) -> Optional[CredentialDoc]:
        return CredentialDoc.from_mongo(await self._store.find_one([Eq("_id", key_id)]))

    async def get_by_hash(self, key_hash: str) -> Optional[CredentialDoc]:
        return CredentialDoc.from_mongo(
            await self._store.find_one([Eq("key_hash", key_hash)])
        )

    async def list_by_user(self, user_id: str) -> list[CredentialDoc]:
        docs = await self._store.find(
            [Eq("user_id", user_id)], sort=("created_at", True)
        )
        return [CredentialDoc.from_mongo(d) for d in docs]

    async def count_active(self, user_id: str) -> int:
        return await self._store.count([Eq("user_id", user_id), Eq("is_active", True)])

    async def update(
        self,
        key_id: ObjectId,
        fields: dict[str, Any],
        *,
        user_id: Optional[str] = None,
    ) -> Optional[CredentialDoc]:
        filters = [Eq("_id", key_id)]
        if user_id is not None:
            filters.append(Eq("user_id", user_id))
        data = await self._store.update_one(filters, set_fields=fields)
        return CredentialDoc.from_mongo(data)

    async def deactivate(self, key_id: ObjectId) -> None:
        await self._store.update_one([Eq("_id", key_id)], set_fields={"is_active": False})

    async def mark_used(
        self, key_id: ObjectId, key_hash: str, now: datetime
    ) -> Optional[CredentialDoc]:
        """Stamp last-used and bump usage counters.

        Matching on the hash as well as the id means a key rotated between
        lookup and stamp is not touched (and the caller sees None).
        """
        data = await self._store.update_one(
            [Eq("_id", key_id), Eq("key_hash", key_hash), Eq("is_active", True)],
            set_fields={"last_used_at": now, "usage_stats.last_request_at": now},
            inc_fields={"usage_stats.total_requests": 1},
        )
        return CredentialDoc.from_mongo(data)
