"""
Row/counter store abstraction.

DocumentStore is the only storage surface the services need: insert, lookup
by filters, counted finds, atomic field updates and an atomic
upsert-and-increment. MongoDocumentStore implements it over one pymongo
AsyncCollection; every PyMongoError is re-raised as StorageUnavailableError so
callers decide between fail-open and fail-closed without importing pymongo.
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Optional, Protocol, Sequence

from pymongo import ASCENDING, DESCENDING, ReturnDocument
from pymongo.asynchronous.collection import AsyncCollection
from pymongo.errors import DuplicateKeyError, PyMongoError

from errors import StorageUnavailableError
from repositories.filters import Filter, to_mongo_query
from shared.logging import get_logger

log = get_logger(__name__)

Sort = tuple[str, bool]  # (field, descending)


class DocumentStore(Protocol):
    async def insert_one(self, data: dict[str, Any]) -> dict[str, Any]: ...

    async def find_one(self, filters: Sequence[Filter]) -> Optional[dict[str, Any]]: ...

    async def find(
        self,
        filters: Sequence[Filter],
        *,
        sort: Optional[Sort] = None,
        limit: int = 0,
    ) -> list[dict[str, Any]]: ...

    async def count(self, filters: Sequence[Filter]) -> int: ...

    async def update_one(
        self,
        filters: Sequence[Filter],
        *,
        set_fields: Optional[dict[str, Any]] = None,
        inc_fields: Optional[dict[str, int]] = None,
        sort: Optional[Sort] = None,
    ) -> Optional[dict[str, Any]]: ...

    async def update_many(
        self, filters: Sequence[Filter], *, set_fields: dict[str, Any]
    ) -> int: ...

    async def increment(
        self,
        filters: Sequence[Filter],
        inc_fields: dict[str, int],
        *,
        set_on_insert: Optional[dict[str, Any]] = None,
    ) -> dict[str, Any]: ...


class MongoDocumentStore:
    """DocumentStore over a single MongoDB collection."""

    def __init__(self, collection: AsyncCollection) -> None:
        self._collection = collection

    @property
    def name(self) -> str:
        return self._collection.name

    @asynccontextmanager
    async def _guard(self, operation: str) -> AsyncIterator[None]:
        try:
            yield
        except PyMongoError as e:
            log.error(
                "storage_operation_failed",
                collection=self.name,
                operation=operation,
                error=str(e),
                error_type=type(e).__name__,
            )
            raise StorageUnavailableError(
                "The storage backend is temporarily unavailable."
            ) from e

    async def insert_one(self, data: dict[str, Any]) -> dict[str, Any]:
        async with self._guard("insert_one"):
            result = await self._collection.insert_one(data)
        data["_id"] = result.inserted_id
        return data

    async def find_one(self, filters: Sequence[Filter]) -> Optional[dict[str, Any]]:
        async with self._guard("find_one"):
            return await self._collection.find_one(to_mongo_query(filters))

    async def find(
        self,
        filters: Sequence[Filter],
        *,
        sort: Optional[Sort] = None,
        limit: int = 0,
    ) -> list[dict[str, Any]]:
        async with self._guard("find"):
            cursor = self._collection.find(to_mongo_query(filters))
            if sort is not None:
                field, descending = sort
                cursor = cursor.sort(field, DESCENDING if descending else ASCENDING)
            if limit:
                cursor = cursor.limit(limit)
            return await cursor.to_list(None)

    async def count(self, filters: Sequence[Filter]) -> int:
        async with self._guard("count"):
            return await self._collection.count_documents(to_mongo_query(filters))

    async def update_one(
        self,
        filters: Sequence[Filter],
        *,
        set_fields: Optional[dict[str, Any]] = None,
        inc_fields: Optional[dict[str, int]] = None,
        sort: Optional[Sort] = None,
    ) -> Optional[dict[str, Any]]:
        """Atomically update the first matching document and return it (after)."""
        update: dict[str, Any] = {}
        if set_fields:
            update["$set"] = set_fields
        if inc_fields:
            update["$inc"] = inc_fields
        kwargs: dict[str, Any] = {"return_document": ReturnDocument.AFTER}
        if sort is not None:
            field, descending = sort
            kwargs["sort"] = [(field, DESCENDING if descending else ASCENDING)]
        async with self._guard("update_one"):
            return await self._collection.find_one_and_update(
                to_mongo_query(filters), update, **kwargs
            )

    async def update_many(
        self, filters: Sequence[Filter], *, set_fields: dict[str, Any]
    ) -> int:
        async with self._guard("update_many"):
            result = await self._collection.update_many(
                to_mongo_query(filters), {"$set": set_fields}
            )
        return result.modified_count

    async def increment(
        self,
        filters: Sequence[Filter],
        inc_fields: dict[str, int],
        *,
        set_on_insert: Optional[dict[str, Any]] = None,
    ) -> dict[str, Any]:
        """Upsert-and-increment in one round trip; returns the post-increment doc.

        Two concurrent upserts on the same unique key can race; the loser gets
        DuplicateKeyError and retries once, at which point the document exists
        and the plain $inc path applies.
        """
        update: dict[str, Any] = {"$inc": inc_fields}
        if set_on_insert:
            update["$setOnInsert"] = set_on_insert
        query = to_mongo_query(filters)
        async with self._guard("increment"):
            try:
                return await self._collection.find_one_and_update(
                    query, update, upsert=True, return_document=ReturnDocument.AFTER
                )
            except DuplicateKeyError:
                return await self._collection.find_one_and_update(
                    query, update, upsert=True, return_document=ReturnDocument.AFTER
                )
