"""
Base model for all MongoDB document models.

PyObjectId handles the mismatch between BSON ObjectId and Pydantic v2.
UtcDatetime normalises naive datetimes read back from MongoDB to aware UTC.
MongoBaseModel provides to_mongo() / from_mongo() for round-tripping between
Python objects and raw MongoDB dicts.
"""

from __future__ import annotations

from datetime import datetime
from typing import Annotated, Any, Optional

from bson import ObjectId
from pydantic import (
    AfterValidator,
    BaseModel,
    ConfigDict,
    Field,
    GetCoreSchemaHandler,
)
from pydantic_core import core_schema

from shared.datetime_utils import ensure_utc


class PyObjectId(ObjectId):
    """BSON ObjectId that Pydantic v2 knows how to validate and serialize."""

    @classmethod
    def __get_pydantic_core_schema__(
        cls, source_type: Any, handler: GetCoreSchemaHandler
    ) -> core_schema.CoreSchema:
        return core_schema.no_info_plain_validator_function(
            cls._validate,
            serialization=core_schema.plain_serializer_function_ser_schema(
                str, when_used="json"
            ),
        )

    @classmethod
    def _validate(cls, v: Any) -> ObjectId:
        if isinstance(v, ObjectId):
            return v
        if isinstance(v, str) and ObjectId.is_valid(v):
            return ObjectId(v)
        raise ValueError(f"Invalid ObjectId: {v!r}")


UtcDatetime = Annotated[datetime, AfterValidator(ensure_utc)]


def to_object_id(value: Any) -> Optional[ObjectId]:
    """Coerce a path/query id to ObjectId, or None when it is not a valid id."""
    if isinstance(value, ObjectId):
        return value
    if isinstance(value, str) and ObjectId.is_valid(value):
        return ObjectId(value)
    return None


class MongoBaseModel(BaseModel):
    """
    Base for all document models.

    Stores the MongoDB _id as `id` (PyObjectId). Subclasses add collection-
    specific fields on top.

    to_mongo()  - converts model → dict suitable for pymongo insert/update
    from_mongo() - converts raw pymongo dict → model instance (returns None
                    gracefully when passed None)
    """

    model_config = ConfigDict(
        populate_by_name=True,
        arbitrary_types_allowed=True,
    )

    id: Optional[PyObjectId] = Field(default=None, alias="_id")

    def to_mongo(self) -> dict:
        """Return a dict ready for MongoDB insertion.

        - Renames `id` → `_id`
        - Excludes None `_id` so MongoDB can auto-generate it on insert
        """
        data = self.model_dump(by_alias=True, exclude_none=False)
        if data.get("_id") is None:
            data.pop("_id", None)
        return data

    @classmethod
    def from_mongo(cls, data: Optional[dict]):
        """Build a model instance from a raw MongoDB document dict.

        Returns None when data is None (e.g. find_one returns None).
        """
        if data is None:
            return None
        return cls.model_validate(data)

    @property
    def str_id(self) -> str:
        return str(self.id) if self.id is not None else ""
