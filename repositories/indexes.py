"""
MongoDB collection names and index bootstrap.

The unique indexes are what make "exactly one window per (credential,
endpoint, hour)" and "lookup by hash" hold under concurrent writers.
"""

from __future__ import annotations

from pymongo import ASCENDING, DESCENDING, IndexModel
from pymongo.asynchronous.database import AsyncDatabase

from shared.logging import get_logger

log = get_logger(__name__)

API_KEYS = "api_keys"
RATE_LIMIT_WINDOWS = "rate_limit_windows"
RATE_LIMIT_BURSTS = "rate_limit_bursts"
WEBHOOK_ENDPOINTS = "webhook_endpoints"
WEBHOOK_DELIVERIES = "webhook_deliveries"
WEBHOOK_RETRY_QUEUE = "webhook_retry_queue"
AUDIT_LOG = "audit_log"
API_USAGE = "api_usage"
SUBSCRIPTIONS = "subscriptions"

INDEXES: dict[str, list[IndexModel]] = {
    API_KEYS: [
        IndexModel([("key_hash", ASCENDING)], unique=True),
        IndexModel([("user_id", ASCENDING), ("is_active", ASCENDING)]),
    ],
    RATE_LIMIT_WINDOWS: [
        IndexModel(
            [("credential_id", ASCENDING), ("endpoint", ASCENDING), ("window_start", ASCENDING)],
            unique=True,
        ),
        IndexModel([("user_id", ASCENDING), ("window_start", ASCENDING)]),
    ],
    RATE_LIMIT_BURSTS: [
        IndexModel(
            [("credential_id", ASCENDING), ("endpoint", ASCENDING), ("bucket_start", ASCENDING)],
            unique=True,
        ),
    ],
    WEBHOOK_ENDPOINTS: [
        IndexModel([("user_id", ASCENDING), ("is_active", ASCENDING)]),
        IndexModel([("events", ASCENDING), ("is_active", ASCENDING)]),
    ],
    WEBHOOK_DELIVERIES: [
        IndexModel([("webhook_endpoint_id", ASCENDING), ("created_at", DESCENDING)]),
        IndexModel([("delivery_id", ASCENDING), ("attempt_number", ASCENDING)]),
    ],
    WEBHOOK_RETRY_QUEUE: [
        IndexModel([("status", ASCENDING), ("next_attempt_at", ASCENDING)]),
        IndexModel([("delivery_id", ASCENDING)], unique=True),
    ],
    AUDIT_LOG: [IndexModel([("user_id", ASCENDING), ("timestamp", DESCENDING)])],
    API_USAGE: [IndexModel([("user_id", ASCENDING), ("timestamp", DESCENDING)])],
}


async def ensure_indexes(db: AsyncDatabase) -> None:
    for collection, indexes in INDEXES.items():
        await db[collection].create_indexes(indexes)
    log.info("mongo_indexes_ensured", collections=len(INDEXES))
