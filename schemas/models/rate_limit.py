"""
Rate-limit counter documents.

`rate_limit_windows` - one document per (credential, endpoint, hour window).
request_count only ever grows via $inc; tier_limit is written once with
$setOnInsert so later tier changes never alter a window already in progress.

`rate_limit_bursts` - short-horizon burst usage, one document per
(credential, endpoint, burst bucket).
"""

from __future__ import annotations

from schemas.models.base import MongoBaseModel, UtcDatetime


class RateLimitWindowDoc(MongoBaseModel):
    credential_id: str
    user_id: str
    endpoint: str
    window_start: UtcDatetime
    window_end: UtcDatetime
    request_count: int = 0
    tier_limit: int

