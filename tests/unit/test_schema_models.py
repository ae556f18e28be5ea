"""Unit tests for MongoDB document models."""

from datetime import datetime, timedelta, timezone

import pytest
from bson import ObjectId

from schemas.models.audit import ApiUsageDoc, AuditEventDoc
from schemas.models.base import MongoBaseModel, PyObjectId, to_object_id
from schemas.models.credential import CredentialDoc
from schemas.models.rate_limit import RateLimitWindowDoc
from schemas.models.webhook import (
    RETRY_PENDING,
    WebhookDeliveryAttemptDoc,
    WebhookEndpointDoc,
    WebhookRetryJobDoc,
)


# ── Helpers ───────────────────────────────────────────────────────────────────

def now():
    return datetime.now(timezone.utc)


def oid():
    return ObjectId()


# ── PyObjectId ────────────────────────────────────────────────────────────────

class TestPyObjectId:
    def test_accepts_objectid_instance(self):
        o = oid()
        assert PyObjectId._validate(o) == o

    def test_accepts_valid_string(self):
        s = str(oid())
        result = PyObjectId._validate(s)
        assert isinstance(result, ObjectId)
        assert str(result) == s

    def test_rejects_invalid_string(self):
        with pytest.raises(ValueError):
            PyObjectId._validate("not-an-objectid")

    def test_rejects_none(self):
        with pytest.raises((ValueError, TypeError)):
            PyObjectId._validate(None)


@pytest.mark.parametrize(
    "value, valid",
    [(str(ObjectId()), True), (ObjectId(), True), ("nope", False), (None, False), (12, False)],
)
def test_to_object_id(value, valid):
    assert (to_object_id(value) is not None) is valid


# ── MongoBaseModel ─────────────────────────────────────────────────────────────

class TestMongoBaseModel:
    def test_from_mongo_returns_none_for_none(self):
        assert MongoBaseModel.from_mongo(None) is None

    def test_id_alias(self):
        o = oid()
        m = MongoBaseModel.model_validate({"_id": o})
        assert m.id == o
        assert m.str_id == str(o)

    def test_to_mongo_drops_none_id(self):
        m = MongoBaseModel()
        d = m.to_mongo()
        assert "_id" not in d
        assert m.str_id == ""

    def test_to_mongo_keeps_set_id(self):
        o = oid()
        m = MongoBaseModel.model_validate({"_id": o})
        d = m.to_mongo()
        assert d["_id"] == o


# ── CredentialDoc ─────────────────────────────────────────────────────────────

class TestCredentialDoc:
    def _make(self, **overrides):
        base = {
            "_id": oid(),
            "user_id": "acct-1",
            "name": "CI",
            "key_hash": "h" * 64,
            "key_prefix": "cb_AbCdEfGh",
        }
        base.update(overrides)
        return CredentialDoc.model_validate(base)

    def test_defaults(self):
        doc = self._make()
        assert doc.is_active is True
        assert doc.scopes == []
        assert doc.rate_limit_tier == "free"
        assert doc.usage_stats.total_requests == 0
        assert doc.expires_at is None

    def test_naive_datetimes_read_back_as_utc(self):
        doc = self._make(created_at=datetime(2026, 1, 1, 12, 0))
        assert doc.created_at.tzinfo is not None
        assert doc.created_at.utcoffset() == timedelta(0)

    def test_is_expired(self):
        t = now()
        assert not self._make().is_expired(t)
        assert not self._make(expires_at=t + timedelta(seconds=1)).is_expired(t)
        assert self._make(expires_at=t).is_expired(t)

    def test_to_mongo_round_trip(self):
        doc = self._make(scopes=["read:data"])
        restored = CredentialDoc.from_mongo(doc.to_mongo())
        assert restored.id == doc.id
        assert restored.scopes == ["read:data"]
        assert restored.usage_stats == doc.usage_stats


# ── RateLimitWindowDoc ────────────────────────────────────────────────────────

def test_rate_limit_window_defaults_count_to_zero():
    t = now()
    doc = RateLimitWindowDoc(
        credential_id="c",
        user_id="u",
        endpoint="GET /x",
        window_start=t,
        window_end=t + timedelta(hours=1),
        tier_limit=100,
    )
    assert doc.request_count == 0


# ── Webhook models ────────────────────────────────────────────────────────────

class TestWebhookModels:
    def test_endpoint_defaults(self):
        doc = WebhookEndpointDoc(user_id="u", url="https://x.example.com", events=["data.updated"], secret="s")
        assert doc.is_active
        assert doc.filters == {}
        assert doc.delivery_stats.total_deliveries == 0

    def test_endpoints_do_not_share_filter_dicts(self):
        a = WebhookEndpointDoc(user_id="u", url="https://a", events=[], secret="s")
        b = WebhookEndpointDoc(user_id="u", url="https://b", events=[], secret="s")
        a.filters["data.updated"] = []
        assert b.filters == {}

    def test_attempt_succeeded(self):
        base = dict(webhook_endpoint_id="e", delivery_id="d", event_type="data.updated", payload={})
        assert WebhookDeliveryAttemptDoc(**base, delivered_at=now()).succeeded
        assert not WebhookDeliveryAttemptDoc(**base, failed_at=now()).succeeded

    def test_retry_job_starts_pending(self):
        job = WebhookRetryJobDoc(
            delivery_id="d",
            webhook_endpoint_id="e",
            payload={},
            attempt_number=2,
            next_attempt_at=now(),
        )
        assert job.status == RETRY_PENDING


# ── Audit models ──────────────────────────────────────────────────────────────

class TestAuditModels:
    def test_audit_event(self):
        doc = AuditEventDoc(user_id="u", action="api_key.created", resource="api_key", timestamp=now())
        assert doc.details == {}
        assert doc.resource_id is None

    def test_usage(self):
        doc = ApiUsageDoc(
            credential_id="c",
            user_id="u",
            endpoint="GET /x",
            method="GET",
            response_status=200,
            response_time_ms=12,
            timestamp=now(),
        )
        assert doc.ip_address is None
