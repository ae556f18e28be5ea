"""
Unit tests for services/credential_store.py.

Runs against the in-memory harness: ``acct-pro`` is on the professional tier,
every other account is free.
"""

from datetime import timedelta

import pytest
from bson import ObjectId

from errors import (
    ForbiddenError,
    InvalidExpiryError,
    NotFoundError,
    QuotaExceededError,
    StorageUnavailableError,
    TierForbiddenError,
)
from repositories import indexes
from services.tiers import SCOPE_READ_DATA, SCOPE_WRITE_WEBHOOKS
from shared.crypto import hash_api_key
from shared.validators import validate_api_key_format
from tests.fakes import PEPPER

PRO = "acct-pro"


@pytest.fixture
def store(harness):
    return harness.services.credentials


# ---------------------------------------------------------------------------
# issue
# ---------------------------------------------------------------------------


class TestIssue:
    async def test_returns_plaintext_once_and_stores_hash(self, store, harness):
        issued = await store.issue(PRO, "  CI key ", [SCOPE_READ_DATA])

        assert validate_api_key_format(issued.secret)
        doc = issued.credential
        assert doc.name == "CI key"
        assert doc.key_prefix == issued.secret[:11]
        assert doc.key_hash == hash_api_key(issued.secret, PEPPER)
        assert doc.rate_limit_tier == "professional"
        assert doc.is_active

        stored = harness.store(indexes.API_KEYS).docs
        assert len(stored) == 1
        assert issued.secret not in stored[0].values()

    async def test_free_tier_cannot_issue(self, store):
        with pytest.raises(TierForbiddenError):
            await store.issue("acct-free", "k", [SCOPE_READ_DATA])

    async def test_quota_enforced(self, store, harness):
        harness.services.tiers.set_override(PRO, max_api_keys=2)
        await store.issue(PRO, "a", [])
        await store.issue(PRO, "b", [])
        with pytest.raises(QuotaExceededError) as exc:
            await store.issue(PRO, "c", [])
        assert exc.value.details["limit"] == 2

    async def test_revoked_keys_free_quota(self, store, harness):
        harness.services.tiers.set_override(PRO, max_api_keys=1)
        first = await store.issue(PRO, "a", [])
        await store.revoke(PRO, first.credential.str_id)
        await store.issue(PRO, "b", [])

    async def test_past_expiry_rejected(self, store, clock):
        with pytest.raises(InvalidExpiryError):
            await store.issue(PRO, "k", [], expires_at=clock() - timedelta(seconds=1))

    async def test_scopes_filtered_to_tier(self, store, harness):
        harness.services.tiers.set_override(PRO, allowed_scopes=[SCOPE_READ_DATA])
        issued = await store.issue(PRO, "k", [SCOPE_WRITE_WEBHOOKS, SCOPE_READ_DATA, "bogus"])
        assert issued.credential.scopes == [SCOPE_READ_DATA]

    async def test_audit_entry_written(self, store, harness):
        issued = await store.issue(PRO, "k", [])
        await harness.services.tasks.drain()
        [entry] = harness.store(indexes.AUDIT_LOG).docs
        assert entry["action"] == "api_key.created"
        assert entry["resource_id"] == issued.credential.str_id


# ---------------------------------------------------------------------------
# validate
# ---------------------------------------------------------------------------


class TestValidate:
    async def test_valid_key_stamps_usage(self, store, clock):
        issued = await store.issue(PRO, "k", [])
        clock.advance(5)
        doc = await store.validate(issued.secret)
        assert doc is not None
        assert doc.last_used_at == clock()
        assert doc.usage_stats.total_requests == 1

    async def test_unknown_key(self, store):
        assert await store.validate("cb_" + "z" * 32) is None

    async def test_revoked_key(self, store):
        issued = await store.issue(PRO, "k", [])
        await store.revoke(PRO, issued.credential.str_id)
        assert await store.validate(issued.secret) is None

    async def test_expired_key_deactivated_without_touching_last_used(self, store, clock, harness):
        issued = await store.issue(PRO, "k", [], expires_at=clock() + timedelta(minutes=1))
        clock.advance(61)

        assert await store.validate(issued.secret) is None

        [stored] = harness.store(indexes.API_KEYS).docs
        assert stored["is_active"] is False
        assert stored.get("last_used_at") is None

    async def test_storage_error_propagates(self, store, harness):
        issued = await store.issue(PRO, "k", [])
        harness.store(indexes.API_KEYS).fail = True
        with pytest.raises(StorageUnavailableError):
            await store.validate(issued.secret)


# ---------------------------------------------------------------------------
# rotate / revoke / ownership
# ---------------------------------------------------------------------------


class TestRotate:
    async def test_old_secret_stops_working(self, store, clock):
        issued = await store.issue(PRO, "k", [SCOPE_READ_DATA])
        await store.validate(issued.secret)

        rotated_at = clock()
        rotated = await store.rotate(PRO, issued.credential.str_id)
        clock.advance(0.001)

        assert rotated.secret != issued.secret
        assert rotated.credential.id == issued.credential.id
        assert rotated.credential.scopes == [SCOPE_READ_DATA]
        assert rotated.credential.rotated_at == rotated_at
        assert rotated.credential.last_used_at is None
        assert await store.validate(issued.secret) is None
        assert await store.validate(rotated.secret) is not None

    async def test_revoked_key_cannot_rotate(self, store):
        issued = await store.issue(PRO, "k", [])
        await store.revoke(PRO, issued.credential.str_id)
        with pytest.raises(NotFoundError):
            await store.rotate(PRO, issued.credential.str_id)


class TestRevoke:
    async def test_idempotent(self, store, harness):
        issued = await store.issue(PRO, "k", [])
        await store.revoke(PRO, issued.credential.str_id)
        await store.revoke(PRO, issued.credential.str_id)
        await harness.services.tasks.drain()
        actions = [e["action"] for e in harness.store(indexes.AUDIT_LOG).docs]
        assert actions.count("api_key.revoked") == 1


class TestOwnership:
    async def test_other_account_is_forbidden(self, store, harness):
        harness.tier_provider.set("acct-other", "professional")
        issued = await store.issue(PRO, "k", [])
        with pytest.raises(ForbiddenError):
            await store.revoke("acct-other", issued.credential.str_id)
        with pytest.raises(ForbiddenError):
            await store.get("acct-other", issued.credential.str_id)

    @pytest.mark.parametrize("key_id", ["not-an-id", str(ObjectId())])
    async def test_missing_key(self, store, key_id):
        with pytest.raises(NotFoundError):
            await store.get(PRO, key_id)


# ---------------------------------------------------------------------------
# list / update
# ---------------------------------------------------------------------------


class TestListAndUpdate:
    async def test_list_newest_first(self, store, clock):
        await store.issue(PRO, "first", [])
        clock.advance(1)
        await store.issue(PRO, "second", [])
        names = [d.name for d in await store.list_for_account(PRO)]
        assert names == ["second", "first"]

    async def test_update_name_and_scopes(self, store):
        issued = await store.issue(PRO, "k", [])
        updated = await store.update(
            PRO, issued.credential.str_id, name=" renamed ", scopes=[SCOPE_READ_DATA, "bogus"]
        )
        assert updated.name == "renamed"
        assert updated.scopes == [SCOPE_READ_DATA]

    async def test_clear_expiry(self, store, clock):
        issued = await store.issue(PRO, "k", [], expires_at=clock() + timedelta(days=1))
        updated = await store.update(PRO, issued.credential.str_id, expires_at=None)
        assert updated.expires_at is None

    async def test_noop_update_returns_current(self, store):
        issued = await store.issue(PRO, "k", [])
        assert (await store.update(PRO, issued.credential.str_id)).id == issued.credential.id
