"""
Unit tests for services/tiers.py.
"""

import pytest

from services.tiers import (
    ALL_SCOPES,
    ENTERPRISE,
    FREE,
    PROFESSIONAL,
    SCOPE_READ_ANALYTICS,
    SCOPE_READ_DATA,
    SCOPE_WRITE_WEBHOOKS,
    StaticTierProvider,
    SubscriptionTierProvider,
    TierResolver,
    tier_by_name,
)
from tests.fakes import InMemoryDocumentStore


# ---------------------------------------------------------------------------
# Tier table
# ---------------------------------------------------------------------------


@pytest.mark.parametrize(
    "tier, per_hour, burst, keys, hooks",
    [
        (FREE, 100, 20, 0, 0),
        (PROFESSIONAL, 10_000, 500, 10, 10),
        (ENTERPRISE, 50_000, 2_000, 50, 50),
    ],
)
def test_tier_limits(tier, per_hour, burst, keys, hooks):
    assert tier.requests_per_hour == per_hour
    assert tier.burst_allowance == burst
    assert tier.max_api_keys == keys
    assert tier.max_webhooks == hooks


def test_free_tier_only_reads_data():
    assert FREE.allowed_scopes == {SCOPE_READ_DATA}
    assert PROFESSIONAL.allowed_scopes == ALL_SCOPES


@pytest.mark.parametrize(
    "name, expected",
    [("professional", PROFESSIONAL), ("ENTERPRISE", ENTERPRISE), ("platinum", FREE), (None, FREE)],
)
def test_tier_by_name(name, expected):
    assert tier_by_name(name) is expected


def test_filter_scopes_drops_disallowed_and_dedupes():
    requested = [SCOPE_WRITE_WEBHOOKS, SCOPE_READ_DATA, SCOPE_READ_DATA, "admin:all"]
    assert FREE.filter_scopes(requested) == [SCOPE_READ_DATA]
    assert PROFESSIONAL.filter_scopes(requested) == [SCOPE_WRITE_WEBHOOKS, SCOPE_READ_DATA]


# ---------------------------------------------------------------------------
# Providers
# ---------------------------------------------------------------------------


class TestSubscriptionTierProvider:
    async def test_reads_active_subscription(self):
        store = InMemoryDocumentStore("subscriptions")
        await store.insert_one({"user_id": "a", "status": "cancelled", "tier": "enterprise"})
        await store.insert_one({"user_id": "a", "status": "active", "tier": "professional"})
        assert await SubscriptionTierProvider(store).get_tier("a") == "professional"

    async def test_no_subscription_returns_none(self):
        store = InMemoryDocumentStore("subscriptions")
        assert await SubscriptionTierProvider(store).get_tier("nobody") is None


async def test_static_provider_default_and_set():
    provider = StaticTierProvider({"a": "enterprise"})
    assert await provider.get_tier("a") == "enterprise"
    assert await provider.get_tier("b") == "free"
    provider.set("b", "professional")
    assert await provider.get_tier("b") == "professional"


# ---------------------------------------------------------------------------
# TierResolver
# ---------------------------------------------------------------------------


class TestTierResolver:
    async def test_resolves_provider_tier(self):
        resolver = TierResolver(StaticTierProvider({"a": "professional"}))
        assert await resolver.resolve("a") is PROFESSIONAL

    async def test_unknown_tier_name_is_free(self):
        resolver = TierResolver(StaticTierProvider({"a": "gold"}))
        assert await resolver.resolve("a") is FREE

    async def test_provider_error_falls_back_to_free(self):
        store = InMemoryDocumentStore("subscriptions")
        store.fail = True
        resolver = TierResolver(SubscriptionTierProvider(store))
        assert await resolver.resolve("a") is FREE

    async def test_partial_override_keeps_other_fields(self):
        resolver = TierResolver(
            StaticTierProvider({"a": "professional"}), overrides={"a": {"burst_allowance": 10}}
        )
        tier = await resolver.resolve("a")
        assert tier.burst_allowance == 10
        assert tier.requests_per_hour == PROFESSIONAL.requests_per_hour
        assert tier.name == "professional"

    async def test_name_override_switches_base_tier(self, mocker):
        provider = StaticTierProvider()
        spy = mocker.spy(provider, "get_tier")
        resolver = TierResolver(provider, overrides={"a": {"name": "enterprise"}})
        assert await resolver.resolve("a") is ENTERPRISE
        spy.assert_not_called()

    async def test_scope_override_becomes_frozenset(self):
        resolver = TierResolver(StaticTierProvider())
        resolver.set_override("a", allowed_scopes=[SCOPE_READ_DATA, SCOPE_READ_ANALYTICS])
        tier = await resolver.resolve("a")
        assert tier.allowed_scopes == frozenset({SCOPE_READ_DATA, SCOPE_READ_ANALYTICS})

    async def test_clear_override(self):
        resolver = TierResolver(StaticTierProvider(), overrides={"a": {"requests_per_hour": 5}})
        resolver.clear_override("a")
        assert await resolver.resolve("a") is FREE
