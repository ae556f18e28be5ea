"""Unit tests for AppSettings and sub-configs."""

import pytest
from pydantic import ValidationError as PydanticValidationError

from config import (
    AppSettings,
    DatabaseSettings,
    RateLimitSettings,
    RedisSettings,
    TierSettings,
    WebhookSettings,
)


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def with_mongo(monkeypatch):
    """Set the required MONGODB_URI so AppSettings can be instantiated."""
    monkeypatch.setenv("MONGODB_URI", "mongodb://localhost:27017/")
    return monkeypatch


# ---------------------------------------------------------------------------
# DatabaseSettings
# ---------------------------------------------------------------------------


class TestDatabaseSettings:
    def test_loads_mongodb_uri(self, monkeypatch):
        monkeypatch.setenv("MONGODB_URI", "mongodb://localhost:27017/")
        assert DatabaseSettings().mongodb_uri == "mongodb://localhost:27017/"

    def test_default_db_name(self, monkeypatch):
        monkeypatch.setenv("MONGODB_URI", "mongodb://localhost:27017/")
        monkeypatch.delenv("DB_NAME", raising=False)
        assert DatabaseSettings().db_name == "bems-gateway"

    def test_missing_mongodb_uri_raises(self, monkeypatch):
        monkeypatch.delenv("MONGODB_URI", raising=False)
        with pytest.raises(PydanticValidationError):
            DatabaseSettings()


# ---------------------------------------------------------------------------
# RedisSettings
# ---------------------------------------------------------------------------


class TestRedisSettings:
    def test_redis_uri_optional(self, monkeypatch):
        monkeypatch.delenv("REDIS_URI", raising=False)
        assert RedisSettings().redis_uri is None

    def test_redis_uri_loaded(self, monkeypatch):
        monkeypatch.setenv("REDIS_URI", "redis://localhost:6379")
        assert RedisSettings().redis_uri == "redis://localhost:6379"


# ---------------------------------------------------------------------------
# Rate limit / tiers / webhooks
# ---------------------------------------------------------------------------


class TestRateLimitSettings:
    def test_defaults(self, monkeypatch):
        monkeypatch.delenv("RATE_LIMIT_DEGRADED_MODE", raising=False)
        s = RateLimitSettings()
        assert s.rate_limit_degraded_mode == "fail_open"
        assert s.rate_limit_burst_window_seconds == 60
        assert s.rate_limit_use_redis_for_burst is True

    def test_fail_closed_from_env(self, monkeypatch):
        monkeypatch.setenv("RATE_LIMIT_DEGRADED_MODE", "fail_closed")
        assert RateLimitSettings().rate_limit_degraded_mode == "fail_closed"


class TestTierSettings:
    def test_overrides_parsed_from_json(self, monkeypatch):
        monkeypatch.setenv("TIER_OVERRIDES", '{"acct-1": {"burst_allowance": 10}}')
        assert TierSettings().tier_overrides == {"acct-1": {"burst_allowance": 10}}

    def test_overrides_default_empty(self, monkeypatch):
        monkeypatch.delenv("TIER_OVERRIDES", raising=False)
        assert TierSettings().tier_overrides == {}


class TestWebhookSettings:
    def test_defaults(self):
        s = WebhookSettings()
        assert s.webhook_timeout_seconds == 30.0
        assert s.webhook_retry_poll_interval_seconds == 5.0
        assert s.webhook_response_body_limit == 1000
        assert s.webhook_source == "bems_platform"


# ---------------------------------------------------------------------------
# AppSettings
# ---------------------------------------------------------------------------


class TestAppSettings:
    def test_sub_configs_populated(self, with_mongo):
        s = AppSettings()
        assert s.db is not None
        assert s.redis is not None
        assert s.rate_limit is not None
        assert s.tiers is not None
        assert s.webhooks is not None
        assert s.logging is not None
        assert s.sentry is not None

    def test_development_by_default(self, with_mongo):
        with_mongo.delenv("ENV", raising=False)
        s = AppSettings()
        assert s.is_development
        assert not s.is_production

    def test_production_requires_secret_key(self, with_mongo):
        with_mongo.setenv("ENV", "production")
        with_mongo.delenv("SECRET_KEY", raising=False)
        with pytest.raises(PydanticValidationError):
            AppSettings()

    def test_production_with_secret_key(self, with_mongo):
        with_mongo.setenv("ENV", "production")
        with_mongo.setenv("SECRET_KEY", "pepper")
        s = AppSettings()
        assert s.is_production
        assert s.secret_key == "pepper"
