"""
Application configuration via pydantic-settings.

All settings are loaded from environment variables (and .env file).

SECRET_KEY doubles as the pepper for API key hashing, so rotating it
invalidates every issued key. It must be set outside development.
"""

from __future__ import annotations

from typing import Any, Optional

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class DatabaseSettings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    mongodb_uri: str
    db_name: str = "bems-gateway"


class RedisSettings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    # Optional - without Redis, burst counters live in MongoDB
    redis_uri: Optional[str] = None


class RateLimitSettings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    # "fail_open" allows requests while the counter store is down,
    # "fail_closed" rejects them with 503.
    rate_limit_degraded_mode: str = "fail_open"
    rate_limit_burst_window_seconds: int = 60
    rate_limit_use_redis_for_burst: bool = True


class TierSettings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    # JSON map of account id -> partial tier fields, e.g.
    # TIER_OVERRIDES='{"acct-1": {"name": "professional", "burst_allowance": 10}}'
    tier_overrides: dict[str, dict[str, Any]] = {}


class WebhookSettings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    webhook_timeout_seconds: float = 30.0
    webhook_retry_poll_interval_seconds: float = 5.0
    webhook_retry_batch_size: int = 50
    webhook_user_agent: str = "BEMS-Webhooks/1.0"
    webhook_source: str = "bems_platform"
    webhook_response_body_limit: int = 1000


class LoggingSettings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    log_level: str = "INFO"
    log_format: str = "console"  # "json" in production


class SentrySettings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    sentry_dsn: str = ""
    sentry_send_pii: bool = False
    sentry_traces_sample_rate: float = 0.1
    sentry_profile_sample_rate: float = 0.05


class AppSettings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    # Core
    secret_key: str = ""
    env: str = "development"
    app_name: str = "bems-gateway"

    cors_origins: list[str] = ["*"]

    # OpenAPI docs URL (None disables the docs UI in production)
    docs_url: Optional[str] = "/docs"

    # Sub-configs (composed via model_validator below)
    db: Optional[DatabaseSettings] = None
    redis: Optional[RedisSettings] = None
    rate_limit: Optional[RateLimitSettings] = None
    tiers: Optional[TierSettings] = None
    webhooks: Optional[WebhookSettings] = None
    logging: Optional[LoggingSettings] = None
    sentry: Optional[SentrySettings] = None

    @model_validator(mode="after")
    def _populate_sub_configs(self) -> "AppSettings":
        if self.db is None:
            self.db = DatabaseSettings()
        if self.redis is None:
            self.redis = RedisSettings()
        if self.rate_limit is None:
            self.rate_limit = RateLimitSettings()
        if self.tiers is None:
            self.tiers = TierSettings()
        if self.webhooks is None:
            self.webhooks = WebhookSettings()
        if self.logging is None:
            self.logging = LoggingSettings()
        if self.sentry is None:
            self.sentry = SentrySettings()

        if not self.secret_key and self.is_production:
            raise ValueError("SECRET_KEY must be set in production")

        return self

    @property
    def is_production(self) -> bool:
        return self.env == "production"

    @property
    def is_development(self) -> bool:
        return self.env == "development"
