"""
Subscription tiers and per-account tier resolution.

The billing service is the source of truth for which tier an account is on;
this module only maps that tier name to its limits. Resolution never fails:
a lookup error or an unknown tier name resolves to ``free``.
"""

from __future__ import annotations

import dataclasses
from dataclasses import dataclass
from typing import Any, Mapping, Optional, Protocol

from repositories.filters import Eq
from repositories.store import DocumentStore
from shared.logging import get_logger

log = get_logger(__name__)

SCOPE_READ_DATA = "read:data"
SCOPE_READ_ANALYTICS = "read:analytics"
SCOPE_READ_EXPORTS = "read:exports"
SCOPE_WRITE_WEBHOOKS = "write:webhooks"

ALL_SCOPES = frozenset(
    {SCOPE_READ_DATA, SCOPE_READ_ANALYTICS, SCOPE_READ_EXPORTS, SCOPE_WRITE_WEBHOOKS}
)


@dataclass(frozen=True)
class Tier:
    name: str
    requests_per_hour: int
    burst_allowance: int
    max_api_keys: int
    max_webhooks: int
    allowed_scopes: frozenset[str]

    def filter_scopes(self, requested: list[str]) -> list[str]:
        """Keep the requested scopes this tier grants, in request order, deduplicated."""
        seen: list[str] = []
        for scope in requested:
            if scope in self.allowed_scopes and scope not in seen:
                seen.append(scope)
        return seen


FREE = Tier(
    name="free",
    requests_per_hour=100,
    burst_allowance=20,
    max_api_keys=0,
    max_webhooks=0,
    allowed_scopes=frozenset({SCOPE_READ_DATA}),
)

PROFESSIONAL = Tier(
    name="professional",
    requests_per_hour=10_000,
    burst_allowance=500,
    max_api_keys=10,
    max_webhooks=10,
    allowed_scopes=ALL_SCOPES,
)

ENTERPRISE = Tier(
    name="enterprise",
    requests_per_hour=50_000,
    burst_allowance=2_000,
    max_api_keys=50,
    max_webhooks=50,
    allowed_scopes=ALL_SCOPES,
)

TIERS: dict[str, Tier] = {t.name: t for t in (FREE, PROFESSIONAL, ENTERPRISE)}


def tier_by_name(name: Optional[str]) -> Tier:
    return TIERS.get((name or "").lower(), FREE)


class TierProvider(Protocol):
    async def get_tier(self, account_id: str) -> Optional[str]: ...


class SubscriptionTierProvider:
    """Reads the active subscription row written by the billing service."""

    def __init__(self, subscriptions: DocumentStore) -> None:
        self._subscriptions = subscriptions

    async def get_tier(self, account_id: str) -> Optional[str]:
        doc = await self._subscriptions.find_one(
            [Eq("user_id", account_id), Eq("status", "active")]
        )
        return doc.get("tier") if doc else None


class StaticTierProvider:
    """Fixed account -> tier map. Used by tests and local development."""

    def __init__(self, tiers: Optional[Mapping[str, str]] = None, default: str = "free"):
        self._tiers = dict(tiers or {})
        self._default = default

    def set(self, account_id: str, tier: str) -> None:
        self._tiers[account_id] = tier

    async def get_tier(self, account_id: str) -> Optional[str]:
        return self._tiers.get(account_id, self._default)


class TierResolver:
    """Turns an account id into a concrete Tier, applying overrides.

    Overrides are partial: ``{"burst_allowance": 10}`` keeps every other field
    of the resolved tier. A ``name`` key in an override switches the base tier.
    """

    def __init__(
        self,
        provider: TierProvider,
        overrides: Optional[Mapping[str, Mapping[str, Any]]] = None,
    ) -> None:
        self._provider = provider
        self._overrides: dict[str, dict[str, Any]] = {
            k: dict(v) for k, v in (overrides or {}).items()
        }

    def set_override(self, account_id: str, **fields: Any) -> None:
        self._overrides.setdefault(account_id, {}).update(fields)

    def clear_override(self, account_id: str) -> None:
        self._overrides.pop(account_id, None)

    async def resolve(self, account_id: str) -> Tier:
        override = self._overrides.get(account_id, {})
        if "name" in override:
            tier = tier_by_name(override["name"])
        else:
            try:
                tier = tier_by_name(await self._provider.get_tier(account_id))
            except Exception as e:
                # most restrictive tier whenever billing cannot answer
                log.warning(
                    "tier_lookup_failed",
                    account_id=account_id,
                    error=str(e),
                    error_type=type(e).__name__,
                )
                tier = FREE

        changes = {k: v for k, v in override.items() if k != "name"}
        if "allowed_scopes" in changes:
            changes["allowed_scopes"] = frozenset(changes["allowed_scopes"])
        return dataclasses.replace(tier, **changes) if changes else tier
