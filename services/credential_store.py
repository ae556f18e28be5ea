"""
API key lifecycle: issue, validate, rotate, revoke.

Plaintext keys exist only in the return value of issue()/rotate(). What is
stored is HMAC-SHA-256(pepper, key) plus an 11-character display prefix.

validate() is fail-closed: a storage error propagates as
StorageUnavailableError instead of admitting the caller.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Optional

from errors import (
    ForbiddenError,
    InvalidExpiryError,
    NotFoundError,
    QuotaExceededError,
    TierForbiddenError,
)
from repositories.credentials import CredentialRepository
from schemas.models.base import to_object_id
from schemas.models.credential import CredentialDoc
from services.audit import AuditLogger
from services.tiers import Tier, TierResolver
from shared.crypto import hash_api_key
from shared.datetime_utils import Clock, ensure_utc, utcnow
from shared.generators import api_key_display_prefix, generate_api_key
from shared.logging import get_logger

log = get_logger(__name__)

_UNSET: Any = object()


@dataclass(frozen=True)
class IssuedCredential:
    credential: CredentialDoc
    secret: str


class CredentialStore:
    def __init__(
        self,
        repo: CredentialRepository,
        tiers: TierResolver,
        audit: AuditLogger,
        pepper: str,
        clock: Clock = utcnow,
    ) -> None:
        self._repo = repo
        self._tiers = tiers
        self._audit = audit
        self._pepper = pepper
        self._clock = clock

    def _hash(self, secret: str) -> str:
        return hash_api_key(secret, self._pepper)

    def _check_expiry(self, expires_at: Optional[datetime], now: datetime) -> Optional[datetime]:
        if expires_at is None:
            return None
        expires_at = ensure_utc(expires_at)
        if expires_at <= now:
            raise InvalidExpiryError(
                "expires_at must be in the future", field="expires_at"
            )
        return expires_at

    async def _owned(self, account_id: str, credential_id: str) -> CredentialDoc:
        oid = to_object_id(credential_id)
        doc = await self._repo.get_by_id(oid) if oid is not None else None
        if doc is None:
            raise NotFoundError("API key not found")
        if doc.user_id != account_id:
            raise ForbiddenError("You do not have access to this API key")
        return doc

    # ── Issue ───────────────────────────────────────────────────────────────

    async def issue(
        self,
        account_id: str,
        name: str,
        requested_scopes: list[str],
        expires_at: Optional[datetime] = None,
    ) -> IssuedCredential:
        tier = await self._tiers.resolve(account_id)
        if tier.max_api_keys <= 0:
            raise TierForbiddenError(
                f"API keys are not available on the {tier.name} plan",
                details={"tier": tier.name},
            )

        active = await self._repo.count_active(account_id)
        if active >= tier.max_api_keys:
            raise QuotaExceededError(
                f"Maximum of {tier.max_api_keys} active API keys reached",
                details={"tier": tier.name, "limit": tier.max_api_keys, "active": active},
            )

        now = self._clock()
        expires_at = self._check_expiry(expires_at, now)
        secret = generate_api_key()
        doc = CredentialDoc(
            user_id=account_id,
            name=name.strip(),
            key_hash=self._hash(secret),
            key_prefix=api_key_display_prefix(secret),
            scopes=tier.filter_scopes(requested_scopes),
            rate_limit_tier=tier.name,
            created_at=now,
            expires_at=expires_at,
        )
        doc = await self._repo.insert(doc)

        log.info(
            "api_key_created",
            user_id=account_id,
            key_id=doc.str_id,
            key_prefix=doc.key_prefix,
            scopes=doc.scopes,
            tier=tier.name,
        )
        self._audit.record(
            account_id,
            "api_key.created",
            "api_key",
            doc.str_id,
            {"name": doc.name, "scopes": doc.scopes},
        )
        return IssuedCredential(credential=doc, secret=secret)

    # ── Validate ────────────────────────────────────────────────────────────

    async def validate(self, secret: str) -> Optional[CredentialDoc]:
        key_hash = self._hash(secret)
        doc = await self._repo.get_by_hash(key_hash)
        if doc is None or not doc.is_active:
            return None

        now = self._clock()
        if doc.is_expired(now):
            await self._repo.deactivate(doc.id)
            log.info("api_key_expired", key_id=doc.str_id, user_id=doc.user_id)
            return None

        return await self._repo.mark_used(doc.id, key_hash, now)

    # ── Rotate / revoke ─────────────────────────────────────────────────────

    async def rotate(self, account_id: str, credential_id: str) -> IssuedCredential:
        doc = await self._owned(account_id, credential_id)
        if not doc.is_active:
            raise NotFoundError("API key has been revoked")

        secret = generate_api_key()
        updated = await self._repo.update(
            doc.id,
            {
                "key_hash": self._hash(secret),
                "key_prefix": api_key_display_prefix(secret),
                "rotated_at": self._clock(),
                "last_used_at": None,
            },
            user_id=account_id,
        )
        if updated is None:
            raise NotFoundError("API key not found")

        log.info(
            "api_key_rotated",
            user_id=account_id,
            key_id=updated.str_id,
            key_prefix=updated.key_prefix,
        )
        self._audit.record(account_id, "api_key.rotated", "api_key", updated.str_id)
        return IssuedCredential(credential=updated, secret=secret)

    async def revoke(self, account_id: str, credential_id: str) -> None:
        doc = await self._owned(account_id, credential_id)
        if not doc.is_active:
            return
        await self._repo.deactivate(doc.id)
        log.info("api_key_revoked", user_id=account_id, key_id=doc.str_id)
        self._audit.record(account_id, "api_key.revoked", "api_key", doc.str_id)

    # ── Read / update ───────────────────────────────────────────────────────

    async def list_for_account(self, account_id: str) -> list[CredentialDoc]:
        return await self._repo.list_by_user(account_id)

    async def get(self, account_id: str, credential_id: str) -> CredentialDoc:
        return await self._owned(account_id, credential_id)

    async def update(
        self,
        account_id: str,
        credential_id: str,
        *,
        name: Optional[str] = None,
        scopes: Optional[list[str]] = None,
        expires_at: Optional[datetime] = _UNSET,
    ) -> CredentialDoc:
        """Patch name, scopes or expiry. ``expires_at=None`` clears the expiry."""
        doc = await self._owned(account_id, credential_id)
        fields: dict[str, Any] = {}
        if name is not None:
            fields["name"] = name.strip()
        if scopes is not None:
            tier: Tier = await self._tiers.resolve(account_id)
            fields["scopes"] = tier.filter_scopes(scopes)
        if expires_at is not _UNSET:
            fields["expires_at"] = self._check_expiry(expires_at, self._clock())
        if not fields:
            return doc

        updated = await self._repo.update(doc.id, fields, user_id=account_id)
        if updated is None:
            raise NotFoundError("API key not found")
        self._audit.record(
            account_id,
            "api_key.updated",
            "api_key",
            updated.str_id,
            {"fields": sorted(fields)},
        )
        return updated

