"""
Per-request access decision: credential → scopes → rate limit.

The gate is stateless and framework-agnostic; api/gate.py binds it to
FastAPI. Each step raises the typed error for the first failed check, in
this order:

1. credential present (Authorization: Bearer first, then X-API-Key)
2. credential well-formed (no storage access for malformed keys)
3. credential valid (CredentialStore.validate)
4. scopes granted (all-of or any-of)
5. rate limit not exceeded
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Mapping, Optional, Sequence

from errors import (
    InsufficientScopeError,
    InvalidCredentialError,
    InvalidCredentialFormatError,
    MissingCredentialError,
    RateLimitExceededError,
)
from schemas.models.credential import CredentialDoc
from services.credential_store import CredentialStore
from services.rate_limiter import RateLimiter, RateLimitResult
from shared.logging import get_logger
from shared.validators import validate_api_key_format

log = get_logger(__name__)

BEARER_PREFIX = "bearer "


class ScopeMode(str, Enum):
    ALL = "all"
    ANY = "any"


@dataclass(frozen=True)
class AccessGrant:
    credential: CredentialDoc
    rate_limit: RateLimitResult
    headers: dict[str, str]


def _header(headers: Mapping[str, str], name: str) -> Optional[str]:
    value = headers.get(name)
    if value is None:
        lowered = name.lower()
        value = next((v for k, v in headers.items() if k.lower() == lowered), None)
    return value


def extract_credential(headers: Mapping[str, str]) -> str:
    auth = (_header(headers, "Authorization") or "").strip()
    if auth.lower().startswith(BEARER_PREFIX):
        token = auth[len(BEARER_PREFIX):].strip()
        if token:
            return token

    api_key = (_header(headers, "X-API-Key") or "").strip()
    if api_key:
        return api_key

    raise MissingCredentialError()


def check_scopes(
    granted: Sequence[str], required: Sequence[str], mode: ScopeMode = ScopeMode.ALL
) -> bool:
    if not required:
        return True
    have = set(granted)
    if mode is ScopeMode.ANY:
        return any(scope in have for scope in required)
    return all(scope in have for scope in required)


class AccessGate:
    def __init__(self, credentials: CredentialStore, limiter: RateLimiter) -> None:
        self._credentials = credentials
        self._limiter = limiter

    async def authorize(
        self,
        headers: Mapping[str, str],
        endpoint: str,
        required_scopes: Sequence[str] = (),
        mode: ScopeMode = ScopeMode.ALL,
    ) -> AccessGrant:
        secret = extract_credential(headers)

        if not validate_api_key_format(secret):
            raise InvalidCredentialFormatError("Invalid API key format.")

        credential = await self._credentials.validate(secret)
        if credential is None:
            raise InvalidCredentialError("Invalid or expired API key.")

        if not check_scopes(credential.scopes, required_scopes, mode):
            missing = [s for s in required_scopes if s not in credential.scopes]
            log.info(
                "api_key_scope_denied",
                key_id=credential.str_id,
                required=list(required_scopes),
                mode=mode.value,
            )
            raise InsufficientScopeError(
                "API key does not have the required permissions.",
                details={
                    "required_scopes": list(required_scopes),
                    "mode": mode.value,
                    "granted_scopes": credential.scopes,
                    "missing_scopes": missing,
                },
            )

        result = await self._limiter.check(credential, endpoint)
        headers_out = self._limiter.headers(result)
        if not result.allowed:
            raise RateLimitExceededError(
                "Rate limit exceeded.",
                details={
                    "limit": result.limit,
                    "remaining": result.remaining,
                    "reset_at": result.reset_at.isoformat(),
                    "retry_after": result.retry_after,
                },
                headers=headers_out,
            )

        return AccessGrant(credential=credential, rate_limit=result, headers=headers_out)
