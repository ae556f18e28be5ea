"""
Request DTOs for API key management endpoints.

CreateApiKeyRequest - POST /api/v1/keys
UpdateApiKeyRequest - PATCH /api/v1/keys/{key_id}

Scopes are not checked against a fixed list here: the credential store keeps
only the ones the account's tier grants.
"""

from __future__ import annotations

from typing import Optional, Union

from pydantic import BaseModel, ConfigDict, field_validator


def _clean_name(v: str) -> str:
    v = v.strip()
    if not v:
        raise ValueError("name is required")
    if len(v) > 100:
        raise ValueError("name must be at most 100 characters")
    return v


class CreateApiKeyRequest(BaseModel):
    """Request body for POST /api/v1/keys."""

    model_config = ConfigDict(populate_by_name=True)

    name: str
    scopes: list[str]
    # ISO 8601 string or Unix epoch seconds; null means no expiration
    expires_at: Optional[Union[str, int, float]] = None

    @field_validator("name", mode="after")
    @classmethod
    def _name_not_empty(cls, v: str) -> str:
        return _clean_name(v)

    @field_validator("scopes", mode="after")
    @classmethod
    def _scopes_not_empty(cls, v: list[str]) -> list[str]:
        if not v:
            raise ValueError("scopes must be a non-empty array")
        return v


class UpdateApiKeyRequest(BaseModel):
    """Request body for PATCH /api/v1/keys/{key_id}. Omitted fields are unchanged."""

    model_config = ConfigDict(populate_by_name=True)

    name: Optional[str] = None
    scopes: Optional[list[str]] = None
    expires_at: Optional[Union[str, int, float]] = None

    @field_validator("name", mode="after")
    @classmethod
    def _name_not_empty(cls, v: Optional[str]) -> Optional[str]:
        return _clean_name(v) if v is not None else None
