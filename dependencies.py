"""
FastAPI dependency providers.

All injectable dependencies are defined here as plain functions used with
FastAPI's Depends() system. Everything they return was built once in the
app lifespan and lives on app.state.
"""

from __future__ import annotations

from fastapi import Header, Request

from errors import AuthenticationError
from services.container import Services


def get_services(request: Request) -> Services:
    """Return the component container stored on app.state."""
    return request.app.state.services


async def get_db(request: Request):
    """Return the async MongoDB database from app.state."""
    return request.app.state.db


async def get_redis(request: Request):
    """Return the async Redis client from app.state (may be None if not configured)."""
    return request.app.state.redis


async def get_account_id(
    x_account_id: str | None = Header(default=None, alias="X-Account-Id"),
) -> str:
    """Account id asserted by the upstream session layer for dashboard calls."""
    if not x_account_id or not x_account_id.strip():
        raise AuthenticationError(
            "Account session required.",
            suggestions=["Sign in to the dashboard to manage API keys"],
        )
    return x_account_id.strip()
