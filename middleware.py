"""
Request middleware.

For every request:
- a request id is generated, bound to the structlog context and echoed
  as ``X-Request-ID``
- an exception escaping the handler becomes the ``internal_error`` envelope
  here, so the steps below still run for it
- the request is logged on completion with its duration (level by status)

For requests that passed the access gate (api/gate.py leaves the credential
and its rate-limit headers on ``request.state``):
- ``X-RateLimit-*`` headers are copied onto the response, whatever the
  handler returned
- one usage row is recorded fire-and-forget after the response is built
"""

from __future__ import annotations

import time

import sentry_sdk
import structlog
from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint

from errors import internal_error_response
from shared.generators import generate_request_id
from shared.ip_utils import get_client_ip
from shared.logging import get_logger

log = get_logger("bems.request")


class RequestContextMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        started = time.perf_counter()
        request_id = generate_request_id()
        request.state.request_id = request_id
        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(request_id=request_id)

        try:
            response = await call_next(request)
        except Exception as e:
            sentry_sdk.capture_exception(e)
            log.exception(
                "unhandled_exception",
                request_id=request_id,
                path=request.url.path,
                error=str(e),
                error_type=type(e).__name__,
            )
            response = internal_error_response(request_id)
        duration_ms = int((time.perf_counter() - started) * 1000)

        response.headers["X-Request-ID"] = request_id
        for name, value in getattr(request.state, "rate_limit_headers", {}).items():
            response.headers.setdefault(name, value)

        credential = getattr(request.state, "credential", None)
        if credential is not None:
            request.app.state.services.usage.record(
                credential_id=credential.str_id,
                user_id=credential.user_id,
                endpoint=getattr(request.state, "gated_endpoint", request.url.path),
                method=request.method,
                response_status=response.status_code,
                response_time_ms=duration_ms,
                ip_address=get_client_ip(request),
                user_agent=(request.headers.get("User-Agent") or "")[:255] or None,
            )

        if response.status_code >= 500:
            log_fn = log.error
        elif response.status_code >= 400:
            log_fn = log.warning
        else:
            log_fn = log.info
        log_fn(
            "request_completed",
            request_id=request_id,
            method=request.method,
            path=request.url.path,
            status_code=response.status_code,
            duration_ms=duration_ms,
            key_prefix=credential.key_prefix if credential is not None else None,
        )
        return response
