"""HTTP implementation of WebhookSender.

Posts the pre-serialised, pre-signed body as-is so the bytes the receiver
sees are exactly the bytes that were signed. Timeouts and transport errors
become a failed SendOutcome rather than an exception.
"""

import time

import httpx

from infrastructure.http_client import HttpClient
from infrastructure.webhook.protocol import SendOutcome
from shared.logging import get_logger

log = get_logger(__name__)


class HttpWebhookSender:
    def __init__(self, http_client: HttpClient, response_body_limit: int = 1000) -> None:
        self._http = http_client
        self._body_limit = response_body_limit

    async def send(self, url: str, body: bytes, headers: dict[str, str]) -> SendOutcome:
        started = time.perf_counter()
        try:
            response = await self._http.post(url, content=body, headers=headers)
        except httpx.TimeoutException as e:
            return SendOutcome(
                status_code=None,
                body=None,
                error=f"Request timed out: {e}" if str(e) else "Request timed out",
                duration_ms=self._elapsed(started),
            )
        except httpx.HTTPError as e:
            log.warning(
                "webhook_transport_error",
                url=url,
                error=str(e),
                error_type=type(e).__name__,
            )
            return SendOutcome(
                status_code=None,
                body=None,
                error=str(e) or type(e).__name__,
                duration_ms=self._elapsed(started),
            )

        text = response.text[: self._body_limit]
        ok = 200 <= response.status_code < 300
        return SendOutcome(
            status_code=response.status_code,
            body=text,
            error=None if ok else f"HTTP {response.status_code}: {response.reason_phrase}",
            duration_ms=self._elapsed(started),
        )

    @staticmethod
    def _elapsed(started: float) -> int:
        return int((time.perf_counter() - started) * 1000)
