"""WebhookSender protocol - the delivery engine depends on this, not on httpx."""

from dataclasses import dataclass
from typing import Optional, Protocol


@dataclass(frozen=True)
class SendOutcome:
    """What came back from one POST. ``status_code`` is None when no response arrived."""

    status_code: Optional[int]
    body: Optional[str]
    error: Optional[str]
    duration_ms: int

    @property
    def success(self) -> bool:
        return self.status_code is not None and 200 <= self.status_code < 300


class WebhookSender(Protocol):
    async def send(self, url: str, body: bytes, headers: dict[str, str]) -> SendOutcome: ...
