"""Unit tests for workers/webhook_retry_worker.py."""

import asyncio
from unittest.mock import AsyncMock, MagicMock

from errors import StorageUnavailableError
from services.webhook_delivery import RETRY_DELAYS
from tests.fakes import RecordingSender, make_harness
from workers.webhook_retry_worker import poll_retries


def _engine(side_effect):
    engine = MagicMock()
    engine.process_due_retries = AsyncMock(side_effect=side_effect)
    return engine


class TestPollRetries:
    async def test_full_batch_polls_again_immediately(self):
        stop = asyncio.Event()
        calls = []

        async def process(limit):
            calls.append(limit)
            if len(calls) == 3:
                stop.set()
            return limit if len(calls) < 3 else 0

        await poll_retries(_engine(process), stop, interval=60, batch_size=2)
        assert calls == [2, 2, 2]

    async def test_storage_error_does_not_stop_worker(self):
        stop = asyncio.Event()
        calls = []

        async def process(limit):
            calls.append(limit)
            if len(calls) == 1:
                raise StorageUnavailableError("down")
            stop.set()
            return 0

        await poll_retries(_engine(process), stop, interval=0.01, batch_size=5)
        assert len(calls) == 2

    async def test_stops_when_event_already_set(self):
        stop = asyncio.Event()
        stop.set()
        engine = _engine(lambda limit: 0)
        await poll_retries(engine, stop, interval=60)
        engine.process_due_retries.assert_not_called()

    async def test_drives_real_engine(self, clock):
        harness = make_harness(
            clock=clock,
            tiers={"acct-pro": "professional"},
            sender=RecordingSender([500, 200]),
        )
        engine = harness.services.webhooks
        await engine.register("acct-pro", "https://hooks.example.com", ["data.updated"])
        await engine.trigger("data.updated", {})
        clock.advance(RETRY_DELAYS[0])

        stop = asyncio.Event()
        original = engine.process_due_retries

        async def once(limit):
            processed = await original(limit=limit)
            stop.set()
            return processed

        engine.process_due_retries = once
        await poll_retries(engine, stop, interval=0.01, batch_size=10)

        assert len(harness.sender.requests) == 2
        assert harness.sender.requests[1]["headers"]["X-Webhook-Attempt"] == "2"
