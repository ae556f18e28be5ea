"""Shared fixtures: a controllable clock and a fully wired in-memory harness."""

import pytest

from tests.fakes import FakeClock, Harness, make_harness


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def harness(clock) -> Harness:
    """Components over in-memory stores. ``acct-pro`` is professional, everyone else free."""
    return make_harness(clock=clock, tiers={"acct-pro": "professional"})
