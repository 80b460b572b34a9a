from __future__ import annotations

import pytest

from bustracker.services.client import BusTrackerClient
from bustracker.settings import Settings
from tests._helpers import FakeClock, FakeUpstream


@pytest.fixture
def settings() -> Settings:
    return Settings(
        api_key="test-key",
        base_url="https://bus.test/bustime/api/v3",
        feed="ctabus",
        output_format="json",
        timeout=1.0,
        max_retries=2,
        retry_backoff=0.0,
        source_timezone="America/Chicago",
        debug=True,
    )


@pytest.fixture
def upstream() -> FakeUpstream:
    return FakeUpstream()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def client(settings, upstream, clock) -> BusTrackerClient:
    """Fresh client per test, wired to the fake upstream and clock."""
    return BusTrackerClient(
        settings=settings,
        http_client=upstream.http_client(),
        clock=clock,
    )
