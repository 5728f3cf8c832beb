"""Tests for collaborator protocols and time providers."""

import time

import pytest
from conftest import FakeMarketDataProvider, FakeSigner, FakeSubmitter
from pool_routing.cache import ResultCache
from pool_routing.interfaces import (
    DeterministicTimeProvider,
    MarketDataProvider,
    Signer,
    SystemTimeProvider,
    TimeProvider,
    TransactionSubmitter,
    get_time_provider,
    set_time_provider,
)


def test_system_time_provider():
    provider = SystemTimeProvider()
    ts1 = provider.current_timestamp()
    time.sleep(0.01)
    ts2 = provider.current_timestamp()
    assert ts2 > ts1


@pytest.mark.asyncio
async def test_system_time_provider_sleep():
    provider = SystemTimeProvider()
    start = provider.current_timestamp()
    await provider.sleep(0.01)
    assert provider.current_timestamp() >= start + 0.01


@pytest.mark.asyncio
async def test_deterministic_time_provider():
    """Sleeping advances the clock and is recorded instead of waiting."""
    provider = DeterministicTimeProvider(start_time=1000.0)
    assert provider.current_timestamp() == 1000.0

    await provider.sleep(2.5)
    assert provider.current_timestamp() == 1002.5
    assert provider.sleeps == [2.5]

    provider.advance_time(10)
    assert provider.current_timestamp() == 1012.5

    provider.set_time(50.0)
    assert provider.current_timestamp() == 50.0


def test_global_time_provider():
    original = get_time_provider()
    try:
        fixed = DeterministicTimeProvider(start_time=42.0)
        set_time_provider(fixed)
        assert get_time_provider() is fixed
        assert get_time_provider().current_timestamp() == 42.0
        assert ResultCache().time_provider is fixed
    finally:
        set_time_provider(original)


def test_protocol_conformance():
    """The test doubles satisfy the runtime-checkable protocols."""
    assert isinstance(SystemTimeProvider(), TimeProvider)
    assert isinstance(DeterministicTimeProvider(), TimeProvider)
    assert isinstance(FakeMarketDataProvider([]), MarketDataProvider)
    assert isinstance(FakeSubmitter(), TransactionSubmitter)
    assert isinstance(FakeSigner(), Signer)
