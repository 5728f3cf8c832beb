"""Tests for submission retry and priority fee policies."""

import asyncio
from decimal import Decimal

import aiohttp
import pytest
from pool_routing.exceptions import ConfigurationError, SimulationFailed, SubmissionFailed
from pool_routing.retry import PriorityFeePolicy, RetryPolicy, is_transient


class TestIsTransient:
    @pytest.mark.parametrize(
        "error",
        [
            ConnectionError("reset"),
            TimeoutError("slow"),
            asyncio.TimeoutError(),
            aiohttp.ClientConnectionError("refused"),
            SubmissionFailed("blockhash expired"),
        ],
    )
    def test_transient(self, error):
        assert is_transient(error)

    @pytest.mark.parametrize(
        "error",
        [
            SubmissionFailed("invalid signature", transient=False),
            SimulationFailed("rejected"),
            ValueError("bug"),
        ],
    )
    def test_permanent(self, error):
        assert not is_transient(error)


class TestRetryPolicy:
    def test_exponential_delays_capped(self):
        policy = RetryPolicy()
        assert [policy.delay_for(n) for n in range(1, 6)] == [1.0, 2.0, 4.0, 8.0, 8.0]

    def test_attempt_bound(self):
        policy = RetryPolicy(max_attempts=3)
        assert policy.should_retry(1, 0.0)
        assert policy.should_retry(2, 1.0)
        assert not policy.should_retry(3, 3.0)

    def test_elapsed_bound(self):
        """No retry whose delay would run past the elapsed ceiling."""
        policy = RetryPolicy(max_elapsed=10.0)
        assert policy.should_retry(2, 7.0)
        assert not policy.should_retry(3, 7.0)

    @pytest.mark.parametrize(
        "kwargs",
        [
            {"max_attempts": 0},
            {"base_delay": -1},
            {"max_elapsed": 0},
            {"multiplier": 0.5},
        ],
    )
    def test_invalid_policy(self, kwargs):
        with pytest.raises(ConfigurationError):
            RetryPolicy(**kwargs)


class TestPriorityFeePolicy:
    def test_arbitrage_starts_higher(self):
        policy = PriorityFeePolicy(route_fee=Decimal("0.001"))
        assert policy.base_fee(True) > policy.base_fee(False)

    def test_escalation_and_ceiling(self):
        policy = PriorityFeePolicy()
        fees = [policy.fee_for(True, attempt) for attempt in range(1, 8)]
        assert fees[:3] == [Decimal("0.01"), Decimal("0.015"), Decimal("0.0225")]
        assert fees == sorted(fees)
        assert fees[-1] == Decimal("0.1")

    def test_zero_base_never_escalates(self):
        policy = PriorityFeePolicy()
        assert policy.fee_for(False, 1) == 0
        assert policy.fee_for(False, 4) == 0
