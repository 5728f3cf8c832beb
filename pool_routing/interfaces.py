"""
Interfaces to external collaborators and injectable system dependencies.

The routing core only talks to the outside world through these protocols:
market data comes in through a ``MarketDataProvider``, transactions go out
through a ``TransactionSubmitter`` and are signed by a caller-owned
``Signer``. Time is injected through a ``TimeProvider`` so retry backoff and
cache expiry are deterministic under test.
"""

import asyncio
import time
from decimal import Decimal
from typing import Any, List, Protocol, Sequence, runtime_checkable

from .types import Confirmation, Pool


@runtime_checkable
class MarketDataProvider(Protocol):
    """Source of already-parsed pool and price facts."""

    async def list_pools(self) -> Sequence[Pool]:
        """Return every pool currently known to the venue."""
        ...

    async def get_pool(self, address: str) -> Pool:
        """Return the latest state of a single pool."""
        ...

    async def get_token_price_usd(self, token: str) -> Decimal:
        """Return the USD price of a token."""
        ...


@runtime_checkable
class TransactionSubmitter(Protocol):
    """Chain-specific transaction building, simulation and submission."""

    async def build(self, payer: str, payload: Any) -> Any:
        """Build an unsigned transaction."""
        ...

    async def build_priority(self, payer: str, payload: Any, priority_fee: Decimal) -> Any:
        """Build an unsigned transaction carrying a priority fee."""
        ...

    async def simulate(self, transaction: Any) -> bool:
        """Dry-run the transaction against current chain state."""
        ...

    async def submit(self, transaction: Any) -> Confirmation:
        """Broadcast and wait for confirmation."""
        ...


@runtime_checkable
class Signer(Protocol):
    """Key material owned by the caller of the executor."""

    address: str

    def sign(self, transaction: Any) -> Any:
        """Return the signed transaction."""
        ...


@runtime_checkable
class TimeProvider(Protocol):
    """Protocol for time-related operations."""

    def current_timestamp(self) -> float:
        """Get current Unix timestamp."""
        ...

    async def sleep(self, duration: float) -> None:
        """Suspend for the specified duration in seconds."""
        ...


class SystemTimeProvider:
    """Production time provider using system time."""

    def current_timestamp(self) -> float:
        return time.time()

    async def sleep(self, duration: float) -> None:
        await asyncio.sleep(duration)


class DeterministicTimeProvider:
    """Deterministic time provider for tests.

    ``sleep`` advances the clock instead of suspending and records every
    requested delay in ``sleeps``.
    """

    def __init__(self, start_time: float = 1640995200.0):  # 2022-01-01
        self._current_time = start_time
        self.sleeps: List[float] = []

    def current_timestamp(self) -> float:
        return self._current_time

    async def sleep(self, duration: float) -> None:
        self.sleeps.append(duration)
        self._current_time += duration

    def advance_time(self, seconds: float) -> None:
        """Manually advance time by specified seconds."""
        self._current_time += seconds

    def set_time(self, timestamp: float) -> None:
        """Set current time to specific timestamp."""
        self._current_time = timestamp


_default_time_provider: TimeProvider = SystemTimeProvider()


def get_time_provider() -> TimeProvider:
    """Get the current time provider instance."""
    return _default_time_provider


def set_time_provider(provider: TimeProvider) -> None:
    """Set the global time provider (mainly for testing)."""
    global _default_time_provider
    _default_time_provider = provider
