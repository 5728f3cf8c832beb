"""
Retry and priority-fee policies for transaction submission.
"""

import asyncio
from dataclasses import dataclass
from decimal import Decimal

import aiohttp

from .exceptions import ConfigurationError, SubmissionFailed

# Errors raised by RPC transports that are worth another attempt
TRANSIENT_ERRORS = (ConnectionError, TimeoutError, asyncio.TimeoutError, aiohttp.ClientError)


def is_transient(error: BaseException) -> bool:
    """Whether a submission error should be retried."""
    if isinstance(error, SubmissionFailed):
        return error.transient
    return isinstance(error, TRANSIENT_ERRORS)


@dataclass(frozen=True)
class RetryPolicy:
    """
    Bounded exponential backoff.

    Attempt ``n`` (1-based) that fails transiently is followed by a delay of
    ``base_delay * multiplier ** (n - 1)`` seconds, capped at ``max_delay``.
    No new attempt starts once ``max_elapsed`` seconds have passed since the
    first one, or after ``max_attempts`` attempts.
    """

    max_attempts: int = 5
    base_delay: float = 1.0
    multiplier: float = 2.0
    max_delay: float = 8.0
    max_elapsed: float = 30.0

    def __post_init__(self):
        if self.max_attempts < 1:
            raise ConfigurationError("max_attempts must be at least 1")
        if self.base_delay < 0 or self.max_delay < 0 or self.max_elapsed <= 0:
            raise ConfigurationError("delays must be non-negative and max_elapsed positive")
        if self.multiplier < 1:
            raise ConfigurationError("multiplier must be at least 1")

    def delay_for(self, attempt: int) -> float:
        return min(self.max_delay, self.base_delay * self.multiplier ** (attempt - 1))

    def should_retry(self, attempt: int, elapsed: float) -> bool:
        """Whether another attempt may follow failed attempt ``attempt``."""
        if attempt >= self.max_attempts:
            return False
        return elapsed + self.delay_for(attempt) < self.max_elapsed


@dataclass(frozen=True)
class PriorityFeePolicy:
    """
    Priority fees per execution kind, escalated on every retry.

    Arbitrage is time sensitive and starts above ordinary routes. A base fee
    of zero is never escalated.
    """

    route_fee: Decimal = Decimal("0")
    arbitrage_fee: Decimal = Decimal("0.01")
    multiplier: Decimal = Decimal("1.5")
    ceiling: Decimal = Decimal("0.1")

    def base_fee(self, arbitrage: bool) -> Decimal:
        return self.arbitrage_fee if arbitrage else self.route_fee

    def fee_for(self, arbitrage: bool, attempt: int) -> Decimal:
        base = self.base_fee(arbitrage)
        if base <= 0:
            return Decimal("0")
        return min(self.ceiling, base * self.multiplier ** (attempt - 1))
