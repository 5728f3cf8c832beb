"""
Exception hierarchy for the pool routing system.

Every error carries a ``details`` dictionary with the violated constraint and
the required vs. available values so callers can display a failure without
inspecting internals.
"""

from decimal import Decimal
from typing import Any, Dict, Optional


class RoutingError(Exception):
    """Base exception for all routing and arbitrage related errors."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.details = details or {}


class ConfigurationError(RoutingError):
    """Raised when there are configuration-related issues."""

    pass


class ValidationError(RoutingError):
    """Raised when a query or a data record fails validation."""

    pass


class NoRouteFound(RoutingError):
    """Raised when the search is exhausted and no path satisfies the constraints."""

    def __init__(
        self,
        message: str,
        from_token: Optional[str] = None,
        to_token: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message, details)
        self.from_token = from_token
        self.to_token = to_token


class InsufficientLiquidity(RoutingError):
    """Raised when a pool's depth cannot support the requested amount."""

    def __init__(
        self,
        message: str,
        pool_address: Optional[str] = None,
        required: Optional[Decimal] = None,
        available: Optional[Decimal] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message, details)
        self.pool_address = pool_address
        self.required = required
        self.available = available


class PriceImpactExceeded(RoutingError):
    """Raised when the computed price impact is over the caller's bound."""

    def __init__(
        self,
        message: str,
        impact: Optional[Decimal] = None,
        max_allowed: Optional[Decimal] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message, details)
        self.impact = impact
        self.max_allowed = max_allowed


class RouteInvalidated(RoutingError):
    """Raised when a previously computed route no longer holds."""

    def __init__(
        self,
        message: str,
        route_id: Optional[str] = None,
        reason: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message, details)
        self.route_id = route_id
        self.reason = reason


class StaleOpportunity(RouteInvalidated):
    """Raised when an arbitrage cycle no longer clears its profit threshold."""

    pass


class SimulationFailed(RoutingError):
    """Raised when the pre-flight simulation rejects a transaction."""

    def __init__(
        self,
        message: str,
        route_id: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message, details)
        self.route_id = route_id


class SubmissionFailed(RoutingError):
    """Raised when on-chain submission fails.

    ``transient`` marks errors worth retrying (network hiccups, blockhash
    expiry); permanent errors such as an invalid signature or insufficient
    balance set it to False.
    """

    def __init__(
        self,
        message: str,
        transient: bool = True,
        attempts: int = 0,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message, details)
        self.transient = transient
        self.attempts = attempts


class DataUnavailable(RoutingError):
    """Raised when the market data provider is unreachable."""

    def __init__(
        self,
        message: str,
        source: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message, details)
        self.source = source
