"""
Core data types for pool routing and arbitrage detection.

Money-like fields (amounts, liquidity, fees, profits) are ``Decimal``;
floats only appear in heuristic scores.
"""

import time
import uuid
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Optional, Tuple, Union

from .exceptions import ValidationError
from .utils import shorten_address, to_decimal

ONE = Decimal(1)
ZERO = Decimal(0)
HUNDRED = Decimal(100)

# Compute units for one transaction and for each pool swap inside it
BASE_EXECUTION_UNITS = 20000
EXECUTION_UNITS_PER_SWAP = 50000
DEFAULT_UNIT_PRICE = Decimal("0.000005")
MAX_EXECUTION_COMPLEXITY = 10


def new_result_id() -> str:
    """Identifier for a computed route or cycle."""
    return uuid.uuid4().hex


def estimate_execution_cost(swaps: int, unit_price: Decimal = DEFAULT_UNIT_PRICE) -> Decimal:
    """Native-token cost of one transaction carrying ``swaps`` pool swaps."""
    units = BASE_EXECUTION_UNITS + swaps * EXECUTION_UNITS_PER_SWAP
    return Decimal(units) * unit_price


def execution_complexity(hops) -> int:
    """
    Hop count plus one for every hop whose input token has fewer than six
    decimals, capped at ``MAX_EXECUTION_COMPLEXITY``.
    """
    complexity = len(hops) + sum(1 for hop in hops if hop.token_in.decimals < 6)
    return min(complexity, MAX_EXECUTION_COMPLEXITY)


@dataclass(frozen=True)
class Token:
    """
    A fungible asset known to the graph.

    Attributes:
        address: Fixed-width account address on the source chain
        symbol: Human-readable symbol for display
        decimals: Number of decimals used by the mint
    """

    address: str
    symbol: str = ""
    decimals: int = 0

    def __post_init__(self):
        if not self.address:
            raise ValidationError("Token address must not be empty")

    @property
    def label(self) -> str:
        return self.symbol or shorten_address(self.address)


@dataclass(frozen=True)
class Pool:
    """
    One liquidity venue between exactly two tokens.

    Attributes:
        address: Unique pool address
        token_a: First token of the pair
        token_b: Second token of the pair
        liquidity: TVL in the valuation currency (USD)
        fee_rate: Fee as decimal (e.g., 0.003 for 30 bps)
        price: Pre-fee rate, 1 token_a buys ``price`` token_b
        bin_step: Bin price step in bps for concentrated-liquidity venues
        volume_24h: Trailing 24h volume in USD
        updated_at: Unix timestamp of the provider's last observation
    """

    address: str
    token_a: Token
    token_b: Token
    liquidity: Decimal
    fee_rate: Decimal
    price: Decimal = ONE
    bin_step: Optional[int] = None
    volume_24h: Decimal = ZERO
    updated_at: Optional[float] = None

    def __post_init__(self):
        # Coerce numeric facts so callers can pass ints or strings
        for name in ("liquidity", "fee_rate", "price", "volume_24h"):
            object.__setattr__(self, name, to_decimal(getattr(self, name), name))

        if not self.address:
            raise ValidationError("Pool address must not be empty")
        if self.token_a.address == self.token_b.address:
            raise ValidationError(
                f"Pool {self.address} references the same token twice",
                {"pool": self.address, "token": self.token_a.address},
            )
        if self.liquidity <= 0:
            raise ValidationError(
                f"Pool {self.address} liquidity must be positive: {self.liquidity}",
                {"pool": self.address, "liquidity": str(self.liquidity)},
            )
        if self.fee_rate < 0 or self.fee_rate >= 1:
            raise ValidationError(
                f"Pool {self.address} fee must be in [0, 1): {self.fee_rate}",
                {"pool": self.address, "fee_rate": str(self.fee_rate)},
            )
        if self.price <= 0:
            raise ValidationError(
                f"Pool {self.address} price must be positive: {self.price}",
                {"pool": self.address, "price": str(self.price)},
            )

    @property
    def pair(self) -> Tuple[str, str]:
        return self.token_a.address, self.token_b.address

    def other_token(self, address: str) -> Token:
        """Return the token on the opposite side of ``address``."""
        if address == self.token_a.address:
            return self.token_b
        if address == self.token_b.address:
            return self.token_a
        raise ValidationError(
            f"Token {address} is not traded in pool {self.address}",
            {"pool": self.address, "token": address},
        )

    def rate(self, token_in: str) -> Decimal:
        """Pre-fee exchange rate when entering the pool with ``token_in``."""
        if token_in == self.token_a.address:
            return self.price
        if token_in == self.token_b.address:
            return ONE / self.price
        raise ValidationError(
            f"Token {token_in} is not traded in pool {self.address}",
            {"pool": self.address, "token": token_in},
        )


@dataclass(frozen=True)
class RouteHop:
    """One traversal through a single pool within a route."""

    pool: Pool
    token_in: Token
    token_out: Token
    amount_in: Decimal
    amount_out: Decimal
    fee_paid: Decimal
    price_impact: Decimal


@dataclass(frozen=True)
class Route:
    """
    Ordered sequence of hops.

    Construction enforces the chain invariants: each hop's output token is
    the next hop's input token and the amount handed from one hop to the
    next is carried over unchanged.
    """

    hops: Tuple[RouteHop, ...]
    max_slippage: Optional[Decimal] = None
    route_id: str = field(default_factory=new_result_id)
    created_at: float = field(default_factory=time.time)

    def __post_init__(self):
        object.__setattr__(self, "hops", tuple(self.hops))
        if not self.hops:
            raise ValidationError("A route needs at least one hop")

        for index, (current, following) in enumerate(zip(self.hops, self.hops[1:])):
            if current.token_out.address != following.token_in.address:
                raise ValidationError(
                    f"Hop {index} outputs {current.token_out.label} but hop "
                    f"{index + 1} consumes {following.token_in.label}",
                    {"hop": index},
                )
            if current.amount_out != following.amount_in:
                raise ValidationError(
                    f"Hop {index + 1} input {following.amount_in} does not match "
                    f"hop {index} output {current.amount_out}",
                    {"hop": index + 1},
                )

    is_split = False

    @property
    def token_in(self) -> Token:
        return self.hops[0].token_in

    @property
    def token_out(self) -> Token:
        return self.hops[-1].token_out

    @property
    def amount_in(self) -> Decimal:
        return self.hops[0].amount_in

    @property
    def amount_out(self) -> Decimal:
        return self.hops[-1].amount_out

    @property
    def price_impact(self) -> Decimal:
        """Cumulative price impact across all hops."""
        return sum((hop.price_impact for hop in self.hops), ZERO)

    @property
    def hop_count(self) -> int:
        return len(self.hops)

    @property
    def thinnest_liquidity(self) -> Decimal:
        return min(hop.pool.liquidity for hop in self.hops)

    @property
    def pool_addresses(self) -> Tuple[str, ...]:
        return tuple(hop.pool.address for hop in self.hops)

    @property
    def token_path(self) -> Tuple[str, ...]:
        return (self.hops[0].token_in.address,) + tuple(
            hop.token_out.address for hop in self.hops
        )

    @property
    def is_closed(self) -> bool:
        return self.token_in.address == self.token_out.address

    @property
    def execution_cost(self) -> Decimal:
        """Estimated network cost of executing the route in one transaction."""
        return estimate_execution_cost(self.hop_count)

    @property
    def execution_complexity(self) -> int:
        return execution_complexity(self.hops)

    def describe(self) -> str:
        labels = [self.hops[0].token_in.label] + [h.token_out.label for h in self.hops]
        return " -> ".join(labels)


@dataclass(frozen=True)
class SplitRoute:
    """
    Sibling routes sharing one query.

    Input amounts sum to the query amount and percentage shares sum to 100.
    """

    routes: Tuple[Route, ...]
    shares: Tuple[Decimal, ...]
    route_id: str = field(default_factory=new_result_id)
    created_at: float = field(default_factory=time.time)

    def __post_init__(self):
        object.__setattr__(self, "routes", tuple(self.routes))
        object.__setattr__(self, "shares", tuple(self.shares))
        if len(self.routes) < 2:
            raise ValidationError("A split route needs at least two legs")
        if len(self.routes) != len(self.shares):
            raise ValidationError("Every split leg needs exactly one share")
        if sum(self.shares, ZERO) != HUNDRED:
            raise ValidationError(
                f"Split shares must sum to 100, got {sum(self.shares, ZERO)}"
            )
        endpoints = {(r.token_in.address, r.token_out.address) for r in self.routes}
        if len(endpoints) != 1:
            raise ValidationError("Split legs must share source and destination")

    is_split = True

    @property
    def token_in(self) -> Token:
        return self.routes[0].token_in

    @property
    def token_out(self) -> Token:
        return self.routes[0].token_out

    @property
    def amount_in(self) -> Decimal:
        return sum((r.amount_in for r in self.routes), ZERO)

    @property
    def amount_out(self) -> Decimal:
        return sum((r.amount_out for r in self.routes), ZERO)

    @property
    def price_impact(self) -> Decimal:
        """Worst cumulative impact among the legs."""
        return max(r.price_impact for r in self.routes)

    @property
    def hop_count(self) -> int:
        return max(r.hop_count for r in self.routes)

    @property
    def thinnest_liquidity(self) -> Decimal:
        return min(r.thinnest_liquidity for r in self.routes)

    @property
    def max_slippage(self) -> Optional[Decimal]:
        return self.routes[0].max_slippage

    @property
    def pool_addresses(self) -> Tuple[str, ...]:
        return tuple(a for r in self.routes for a in r.pool_addresses)

    @property
    def execution_cost(self) -> Decimal:
        """All legs execute in one transaction."""
        return estimate_execution_cost(sum(r.hop_count for r in self.routes))

    @property
    def execution_complexity(self) -> int:
        return execution_complexity([hop for r in self.routes for hop in r.hops])

    def describe(self) -> str:
        return " | ".join(
            f"{share}%: {route.describe()}" for share, route in zip(self.shares, self.routes)
        )


RouteCandidate = Union[Route, SplitRoute]


@dataclass(frozen=True)
class ArbitrageCycle:
    """
    A closed route with a strictly positive net profit.

    Attributes:
        route: Closed route starting and ending at the same token
        net_profit: Final minus initial amount, in start-token units
        net_profit_usd: net_profit valued with current prices
        roi_percentage: net_profit / initial amount * 100
        risk_score: Execution risk heuristic (0-10, higher is riskier)
        confidence: Data freshness heuristic (0-1)
        score: Composite ranking score
        required_capital_usd: USD value of the probe amount
        time_sensitive: Whether the opportunity decays quickly
    """

    route: Route
    net_profit: Decimal
    net_profit_usd: Decimal
    roi_percentage: Decimal
    risk_score: float
    confidence: float
    score: float
    required_capital_usd: Decimal
    time_sensitive: bool = True

    def __post_init__(self):
        if not self.route.is_closed:
            raise ValidationError(
                "An arbitrage cycle must end at its start token",
                {"path": list(self.route.token_path)},
            )
        if self.net_profit_usd <= 0 or self.net_profit <= 0:
            raise ValidationError(
                f"Cycle {self.route.describe()} is not profitable: {self.net_profit_usd}",
                {"net_profit_usd": str(self.net_profit_usd)},
            )

    @property
    def cycle_id(self) -> str:
        return self.route.route_id

    @property
    def start_token(self) -> Token:
        return self.route.token_in

    @property
    def hops(self) -> Tuple[RouteHop, ...]:
        return self.route.hops

    @property
    def amount_in(self) -> Decimal:
        return self.route.amount_in

    @property
    def amount_out(self) -> Decimal:
        return self.route.amount_out

    @property
    def pool_addresses(self) -> Tuple[str, ...]:
        return self.route.pool_addresses

    @property
    def execution_cost(self) -> Decimal:
        return self.route.execution_cost

    @property
    def execution_complexity(self) -> int:
        return self.route.execution_complexity

    def describe(self) -> str:
        return self.route.describe()


@dataclass(frozen=True)
class Confirmation:
    """Confirmation returned by the submission interface."""

    tx_id: str
    realized_output: Optional[Decimal] = None
    fee_paid: Optional[Decimal] = None


@dataclass
class ExecutionReceipt:
    """
    Result of an execution attempt.

    Attributes:
        success: Whether the transaction was confirmed (or simulated cleanly)
        status: "confirmed", "simulated" or "failed"
        result_id: Route or cycle id that was executed
        tx_id: Transaction identifier, when submitted
        realized_output: Output amount observed on chain, if any
        fee_paid: Network fee paid, if reported
        priority_fee: Priority fee used for the final attempt
        attempts: Number of submission attempts
        elapsed: Seconds spent from first submission to the outcome
        error: Error message when failed
    """

    success: bool
    status: str
    result_id: str
    tx_id: Optional[str] = None
    realized_output: Optional[Decimal] = None
    fee_paid: Optional[Decimal] = None
    priority_fee: Decimal = ZERO
    attempts: int = 0
    elapsed: float = 0.0
    error: Optional[str] = None


@dataclass(frozen=True)
class GraphStatistics:
    """Diagnostics for the pool connectivity graph."""

    pool_count: int
    token_count: int
    average_liquidity: Decimal
    graph_density: float
    largest_component_size: int
    clustering_coefficient: float
    refreshed_at: Optional[float] = None


@dataclass(frozen=True)
class TokenConnectivity:
    """How well a token is connected to the rest of the graph."""

    token: str
    direct_pairs: int
    two_hop_tokens: int
    three_hop_tokens: int
    centrality_score: float
    liquidity_centrality: Decimal


@dataclass(frozen=True)
class RouteMetrics:
    """Running counters kept by the route finder."""

    searches: int
    routes_found: int
    cache_hits: int
    cache_misses: int
    average_route_length: float
    average_computation_ms: float
