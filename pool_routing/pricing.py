"""
Per-hop quoting shared by the route finder and the arbitrage detector.

A hop applies the pool fee to the input, converts at the pool's directional
rate and then loses a price-impact fraction that grows with trade size
relative to pool liquidity:

    fee_paid   = amount_in * fee_rate
    x          = value(amount_in) / available_liquidity
    impact     = linear * x + quadratic * x^2          (capped)
    amount_out = (amount_in - fee_paid) * rate * (1 - impact)
"""

from dataclasses import dataclass
from decimal import Decimal, getcontext
from typing import Dict, Mapping, Optional, Sequence, Tuple

from .exceptions import InsufficientLiquidity, PriceImpactExceeded, ValidationError
from .types import ONE, ZERO, Pool, RouteHop

# Set decimal precision for high-precision calculations
getcontext().prec = 50

PathStep = Tuple[Pool, str]


@dataclass(frozen=True)
class PriceImpactModel:
    """
    Price impact as a function of trade size over liquidity.

    Attributes:
        linear_factor: Impact per unit of size/liquidity
        quadratic_factor: Impact per unit of (size/liquidity)^2
        max_impact: Upper bound on a single hop's impact
    """

    linear_factor: Decimal = Decimal("0.01")
    quadratic_factor: Decimal = Decimal("1")
    max_impact: Decimal = Decimal("0.99")

    def impact(self, trade_value: Decimal, liquidity: Decimal) -> Decimal:
        if liquidity <= 0:
            return self.max_impact
        x = trade_value / liquidity
        impact = self.linear_factor * x + self.quadratic_factor * x * x
        return min(impact, self.max_impact)


DEFAULT_IMPACT_MODEL = PriceImpactModel()


def quote_hop(
    pool: Pool,
    token_in: str,
    amount_in: Decimal,
    price_usd: Decimal = ONE,
    impact_model: PriceImpactModel = DEFAULT_IMPACT_MODEL,
    consumed_depth: Decimal = ZERO,
) -> RouteHop:
    """
    Quote a single swap through ``pool``.

    Args:
        pool: Pool to trade through
        token_in: Address of the token sent into the pool
        amount_in: Input amount in token units
        price_usd: USD price of the input token, used to size the trade
        impact_model: Price impact model
        consumed_depth: Liquidity already used by sibling legs of a split

    Returns:
        RouteHop with output, fee and impact filled in

    Raises:
        ValidationError: If amount_in is not positive
        InsufficientLiquidity: If the trade would drain the pool
    """
    if amount_in <= 0:
        raise ValidationError(f"amount_in must be positive: {amount_in}")

    trade_value = amount_in * price_usd
    available = pool.liquidity - consumed_depth
    if trade_value >= available:
        raise InsufficientLiquidity(
            f"Pool {pool.address} cannot absorb {trade_value} (available {available})",
            pool_address=pool.address,
            required=trade_value,
            available=available,
            details={
                "pool": pool.address,
                "required": str(trade_value),
                "available": str(available),
            },
        )

    fee_paid = amount_in * pool.fee_rate
    impact = impact_model.impact(trade_value, available)
    amount_out = (amount_in - fee_paid) * pool.rate(token_in) * (ONE - impact)

    token_out = pool.other_token(token_in)
    return RouteHop(
        pool=pool,
        token_in=pool.other_token(token_out.address),
        token_out=token_out,
        amount_in=amount_in,
        amount_out=amount_out,
        fee_paid=fee_paid,
        price_impact=impact,
    )


def simulate_path(
    steps: Sequence[PathStep],
    amount_in: Decimal,
    prices: Mapping[str, Decimal],
    impact_model: PriceImpactModel = DEFAULT_IMPACT_MODEL,
    consumed: Optional[Dict[str, Decimal]] = None,
) -> Tuple[RouteHop, ...]:
    """
    Propagate ``amount_in`` hop by hop along ``steps``.

    When ``consumed`` is given, each hop's USD trade value is added to it so
    later legs sharing a pool see the reduced depth.
    """
    hops = []
    amount = amount_in
    for pool, token_in in steps:
        price = prices.get(token_in, ONE)
        depth = consumed.get(pool.address, ZERO) if consumed is not None else ZERO
        hop = quote_hop(pool, token_in, amount, price, impact_model, depth)
        if consumed is not None:
            consumed[pool.address] = depth + amount * price
        hops.append(hop)
        amount = hop.amount_out
    return tuple(hops)


def check_slippage(hops: Sequence[RouteHop], max_slippage: Decimal) -> Decimal:
    """Return the cumulative impact, raising if it is over ``max_slippage``."""
    total = sum((hop.price_impact for hop in hops), ZERO)
    if total > max_slippage:
        raise PriceImpactExceeded(
            f"Price impact {total:.6f} exceeds bound {max_slippage}",
            impact=total,
            max_allowed=max_slippage,
            details={"impact": str(total), "max_allowed": str(max_slippage)},
        )
    return total
