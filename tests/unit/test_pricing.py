"""Tests for per-hop quoting and the price impact model."""

from decimal import Decimal

import pytest
from conftest import TOKEN_A, TOKEN_B, TOKEN_C, make_pool
from hypothesis import given, settings
from hypothesis import strategies as st
from pool_routing.exceptions import InsufficientLiquidity, PriceImpactExceeded, ValidationError
from pool_routing.pricing import (
    PriceImpactModel,
    check_slippage,
    quote_hop,
    simulate_path,
)


class TestPriceImpactModel:
    def test_linear_plus_quadratic(self):
        model = PriceImpactModel()
        # x = 0.1 -> 0.01 * 0.1 + 0.1^2
        assert model.impact(Decimal("1000"), Decimal("10000")) == Decimal("0.011")

    def test_capped(self):
        model = PriceImpactModel(max_impact=Decimal("0.5"))
        assert model.impact(Decimal("9000"), Decimal("10000")) == Decimal("0.5")

    def test_no_liquidity_is_max_impact(self):
        model = PriceImpactModel()
        assert model.impact(Decimal("1"), Decimal("0")) == model.max_impact


class TestQuoteHop:
    def test_fee_rate_and_impact_applied(self):
        pool = make_pool("PoolAB", TOKEN_A, TOKEN_B, price="2")
        hop = quote_hop(pool, TOKEN_A.address, Decimal("100"))

        assert hop.token_in == TOKEN_A
        assert hop.token_out == TOKEN_B
        assert hop.fee_paid == Decimal("0.300")
        assert hop.price_impact == Decimal("0.0002")
        assert hop.amount_out == Decimal("99.7") * 2 * (1 - Decimal("0.0002"))

    def test_reverse_direction_uses_inverse_rate(self):
        pool = make_pool("PoolAB", TOKEN_A, TOKEN_B, price="2", fee_rate="0")
        hop = quote_hop(pool, TOKEN_B.address, Decimal("10"))
        assert hop.token_out == TOKEN_A
        assert abs(hop.amount_out - Decimal("5")) < Decimal("0.001")

    def test_usd_price_sizes_the_trade(self):
        pool = make_pool("PoolAB", TOKEN_A, TOKEN_B)
        cheap = quote_hop(pool, TOKEN_A.address, Decimal("100"), price_usd=Decimal("1"))
        dear = quote_hop(pool, TOKEN_A.address, Decimal("100"), price_usd=Decimal("50"))
        assert dear.price_impact > cheap.price_impact

    def test_non_positive_amount_rejected(self):
        pool = make_pool("PoolAB", TOKEN_A, TOKEN_B)
        with pytest.raises(ValidationError):
            quote_hop(pool, TOKEN_A.address, Decimal("0"))

    def test_trade_larger_than_pool(self):
        """Trades at or above pool depth cannot be filled."""
        pool = make_pool("PoolAB", TOKEN_A, TOKEN_B, liquidity="5000")
        with pytest.raises(InsufficientLiquidity) as exc_info:
            quote_hop(pool, TOKEN_A.address, Decimal("5000"))

        error = exc_info.value
        assert error.pool_address == "PoolAB"
        assert error.required == Decimal("5000")
        assert error.available == Decimal("5000")
        assert error.details["pool"] == "PoolAB"

    def test_consumed_depth_reduces_availability(self):
        pool = make_pool("PoolAB", TOKEN_A, TOKEN_B)
        with pytest.raises(InsufficientLiquidity):
            quote_hop(pool, TOKEN_A.address, Decimal("3000"), consumed_depth=Decimal("7000"))

    def test_token_not_in_pool(self):
        pool = make_pool("PoolAB", TOKEN_A, TOKEN_B)
        with pytest.raises(ValidationError):
            quote_hop(pool, TOKEN_C.address, Decimal("10"))


class TestSimulatePath:
    def test_two_hop_path(self, abc_pools):
        ab, bc = abc_pools
        hops = simulate_path(
            [(ab, TOKEN_A.address), (bc, TOKEN_B.address)], Decimal("100"), {}
        )
        assert len(hops) == 2
        assert hops[0].amount_out == hops[1].amount_in
        assert abs(hops[-1].amount_out - Decimal("99.4")) < Decimal("0.1")

    def test_consumed_is_accumulated(self):
        pool = make_pool("PoolAB", TOKEN_A, TOKEN_B)
        consumed = {}
        simulate_path([(pool, TOKEN_A.address)], Decimal("100"), {TOKEN_A.address: Decimal("2")}, consumed=consumed)
        assert consumed == {"PoolAB": Decimal("200")}


class TestCheckSlippage:
    def test_within_bound_returns_total(self, abc_pools):
        ab, bc = abc_pools
        hops = simulate_path([(ab, TOKEN_A.address), (bc, TOKEN_B.address)], Decimal("100"), {})
        total = check_slippage(hops, Decimal("0.01"))
        assert total == hops[0].price_impact + hops[1].price_impact

    def test_over_bound_raises(self, abc_pools):
        ab, _ = abc_pools
        hops = simulate_path([(ab, TOKEN_A.address)], Decimal("5000"), {})
        with pytest.raises(PriceImpactExceeded) as exc_info:
            check_slippage(hops, Decimal("0.1"))
        assert exc_info.value.max_allowed == Decimal("0.1")
        assert exc_info.value.impact > Decimal("0.1")


@settings(max_examples=50, deadline=None)
@given(
    amount=st.decimals(min_value="0.01", max_value="9000", places=2),
    fee=st.decimals(min_value="0", max_value="0.05", places=4),
)
def test_output_never_exceeds_fee_free_rate(amount, fee):
    """Fees and impact can only reduce the output."""
    pool = make_pool("PoolAB", TOKEN_A, TOKEN_B, fee_rate=fee)
    hop = quote_hop(pool, TOKEN_A.address, amount)
    assert Decimal("0") < hop.amount_out <= amount
    assert Decimal("0") <= hop.price_impact <= Decimal("0.99")
