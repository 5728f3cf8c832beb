"""Shared fixtures and collaborator fakes for the pool routing tests."""

from decimal import Decimal
from typing import Dict, Iterable, List, Optional

import pytest

from pool_routing.exceptions import DataUnavailable
from pool_routing.graph import PoolGraph
from pool_routing.interfaces import DeterministicTimeProvider
from pool_routing.types import Confirmation, Pool, Token

TOKEN_A = Token("TokenA111111111111111111111111111111111111111", "A", 6)
TOKEN_B = Token("TokenB222222222222222222222222222222222222222", "B", 6)
TOKEN_C = Token("TokenC333333333333333333333333333333333333333", "C", 9)
TOKEN_D = Token("TokenD444444444444444444444444444444444444444", "D", 9)
TOKEN_E = Token("TokenE555555555555555555555555555555555555555", "E", 9)


def make_pool(address, token_a, token_b, liquidity="10000", fee_rate="0.003", price="1", **kwargs):
    return Pool(
        address=address,
        token_a=token_a,
        token_b=token_b,
        liquidity=Decimal(str(liquidity)),
        fee_rate=Decimal(str(fee_rate)),
        price=Decimal(str(price)),
        **kwargs,
    )


class FakeMarketDataProvider:
    """In-memory market data source with switchable failures."""

    def __init__(self, pools: Iterable[Pool], prices: Optional[Dict[str, Decimal]] = None):
        self.pools = {p.address: p for p in pools}
        self.prices = dict(prices or {})
        self.fail_listing = False
        self.failing_prices = set()
        self.unreachable_pools = set()
        self.list_calls = 0
        self.get_pool_calls: List[str] = []

    def set_pool(self, pool: Pool) -> None:
        self.pools[pool.address] = pool

    async def list_pools(self):
        self.list_calls += 1
        if self.fail_listing:
            raise ConnectionError("provider unreachable")
        return list(self.pools.values())

    async def get_pool(self, address: str) -> Pool:
        self.get_pool_calls.append(address)
        if address in self.unreachable_pools:
            raise DataUnavailable(f"pool {address} unavailable", source="get_pool")
        return self.pools[address]

    async def get_token_price_usd(self, token: str) -> Decimal:
        if token in self.failing_prices:
            raise ConnectionError(f"no price for {token}")
        return self.prices.get(token, Decimal("1"))


class FakeSubmitter:
    """
    Records every call. ``submit_outcomes`` is consumed one entry per
    submission: an exception instance is raised, anything else is returned.
    ``build_errors`` and ``simulation_outcomes`` are consumed the same way
    per build and per simulation; ``None`` lets the call through.
    """

    def __init__(
        self,
        submit_outcomes=None,
        simulation_result=True,
        build_errors=None,
        simulation_outcomes=None,
    ):
        self.submit_outcomes = list(submit_outcomes or [])
        self.simulation_result = simulation_result
        self.build_errors = list(build_errors or [])
        self.simulation_outcomes = list(simulation_outcomes or [])
        self.builds = []
        self.simulations = []
        self.submissions = []

    def _record_build(self, tx):
        self.builds.append(tx)
        error = self.build_errors.pop(0) if self.build_errors else None
        if error is not None:
            raise error
        return tx

    async def build(self, payer, payload):
        return self._record_build(
            {"payer": payer, "payload": payload, "priority_fee": Decimal("0")}
        )

    async def build_priority(self, payer, payload, priority_fee):
        return self._record_build(
            {"payer": payer, "payload": payload, "priority_fee": priority_fee}
        )

    async def simulate(self, transaction):
        self.simulations.append(transaction)
        if self.simulation_outcomes:
            outcome = self.simulation_outcomes.pop(0)
        else:
            outcome = self.simulation_result
        if isinstance(outcome, BaseException):
            raise outcome
        return outcome

    async def submit(self, transaction):
        self.submissions.append(transaction)
        if self.submit_outcomes:
            outcome = self.submit_outcomes.pop(0)
        else:
            outcome = Confirmation(tx_id=f"tx-{len(self.submissions)}")
        if isinstance(outcome, BaseException):
            raise outcome
        return outcome


class FakeSigner:
    def __init__(self, address="Payer999999999999999999999999999999999999999"):
        self.address = address
        self.signed = 0

    def sign(self, transaction):
        self.signed += 1
        return {**transaction, "signature": f"sig-{self.signed}"}


@pytest.fixture
def time_provider():
    return DeterministicTimeProvider()


@pytest.fixture
def abc_pools():
    """A-B and B-C, both 10,000 deep with a 0.3% fee."""
    return [
        make_pool("PoolAB", TOKEN_A, TOKEN_B),
        make_pool("PoolBC", TOKEN_B, TOKEN_C),
    ]


@pytest.fixture
def triangle_pools(abc_pools):
    """A-B-C plus a C-A pool priced so A->B->C->A gains about 2% after fees."""
    return abc_pools + [make_pool("PoolCA", TOKEN_C, TOKEN_A, price="1.03")]


@pytest.fixture
def abc_graph(abc_pools, time_provider):
    graph = PoolGraph(time_provider=time_provider)
    graph.load(abc_pools)
    return graph


@pytest.fixture
def triangle_graph(triangle_pools, time_provider):
    graph = PoolGraph(time_provider=time_provider)
    graph.load(triangle_pools)
    return graph


@pytest.fixture
def signer():
    return FakeSigner()
