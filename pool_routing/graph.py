"""
Pool connectivity graph.

Tokens are nodes and every pool is one edge of an undirected
``networkx.MultiGraph``, so two tokens can be joined by several pools.
Readers always work on an immutable ``GraphSnapshot``; ``refresh`` builds a
complete new snapshot off to the side and swaps it in with a single
assignment, so a search never observes a half-updated graph.
"""

import asyncio
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

import networkx as nx

from .exceptions import DataUnavailable, RoutingError
from .interfaces import MarketDataProvider, TimeProvider, get_time_provider
from .types import ZERO, GraphStatistics, Pool, Token, TokenConnectivity
from .utils import get_logger, shorten_address

logger = get_logger(__name__)

MIN_LIQUIDITY_USD = Decimal("1000")

Neighbor = Tuple[Token, Pool]


@dataclass(frozen=True)
class GraphSnapshot:
    """Immutable view of every pool and price known at one refresh."""

    graph: nx.MultiGraph
    pools: Mapping[str, Pool]
    tokens: Mapping[str, Token]
    prices: Mapping[str, Decimal]
    adjacency: Mapping[str, Tuple[Neighbor, ...]]
    refreshed_at: Optional[float] = None
    version: int = 0
    token_liquidity: Mapping[str, Decimal] = field(default_factory=dict)

    @classmethod
    def empty(cls) -> "GraphSnapshot":
        return cls(graph=nx.MultiGraph(), pools={}, tokens={}, prices={}, adjacency={})

    @classmethod
    def build(
        cls,
        pools: Iterable[Pool],
        prices: Optional[Mapping[str, Decimal]] = None,
        refreshed_at: Optional[float] = None,
        version: int = 0,
    ) -> "GraphSnapshot":
        graph = nx.MultiGraph()
        pool_map: Dict[str, Pool] = {}
        tokens: Dict[str, Token] = {}
        adjacency: Dict[str, List[Neighbor]] = {}
        token_liquidity: Dict[str, Decimal] = {}

        for pool in pools:
            if pool.address in pool_map:
                logger.warning(
                    f"Duplicate pool {shorten_address(pool.address)} in snapshot, "
                    "keeping the latest record"
                )
                previous = pool_map[pool.address]
                graph.remove_edge(*previous.pair, key=previous.address)
                for token in (previous.token_a, previous.token_b):
                    other = previous.other_token(token.address)
                    adjacency[token.address].remove((other, previous))
                    token_liquidity[token.address] -= previous.liquidity

            pool_map[pool.address] = pool
            for token in (pool.token_a, pool.token_b):
                tokens.setdefault(token.address, token)
                graph.add_node(token.address)
                adjacency.setdefault(token.address, []).append(
                    (pool.other_token(token.address), pool)
                )
                token_liquidity[token.address] = (
                    token_liquidity.get(token.address, ZERO) + pool.liquidity
                )
            graph.add_edge(*pool.pair, key=pool.address, pool=pool)

        price_map = {k: v for k, v in (prices or {}).items() if v is not None and v > 0}
        return cls(
            graph=graph,
            pools=pool_map,
            tokens=tokens,
            prices=price_map,
            adjacency={k: tuple(v) for k, v in adjacency.items()},
            refreshed_at=refreshed_at,
            version=version,
            token_liquidity=token_liquidity,
        )

    def neighbors(self, token: str) -> Tuple[Neighbor, ...]:
        return self.adjacency.get(token, ())

    def pool(self, address: str) -> Optional[Pool]:
        return self.pools.get(address)

    def token(self, address: str) -> Optional[Token]:
        return self.tokens.get(address)

    def price_usd(self, token: str) -> Optional[Decimal]:
        return self.prices.get(token)

    def top_tokens(self, limit: int) -> List[str]:
        """Token addresses ordered by total pool liquidity, deepest first."""
        ranked = sorted(self.token_liquidity.items(), key=lambda kv: (-kv[1], kv[0]))
        return [address for address, _ in ranked[:limit]]

    def oldest_update(self) -> Optional[float]:
        """Earliest provider observation among pools, or the refresh time."""
        stamps = [p.updated_at for p in self.pools.values() if p.updated_at is not None]
        if stamps:
            return min(stamps)
        return self.refreshed_at


class PoolGraph:
    """
    Owner of the current graph snapshot.

    Args:
        provider: Market data source used by ``refresh``
        min_liquidity: Pools with less TVL than this are left out of the graph
        time_provider: Clock used for refresh timestamps and ``age``
    """

    def __init__(
        self,
        provider: Optional[MarketDataProvider] = None,
        min_liquidity: Decimal = MIN_LIQUIDITY_USD,
        time_provider: Optional[TimeProvider] = None,
    ):
        self.provider = provider
        self.min_liquidity = Decimal(str(min_liquidity))
        self.time_provider = time_provider or get_time_provider()
        self._snapshot = GraphSnapshot.empty()
        self._refresh_lock = asyncio.Lock()
        self.refresh_count = 0
        self.failed_refreshes = 0

    def snapshot(self) -> GraphSnapshot:
        """Current immutable snapshot. Hold on to it for a whole search."""
        return self._snapshot

    async def refresh(self) -> GraphSnapshot:
        """
        Rebuild the graph from the market data provider.

        Only one refresh runs at a time; concurrent callers wait for the one
        in flight and then run their own.

        Raises:
            DataUnavailable: If the provider cannot list pools. The previous
                snapshot stays in place.
        """
        if self.provider is None:
            raise DataUnavailable("No market data provider configured", source="graph")

        async with self._refresh_lock:
            try:
                pools = list(await self.provider.list_pools())
            except DataUnavailable:
                self.failed_refreshes += 1
                logger.warning("Pool listing unavailable, keeping previous graph")
                raise
            except (RoutingError, OSError, asyncio.TimeoutError) as e:
                self.failed_refreshes += 1
                logger.warning(f"Pool listing failed, keeping previous graph: {e}")
                raise DataUnavailable(
                    f"Market data provider failed: {e}",
                    source="list_pools",
                    details={"error": str(e)},
                ) from e

            kept = [p for p in pools if p.liquidity >= self.min_liquidity]
            dropped = len(pools) - len(kept)
            if dropped:
                logger.debug(f"Dropped {dropped} pools below {self.min_liquidity} liquidity")

            prices = await self._fetch_prices(kept)
            snapshot = GraphSnapshot.build(
                kept,
                prices,
                refreshed_at=self.time_provider.current_timestamp(),
                version=self._snapshot.version + 1,
            )
            self._snapshot = snapshot
            self.refresh_count += 1

        logger.info(
            f"Graph refreshed: {len(snapshot.pools)} pools, {len(snapshot.tokens)} tokens "
            f"(version {snapshot.version})"
        )
        return snapshot

    async def _fetch_prices(self, pools: Sequence[Pool]) -> Dict[str, Decimal]:
        addresses = sorted({t for p in pools for t in p.pair})
        previous = self._snapshot.prices
        results = await asyncio.gather(
            *(self.provider.get_token_price_usd(a) for a in addresses),
            return_exceptions=True,
        )

        prices: Dict[str, Decimal] = {}
        for address, result in zip(addresses, results):
            if isinstance(result, BaseException):
                if isinstance(result, asyncio.CancelledError):
                    raise result
                if address in previous:
                    prices[address] = previous[address]
                logger.warning(
                    f"Price lookup failed for {shorten_address(address)}, "
                    f"keeping previous value: {result}"
                )
                continue
            prices[address] = Decimal(str(result))
        return prices

    def load(
        self,
        pools: Iterable[Pool],
        prices: Optional[Mapping[str, Decimal]] = None,
    ) -> GraphSnapshot:
        """Swap in a snapshot built from already-parsed pools and prices."""
        kept = [p for p in pools if p.liquidity >= self.min_liquidity]
        snapshot = GraphSnapshot.build(
            kept,
            {k: Decimal(str(v)) for k, v in (prices or {}).items()},
            refreshed_at=self.time_provider.current_timestamp(),
            version=self._snapshot.version + 1,
        )
        self._snapshot = snapshot
        return snapshot

    def neighbors(self, token: str) -> Tuple[Neighbor, ...]:
        """Adjacent tokens of ``token`` paired with the pool connecting them."""
        return self._snapshot.neighbors(token)

    def pool(self, address: str) -> Optional[Pool]:
        return self._snapshot.pool(address)

    def token(self, address: str) -> Optional[Token]:
        return self._snapshot.token(address)

    def price_usd(self, token: str) -> Optional[Decimal]:
        return self._snapshot.price_usd(token)

    def age(self) -> float:
        """Seconds since the last successful refresh (inf if never)."""
        refreshed_at = self._snapshot.refreshed_at
        if refreshed_at is None:
            return float("inf")
        return max(0.0, self.time_provider.current_timestamp() - refreshed_at)

    def statistics(self) -> GraphStatistics:
        snapshot = self._snapshot
        pool_count = len(snapshot.pools)
        token_count = len(snapshot.tokens)

        if pool_count:
            total = sum((p.liquidity for p in snapshot.pools.values()), ZERO)
            average_liquidity = total / pool_count
        else:
            average_liquidity = ZERO

        max_edges = token_count * (token_count - 1) / 2
        density = pool_count / max_edges if max_edges > 0 else 0.0

        if token_count:
            largest = max(len(c) for c in nx.connected_components(snapshot.graph))
            # Clustering is only defined on simple graphs
            clustering = nx.average_clustering(nx.Graph(snapshot.graph))
        else:
            largest = 0
            clustering = 0.0

        return GraphStatistics(
            pool_count=pool_count,
            token_count=token_count,
            average_liquidity=average_liquidity,
            graph_density=density,
            largest_component_size=largest,
            clustering_coefficient=clustering,
            refreshed_at=snapshot.refreshed_at,
        )

    def analyze_token_connectivity(self, token: str) -> TokenConnectivity:
        """
        Describe how reachable ``token`` is from the rest of the graph.

        Counts tokens at exactly one, two and three hops, degree centrality on
        the simple token graph, and the share of total liquidity held by
        pools touching the token.
        """
        snapshot = self._snapshot
        if token not in snapshot.tokens:
            return TokenConnectivity(
                token=token,
                direct_pairs=0,
                two_hop_tokens=0,
                three_hop_tokens=0,
                centrality_score=0.0,
                liquidity_centrality=ZERO,
            )

        simple = nx.Graph(snapshot.graph)
        distances = nx.single_source_shortest_path_length(simple, token, cutoff=3)
        by_distance = {1: 0, 2: 0, 3: 0}
        for node, distance in distances.items():
            if distance in by_distance:
                by_distance[distance] += 1

        centrality = nx.degree_centrality(simple).get(token, 0.0)
        total = sum((p.liquidity for p in snapshot.pools.values()), ZERO)
        touching = snapshot.token_liquidity.get(token, ZERO)
        liquidity_centrality = touching / total if total > 0 else ZERO

        return TokenConnectivity(
            token=token,
            direct_pairs=by_distance[1],
            two_hop_tokens=by_distance[2],
            three_hop_tokens=by_distance[3],
            centrality_score=centrality,
            liquidity_centrality=liquidity_centrality,
        )
