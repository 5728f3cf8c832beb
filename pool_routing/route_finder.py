"""
Multi-hop route search over the pool graph.

Breadth-first search bounded by ``max_hops`` yields token-simple paths,
shortest first. Each path is priced hop by hop with the shared fee and
impact model; paths that drain a pool or exceed the caller's slippage bound
are rejected. When no single path works, the amount can be split evenly
across several paths.
"""

import time
from collections import deque
from decimal import Decimal
from typing import Dict, List, Mapping, Optional, Sequence, Tuple

from .cache import DEFAULT_ROUTE_TTL, ResultCache
from .exceptions import (
    InsufficientLiquidity,
    NoRouteFound,
    PriceImpactExceeded,
    RouteInvalidated,
    RoutingError,
    ValidationError,
)
from .graph import GraphSnapshot, PoolGraph
from .metrics import RoutingMetrics
from .pricing import (
    DEFAULT_IMPACT_MODEL,
    PathStep,
    PriceImpactModel,
    check_slippage,
    simulate_path,
)
from .types import (
    HUNDRED,
    ZERO,
    Pool,
    Route,
    RouteCandidate,
    RouteMetrics,
    SplitRoute,
)
from .utils import get_logger, shorten_address, to_decimal

logger = get_logger(__name__)

MAX_ROUTE_HOPS = 5
MAX_SPLIT_ROUTES = 4
MAX_PRICE_IMPACT = Decimal("0.15")
SHARE_QUANTUM = Decimal("0.01")


def route_sort_key(route: Route) -> Tuple:
    """Fewer hops, then lower impact, then deeper weakest pool, then more output."""
    return (route.hop_count, route.price_impact, -route.thinnest_liquidity, -route.amount_out)


def even_shares(parts: int) -> List[Decimal]:
    """Percentages for an even split, the last one absorbing rounding."""
    share = (HUNDRED / parts).quantize(SHARE_QUANTUM)
    shares = [share] * (parts - 1)
    shares.append(HUNDRED - sum(shares, ZERO))
    return shares


class RouteFinder:
    """
    Find best-first route candidates between two tokens.

    Args:
        graph: Pool graph to search
        cache: Shared result cache; a private one is created when omitted
        impact_model: Price impact model applied per hop
        max_hops_limit: Largest ``max_hops`` a query may ask for
        max_split_routes: Largest number of legs in a split route
        max_candidates: Number of candidates returned per query
        max_paths_explored: Bound on the BFS frontier expansions per query
        route_ttl: Cache TTL for route results
        default_max_slippage: Slippage bound used when a query gives none
        revalidation_tolerance: Allowed drop in output rate before a
            re-quoted route counts as moved
        metrics: Optional Prometheus metrics sink
    """

    def __init__(
        self,
        graph: PoolGraph,
        cache: Optional[ResultCache] = None,
        impact_model: PriceImpactModel = DEFAULT_IMPACT_MODEL,
        max_hops_limit: int = MAX_ROUTE_HOPS,
        max_split_routes: int = MAX_SPLIT_ROUTES,
        max_candidates: int = 5,
        max_paths_explored: int = 5000,
        route_ttl: float = DEFAULT_ROUTE_TTL,
        default_max_slippage: Decimal = MAX_PRICE_IMPACT,
        revalidation_tolerance: Decimal = Decimal("0.01"),
        metrics: Optional[RoutingMetrics] = None,
    ):
        self.graph = graph
        self.cache = cache if cache is not None else ResultCache(default_ttl=route_ttl)
        self.impact_model = impact_model
        self.max_hops_limit = max_hops_limit
        self.max_split_routes = max_split_routes
        self.max_candidates = max_candidates
        self.max_paths_explored = max_paths_explored
        self.route_ttl = route_ttl
        self.default_max_slippage = to_decimal(default_max_slippage, "max_slippage")
        self.revalidation_tolerance = to_decimal(
            revalidation_tolerance, "revalidation_tolerance"
        )
        self.metrics = metrics

        # Number of searches that actually walked the graph
        self.traversal_count = 0

        self._searches = 0
        self._routes_found = 0
        self._cache_hits = 0
        self._cache_misses = 0
        self._total_route_length = 0
        self._total_computation_ms = 0.0

    def find_route(
        self,
        from_token: str,
        to_token: str,
        amount,
        max_hops: int = 3,
        max_slippage=None,
        allow_split: bool = True,
    ) -> List[RouteCandidate]:
        """
        Return route candidates from ``from_token`` to ``to_token``, best first.

        Raises:
            ValidationError: Same source and destination, non-positive
                amount, or out-of-range bounds
            NoRouteFound: No path satisfies the amount and slippage bound
        """
        if from_token == to_token:
            raise ValidationError(
                "Source and destination tokens must differ",
                {"from": from_token, "to": to_token},
            )
        amount = to_decimal(amount, "amount")
        if amount <= 0:
            raise ValidationError(
                f"Amount must be positive: {amount}", {"amount": str(amount)}
            )
        if max_hops < 1 or max_hops > self.max_hops_limit:
            raise ValidationError(
                f"max_hops must be between 1 and {self.max_hops_limit}: {max_hops}",
                {"max_hops": max_hops, "limit": self.max_hops_limit},
            )
        if max_slippage is None:
            max_slippage = self.default_max_slippage
        max_slippage = to_decimal(max_slippage, "max_slippage")
        if max_slippage <= 0 or max_slippage > 1:
            raise ValidationError(
                f"max_slippage must be in (0, 1]: {max_slippage}",
                {"max_slippage": str(max_slippage)},
            )

        self._searches += 1
        snapshot = self.graph.snapshot()
        # Results computed on an older snapshot are not reused after a refresh
        key = (
            "route",
            from_token,
            to_token,
            amount,
            max_hops,
            max_slippage,
            allow_split,
            snapshot.version,
        )
        cached = self.cache.get(key)
        if self.metrics:
            self.metrics.record_cache_lookup("route", cached is not None)
        if cached is not None:
            self._cache_hits += 1
            if self.metrics:
                self.metrics.record_route_search("cache_hit")
            logger.debug(f"Route cache hit for {shorten_address(from_token)} -> "
                         f"{shorten_address(to_token)}")
            return list(cached)
        self._cache_misses += 1

        started = time.perf_counter()
        try:
            candidates = self._search(
                snapshot,
                from_token,
                to_token,
                amount,
                max_hops,
                max_slippage,
                allow_split,
            )
        except NoRouteFound:
            if self.metrics:
                self.metrics.record_route_search(
                    "no_route", time.perf_counter() - started
                )
            raise
        elapsed = time.perf_counter() - started

        self._routes_found += 1
        self._total_route_length += candidates[0].hop_count
        self._total_computation_ms += elapsed * 1000
        if self.metrics:
            self.metrics.record_route_search("found", elapsed, candidates[0].hop_count)

        self.cache.set(key, tuple(candidates), self.route_ttl)
        logger.debug(
            f"Found {len(candidates)} route candidates in {elapsed * 1000:.1f}ms, "
            f"best: {candidates[0].describe()}"
        )
        return candidates

    def _search(
        self,
        snapshot: GraphSnapshot,
        from_token: str,
        to_token: str,
        amount: Decimal,
        max_hops: int,
        max_slippage: Decimal,
        allow_split: bool,
    ) -> List[RouteCandidate]:
        self.traversal_count += 1

        for token in (from_token, to_token):
            if snapshot.token(token) is None:
                raise NoRouteFound(
                    f"Token {shorten_address(token)} is not in the pool graph",
                    from_token=from_token,
                    to_token=to_token,
                    details={"missing_token": token},
                )

        paths = self.enumerate_paths(snapshot, from_token, to_token, max_hops)
        if not paths:
            raise NoRouteFound(
                f"No path from {shorten_address(from_token)} to "
                f"{shorten_address(to_token)} within {max_hops} hops",
                from_token=from_token,
                to_token=to_token,
                details={"max_hops": max_hops, "paths_considered": 0},
            )

        routes: List[Route] = []
        rejections: List[RoutingError] = []
        for steps in paths:
            try:
                hops = simulate_path(steps, amount, snapshot.prices, self.impact_model)
                check_slippage(hops, max_slippage)
            except (InsufficientLiquidity, PriceImpactExceeded) as e:
                rejections.append(e)
                continue
            routes.append(Route(hops=hops, max_slippage=max_slippage))

        if routes:
            routes.sort(key=route_sort_key)
            return routes[: self.max_candidates]

        if allow_split:
            split = self._find_split(snapshot, paths, amount, max_slippage)
            if split is not None:
                return [split]

        # Report the rejection from the shortest path considered
        reason = rejections[0]
        raise NoRouteFound(
            f"No feasible route for {amount} from {shorten_address(from_token)} to "
            f"{shorten_address(to_token)}: {reason}",
            from_token=from_token,
            to_token=to_token,
            details={
                "paths_considered": len(paths),
                "reason": type(reason).__name__,
                "split_attempted": allow_split,
                **reason.details,
            },
        ) from reason

    def enumerate_paths(
        self,
        snapshot: GraphSnapshot,
        from_token: str,
        to_token: str,
        max_hops: int,
    ) -> List[List[PathStep]]:
        """
        Breadth-first enumeration of token-simple paths, shortest first.

        Each path is a list of ``(pool, token_in)`` steps.
        """
        paths: List[List[PathStep]] = []
        queue = deque([(from_token, [], frozenset([from_token]))])
        expanded = 0

        while queue:
            token, steps, visited = queue.popleft()
            expanded += 1
            if expanded > self.max_paths_explored:
                logger.debug(
                    f"Path frontier bound {self.max_paths_explored} reached, "
                    f"{len(paths)} paths collected"
                )
                break

            for neighbor, pool in snapshot.neighbors(token):
                if neighbor.address in visited:
                    continue
                next_steps = steps + [(pool, token)]
                if neighbor.address == to_token:
                    paths.append(next_steps)
                elif len(next_steps) < max_hops:
                    queue.append((neighbor.address, next_steps, visited | {neighbor.address}))

        return paths

    def _find_split(
        self,
        snapshot: GraphSnapshot,
        paths: Sequence[List[PathStep]],
        amount: Decimal,
        max_slippage: Decimal,
    ) -> Optional[SplitRoute]:
        # Prefer short paths through deep pools for the legs
        ranked = sorted(
            paths, key=lambda steps: (len(steps), -min(pool.liquidity for pool, _ in steps))
        )

        for parts in range(2, min(self.max_split_routes, len(ranked)) + 1):
            shares = even_shares(parts)
            legs = ranked[:parts]
            consumed: Dict[str, Decimal] = {}
            routes: List[Route] = []
            remaining = amount
            try:
                for index, (share, steps) in enumerate(zip(shares, legs)):
                    if index == parts - 1:
                        leg_amount = remaining
                    else:
                        leg_amount = amount * share / HUNDRED
                    remaining -= leg_amount
                    hops = simulate_path(
                        steps, leg_amount, snapshot.prices, self.impact_model, consumed
                    )
                    check_slippage(hops, max_slippage)
                    routes.append(Route(hops=hops, max_slippage=max_slippage))
            except (InsufficientLiquidity, PriceImpactExceeded) as e:
                logger.debug(f"{parts}-way split infeasible: {e}")
                continue

            logger.info(f"Using {parts}-way split for {amount}")
            return SplitRoute(routes=routes, shares=shares)

        return None

    def validate(
        self,
        route: RouteCandidate,
        pools: Optional[Mapping[str, Pool]] = None,
        amount=None,
    ) -> RouteCandidate:
        """
        Re-quote ``route`` against fresh pool state.

        Args:
            route: Previously issued route or split route
            pools: Fresh pools by address; the graph snapshot fills gaps
            amount: Input amount to re-quote with (defaults to the original)

        Returns:
            The re-quoted route

        Raises:
            RouteInvalidated: A pool is gone, can no longer absorb its hop,
                exceeds the slippage bound, or the output rate dropped by more
                than the tolerance
        """
        snapshot = self.graph.snapshot()
        fresh: Dict[str, Pool] = dict(pools or {})
        if amount is not None:
            amount = to_decimal(amount, "amount")
            if amount <= 0:
                raise ValidationError(f"Amount must be positive: {amount}")

        if isinstance(route, SplitRoute):
            total = amount if amount is not None else route.amount_in
            consumed: Dict[str, Decimal] = {}
            legs = []
            remaining = total
            for index, (share, leg) in enumerate(zip(route.shares, route.routes)):
                if index == len(route.routes) - 1:
                    leg_amount = remaining
                else:
                    leg_amount = total * share / HUNDRED
                remaining -= leg_amount
                legs.append(
                    self._requote(route.route_id, leg, snapshot, fresh, leg_amount, consumed)
                )
            return SplitRoute(
                routes=legs, shares=route.shares, route_id=route.route_id
            )

        return self._requote(
            route.route_id,
            route,
            snapshot,
            fresh,
            amount if amount is not None else route.amount_in,
            None,
        )

    def _requote(
        self,
        route_id: str,
        route: Route,
        snapshot: GraphSnapshot,
        fresh: Mapping[str, Pool],
        amount: Decimal,
        consumed: Optional[Dict[str, Decimal]],
    ) -> Route:
        steps: List[PathStep] = []
        for index, hop in enumerate(route.hops):
            pool = fresh.get(hop.pool.address) or snapshot.pool(hop.pool.address)
            if pool is None:
                raise RouteInvalidated(
                    f"Pool {shorten_address(hop.pool.address)} is no longer available",
                    route_id=route_id,
                    reason="pool_missing",
                    details={"hop": index, "pool": hop.pool.address},
                )
            steps.append((pool, hop.token_in.address))

        try:
            hops = simulate_path(
                steps, amount, snapshot.prices, self.impact_model, consumed
            )
            if route.max_slippage is not None:
                check_slippage(hops, route.max_slippage)
        except InsufficientLiquidity as e:
            raise RouteInvalidated(
                f"Route {route_id} no longer has enough liquidity: {e}",
                route_id=route_id,
                reason="insufficient_liquidity",
                details={"hop": self._hop_index(route, e.pool_address), **e.details},
            ) from e
        except PriceImpactExceeded as e:
            raise RouteInvalidated(
                f"Route {route_id} now exceeds its slippage bound: {e}",
                route_id=route_id,
                reason="price_impact",
                details=e.details,
            ) from e

        requoted = Route(hops=hops, max_slippage=route.max_slippage, route_id=route_id)
        original_rate = route.amount_out / route.amount_in
        new_rate = requoted.amount_out / requoted.amount_in
        floor = original_rate * (1 - self.revalidation_tolerance)
        if new_rate < floor:
            raise RouteInvalidated(
                f"Route {route_id} output moved from {route.amount_out} to "
                f"{requoted.amount_out}",
                route_id=route_id,
                reason="output_moved",
                details={
                    "expected_rate": str(original_rate),
                    "current_rate": str(new_rate),
                    "tolerance": str(self.revalidation_tolerance),
                },
            )
        return requoted

    @staticmethod
    def _hop_index(route: Route, pool_address: Optional[str]) -> Optional[int]:
        for index, hop in enumerate(route.hops):
            if hop.pool.address == pool_address:
                return index
        return None

    def route_metrics(self) -> RouteMetrics:
        """Running search counters."""
        found = self._routes_found
        return RouteMetrics(
            searches=self._searches,
            routes_found=found,
            cache_hits=self._cache_hits,
            cache_misses=self._cache_misses,
            average_route_length=self._total_route_length / found if found else 0.0,
            average_computation_ms=self._total_computation_ms / found if found else 0.0,
        )
