"""
Arbitrage cycle detection on the pool graph.

Cycles are enumerated by depth-first search from the deepest tokens in the
graph, simulated from a fixed USD probe with the same fee and impact model
the route finder uses, and ranked by a configurable scoring policy. Only
cycles with strictly positive net profit are ever reported.
"""

import asyncio
import threading
import time
from dataclasses import dataclass, replace
from decimal import Decimal
from typing import Dict, Iterator, List, Mapping, Optional, Tuple

from .cache import DEFAULT_ARBITRAGE_TTL, ResultCache
from .exceptions import InsufficientLiquidity, StaleOpportunity, ValidationError
from .graph import GraphSnapshot, PoolGraph
from .metrics import RoutingMetrics
from .pricing import DEFAULT_IMPACT_MODEL, PathStep, PriceImpactModel, simulate_path
from .route_finder import MAX_ROUTE_HOPS
from .types import HUNDRED, ONE, ZERO, ArbitrageCycle, Pool, Route, RouteHop
from .utils import clamp, format_profit, get_logger, to_decimal

logger = get_logger(__name__)

CycleKey = Tuple[Tuple[str, str], ...]


@dataclass(frozen=True)
class ScoringPolicy:
    """
    Risk, confidence and ranking heuristics for detected cycles.

    Risk grows with hop count, per-hop impact, thin pools and low-volume
    pools and is capped at ``max_risk``. Confidence starts at
    ``base_confidence``, loses ground to impact and shallow pools, and is
    scaled down linearly once the data is older than ``fresh_within``
    seconds, reaching zero at ``stale_after``.
    """

    hop_risk: float = 0.5
    impact_risk_weight: float = 10.0
    thin_pool_liquidity: Decimal = Decimal("10000")
    thin_pool_risk: float = 2.0
    low_volume_threshold: Decimal = Decimal("1000")
    low_volume_risk: float = 1.5
    max_risk: float = 10.0
    base_confidence: float = 0.8
    impact_confidence_weight: float = 2.0
    shallow_liquidity: Decimal = Decimal("50000")
    shallow_confidence_penalty: float = 0.1
    fresh_within: float = 5.0
    stale_after: float = 60.0

    def risk_score(self, hops: Tuple[RouteHop, ...]) -> float:
        impact = float(sum((h.price_impact for h in hops), ZERO))
        risk = len(hops) * self.hop_risk + impact * self.impact_risk_weight
        if min(h.pool.liquidity for h in hops) < self.thin_pool_liquidity:
            risk += self.thin_pool_risk
        if min(h.pool.volume_24h for h in hops) < self.low_volume_threshold:
            risk += self.low_volume_risk
        return min(risk, self.max_risk)

    def confidence(self, hops: Tuple[RouteHop, ...], data_age: float) -> float:
        impact = float(sum((h.price_impact for h in hops), ZERO))
        confidence = self.base_confidence - impact * self.impact_confidence_weight
        if min(h.pool.liquidity for h in hops) < self.shallow_liquidity:
            confidence -= self.shallow_confidence_penalty

        if data_age > self.fresh_within:
            window = max(self.stale_after - self.fresh_within, 1e-9)
            confidence *= max(0.0, 1.0 - (data_age - self.fresh_within) / window)
        return clamp(confidence, 0.0, 1.0)

    def score(self, profit_usd: Decimal, risk: float, confidence: float) -> float:
        return float(profit_usd) * confidence / (1.0 + risk)


def cycle_key(steps: List[PathStep]) -> CycleKey:
    """Rotation-invariant identity of a directed cycle."""
    pairs = [(pool.address, token_in) for pool, token_in in steps]
    start = pairs.index(min(pairs))
    return tuple(pairs[start:] + pairs[:start])


def cycle_rank_key(cycle: ArbitrageCycle) -> Tuple:
    return (-cycle.score, -cycle.net_profit_usd, cycle.pool_addresses)


class ArbitrageDetector:
    """
    Scan the pool graph for profitable closed routes.

    Args:
        graph: Pool graph to scan
        cache: Shared result cache; a private one is created when omitted
        impact_model: Price impact model applied per hop
        scoring: Ranking policy
        max_seed_tokens: Number of deepest tokens used as cycle anchors
        max_cycles_explored: Bound on enumerated cycles per scan
        probe_amount_usd: Size of the simulated trade in USD
        arbitrage_ttl: Cache TTL for scan results
        profit_retention: Share of expected profit a cycle must keep to
            pass ``validate``
        max_results: Number of cycles returned per scan
        scan_timeout: Wall-clock ceiling for ``scan_async``
        max_known_cycles: Profitable cycles remembered and re-quoted on
            later scans
        metrics: Optional Prometheus metrics sink
    """

    def __init__(
        self,
        graph: PoolGraph,
        cache: Optional[ResultCache] = None,
        impact_model: PriceImpactModel = DEFAULT_IMPACT_MODEL,
        scoring: Optional[ScoringPolicy] = None,
        max_seed_tokens: int = 10,
        max_cycles_explored: int = 10000,
        probe_amount_usd: Decimal = Decimal("100"),
        arbitrage_ttl: float = DEFAULT_ARBITRAGE_TTL,
        profit_retention: Decimal = Decimal("0.9"),
        max_results: int = 20,
        scan_timeout: float = 5.0,
        max_known_cycles: int = 100,
        metrics: Optional[RoutingMetrics] = None,
    ):
        self.graph = graph
        self.cache = cache if cache is not None else ResultCache(default_ttl=arbitrage_ttl)
        self.impact_model = impact_model
        self.scoring = scoring or ScoringPolicy()
        self.max_seed_tokens = max_seed_tokens
        self.max_cycles_explored = max_cycles_explored
        self.probe_amount_usd = to_decimal(probe_amount_usd, "probe_amount_usd")
        self.arbitrage_ttl = arbitrage_ttl
        self.profit_retention = to_decimal(profit_retention, "profit_retention")
        self.max_results = max_results
        self.scan_timeout = scan_timeout
        self.max_known_cycles = max_known_cycles
        self.metrics = metrics

        self.traversal_count = 0
        self.scans = 0
        self.abandoned_scans = 0
        self.known_cycle_hits = 0
        self.known_cycles: Dict[CycleKey, ArbitrageCycle] = {}
        self._known_lock = threading.Lock()

    def scan(
        self, min_profit=0, max_cycle_length: int = 3, deadline: Optional[float] = None
    ) -> List[ArbitrageCycle]:
        """
        Return profitable cycles, best score first.

        Args:
            min_profit: Minimum net profit in USD
            max_cycle_length: Longest cycle, in hops (at least 2)
            deadline: ``time.monotonic()`` value after which the scan is
                abandoned without caching anything

        Raises:
            ValidationError: If the bounds are out of range
            asyncio.TimeoutError: If ``deadline`` passes before the scan ends
        """
        min_profit = to_decimal(min_profit, "min_profit")
        if min_profit < 0:
            raise ValidationError(f"min_profit must not be negative: {min_profit}")
        if max_cycle_length < 2 or max_cycle_length > MAX_ROUTE_HOPS:
            raise ValidationError(
                f"max_cycle_length must be between 2 and {MAX_ROUTE_HOPS}: "
                f"{max_cycle_length}",
                {"max_cycle_length": max_cycle_length},
            )

        self.scans += 1
        snapshot = self.graph.snapshot()
        key = ("arb", min_profit, max_cycle_length, snapshot.version)
        cached = self.cache.get(key)
        if self.metrics:
            self.metrics.record_cache_lookup("arbitrage", cached is not None)
        if cached is not None:
            return list(cached)

        started = time.perf_counter()
        cycles = self._scan(snapshot, min_profit, max_cycle_length, deadline)
        self._check_deadline(deadline)
        elapsed = time.perf_counter() - started

        if self.metrics:
            self.metrics.record_scan("completed", elapsed, len(cycles))
            for cycle in cycles:
                self.metrics.record_cycle_profit(float(cycle.net_profit_usd))

        self.cache.set(key, tuple(cycles), self.arbitrage_ttl)
        if cycles:
            best = cycles[0]
            logger.info(
                f"Scan found {len(cycles)} cycles in {elapsed * 1000:.1f}ms, best: "
                f"{best.describe()} (+${best.net_profit_usd:.4f}, "
                f"{format_profit(best.roi_percentage / HUNDRED)}, score {best.score:.3f})"
            )
        else:
            logger.debug(f"Scan found no cycles in {elapsed * 1000:.1f}ms")
        return cycles

    async def scan_async(
        self, min_profit=0, max_cycle_length: int = 3, timeout: Optional[float] = None
    ) -> List[ArbitrageCycle]:
        """
        Run ``scan`` in a worker thread under a wall-clock ceiling.

        The worker receives the same ceiling as a deadline, so a scan that
        outlives it stops enumerating and caches nothing.

        Raises:
            asyncio.TimeoutError: If the scan takes longer than the ceiling
        """
        ceiling = self.scan_timeout if timeout is None else timeout
        deadline = time.monotonic() + ceiling
        try:
            return await asyncio.wait_for(
                asyncio.to_thread(self.scan, min_profit, max_cycle_length, deadline),
                timeout=ceiling,
            )
        except asyncio.TimeoutError:
            logger.warning(f"Arbitrage scan exceeded {ceiling}s ceiling")
            if self.metrics:
                self.metrics.record_scan("timeout")
            raise

    def _check_deadline(self, deadline: Optional[float]) -> None:
        if deadline is not None and time.monotonic() >= deadline:
            self.abandoned_scans += 1
            logger.debug("Abandoning arbitrage scan past its deadline")
            raise asyncio.TimeoutError("arbitrage scan deadline passed")

    def _scan(
        self,
        snapshot: GraphSnapshot,
        min_profit: Decimal,
        max_cycle_length: int,
        deadline: Optional[float] = None,
    ) -> List[ArbitrageCycle]:
        self.traversal_count += 1
        data_age = self._data_age(snapshot)
        best: Dict[CycleKey, ArbitrageCycle] = {}
        explored = 0

        for seed in snapshot.top_tokens(self.max_seed_tokens):
            for steps in self._cycles_from(snapshot, seed, max_cycle_length):
                self._check_deadline(deadline)
                explored += 1
                if explored > self.max_cycles_explored:
                    break
                cycle = self._evaluate(snapshot, steps, min_profit, data_age)
                if cycle is None:
                    continue
                key = cycle_key(steps)
                current = best.get(key)
                if current is None or cycle_rank_key(cycle) < cycle_rank_key(current):
                    best[key] = cycle
            if explored > self.max_cycles_explored:
                logger.warning(
                    f"Cycle enumeration bound {self.max_cycles_explored} reached, "
                    "results may be incomplete"
                )
                break

        self._check_known_cycles(snapshot, best, min_profit, max_cycle_length, data_age, deadline)
        self._remember(best)

        ranked = sorted(best.values(), key=cycle_rank_key)
        return ranked[: self.max_results]

    def _check_known_cycles(
        self,
        snapshot: GraphSnapshot,
        best: Dict[CycleKey, ArbitrageCycle],
        min_profit: Decimal,
        max_cycle_length: int,
        data_age: float,
        deadline: Optional[float],
    ) -> None:
        """Re-quote remembered cycles that this enumeration did not reach."""
        with self._known_lock:
            known = list(self.known_cycles.items())

        for key, previous in known:
            if key in best or previous.route.hop_count > max_cycle_length:
                continue
            self._check_deadline(deadline)

            steps: List[PathStep] = []
            for hop in previous.hops:
                pool = snapshot.pool(hop.pool.address)
                if pool is None:
                    break
                steps.append((pool, hop.token_in.address))
            cycle = None
            if len(steps) == len(previous.hops):
                cycle = self._evaluate(snapshot, steps, ZERO, data_age)

            if cycle is None:
                logger.debug(f"Forgetting cycle {previous.describe()}, no longer profitable")
                with self._known_lock:
                    self.known_cycles.pop(key, None)
                continue
            self.known_cycle_hits += 1
            if cycle.net_profit_usd >= min_profit:
                best[key] = cycle

    def _remember(self, best: Dict[CycleKey, ArbitrageCycle]) -> None:
        """Record profitable cycles under the id they were first reported with."""
        with self._known_lock:
            for key, cycle in list(best.items()):
                previous = self.known_cycles.pop(key, None)
                if previous is not None and previous.cycle_id != cycle.cycle_id:
                    cycle = replace(cycle, route=replace(cycle.route, route_id=previous.cycle_id))
                    best[key] = cycle
                self.known_cycles[key] = cycle
            while len(self.known_cycles) > self.max_known_cycles:
                self.known_cycles.pop(next(iter(self.known_cycles)))

    @staticmethod
    def _cycles_from(
        snapshot: GraphSnapshot, seed: str, max_length: int
    ) -> Iterator[List[PathStep]]:
        """Depth-first enumeration of simple cycles through ``seed``."""
        stack = [(seed, [], frozenset([seed]), frozenset())]
        while stack:
            token, steps, visited, used_pools = stack.pop()
            for neighbor, pool in snapshot.neighbors(token):
                if pool.address in used_pools:
                    continue
                next_steps = steps + [(pool, token)]
                if neighbor.address == seed:
                    if len(next_steps) >= 2:
                        yield next_steps
                elif neighbor.address not in visited and len(next_steps) < max_length:
                    stack.append(
                        (
                            neighbor.address,
                            next_steps,
                            visited | {neighbor.address},
                            used_pools | {pool.address},
                        )
                    )

    def _data_age(self, snapshot: GraphSnapshot) -> float:
        oldest = snapshot.oldest_update()
        if oldest is None:
            return float("inf")
        return max(0.0, self.graph.time_provider.current_timestamp() - oldest)

    def _probe_amount(self, snapshot: GraphSnapshot, token: str) -> Tuple[Decimal, Decimal]:
        price = snapshot.price_usd(token) or ONE
        return self.probe_amount_usd / price, price

    def _evaluate(
        self,
        snapshot: GraphSnapshot,
        steps: List[PathStep],
        min_profit: Decimal,
        data_age: float,
    ) -> Optional[ArbitrageCycle]:
        start = steps[0][1]
        probe, price = self._probe_amount(snapshot, start)
        try:
            hops = simulate_path(steps, probe, snapshot.prices, self.impact_model)
        except InsufficientLiquidity as e:
            logger.debug(f"Cycle skipped, {e}")
            return None

        net_profit = hops[-1].amount_out - probe
        if net_profit <= 0:
            return None
        net_profit_usd = net_profit * price
        if net_profit_usd < min_profit:
            return None

        risk = self.scoring.risk_score(hops)
        confidence = self.scoring.confidence(hops, data_age)
        return ArbitrageCycle(
            route=Route(hops=hops),
            net_profit=net_profit,
            net_profit_usd=net_profit_usd,
            roi_percentage=net_profit / probe * HUNDRED,
            risk_score=risk,
            confidence=confidence,
            score=self.scoring.score(net_profit_usd, risk, confidence),
            required_capital_usd=probe * price,
        )

    def revalidate(
        self, cycle: ArbitrageCycle, pools: Optional[Mapping[str, Pool]] = None
    ) -> ArbitrageCycle:
        """
        Re-simulate ``cycle`` on the latest pool state.

        Returns:
            The re-quoted cycle, keeping the original cycle id

        Raises:
            StaleOpportunity: If a pool vanished or drained, or the profit fell
                under ``profit_retention`` of the original
        """
        snapshot = self.graph.snapshot()
        fresh = dict(pools or {})
        steps: List[PathStep] = []
        for hop in cycle.hops:
            pool = fresh.get(hop.pool.address) or snapshot.pool(hop.pool.address)
            if pool is None:
                raise StaleOpportunity(
                    f"Cycle {cycle.cycle_id} pool {hop.pool.address} disappeared",
                    route_id=cycle.cycle_id,
                    reason="pool_missing",
                    details={"pool": hop.pool.address},
                )
            steps.append((pool, hop.token_in.address))

        try:
            hops = simulate_path(steps, cycle.amount_in, snapshot.prices, self.impact_model)
        except InsufficientLiquidity as e:
            raise StaleOpportunity(
                f"Cycle {cycle.cycle_id} can no longer be filled: {e}",
                route_id=cycle.cycle_id,
                reason="insufficient_liquidity",
                details=e.details,
            ) from e

        net_profit = hops[-1].amount_out - cycle.amount_in
        threshold = cycle.net_profit * self.profit_retention
        if net_profit <= 0 or net_profit < threshold:
            raise StaleOpportunity(
                f"Cycle {cycle.cycle_id} profit fell from {cycle.net_profit} to {net_profit}",
                route_id=cycle.cycle_id,
                reason="profit_decayed",
                details={
                    "expected_profit": str(cycle.net_profit),
                    "current_profit": str(net_profit),
                    "required": str(threshold),
                },
            )

        price = snapshot.price_usd(cycle.start_token.address) or ONE
        net_profit_usd = net_profit * price
        risk = self.scoring.risk_score(hops)
        confidence = self.scoring.confidence(hops, self._data_age(snapshot))
        return ArbitrageCycle(
            route=Route(hops=hops, route_id=cycle.cycle_id),
            net_profit=net_profit,
            net_profit_usd=net_profit_usd,
            roi_percentage=net_profit / cycle.amount_in * HUNDRED,
            risk_score=risk,
            confidence=confidence,
            score=self.scoring.score(net_profit_usd, risk, confidence),
            required_capital_usd=cycle.required_capital_usd,
            time_sensitive=cycle.time_sensitive,
        )

    def validate(
        self, cycle: ArbitrageCycle, pools: Optional[Mapping[str, Pool]] = None
    ) -> bool:
        """Whether ``cycle`` still clears its profit retention threshold."""
        try:
            self.revalidate(cycle, pools)
        except StaleOpportunity as e:
            logger.info(f"Cycle {cycle.describe()} is stale: {e.reason}")
            return False
        return True
