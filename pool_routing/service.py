"""
Routing service facade and monitor loop.

``RoutingService`` wires the graph, cache, finder, detector and executor
together and exposes the query surface: route queries, arbitrage scans and
execution of a previously issued result by id. ``MonitorLoop`` keeps the
graph fresh and scans on an interval until it is stopped.
"""

import asyncio
import inspect
from typing import Any, Callable, Dict, List, Optional, Union

from .arbitrage_detector import ArbitrageDetector
from .cache import ResultCache
from .config_loader import RouterConfig, get_default_config
from .exceptions import ConfigurationError, DataUnavailable, RouteInvalidated, ValidationError
from .executor import RouteExecutor
from .graph import PoolGraph
from .interfaces import (
    MarketDataProvider,
    Signer,
    TimeProvider,
    TransactionSubmitter,
    get_time_provider,
)
from .metrics import RoutingMetrics, get_metrics
from .route_finder import RouteFinder
from .types import ArbitrageCycle, ExecutionReceipt, RouteCandidate
from . import logging_config
from .utils import format_duration, get_logger, timestamp_to_iso

logger = get_logger(__name__)

DEFAULT_RESULT_TTL = 300.0

IssuedResult = Union[RouteCandidate, ArbitrageCycle]


class RoutingService:
    """
    Query surface over the routing core.

    Every route candidate and cycle handed out is remembered by id for
    ``result_ttl`` seconds so it can be executed later with
    ``execute_by_id``.
    """

    def __init__(
        self,
        graph: PoolGraph,
        route_finder: RouteFinder,
        detector: ArbitrageDetector,
        executor: Optional[RouteExecutor] = None,
        config: Optional[RouterConfig] = None,
        metrics: Optional[RoutingMetrics] = None,
        result_ttl: float = DEFAULT_RESULT_TTL,
        time_provider: Optional[TimeProvider] = None,
    ):
        self.graph = graph
        self.route_finder = route_finder
        self.detector = detector
        self.executor = executor
        self.config = config or get_default_config()
        self.metrics = metrics
        self._issued = ResultCache(
            default_ttl=result_ttl,
            max_entries=4096,
            time_provider=time_provider or get_time_provider(),
        )

    @classmethod
    def from_config(
        cls,
        config: RouterConfig,
        provider: MarketDataProvider,
        submitter: Optional[TransactionSubmitter] = None,
        metrics: Optional[RoutingMetrics] = None,
        time_provider: Optional[TimeProvider] = None,
        configure_logging: bool = False,
    ) -> "RoutingService":
        """
        Build a fully wired service from a normalized configuration.

        With ``configure_logging`` the process-wide logging setup follows
        ``config.observability.log_level``.
        Without an explicit ``metrics`` sink the global metrics instance is used
        while ``config.observability.enabled`` is set.
        """
        if configure_logging:
            logging_config.setup_from_config(config.observability.log_level)
        if metrics is None and config.observability.enabled:
            metrics = get_metrics()
        time_provider = time_provider or get_time_provider()
        graph = PoolGraph(
            provider,
            min_liquidity=config.graph.min_liquidity_usd,
            time_provider=time_provider,
        )
        cache = ResultCache(
            default_ttl=config.route.route_ttl_seconds, time_provider=time_provider
        )
        finder = RouteFinder(
            graph,
            cache=cache,
            impact_model=config.impact,
            max_split_routes=config.route.max_split_routes,
            max_candidates=config.route.max_candidates,
            max_paths_explored=config.route.max_paths_explored,
            route_ttl=config.route.route_ttl_seconds,
            default_max_slippage=config.route.max_slippage,
            revalidation_tolerance=config.route.revalidation_tolerance,
            metrics=metrics,
        )
        detector = ArbitrageDetector(
            graph,
            cache=cache,
            impact_model=config.impact,
            scoring=config.scoring,
            max_seed_tokens=config.arbitrage.max_seed_tokens,
            max_cycles_explored=config.arbitrage.max_cycles_explored,
            probe_amount_usd=config.arbitrage.probe_amount_usd,
            arbitrage_ttl=config.arbitrage.arbitrage_ttl_seconds,
            profit_retention=config.arbitrage.profit_retention,
            max_results=config.arbitrage.max_results,
            scan_timeout=config.arbitrage.scan_timeout_seconds,
            max_known_cycles=config.arbitrage.max_known_cycles,
            metrics=metrics,
        )
        executor = None
        if submitter is not None:
            executor = RouteExecutor(
                finder,
                detector,
                submitter,
                provider=provider,
                retry_policy=config.execution.retry,
                fee_policy=config.execution.fees,
                time_provider=time_provider,
                metrics=metrics,
            )
        return cls(
            graph,
            finder,
            detector,
            executor,
            config=config,
            metrics=metrics,
            time_provider=time_provider,
        )

    async def refresh(self):
        """Refresh the graph, recording the outcome."""
        try:
            snapshot = await self.graph.refresh()
        except DataUnavailable:
            if self.metrics:
                self.metrics.record_graph_refresh(False)
            raise
        # Cache keys carry the snapshot version; older results are unreachable
        self.route_finder.cache.clear()
        if self.detector.cache is not self.route_finder.cache:
            self.detector.cache.clear()
        if self.metrics:
            self.metrics.record_graph_refresh(True, len(snapshot.pools), len(snapshot.tokens))
            self.metrics.update_graph_age(0.0)
        return snapshot

    def route(
        self,
        from_token: str,
        to_token: str,
        amount,
        max_hops: Optional[int] = None,
        max_slippage=None,
        allow_split: Optional[bool] = None,
    ) -> List[RouteCandidate]:
        """Route query; unset bounds come from the configuration."""
        settings = self.config.route
        candidates = self.route_finder.find_route(
            from_token,
            to_token,
            amount,
            max_hops=settings.max_hops if max_hops is None else max_hops,
            max_slippage=settings.max_slippage if max_slippage is None else max_slippage,
            allow_split=settings.allow_split if allow_split is None else allow_split,
        )
        for candidate in candidates:
            self._issued.set(candidate.route_id, candidate)
        return candidates

    def scan(self, min_profit=None, max_cycle_length: Optional[int] = None) -> List[ArbitrageCycle]:
        """Arbitrage scan query; unset bounds come from the configuration."""
        cycles = self.detector.scan(*self._scan_bounds(min_profit, max_cycle_length))
        self._remember_cycles(cycles)
        return cycles

    async def scan_async(
        self,
        min_profit=None,
        max_cycle_length: Optional[int] = None,
        timeout: Optional[float] = None,
    ) -> List[ArbitrageCycle]:
        min_profit, max_cycle_length = self._scan_bounds(min_profit, max_cycle_length)
        cycles = await self.detector.scan_async(min_profit, max_cycle_length, timeout)
        self._remember_cycles(cycles)
        return cycles

    def _scan_bounds(self, min_profit, max_cycle_length):
        settings = self.config.arbitrage
        return (
            settings.min_profit_usd if min_profit is None else min_profit,
            settings.max_cycle_length if max_cycle_length is None else max_cycle_length,
        )

    def _remember_cycles(self, cycles: List[ArbitrageCycle]) -> None:
        # Cycles decay faster than routes
        ttl = min(self._issued.default_ttl, self.config.arbitrage.arbitrage_ttl_seconds)
        for cycle in cycles:
            self._issued.set(cycle.cycle_id, cycle, ttl)

    def lookup(self, result_id: str) -> Optional[IssuedResult]:
        """A previously issued route or cycle, if it has not expired."""
        return self._issued.get(result_id)

    async def execute_by_id(
        self,
        result_id: str,
        signer: Signer,
        amount=None,
        simulate_only: bool = False,
    ) -> ExecutionReceipt:
        """
        Execute a route or cycle returned earlier by ``route`` or ``scan``.

        Raises:
            ConfigurationError: If no submitter was configured
            RouteInvalidated: If the id is unknown or expired, or the result
                moved since it was issued
        """
        if self.executor is None:
            raise ConfigurationError("No transaction submitter configured")

        result = self.lookup(result_id)
        if result is None:
            raise RouteInvalidated(
                f"Unknown or expired result id: {result_id}",
                route_id=result_id,
                reason="unknown_result",
            )

        if isinstance(result, ArbitrageCycle):
            if amount is not None:
                raise ValidationError(
                    "Arbitrage cycles execute at their quoted size",
                    {"result_id": result_id},
                )
            return await self.executor.execute_arbitrage(result, signer, simulate_only)
        return await self.executor.execute(result, signer, amount, simulate_only)

    def statistics(self) -> Dict[str, Any]:
        stats = self.graph.statistics()
        route_metrics = self.route_finder.route_metrics()
        age = self.graph.age()
        refreshed_at = self.graph.snapshot().refreshed_at
        return {
            "graph": {
                "pools": stats.pool_count,
                "tokens": stats.token_count,
                "average_liquidity": str(stats.average_liquidity),
                "density": stats.graph_density,
                "largest_component": stats.largest_component_size,
                "age_seconds": age,
                "age": format_duration(age) if age != float("inf") else "never refreshed",
                "refreshed_at": timestamp_to_iso(refreshed_at) if refreshed_at is not None else None,
            },
            "routes": {
                "searches": route_metrics.searches,
                "found": route_metrics.routes_found,
                "cache_hits": route_metrics.cache_hits,
                "average_length": route_metrics.average_route_length,
            },
            "arbitrage": {
                "scans": self.detector.scans,
                "abandoned_scans": self.detector.abandoned_scans,
                "known_cycles": len(self.detector.known_cycles),
                "known_cycle_hits": self.detector.known_cycle_hits,
            },
            "cache": self.route_finder.cache.stats(),
            "execution": self.executor.statistics() if self.executor else {},
            "issued_results": len(self._issued),
        }


CycleCallback = Callable[[List[ArbitrageCycle]], Any]


class MonitorLoop:
    """
    Refresh-then-scan loop.

    A failed refresh is logged and the scan runs on the last good graph. Each
    scan runs under its own timeout. ``stop`` ends the loop between
    iterations.
    """

    def __init__(
        self,
        service: RoutingService,
        on_cycles: Optional[CycleCallback] = None,
        interval: Optional[float] = None,
        min_profit=None,
        max_cycle_length: Optional[int] = None,
        scan_timeout: Optional[float] = None,
        max_iterations: Optional[int] = None,
    ):
        config = service.config
        self.service = service
        self.on_cycles = on_cycles
        self.interval = config.monitor.interval_seconds if interval is None else interval
        self.min_profit = min_profit
        self.max_cycle_length = max_cycle_length
        self.scan_timeout = (
            config.arbitrage.scan_timeout_seconds if scan_timeout is None else scan_timeout
        )
        self.max_iterations = (
            config.monitor.max_iterations if max_iterations is None else max_iterations
        )

        self.iterations = 0
        self.failed_refreshes = 0
        self.timed_out_scans = 0
        self.last_cycles: List[ArbitrageCycle] = []
        self._stop = asyncio.Event()

    def stop(self) -> None:
        """Ask the loop to finish after the current iteration."""
        self._stop.set()

    @property
    def stopped(self) -> bool:
        return self._stop.is_set()

    async def run_once(self) -> List[ArbitrageCycle]:
        """One refresh and scan."""
        try:
            await self.service.refresh()
        except DataUnavailable as e:
            self.failed_refreshes += 1
            logger.warning(f"Refresh failed, scanning stale graph: {e}")

        try:
            cycles = await self.service.scan_async(
                self.min_profit, self.max_cycle_length, timeout=self.scan_timeout
            )
        except asyncio.TimeoutError:
            self.timed_out_scans += 1
            cycles = []

        self.last_cycles = cycles
        if self.on_cycles is not None and cycles:
            outcome = self.on_cycles(cycles)
            if inspect.isawaitable(outcome):
                await outcome
        return cycles

    async def run(self) -> int:
        """
        Run until stopped, cancelled or ``max_iterations`` is reached.

        Returns:
            Number of completed iterations
        """
        logger.info(f"Monitor loop started (interval {self.interval}s)")
        try:
            while not self._stop.is_set():
                await self.run_once()
                self.iterations += 1
                if self.max_iterations is not None and self.iterations >= self.max_iterations:
                    break
                try:
                    await asyncio.wait_for(self._stop.wait(), timeout=self.interval)
                except asyncio.TimeoutError:
                    pass
        finally:
            logger.info(f"Monitor loop finished after {self.iterations} iterations")
        return self.iterations
