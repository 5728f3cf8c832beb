"""
Prometheus Metrics for Pool Routing

Exposes search, scan, graph and execution metrics for monitoring and alerting.
"""

import logging
import threading
import time
from typing import Any, Dict, Optional

from aiohttp import web
from prometheus_client import (
    CONTENT_TYPE_LATEST,
    REGISTRY,
    CollectorRegistry,
    Counter,
    Gauge,
    Histogram,
    generate_latest,
)

from .version import get_version

logger = logging.getLogger(__name__)


class RoutingMetrics:
    """
    Routing metrics collection and exposure

    Provides Prometheus-compatible metrics for:
    - Route searches and cache efficiency
    - Arbitrage scans and detected profit
    - Graph refresh health
    - Executions, retries and revalidation failures
    """

    def __init__(self, registry: Optional[CollectorRegistry] = None):
        """Initialize metrics with custom registry or default"""
        self.registry = registry or REGISTRY
        self._initialize_metrics()

        # Server components
        self._app = None
        self._runner = None
        self._site = None

        # Thread-safe access
        self._lock = threading.RLock()

    def _initialize_metrics(self):
        """Initialize all Prometheus metrics"""

        # === SEARCH METRICS ===
        self.route_searches_total = Counter(
            "pool_routing_route_searches_total",
            "Total route searches by outcome",
            ["outcome"],
            registry=self.registry,
        )

        self.route_search_seconds = Histogram(
            "pool_routing_route_search_seconds",
            "Wall-clock time spent in route search",
            buckets=[0.001, 0.005, 0.01, 0.05, 0.1, 0.5, 1.0, 5.0],
            registry=self.registry,
        )

        self.route_hops = Histogram(
            "pool_routing_route_hops",
            "Hop count of the best route returned",
            buckets=[1, 2, 3, 4, 5],
            registry=self.registry,
        )

        self.cache_lookups_total = Counter(
            "pool_routing_cache_lookups_total",
            "Result cache lookups",
            ["cache", "result"],
            registry=self.registry,
        )

        # === ARBITRAGE METRICS ===
        self.scans_total = Counter(
            "pool_routing_arbitrage_scans_total",
            "Total arbitrage scans by outcome",
            ["outcome"],
            registry=self.registry,
        )

        self.scan_seconds = Histogram(
            "pool_routing_arbitrage_scan_seconds",
            "Wall-clock time spent in arbitrage scans",
            buckets=[0.01, 0.05, 0.1, 0.5, 1.0, 5.0, 10.0, 30.0],
            registry=self.registry,
        )

        self.cycles_found_total = Counter(
            "pool_routing_cycles_found_total",
            "Profitable cycles reported by scans",
            registry=self.registry,
        )

        self.cycle_profit_usd = Histogram(
            "pool_routing_cycle_profit_usd",
            "Expected profit of reported cycles in USD",
            buckets=[0.1, 0.5, 1, 2, 5, 10, 20, 50, 100],
            registry=self.registry,
        )

        # === GRAPH METRICS ===
        self.graph_refreshes_total = Counter(
            "pool_routing_graph_refreshes_total",
            "Graph refresh attempts by outcome",
            ["outcome"],
            registry=self.registry,
        )

        self.graph_pools = Gauge(
            "pool_routing_graph_pools",
            "Pools in the current graph snapshot",
            registry=self.registry,
        )

        self.graph_tokens = Gauge(
            "pool_routing_graph_tokens",
            "Tokens in the current graph snapshot",
            registry=self.registry,
        )

        self.graph_age_seconds = Gauge(
            "pool_routing_graph_age_seconds",
            "Seconds since the last successful graph refresh",
            registry=self.registry,
        )

        # === EXECUTION METRICS ===
        self.executions_total = Counter(
            "pool_routing_executions_total",
            "Executions by kind and final status",
            ["kind", "status"],
            registry=self.registry,
        )

        self.execution_seconds = Histogram(
            "pool_routing_execution_seconds",
            "Time from first submission to final outcome",
            ["kind"],
            buckets=[0.1, 0.5, 1, 2, 5, 10, 30, 60],
            registry=self.registry,
        )

        self.submission_retries_total = Counter(
            "pool_routing_submission_retries_total",
            "Transient submission failures that were retried",
            ["kind"],
            registry=self.registry,
        )

        self.revalidation_failures_total = Counter(
            "pool_routing_revalidation_failures_total",
            "Executions aborted because the route or cycle moved",
            ["kind", "reason"],
            registry=self.registry,
        )

        self.last_activity_timestamp = Gauge(
            "pool_routing_last_activity_timestamp",
            "Unix timestamp of last routing activity",
            registry=self.registry,
        )

    # === METRIC RECORDING METHODS ===

    def record_route_search(
        self, outcome: str, duration_seconds: float = 0.0, hops: Optional[int] = None
    ):
        """Record a route search"""
        with self._lock:
            self.route_searches_total.labels(outcome=outcome).inc()
            if duration_seconds > 0:
                self.route_search_seconds.observe(duration_seconds)
            if hops:
                self.route_hops.observe(hops)
            self.last_activity_timestamp.set(time.time())

    def record_cache_lookup(self, cache: str, hit: bool):
        """Record a cache hit or miss"""
        with self._lock:
            self.cache_lookups_total.labels(
                cache=cache, result="hit" if hit else "miss"
            ).inc()

    def record_scan(self, outcome: str, duration_seconds: float = 0.0, cycles: int = 0):
        """Record an arbitrage scan"""
        with self._lock:
            self.scans_total.labels(outcome=outcome).inc()
            if duration_seconds > 0:
                self.scan_seconds.observe(duration_seconds)
            if cycles:
                self.cycles_found_total.inc(cycles)
            self.last_activity_timestamp.set(time.time())

    def record_cycle_profit(self, profit_usd: float):
        """Record the expected profit of a reported cycle"""
        with self._lock:
            self.cycle_profit_usd.observe(profit_usd)

    def record_graph_refresh(
        self, success: bool, pool_count: int = 0, token_count: int = 0
    ):
        """Record a graph refresh attempt"""
        with self._lock:
            self.graph_refreshes_total.labels(
                outcome="success" if success else "failure"
            ).inc()
            if success:
                self.graph_pools.set(pool_count)
                self.graph_tokens.set(token_count)

    def update_graph_age(self, age_seconds: float):
        """Update graph staleness"""
        with self._lock:
            self.graph_age_seconds.set(age_seconds)

    def record_execution(self, kind: str, status: str, duration_seconds: float = 0.0):
        """Record the final outcome of an execution"""
        with self._lock:
            self.executions_total.labels(kind=kind, status=status).inc()
            if duration_seconds > 0:
                self.execution_seconds.labels(kind=kind).observe(duration_seconds)
            self.last_activity_timestamp.set(time.time())

    def record_submission_retry(self, kind: str):
        """Record a retried transient submission failure"""
        with self._lock:
            self.submission_retries_total.labels(kind=kind).inc()

    def record_revalidation_failure(self, kind: str, reason: str):
        """Record an execution aborted by revalidation"""
        with self._lock:
            self.revalidation_failures_total.labels(kind=kind, reason=reason).inc()

    # === SERVER MANAGEMENT ===

    async def start_server(
        self, port: int = 8000, host: str = "0.0.0.0", path: str = "/metrics"
    ):
        """Start Prometheus metrics HTTP server"""
        try:
            self._app = web.Application()
            self._app.router.add_get(path, self._metrics_handler)
            self._app.router.add_get("/health", self._health_handler)

            self._runner = web.AppRunner(self._app)
            await self._runner.setup()

            self._site = web.TCPSite(self._runner, host, port)
            await self._site.start()

            logger.info(f"Prometheus metrics server started on http://{host}:{port}{path}")
            return True

        except OSError as e:
            logger.error(f"Failed to start metrics server: {e}")
            return False

    async def stop_server(self):
        """Stop the metrics server"""
        if self._site:
            await self._site.stop()
        if self._runner:
            await self._runner.cleanup()
        self._site = None
        self._runner = None
        logger.info("Metrics server stopped")

    async def _metrics_handler(self, request):
        """Handle metrics endpoint requests"""
        metrics_output = generate_latest(self.registry)
        # Strip charset from content type to avoid conflicts with aiohttp
        content_type = CONTENT_TYPE_LATEST.split(";")[0]
        return web.Response(text=metrics_output.decode("utf-8"), content_type=content_type)

    async def _health_handler(self, request):
        """Handle health check endpoint"""
        return web.json_response(
            {
                "status": "healthy",
                "service": "pool_routing_metrics",
                "version": get_version(),
                "summary": self.get_metrics_summary(),
            }
        )

    def get_metrics_summary(self) -> Dict[str, Any]:
        """Get current metrics summary"""
        with self._lock:
            return {
                "metrics_available": True,
                "route_searches": sum(
                    s.value
                    for metric in self.route_searches_total.collect()
                    for s in metric.samples
                    if s.name.endswith("_total")
                ),
                "cycles_found": self.registry.get_sample_value(
                    "pool_routing_cycles_found_total"
                )
                or 0.0,
                "timestamp": time.time(),
            }


# Global metrics instance (singleton pattern)
_global_metrics: Optional[RoutingMetrics] = None


def get_metrics() -> RoutingMetrics:
    """Get or create global metrics instance"""
    global _global_metrics
    if _global_metrics is None:
        _global_metrics = RoutingMetrics()
    return _global_metrics


def initialize_metrics(registry: Optional[CollectorRegistry] = None) -> RoutingMetrics:
    """Initialize global metrics with custom registry"""
    global _global_metrics
    _global_metrics = RoutingMetrics(registry)
    return _global_metrics
