"""
Unit tests for Prometheus metrics
"""

import aiohttp
import aiohttp.test_utils
import pytest
from aiohttp import web
from prometheus_client import CollectorRegistry, generate_latest

from pool_routing.metrics import RoutingMetrics, get_metrics, initialize_metrics
from pool_routing.version import get_version


@pytest.fixture
def test_registry():
    """Create a test-specific registry"""
    return CollectorRegistry()


@pytest.fixture
def metrics(test_registry):
    """Create RoutingMetrics instance with test registry"""
    return RoutingMetrics(test_registry)


class TestRoutingMetrics:
    """Test RoutingMetrics functionality"""

    def test_initialization(self, metrics):
        assert metrics.registry is not None
        assert hasattr(metrics, "route_searches_total")
        assert hasattr(metrics, "scans_total")
        assert hasattr(metrics, "executions_total")

    def test_search_metrics(self, metrics, test_registry):
        metrics.record_route_search("found", duration_seconds=0.02, hops=2)
        metrics.record_route_search("no_route", duration_seconds=0.01)
        metrics.record_cache_lookup("route", hit=True)
        metrics.record_cache_lookup("route", hit=False)

        assert test_registry.get_sample_value(
            "pool_routing_route_searches_total", {"outcome": "found"}
        ) == 1.0
        assert test_registry.get_sample_value("pool_routing_route_hops_count") == 1.0
        assert test_registry.get_sample_value(
            "pool_routing_cache_lookups_total", {"cache": "route", "result": "miss"}
        ) == 1.0

    def test_scan_metrics(self, metrics, test_registry):
        metrics.record_scan("completed", duration_seconds=0.5, cycles=3)
        metrics.record_scan("timeout")
        metrics.record_cycle_profit(2.5)

        assert test_registry.get_sample_value("pool_routing_cycles_found_total") == 3.0
        assert test_registry.get_sample_value(
            "pool_routing_arbitrage_scans_total", {"outcome": "timeout"}
        ) == 1.0
        assert test_registry.get_sample_value("pool_routing_cycle_profit_usd_sum") == 2.5

    def test_graph_metrics(self, metrics, test_registry):
        metrics.record_graph_refresh(True, pool_count=120, token_count=45)
        metrics.record_graph_refresh(False)
        metrics.update_graph_age(3.5)

        assert test_registry.get_sample_value("pool_routing_graph_pools") == 120.0
        assert test_registry.get_sample_value("pool_routing_graph_tokens") == 45.0
        assert test_registry.get_sample_value("pool_routing_graph_age_seconds") == 3.5
        assert test_registry.get_sample_value(
            "pool_routing_graph_refreshes_total", {"outcome": "failure"}
        ) == 1.0

    def test_execution_metrics(self, metrics):
        metrics.record_execution("arbitrage", "confirmed", duration_seconds=1.2)
        metrics.record_submission_retry("arbitrage")
        metrics.record_revalidation_failure("route", "output_moved")

        metric_output = generate_latest(metrics.registry).decode("utf-8")
        assert "pool_routing_executions_total" in metric_output
        assert "pool_routing_submission_retries_total" in metric_output
        assert 'reason="output_moved"' in metric_output

    def test_metrics_summary(self, metrics):
        metrics.record_route_search("found")
        metrics.record_route_search("cache_hit")
        metrics.record_scan("completed", cycles=2)

        summary = metrics.get_metrics_summary()
        assert summary["metrics_available"] is True
        assert summary["route_searches"] == 2.0
        assert summary["cycles_found"] == 2.0

    @pytest.mark.asyncio
    async def test_server_lifecycle(self, metrics):
        port = aiohttp.test_utils.unused_port()
        started = await metrics.start_server(port=port, host="127.0.0.1")
        assert started is True

        async with aiohttp.ClientSession() as session:
            async with session.get(f"http://127.0.0.1:{port}/metrics") as response:
                assert response.status == 200
                body = await response.text()
                assert "pool_routing_route_searches_total" in body

        await metrics.stop_server()
        assert metrics._runner is None


class TestMetricsEndpoints:
    @pytest.mark.asyncio
    async def test_health_endpoint(self, metrics):
        app = web.Application()
        app.router.add_get("/health", metrics._health_handler)
        app.router.add_get("/metrics", metrics._metrics_handler)

        async with aiohttp.test_utils.TestClient(aiohttp.test_utils.TestServer(app)) as client:
            response = await client.get("/health")
            assert response.status == 200
            data = await response.json()
            assert data["status"] == "healthy"
            assert data["service"] == "pool_routing_metrics"
            assert data["version"] == get_version()
            assert data["summary"]["metrics_available"] is True
            assert data["summary"]["route_searches"] == 0

            response = await client.get("/metrics")
            assert response.status == 200
            assert response.content_type == "text/plain"


def test_global_metrics(test_registry):
    initialized = initialize_metrics(test_registry)
    assert get_metrics() is initialized
    assert initialized.registry is test_registry
