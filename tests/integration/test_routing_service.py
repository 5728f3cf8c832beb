"""
Integration tests for the routing service and monitor loop
"""

import logging
import time
from decimal import Decimal

import pytest
from conftest import (
    TOKEN_A,
    TOKEN_B,
    TOKEN_C,
    FakeMarketDataProvider,
    FakeSubmitter,
    make_pool,
)
from prometheus_client import CollectorRegistry
from pool_routing import (
    ConfigurationError,
    DataUnavailable,
    MonitorLoop,
    RouteInvalidated,
    RoutingService,
    ValidationError,
    get_default_config,
)
from pool_routing.config_loader import router_config_from_dict
from pool_routing.metrics import RoutingMetrics, initialize_metrics

pytestmark = pytest.mark.integration

A, B, C = TOKEN_A.address, TOKEN_B.address, TOKEN_C.address


@pytest.fixture
def provider(triangle_pools):
    return FakeMarketDataProvider(triangle_pools)


@pytest.fixture
def registry():
    return CollectorRegistry()


@pytest.fixture
def submitter():
    return FakeSubmitter()


@pytest.fixture
def service(provider, submitter, registry, time_provider):
    return RoutingService.from_config(
        get_default_config(),
        provider,
        submitter=submitter,
        metrics=RoutingMetrics(registry),
        time_provider=time_provider,
    )


class TestRoutingService:
    @pytest.mark.asyncio
    async def test_route_then_execute_by_id(self, service, signer, submitter):
        await service.refresh()
        candidates = service.route(A, C, 100)

        assert candidates
        best = candidates[0]
        assert service.lookup(best.route_id) is best

        receipt = await service.execute_by_id(best.route_id, signer)
        assert receipt.status == "confirmed"
        assert receipt.result_id == best.route_id
        assert submitter.builds[0]["payload"].kind == "route"

    @pytest.mark.asyncio
    async def test_scan_then_execute_cycle(self, service, signer, submitter):
        await service.refresh()
        cycles = service.scan()

        assert len(cycles) == 1
        receipt = await service.execute_by_id(cycles[0].cycle_id, signer)
        assert receipt.status == "confirmed"
        assert receipt.priority_fee == Decimal("0.01")
        assert submitter.builds[0]["payload"].kind == "arbitrage"

    @pytest.mark.asyncio
    async def test_cycle_executes_at_quoted_size(self, service, signer):
        await service.refresh()
        cycle = service.scan()[0]
        with pytest.raises(ValidationError):
            await service.execute_by_id(cycle.cycle_id, signer, amount=50)

    @pytest.mark.asyncio
    async def test_unknown_id(self, service, signer):
        with pytest.raises(RouteInvalidated) as exc_info:
            await service.execute_by_id("nope", signer)
        assert exc_info.value.reason == "unknown_result"

    @pytest.mark.asyncio
    async def test_issued_cycles_expire_with_arbitrage_ttl(self, service, time_provider):
        await service.refresh()
        cycle = service.scan()[0]
        route = service.route(A, C, 100)[0]

        time_provider.advance_time(11)
        assert service.lookup(cycle.cycle_id) is None
        assert service.lookup(route.route_id) is route

    @pytest.mark.asyncio
    async def test_execution_requires_submitter(self, provider, time_provider, signer):
        service = RoutingService.from_config(
            get_default_config(), provider, time_provider=time_provider
        )
        await service.refresh()
        route = service.route(A, C, 100)[0]
        with pytest.raises(ConfigurationError):
            await service.execute_by_id(route.route_id, signer)

    @pytest.mark.asyncio
    async def test_moved_pool_invalidates_execution(self, service, signer, provider):
        await service.refresh()
        route = service.route(A, B, 100)[0]
        provider.set_pool(make_pool("PoolAB", TOKEN_A, TOKEN_B, price="0.8"))

        with pytest.raises(RouteInvalidated) as exc_info:
            await service.execute_by_id(route.route_id, signer)
        assert exc_info.value.reason == "output_moved"

    @pytest.mark.asyncio
    async def test_refresh_failure_recorded(self, service, provider, registry):
        await service.refresh()
        provider.fail_listing = True
        with pytest.raises(DataUnavailable):
            await service.refresh()

        assert registry.get_sample_value(
            "pool_routing_graph_refreshes_total", {"outcome": "success"}
        ) == 1.0
        assert registry.get_sample_value(
            "pool_routing_graph_refreshes_total", {"outcome": "failure"}
        ) == 1.0
        # Queries keep working on the last good graph
        assert service.route(A, C, 100)

    @pytest.mark.asyncio
    async def test_configured_defaults_apply(self, provider, time_provider):
        config = router_config_from_dict({"route": {"max_hops": 1, "allow_split": False}})
        service = RoutingService.from_config(config, provider, time_provider=time_provider)
        await service.refresh()

        candidates = service.route(A, C, 100)
        assert [c.hop_count for c in candidates] == [1]

    @pytest.mark.asyncio
    async def test_statistics(self, service, signer):
        await service.refresh()
        route = service.route(A, C, 100)[0]
        await service.execute_by_id(route.route_id, signer)
        service.scan()

        stats = service.statistics()
        assert stats["graph"]["pools"] == 3
        assert stats["graph"]["tokens"] == 3
        assert stats["graph"]["age"] == "0.00s"
        assert stats["graph"]["refreshed_at"] == "2022-01-01T00:00:00+00:00"
        assert stats["routes"]["found"] == 1
        assert stats["arbitrage"]["known_cycles"] == 1
        assert stats["execution"]["executions_confirmed"] == 1
        assert stats["execution"]["success_rate_pct"] == 100.0
        assert stats["issued_results"] >= 1

    def test_statistics_before_refresh(self, service):
        stats = service.statistics()
        assert stats["graph"]["age"] == "never refreshed"
        assert stats["graph"]["refreshed_at"] is None

    def test_configure_logging_from_config(self, provider, time_provider):
        root = logging.getLogger()
        saved_handlers = list(root.handlers)
        saved_level = root.level
        config = router_config_from_dict({"observability": {"log_level": "DEBUG"}})
        try:
            RoutingService.from_config(
                config, provider, time_provider=time_provider, configure_logging=True
            )
            assert logging.getLogger("pool_routing").level == logging.DEBUG
        finally:
            root.handlers[:] = saved_handlers
            root.setLevel(saved_level)
            logging.getLogger("pool_routing").setLevel(logging.NOTSET)

    def test_global_metrics_follow_observability_flag(self, provider, time_provider):
        global_metrics = initialize_metrics(CollectorRegistry())
        enabled = RoutingService.from_config(
            get_default_config(), provider, time_provider=time_provider
        )
        disabled = RoutingService.from_config(
            router_config_from_dict({"observability": {"enabled": False}}),
            provider,
            time_provider=time_provider,
        )

        assert enabled.metrics is global_metrics
        assert enabled.route_finder.metrics is global_metrics
        assert disabled.metrics is None

    @pytest.mark.asyncio
    async def test_refresh_drops_cached_results(self, service):
        await service.refresh()
        service.route(A, C, 100)
        service.scan()
        assert service.statistics()["cache"]["entries"] == 2

        await service.refresh()

        assert service.statistics()["cache"]["entries"] == 0
        service.route(A, C, 100)
        assert service.route_finder.traversal_count == 2


class TestMonitorLoop:
    @pytest.mark.asyncio
    async def test_runs_bounded_iterations(self, service):
        seen = []
        loop = MonitorLoop(service, on_cycles=seen.append, interval=0.01, max_iterations=2)

        iterations = await loop.run()

        assert iterations == 2
        assert len(seen) == 2
        assert all(len(cycles) == 1 for cycles in seen)

    @pytest.mark.asyncio
    async def test_async_callback(self, service):
        seen = []

        async def on_cycles(cycles):
            seen.extend(cycles)

        loop = MonitorLoop(service, on_cycles=on_cycles, interval=0.01, max_iterations=1)
        await loop.run()
        assert len(seen) == 1

    @pytest.mark.asyncio
    async def test_failed_refresh_scans_stale_graph(self, service, provider):
        loop = MonitorLoop(service, interval=0.01)
        await loop.run_once()

        provider.fail_listing = True
        cycles = await loop.run_once()

        assert loop.failed_refreshes == 1
        assert len(cycles) == 1

    @pytest.mark.asyncio
    async def test_scan_timeout_is_tolerated(self, service, monkeypatch):
        def slow_scan(min_profit, max_cycle_length, deadline=None):
            time.sleep(0.3)
            return []

        monkeypatch.setattr(service.detector, "scan", slow_scan)
        loop = MonitorLoop(service, interval=0.01, scan_timeout=0.05)

        cycles = await loop.run_once()

        assert cycles == []
        assert loop.timed_out_scans == 1

    @pytest.mark.asyncio
    async def test_stop_from_callback(self, service):
        loop = None

        def on_cycles(cycles):
            loop.stop()

        loop = MonitorLoop(service, on_cycles=on_cycles, interval=10)
        iterations = await loop.run()

        assert iterations == 1
        assert loop.stopped

    @pytest.mark.asyncio
    async def test_stop_before_run(self, service):
        loop = MonitorLoop(service, interval=0.01)
        loop.stop()
        assert await loop.run() == 0
