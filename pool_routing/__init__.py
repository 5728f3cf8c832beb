"""
Pool Routing.

Multi-hop routing of trades across liquidity pools and detection of
self-financing arbitrage cycles, with revalidated, retried execution through
a pluggable transaction submitter.
"""

PROJECT_NAME = "pool-routing"

from pool_routing.version import __version__

VERSION = __version__

# Export main components for easier imports
from pool_routing.arbitrage_detector import ArbitrageDetector, ScoringPolicy
from pool_routing.cache import CacheEntry, ResultCache
from pool_routing.config_loader import RouterConfig, get_default_config, load_router_config
from pool_routing.exceptions import (
    ConfigurationError,
    DataUnavailable,
    InsufficientLiquidity,
    NoRouteFound,
    PriceImpactExceeded,
    RouteInvalidated,
    RoutingError,
    SimulationFailed,
    StaleOpportunity,
    SubmissionFailed,
    ValidationError,
)
from pool_routing.executor import RouteExecutor
from pool_routing.graph import GraphSnapshot, PoolGraph
from pool_routing.pricing import PriceImpactModel
from pool_routing.retry import PriorityFeePolicy, RetryPolicy
from pool_routing.route_finder import RouteFinder
from pool_routing.service import MonitorLoop, RoutingService
from pool_routing.types import (
    ArbitrageCycle,
    Confirmation,
    ExecutionReceipt,
    Pool,
    Route,
    RouteHop,
    SplitRoute,
    Token,
)

__all__ = [
    "PROJECT_NAME",
    "VERSION",
    "ArbitrageCycle",
    "ArbitrageDetector",
    "CacheEntry",
    "ConfigurationError",
    "Confirmation",
    "DataUnavailable",
    "ExecutionReceipt",
    "GraphSnapshot",
    "InsufficientLiquidity",
    "MonitorLoop",
    "NoRouteFound",
    "Pool",
    "PoolGraph",
    "PriceImpactExceeded",
    "PriceImpactModel",
    "PriorityFeePolicy",
    "ResultCache",
    "RetryPolicy",
    "Route",
    "RouteExecutor",
    "RouteFinder",
    "RouteHop",
    "RouteInvalidated",
    "RouterConfig",
    "RoutingError",
    "RoutingService",
    "ScoringPolicy",
    "SimulationFailed",
    "SplitRoute",
    "StaleOpportunity",
    "SubmissionFailed",
    "Token",
    "ValidationError",
    "get_default_config",
    "load_router_config",
]
