"""
Configuration loading and normalization for the pool routing system.

Provides a centralized way to load, validate, and normalize configuration
files with proper defaults and read-only access.
"""

from dataclasses import dataclass, field
from decimal import Decimal
from pathlib import Path
from typing import Any, Dict, Optional, Union

import yaml
from pydantic import ValidationError as PydanticValidationError

from .arbitrage_detector import ScoringPolicy
from .config_schema import RouterConfigSchema, validate_router_config
from .exceptions import ConfigurationError, ValidationError
from .pricing import PriceImpactModel
from .retry import PriorityFeePolicy, RetryPolicy
from .utils import basis_points_to_decimal


def _dec(value: float) -> Decimal:
    return Decimal(str(value))


@dataclass(frozen=True)
class GraphConfig:
    """Normalized pool graph configuration."""

    min_liquidity_usd: Decimal = Decimal("1000")
    refresh_interval_seconds: float = 5.0


@dataclass(frozen=True)
class RouteConfig:
    """Normalized route finder configuration."""

    max_hops: int = 3
    max_split_routes: int = 4
    max_candidates: int = 5
    max_slippage: Decimal = Decimal("0.15")
    max_paths_explored: int = 5000
    route_ttl_seconds: float = 30.0
    revalidation_tolerance: Decimal = Decimal("0.01")
    allow_split: bool = True


@dataclass(frozen=True)
class ArbitrageConfig:
    """Normalized arbitrage detector configuration."""

    min_profit_usd: Decimal = Decimal("1")
    max_cycle_length: int = 3
    max_seed_tokens: int = 10
    max_cycles_explored: int = 10000
    probe_amount_usd: Decimal = Decimal("100")
    arbitrage_ttl_seconds: float = 10.0
    profit_retention: Decimal = Decimal("0.9")
    max_results: int = 20
    scan_timeout_seconds: float = 5.0
    max_known_cycles: int = 100


@dataclass(frozen=True)
class ExecutionConfig:
    """Normalized execution configuration."""

    retry: RetryPolicy = field(default_factory=RetryPolicy)
    fees: PriorityFeePolicy = field(default_factory=PriorityFeePolicy)


@dataclass(frozen=True)
class MonitorConfig:
    """Normalized monitor loop configuration."""

    interval_seconds: float = 5.0
    max_iterations: Optional[int] = None


@dataclass(frozen=True)
class ObservabilityConfig:
    """Normalized observability configuration."""

    enabled: bool = True
    prometheus_port: int = 8000
    log_level: str = "INFO"


@dataclass(frozen=True)
class RouterConfig:
    """Immutable runtime configuration object."""

    name: str = "pool_router"
    graph: GraphConfig = field(default_factory=GraphConfig)
    impact: PriceImpactModel = field(default_factory=PriceImpactModel)
    route: RouteConfig = field(default_factory=RouteConfig)
    arbitrage: ArbitrageConfig = field(default_factory=ArbitrageConfig)
    scoring: ScoringPolicy = field(default_factory=ScoringPolicy)
    execution: ExecutionConfig = field(default_factory=ExecutionConfig)
    monitor: MonitorConfig = field(default_factory=MonitorConfig)
    observability: ObservabilityConfig = field(default_factory=ObservabilityConfig)


def load_yaml_config(config_path: Union[str, Path]) -> Dict[str, Any]:
    """Load and parse YAML configuration file."""
    config_path = Path(config_path)

    if not config_path.exists():
        raise ConfigurationError(f"Configuration file not found: {config_path}")

    try:
        with open(config_path, "r") as f:
            config_dict = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Invalid YAML in {config_path}: {e}") from e
    except OSError as e:
        raise ConfigurationError(f"Failed to load config {config_path}: {e}") from e

    if config_dict is None:
        raise ConfigurationError(f"Empty configuration file: {config_path}")
    if not isinstance(config_dict, dict):
        raise ConfigurationError(f"Configuration root must be a mapping: {config_path}")

    return config_dict


def _apply_aliases(config_dict: Dict[str, Any]) -> Dict[str, Any]:
    """Translate legacy basis-point keys into decimal fractions."""
    config = dict(config_dict)
    route = dict(config.get("route") or {})
    if "max_slippage_bps" in route:
        bps = route.pop("max_slippage_bps")
        route.setdefault("max_slippage", float(basis_points_to_decimal(bps)))
    if route:
        config["route"] = route

    impact = dict(config.get("impact") or {})
    if "max_impact_bps" in impact:
        bps = impact.pop("max_impact_bps")
        impact.setdefault("max_impact", float(basis_points_to_decimal(bps)))
    if impact:
        config["impact"] = impact
    return config


def _normalize_graph_config(schema: RouterConfigSchema) -> GraphConfig:
    section = schema.graph
    return GraphConfig(
        min_liquidity_usd=_dec(section.min_liquidity_usd),
        refresh_interval_seconds=section.refresh_interval_seconds,
    )


def _normalize_impact_model(schema: RouterConfigSchema) -> PriceImpactModel:
    section = schema.impact
    return PriceImpactModel(
        linear_factor=_dec(section.linear_factor),
        quadratic_factor=_dec(section.quadratic_factor),
        max_impact=_dec(section.max_impact),
    )


def _normalize_route_config(schema: RouterConfigSchema) -> RouteConfig:
    section = schema.route
    return RouteConfig(
        max_hops=section.max_hops,
        max_split_routes=section.max_split_routes,
        max_candidates=section.max_candidates,
        max_slippage=_dec(section.max_slippage),
        max_paths_explored=section.max_paths_explored,
        route_ttl_seconds=section.route_ttl_seconds,
        revalidation_tolerance=_dec(section.revalidation_tolerance),
        allow_split=section.allow_split,
    )


def _normalize_arbitrage_config(schema: RouterConfigSchema) -> ArbitrageConfig:
    section = schema.arbitrage
    return ArbitrageConfig(
        min_profit_usd=_dec(section.min_profit_usd),
        max_cycle_length=section.max_cycle_length,
        max_seed_tokens=section.max_seed_tokens,
        max_cycles_explored=section.max_cycles_explored,
        probe_amount_usd=_dec(section.probe_amount_usd),
        arbitrage_ttl_seconds=section.arbitrage_ttl_seconds,
        profit_retention=_dec(section.profit_retention),
        max_results=section.max_results,
        scan_timeout_seconds=section.scan_timeout_seconds,
        max_known_cycles=section.max_known_cycles,
    )


def _normalize_scoring_policy(schema: RouterConfigSchema) -> ScoringPolicy:
    section = schema.scoring
    return ScoringPolicy(
        hop_risk=section.hop_risk,
        impact_risk_weight=section.impact_risk_weight,
        thin_pool_liquidity=_dec(section.thin_pool_liquidity),
        thin_pool_risk=section.thin_pool_risk,
        low_volume_threshold=_dec(section.low_volume_threshold),
        low_volume_risk=section.low_volume_risk,
        max_risk=section.max_risk,
        base_confidence=section.base_confidence,
        fresh_within=section.fresh_within_seconds,
        stale_after=section.stale_after_seconds,
    )


def _normalize_execution_config(schema: RouterConfigSchema) -> ExecutionConfig:
    section = schema.execution
    return ExecutionConfig(
        retry=RetryPolicy(
            max_attempts=section.max_attempts,
            base_delay=section.base_delay_seconds,
            multiplier=section.backoff_multiplier,
            max_delay=section.max_delay_seconds,
            max_elapsed=section.max_elapsed_seconds,
        ),
        fees=PriorityFeePolicy(
            route_fee=_dec(section.route_priority_fee),
            arbitrage_fee=_dec(section.arbitrage_priority_fee),
            multiplier=_dec(section.fee_multiplier),
            ceiling=_dec(section.fee_ceiling),
        ),
    )


def router_config_from_dict(config_dict: Dict[str, Any]) -> RouterConfig:
    """
    Validate and normalize a configuration mapping.

    Raises:
        ValidationError: If the configuration fails schema validation
        ConfigurationError: If the validated values cannot be normalized
    """
    try:
        schema = validate_router_config(_apply_aliases(config_dict))
    except PydanticValidationError as e:
        raise ValidationError(
            f"Configuration validation failed: {e}",
            {"errors": e.errors(include_url=False)},
        ) from e

    try:
        return RouterConfig(
            name=schema.name,
            graph=_normalize_graph_config(schema),
            impact=_normalize_impact_model(schema),
            route=_normalize_route_config(schema),
            arbitrage=_normalize_arbitrage_config(schema),
            scoring=_normalize_scoring_policy(schema),
            execution=_normalize_execution_config(schema),
            monitor=MonitorConfig(
                interval_seconds=schema.monitor.interval_seconds,
                max_iterations=schema.monitor.max_iterations,
            ),
            observability=ObservabilityConfig(
                enabled=schema.observability.enabled,
                prometheus_port=schema.observability.prometheus_port,
                log_level=schema.observability.log_level,
            ),
        )
    except ConfigurationError:
        raise
    except (TypeError, ValueError, ArithmeticError) as e:
        raise ConfigurationError(f"Failed to normalize configuration: {e}") from e


def load_router_config(config_path: Union[str, Path]) -> RouterConfig:
    """
    Load and normalize a router configuration file.

    Args:
        config_path: Path to the YAML configuration file

    Returns:
        Normalized and frozen router configuration

    Raises:
        ConfigurationError: If the configuration cannot be loaded or is invalid
        ValidationError: If the configuration fails schema validation
    """
    return router_config_from_dict(load_yaml_config(config_path))


def get_default_config() -> RouterConfig:
    """Get a default configuration for testing or fallback purposes."""
    return RouterConfig()
