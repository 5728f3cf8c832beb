"""Tests for the config_loader module."""

from decimal import Decimal
from pathlib import Path
from tempfile import NamedTemporaryFile

import pytest
import yaml
from pool_routing.config_loader import (
    RouterConfig,
    get_default_config,
    load_router_config,
    load_yaml_config,
    router_config_from_dict,
)
from pool_routing.exceptions import ConfigurationError, ValidationError
from pool_routing.pricing import PriceImpactModel
from pool_routing.retry import RetryPolicy


def _write_yaml(data=None, raw=None):
    f = NamedTemporaryFile(mode="w", suffix=".yaml", delete=False)
    with f:
        if raw is not None:
            f.write(raw)
        else:
            yaml.dump(data, f)
    return Path(f.name)


def test_load_yaml_config_valid():
    config_data = {"name": "test_router", "route": {"max_hops": 2}}
    path = _write_yaml(config_data)
    try:
        assert load_yaml_config(path) == config_data
    finally:
        path.unlink()


def test_load_yaml_config_file_not_found():
    with pytest.raises(ConfigurationError, match="Configuration file not found"):
        load_yaml_config("/non/existent/file.yaml")


def test_load_yaml_config_empty_file():
    path = _write_yaml(raw="")
    try:
        with pytest.raises(ConfigurationError, match="Empty configuration file"):
            load_yaml_config(path)
    finally:
        path.unlink()


def test_load_yaml_config_invalid_yaml():
    path = _write_yaml(raw="invalid: yaml: content: [")
    try:
        with pytest.raises(ConfigurationError, match="Invalid YAML"):
            load_yaml_config(path)
    finally:
        path.unlink()


def test_load_yaml_config_non_mapping_root():
    path = _write_yaml(raw="- just\n- a list\n")
    try:
        with pytest.raises(ConfigurationError, match="must be a mapping"):
            load_yaml_config(path)
    finally:
        path.unlink()


def test_default_config():
    config = get_default_config()
    assert isinstance(config, RouterConfig)
    assert config.route.max_hops == 3
    assert config.route.max_slippage == Decimal("0.15")
    assert config.route.route_ttl_seconds == 30.0
    assert config.arbitrage.arbitrage_ttl_seconds == 10.0
    assert config.arbitrage.max_known_cycles == 100
    assert config.execution.retry == RetryPolicy()
    assert config.impact == PriceImpactModel()


def test_defaults_match_schema_defaults():
    """An empty mapping normalizes to the same values as the dataclass defaults."""
    assert router_config_from_dict({}) == get_default_config()


def test_router_config_normalizes_decimals():
    config = router_config_from_dict(
        {
            "name": "  solana_router  ",
            "graph": {"min_liquidity_usd": 2500},
            "impact": {"linear_factor": 0.02},
            "route": {"max_slippage": 0.05, "max_hops": 4},
            "arbitrage": {"min_profit_usd": 0.5, "probe_amount_usd": 250, "max_known_cycles": 20},
            "execution": {"max_attempts": 3, "arbitrage_priority_fee": 0.02},
        }
    )

    assert config.name == "solana_router"
    assert config.graph.min_liquidity_usd == Decimal("2500")
    assert config.impact.linear_factor == Decimal("0.02")
    assert config.route.max_slippage == Decimal("0.05")
    assert config.route.max_hops == 4
    assert config.arbitrage.min_profit_usd == Decimal("0.5")
    assert config.arbitrage.probe_amount_usd == Decimal("250")
    assert config.arbitrage.max_known_cycles == 20
    assert config.execution.retry.max_attempts == 3
    assert config.execution.fees.arbitrage_fee == Decimal("0.02")


def test_basis_point_aliases():
    config = router_config_from_dict(
        {"route": {"max_slippage_bps": 500}, "impact": {"max_impact_bps": 9000}}
    )
    assert config.route.max_slippage == Decimal("0.05")
    assert config.impact.max_impact == Decimal("0.9")


def test_invalid_values_raise_validation_error():
    with pytest.raises(ValidationError, match="Configuration validation failed") as exc_info:
        router_config_from_dict({"route": {"max_hops": 9}})
    assert exc_info.value.details["errors"]


def test_unknown_keys_rejected():
    with pytest.raises(ValidationError):
        router_config_from_dict({"route": {"max_hopz": 2}})


def test_load_router_config_from_file():
    path = _write_yaml(
        {
            "name": "file_router",
            "scoring": {"fresh_within_seconds": 2, "stale_after_seconds": 30},
            "monitor": {"interval_seconds": 1.5, "max_iterations": 10},
            "observability": {"log_level": "DEBUG", "prometheus_port": 9100},
        }
    )
    try:
        config = load_router_config(path)
    finally:
        path.unlink()

    assert config.name == "file_router"
    assert config.scoring.fresh_within == 2
    assert config.scoring.stale_after == 30
    assert config.monitor.max_iterations == 10
    assert config.observability.log_level == "DEBUG"
    assert config.observability.prometheus_port == 9100


def test_config_is_frozen():
    config = get_default_config()
    with pytest.raises(AttributeError):
        config.name = "changed"
