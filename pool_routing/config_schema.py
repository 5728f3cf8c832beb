"""
Configuration schema validation using Pydantic
"""

from pathlib import Path
from typing import Dict, Literal, Optional, Union

from pydantic import BaseModel, Field, field_validator, model_validator


class GraphSection(BaseModel):
    """Pool graph configuration"""

    min_liquidity_usd: float = Field(
        ge=0, default=1000.0, description="Pools below this TVL are ignored"
    )
    refresh_interval_seconds: float = Field(
        ge=0.1, le=3600, default=5.0, description="Monitor refresh cadence"
    )

    model_config = {"extra": "forbid"}


class ImpactSection(BaseModel):
    """Price impact model configuration"""

    linear_factor: float = Field(ge=0, le=10, default=0.01)
    quadratic_factor: float = Field(ge=0, le=100, default=1.0)
    max_impact: float = Field(gt=0, lt=1, default=0.99)

    model_config = {"extra": "forbid"}


class RouteSection(BaseModel):
    """Route finder configuration"""

    max_hops: int = Field(ge=1, le=5, default=3, description="Default hop bound")
    max_split_routes: int = Field(ge=2, le=8, default=4)
    max_candidates: int = Field(ge=1, le=50, default=5)
    max_slippage: float = Field(gt=0, le=1, default=0.15)
    max_paths_explored: int = Field(ge=10, le=1000000, default=5000)
    route_ttl_seconds: float = Field(gt=0, le=3600, default=30.0)
    revalidation_tolerance: float = Field(ge=0, lt=1, default=0.01)
    allow_split: bool = True

    model_config = {"extra": "forbid"}


class ArbitrageSection(BaseModel):
    """Arbitrage detector configuration"""

    min_profit_usd: float = Field(ge=0, default=1.0)
    max_cycle_length: int = Field(ge=2, le=5, default=3)
    max_seed_tokens: int = Field(ge=1, le=1000, default=10)
    max_cycles_explored: int = Field(ge=1, le=10000000, default=10000)
    probe_amount_usd: float = Field(gt=0, default=100.0)
    arbitrage_ttl_seconds: float = Field(gt=0, le=3600, default=10.0)
    profit_retention: float = Field(gt=0, le=1, default=0.9)
    max_results: int = Field(ge=1, le=1000, default=20)
    scan_timeout_seconds: float = Field(gt=0, le=600, default=5.0)
    max_known_cycles: int = Field(ge=0, le=100000, default=100)

    model_config = {"extra": "forbid"}


class ScoringSection(BaseModel):
    """Cycle scoring policy configuration"""

    hop_risk: float = Field(ge=0, le=10, default=0.5)
    impact_risk_weight: float = Field(ge=0, le=1000, default=10.0)
    thin_pool_liquidity: float = Field(ge=0, default=10000.0)
    thin_pool_risk: float = Field(ge=0, le=10, default=2.0)
    low_volume_threshold: float = Field(ge=0, default=1000.0)
    low_volume_risk: float = Field(ge=0, le=10, default=1.5)
    max_risk: float = Field(gt=0, le=100, default=10.0)
    base_confidence: float = Field(ge=0, le=1, default=0.8)
    fresh_within_seconds: float = Field(ge=0, default=5.0)
    stale_after_seconds: float = Field(gt=0, default=60.0)

    @model_validator(mode="after")
    def validate_freshness_window(self):
        if self.stale_after_seconds <= self.fresh_within_seconds:
            raise ValueError("stale_after_seconds must be greater than fresh_within_seconds")
        return self

    model_config = {"extra": "forbid"}


class ExecutionSection(BaseModel):
    """Route executor configuration"""

    max_attempts: int = Field(ge=1, le=10, default=5, description="Submission attempts")
    base_delay_seconds: float = Field(ge=0, le=60, default=1.0)
    backoff_multiplier: float = Field(ge=1.0, le=10.0, description="Backoff multiplier", default=2.0)
    max_delay_seconds: float = Field(ge=0, le=300, default=8.0)
    max_elapsed_seconds: float = Field(gt=0, le=3600, default=30.0)
    route_priority_fee: float = Field(ge=0, default=0.0)
    arbitrage_priority_fee: float = Field(ge=0, default=0.01)
    fee_multiplier: float = Field(ge=1.0, le=10.0, default=1.5)
    fee_ceiling: float = Field(ge=0, default=0.1)

    @model_validator(mode="after")
    def validate_priority_fees(self):
        if self.arbitrage_priority_fee <= self.route_priority_fee:
            raise ValueError(
                "arbitrage_priority_fee must be higher than route_priority_fee"
            )
        if self.fee_ceiling < self.arbitrage_priority_fee:
            raise ValueError("fee_ceiling must be at least arbitrage_priority_fee")
        return self

    model_config = {"extra": "forbid"}


class MonitorSection(BaseModel):
    """Monitor loop configuration"""

    interval_seconds: float = Field(gt=0, le=3600, default=5.0)
    max_iterations: Optional[int] = Field(ge=1, default=None)

    model_config = {"extra": "forbid"}


class ObservabilitySection(BaseModel):
    """Metrics and logging configuration"""

    enabled: bool = True
    prometheus_port: int = Field(ge=1024, le=65535, default=8000)
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"

    model_config = {"extra": "forbid"}


class RouterConfigSchema(BaseModel):
    """Complete router configuration schema"""

    name: str = Field(default="pool_router", description="Deployment name")
    graph: GraphSection = Field(default_factory=GraphSection)
    impact: ImpactSection = Field(default_factory=ImpactSection)
    route: RouteSection = Field(default_factory=RouteSection)
    arbitrage: ArbitrageSection = Field(default_factory=ArbitrageSection)
    scoring: ScoringSection = Field(default_factory=ScoringSection)
    execution: ExecutionSection = Field(default_factory=ExecutionSection)
    monitor: MonitorSection = Field(default_factory=MonitorSection)
    observability: ObservabilitySection = Field(default_factory=ObservabilitySection)

    @field_validator("name")
    @classmethod
    def validate_name(cls, v):
        if not v.strip():
            raise ValueError("Router name cannot be empty")
        return v.strip()

    @model_validator(mode="after")
    def validate_ttl_relationship(self):
        # Arbitrage results decay faster than routes
        if self.arbitrage.arbitrage_ttl_seconds > self.route.route_ttl_seconds:
            raise ValueError(
                "arbitrage_ttl_seconds must not exceed route_ttl_seconds"
            )
        return self

    model_config = {
        "extra": "forbid",  # Disallow extra fields
        "validate_assignment": True,
    }


def validate_router_config(config_dict: Dict) -> RouterConfigSchema:
    """
    Validate a router configuration dictionary

    Args:
        config_dict: Dictionary representation of router config

    Returns:
        Validated RouterConfigSchema object

    Raises:
        pydantic.ValidationError: If configuration is invalid
    """
    return RouterConfigSchema(**config_dict)


def validate_config_file(config_path: Union[str, Path]) -> RouterConfigSchema:
    """
    Validate a router configuration file

    Raises:
        FileNotFoundError: If config file doesn't exist
        pydantic.ValidationError: If configuration is invalid
        yaml.YAMLError: If YAML parsing fails
    """
    import yaml

    config_path = Path(config_path)
    if not config_path.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    with open(config_path, "r") as f:
        config_dict = yaml.safe_load(f)

    if config_dict is None:
        raise ValueError("Configuration file is empty or invalid")

    return validate_router_config(config_dict)
