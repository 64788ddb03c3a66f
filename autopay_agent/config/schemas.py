"""
Autopay Agent - Configuration Schemas

Defines typed configuration models using Pydantic for validation and type safety.
All configuration must be defined here and validated at startup.
"""

from enum import Enum
from typing import Self

from pydantic import BaseModel, ConfigDict, Field, model_validator

# Budget configuration lives with the budget guard; re-exported here so the
# root config has a single source of truth.
from ..budget_management.config import BudgetConfig as BudgetConfig


class Environment(str, Enum):
    """Runtime environment."""

    DEVELOPMENT = "development"
    STAGING = "staging"
    PRODUCTION = "production"
    TEST = "test"


class LogLevel(str, Enum):
    """Log levels."""

    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


class SchedulerConfig(BaseModel):
    """Cadences (seconds) of the periodic jobs."""

    optimization_interval: float = Field(default=30.0, ge=1.0, description="Tick cadence for the decision policy")
    rebalance_interval: float = Field(default=300.0, ge=1.0, description="Cadence for rebalance analysis")
    health_check_interval: float = Field(default=60.0, ge=1.0, description="Cadence for router and guard health")
    payment_sweep_interval: float = Field(default=60.0, ge=1.0, description="Cadence for pending payment sweeps")
    usage_analysis_interval: float = Field(
        default=900.0, ge=1.0, description="Cadence for usage pattern analysis and anomaly detection"
    )


class PolicyConfig(BaseModel):
    """Decision policy thresholds."""

    max_cost_per_transaction: float = Field(default=0.01, ge=0.0, description="Hard per-transaction cap")
    reliability_threshold: float = Field(
        default=0.95,
        ge=0.0,
        le=1.0,
        description="Minimum provider reliability score to be eligible",
    )
    emergency_threshold: float = Field(
        default=0.005,
        ge=0.0,
        description="Daily remaining budget below which conservation mode starts",
    )
    rebalance_savings_threshold: float = Field(
        default=0.001,
        ge=0.0,
        description="Minimum potential savings for a rebalancing suggestion to be applied",
    )
    learning_rate: float = Field(default=0.01, gt=0.0, le=1.0, description="Scorer weight adaptation rate")
    history_size: int = Field(default=1000, ge=1, description="Maximum DecisionHistory entries kept")
    default_chain: str = Field(default="REI", description="Chain used when a request names none")


class RouterConfig(BaseModel):
    """External optimization oracle client configuration."""

    base_url: str | None = Field(default=None, description="Oracle base URL (None = run without the oracle)")
    timeout: float = Field(default=5.0, gt=0.0, description="Timeout in seconds applied to every oracle call")
    suggestion_ttl: float | None = Field(
        default=None,
        gt=0.0,
        description="Max age in seconds of cached oracle data (None = one health-check interval)",
    )


class ObservabilityConfig(BaseModel):
    """Observability and monitoring configuration."""

    enable_metrics: bool = Field(default=True, description="Enable metrics collection")
    enable_tracing: bool = Field(default=False, description="Enable span timing logs")
    metrics_db_path: str | None = Field(
        default=None,
        description="SQLite database path for metric persistence (None = in-memory only)",
    )
    metrics_retention: float = Field(
        default=7 * 24 * 3600.0,
        gt=0.0,
        description="Seconds persisted metric samples are kept; pruned by the usage-analysis job",
    )


class AgentConfig(BaseModel):
    """Root configuration for the autopay agent."""

    environment: Environment = Field(default=Environment.DEVELOPMENT, description="Runtime environment")
    log_level: LogLevel = Field(default=LogLevel.INFO, description="Logging level")

    scheduler: SchedulerConfig = Field(default_factory=SchedulerConfig)
    policy: PolicyConfig = Field(default_factory=PolicyConfig)
    budget: BudgetConfig = Field(default_factory=BudgetConfig)
    router: RouterConfig = Field(default_factory=RouterConfig)
    observability: ObservabilityConfig = Field(default_factory=ObservabilityConfig)

    @property
    def suggestion_ttl(self) -> float:
        """Staleness bound for cached oracle data."""
        if self.router.suggestion_ttl is not None:
            return self.router.suggestion_ttl
        return self.scheduler.health_check_interval

    @model_validator(mode="after")
    def validate_production(self) -> Self:
        """Production deployments must have a budget configured."""
        if self.environment == Environment.PRODUCTION and not self.budget.enabled:
            raise ValueError("A budget must be enabled in production")
        return self

    model_config = ConfigDict(use_enum_values=True, validate_assignment=True)
