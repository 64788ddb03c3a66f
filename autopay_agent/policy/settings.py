"""
Optimization Settings

Live routing settings owned by the decision policy and mirrored to the
optimization oracle on a best-effort basis.
"""

from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from ..config import PolicyConfig

DEFAULT_REBALANCE_FREQUENCY = 3600
REDUCED_REBALANCE_FREQUENCY = 7200
COST_REDUCTION_FACTOR = 0.8
EMERGENCY_RELIABILITY_THRESHOLD = 0.9


class OptimizationSettings(BaseModel):
    """Current routing settings."""

    max_cost_per_transaction: float = Field(..., ge=0.0)
    preferred_chains: list[str] = Field(default_factory=lambda: ["REI"], min_length=1)
    reliability_threshold: float = Field(..., ge=0.0, le=1.0)
    auto_optimization_enabled: bool = True
    rebalance_frequency: int = Field(default=DEFAULT_REBALANCE_FREQUENCY, ge=1, description="Seconds")
    emergency_mode: bool = False

    model_config = ConfigDict(validate_assignment=True)

    @classmethod
    def from_config(cls, config: PolicyConfig) -> "OptimizationSettings":
        return cls(
            max_cost_per_transaction=config.max_cost_per_transaction,
            preferred_chains=[config.default_chain],
            reliability_threshold=config.reliability_threshold,
        )

    def to_oracle_payload(self) -> dict[str, Any]:
        """Settings as sent to the oracle."""
        return self.model_dump(exclude={"emergency_mode"})
