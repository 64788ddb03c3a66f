"""
Budget Management Configuration

Defines typed configuration for the budget guard: the principal the agent
spends on behalf of, its daily/monthly limits and the per-transaction
emergency threshold above which elevated authorization is required.
"""

from enum import Enum
from typing import Self

from pydantic import BaseModel, ConfigDict, Field, model_validator


class BudgetWindow(str, Enum):
    """Budget accounting windows."""

    DAILY = "daily"
    MONTHLY = "monthly"


# Window lengths in seconds. Monthly is a fixed 30-day window, not a calendar month.
DAY_SECONDS = 24 * 60 * 60
MONTH_SECONDS = 30 * DAY_SECONDS


class BudgetConfig(BaseModel):
    """Configuration for the agent's own spending budget."""

    enabled: bool = Field(default=True, description="Configure a budget for the principal at startup")
    principal: str = Field(default="agent", min_length=1, description="Identity the agent spends on behalf of")

    daily_limit: float = Field(default=0.01, ge=0.0, description="Daily spending limit")
    monthly_limit: float = Field(default=0.1, ge=0.0, description="Monthly (30-day) spending limit")
    emergency_threshold: float = Field(
        default=0.005,
        ge=0.0,
        description="Per-transaction amount above which elevated authorization is required",
    )

    @model_validator(mode="after")
    def validate_limits(self) -> Self:
        """Daily limit may never exceed the monthly limit."""
        if self.daily_limit > self.monthly_limit:
            raise ValueError(
                f"daily_limit ({self.daily_limit}) must not exceed monthly_limit ({self.monthly_limit})"
            )
        return self

    model_config = ConfigDict(use_enum_values=True)
