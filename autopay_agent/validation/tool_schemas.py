"""
Autopay Agent - Tool Input Validation Schemas

Pydantic models for validating MCP tool inputs.
"""

from pydantic import BaseModel, Field, field_validator

from ..providers import RequestPriority


class CheckStatusInput(BaseModel):
    """Input validation for check_status tool."""

    include_details: bool = Field(
        default=False,
        description="Include jobs, policy and metric details",
    )


class GetBudgetStatusInput(BaseModel):
    """Input validation for get_budget_status tool."""

    principal: str | None = Field(
        default=None,
        min_length=1,
        max_length=256,
        description="Principal to report on (None = the agent's own principal)",
    )


class RecommendProviderInput(BaseModel):
    """Input validation for recommend_provider tool."""

    service_type: str = Field(
        ...,
        min_length=1,
        max_length=128,
        description="Service type to route (e.g. 'weather')",
    )
    max_cost: float = Field(
        default=0.01,
        gt=0.0,
        description="Maximum acceptable cost per call (positive)",
    )
    priority: RequestPriority = Field(
        default=RequestPriority.NORMAL,
        description="Request priority: high, normal or low",
    )
    bulk: int = Field(
        default=1,
        ge=1,
        le=10000,
        description="Units requested in one call (1-10000)",
    )
    chain: str | None = Field(
        default=None,
        max_length=64,
        description="Settlement chain (None = preferred chain)",
    )

    @field_validator("service_type")
    @classmethod
    def validate_service_type(cls, v: str) -> str:
        """Ensure service type is not just whitespace."""
        if not v.strip():
            raise ValueError("Service type cannot be empty or only whitespace")
        return v.strip()


class GetUsageForecastInput(BaseModel):
    """Input validation for get_usage_forecast tool."""

    service_type: str | None = Field(
        default=None,
        min_length=1,
        max_length=128,
        description="Service type to forecast (None = all traffic)",
    )
    total_budget: float | None = Field(
        default=None,
        gt=0.0,
        description="Budget to split over the next 24 hours (positive)",
    )
    include_report: bool = Field(
        default=False,
        description="Include the usage report (totals, providers, anomalies, trends)",
    )
