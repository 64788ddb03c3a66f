"""
Service Provider Models

Typed records for paid service providers and the requests routed to them.
"""

from enum import Enum
from typing import Any

from pydantic import BaseModel, Field

# Pricing multipliers applied by ServiceProvider.calculate_cost()
HIGH_PRIORITY_MULTIPLIER = 1.5
LOW_PRIORITY_MULTIPLIER = 0.8
BULK_DISCOUNT = 0.9
BULK_THRESHOLD = 10


class RequestPriority(str, Enum):
    """Urgency of a service request; affects provider pricing."""

    HIGH = "high"
    NORMAL = "normal"
    LOW = "low"


class ServiceRequest(BaseModel):
    """A paid service request to be routed to a provider."""

    service_type: str = Field(..., min_length=1, description="Requested service type (e.g. 'weather')")
    max_cost: float = Field(default=0.01, gt=0.0, description="Maximum acceptable cost for this request")
    priority: RequestPriority = Field(default=RequestPriority.NORMAL, description="Request urgency")
    bulk: int = Field(default=1, ge=1, description="Number of units requested in one call")
    chain: str | None = Field(default=None, description="Settlement chain (None = policy default)")
    estimated_cost: float | None = Field(default=None, ge=0.0, description="Caller's cost estimate")
    principal: str | None = Field(default=None, description="Principal paying (None = agent's own budget)")
    payload: dict[str, Any] = Field(default_factory=dict, description="Opaque request parameters")


class ServiceProvider(BaseModel):
    """
    A provider able to serve one service type.

    reliability_score is an exponentially-weighted rolling statistic maintained
    by the ProviderRegistry, not a raw success average.
    """

    id: str = Field(..., min_length=1, description="Unique provider identifier")
    name: str = Field(..., description="Human-readable provider name")
    service_type: str = Field(..., description="Service type served")
    address: str = Field(..., description="Settlement address payments are sent to")
    cost_per_call: float = Field(..., ge=0.0, description="Base price per call")
    reliability_score: float = Field(default=0.95, ge=0.0, le=1.0, description="EWMA of call outcomes")
    supported_chains: list[str] = Field(default_factory=lambda: ["REI"], description="Chains the provider settles on")
    capabilities: list[str] = Field(default_factory=list, description="Provider capabilities")
    api_endpoint: str | None = Field(default=None, description="Provider API endpoint")
    is_active: bool = Field(default=True, description="Whether the provider may be selected")

    def calculate_cost(self, request: ServiceRequest) -> float:
        """
        Price this provider charges for a request.

        Base cost_per_call, x1.5 for HIGH priority, x0.8 for LOW priority,
        and a further x0.9 bulk discount when more than 10 units are requested.
        """
        cost = self.cost_per_call

        if request.priority == RequestPriority.HIGH:
            cost *= HIGH_PRIORITY_MULTIPLIER
        elif request.priority == RequestPriority.LOW:
            cost *= LOW_PRIORITY_MULTIPLIER

        if request.bulk > BULK_THRESHOLD:
            cost *= BULK_DISCOUNT

        return cost

    @property
    def floor_price(self) -> float:
        """Lowest price calculate_cost() can produce (low priority, bulk)."""
        return self.cost_per_call * LOW_PRIORITY_MULTIPLIER * BULK_DISCOUNT
