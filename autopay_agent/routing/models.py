"""
Optimization Oracle Models

Wire models exchanged with the external optimization oracle.
"""

from enum import Enum

from pydantic import BaseModel, ConfigDict, Field

from ..providers import ServiceProvider


class OracleHealth(str, Enum):
    """Health reported by the oracle itself."""

    HEALTHY = "healthy"
    UNHEALTHY = "unhealthy"


class RebalancingSuggestion(BaseModel):
    """Suggestion to move traffic from one settlement chain to another."""

    from_chain: str
    to_chain: str
    reason: str = ""
    potential_savings: float = Field(default=0.0, ge=0.0)


class RemoteProvider(BaseModel):
    """Provider as listed by the oracle."""

    id: str
    name: str
    service_type: str = "general"
    address: str | None = None
    api_endpoint: str | None = None
    supported_chains: list[str] = Field(default_factory=list)
    cost_per_request: float = Field(default=0.0, ge=0.0)
    reliability_score: float = Field(default=0.95, ge=0.0, le=1.0)
    is_active: bool = True

    model_config = ConfigDict(extra="ignore")

    def to_service_provider(self) -> ServiceProvider:
        return ServiceProvider(
            id=self.id,
            name=self.name,
            service_type=self.service_type,
            address=self.address or self.id,
            api_endpoint=self.api_endpoint,
            cost_per_call=self.cost_per_request,
            reliability_score=self.reliability_score,
            supported_chains=self.supported_chains or ["REI"],
            is_active=self.is_active,
        )

    @classmethod
    def from_service_provider(cls, provider: ServiceProvider) -> "RemoteProvider":
        return cls(
            id=provider.id,
            name=provider.name,
            service_type=provider.service_type,
            address=provider.address,
            api_endpoint=provider.api_endpoint,
            supported_chains=provider.supported_chains,
            cost_per_request=provider.cost_per_call,
            reliability_score=provider.reliability_score,
            is_active=provider.is_active,
        )
