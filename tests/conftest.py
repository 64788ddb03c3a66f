"""
Autopay Agent - Test Configuration and Shared Fixtures

Provides pytest configuration and shared fixtures for unit and integration tests.
Python 3.12+ with modern type hints and async patterns.
"""

import os
from typing import Any
from unittest.mock import AsyncMock

import pytest

from autopay_agent.budget_management import BudgetGuard
from autopay_agent.config import AgentConfig, PolicyConfig
from autopay_agent.metrics import MetricsStore, UsageMetrics
from autopay_agent.observability import ObservabilityAdapter
from autopay_agent.optimization import ProviderScorer
from autopay_agent.providers import ProviderRegistry, ServiceProvider, ServiceRequest, default_providers
from autopay_agent.routing import OptimizationOracle, OracleHealth

# Set test environment
os.environ["ENVIRONMENT"] = "test"
os.environ["LOG_LEVEL"] = "DEBUG"

START = 1_700_000_000.0


class FakeClock:
    """Manually advanced clock returning epoch seconds."""

    def __init__(self, now: float = START):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock() -> FakeClock:
    """Injectable clock starting at a fixed epoch."""
    return FakeClock()


@pytest.fixture
def observability() -> ObservabilityAdapter:
    """In-memory observability adapter."""
    return ObservabilityAdapter()


@pytest.fixture
def guard(clock: FakeClock, observability: ObservabilityAdapter) -> BudgetGuard:
    """Budget guard with the reference budget (0.01 daily, 0.1 monthly, 0.005 emergency) for 'agent'."""
    guard = BudgetGuard(clock=clock, observability=observability)
    guard.set_limits("agent", "0.01", "0.1", "0.005")
    return guard


@pytest.fixture
def metrics_store(clock: FakeClock) -> MetricsStore:
    return MetricsStore(clock=clock)


@pytest.fixture
def scorer(metrics_store: MetricsStore) -> ProviderScorer:
    return ProviderScorer(metrics_store)


@pytest.fixture
def registry() -> ProviderRegistry:
    """Registry seeded with the built-in providers."""
    return ProviderRegistry(default_providers())


@pytest.fixture
def policy_config() -> PolicyConfig:
    return PolicyConfig()


@pytest.fixture
def agent_config() -> AgentConfig:
    """Config with fast job cadences and no oracle."""
    return AgentConfig(
        environment="test",
        scheduler={
            "optimization_interval": 1.0,
            "rebalance_interval": 1.0,
            "health_check_interval": 1.0,
            "payment_sweep_interval": 1.0,
            "usage_analysis_interval": 1.0,
        },
    )


@pytest.fixture
def weather_request() -> ServiceRequest:
    return ServiceRequest(service_type="weather", max_cost=0.01)


def make_provider(provider_id: str, cost: float, service_type: str = "weather", **overrides: Any) -> ServiceProvider:
    """Build a provider with a deterministic address."""
    values: dict[str, Any] = {
        "id": provider_id,
        "name": provider_id.title(),
        "service_type": service_type,
        "address": f"0x{provider_id}",
        "cost_per_call": cost,
    }
    values.update(overrides)
    return ServiceProvider(**values)


@pytest.fixture
def provider_factory() -> Any:
    """Factory building providers: provider_factory("cheap", 0.001)."""
    return make_provider


@pytest.fixture
def mock_oracle() -> AsyncMock:
    """Healthy oracle mock with empty listings."""
    oracle = AsyncMock(spec=OptimizationOracle)
    oracle.health_check.return_value = OracleHealth.HEALTHY
    oracle.optimize_route.return_value = None
    oracle.get_usage_metrics.return_value = UsageMetrics()
    oracle.list_service_providers.return_value = []
    oracle.get_rebalancing_suggestions.return_value = []
    oracle.update_optimization_settings.return_value = None
    oracle.register_service_provider.return_value = None
    oracle.close.return_value = None
    return oracle
