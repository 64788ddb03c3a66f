"""
Tests for provider models and the Provider Registry
"""

import pytest

from autopay_agent.errors import ErrorCode, NoProviderAvailableError
from autopay_agent.providers import ProviderRegistry, RequestPriority, ServiceRequest, default_providers


class TestCalculateCost:
    """Test ServiceProvider.calculate_cost()."""

    @pytest.mark.parametrize(
        "priority,bulk,expected",
        [
            (RequestPriority.NORMAL, 1, 0.001),
            (RequestPriority.HIGH, 1, 0.0015),
            (RequestPriority.LOW, 1, 0.0008),
            (RequestPriority.NORMAL, 10, 0.001),
            (RequestPriority.NORMAL, 11, 0.0009),
            (RequestPriority.HIGH, 50, 0.00135),
        ],
    )
    def test_pricing(self, provider_factory, priority, bulk, expected):
        provider = provider_factory("p", 0.001)
        request = ServiceRequest(service_type="weather", priority=priority, bulk=bulk)

        assert provider.calculate_cost(request) == pytest.approx(expected)

    def test_floor_price_is_cheapest_possible(self, provider_factory):
        provider = provider_factory("p", 0.001)
        cheapest = ServiceRequest(service_type="weather", priority=RequestPriority.LOW, bulk=100)

        assert provider.floor_price == pytest.approx(provider.calculate_cost(cheapest))


class TestProviderRegistry:
    """Test ProviderRegistry."""

    def test_defaults_registered_in_order(self, registry: ProviderRegistry):
        assert [p.id for p in registry.all()] == [p.id for p in default_providers()]
        assert len(registry) == 4

    def test_find_by_service_type(self, registry: ProviderRegistry):
        weather = registry.find_by_service_type("weather")

        assert [p.id for p in weather] == ["openweathermap", "weatherapi"]

    def test_find_with_cost_ceiling(self, registry: ProviderRegistry):
        weather = registry.find_by_service_type("weather", max_cost=0.00009)

        assert [p.id for p in weather] == ["weatherapi"]

    def test_inactive_providers_excluded(self, registry: ProviderRegistry):
        registry.deactivate("weatherapi")

        assert [p.id for p in registry.find_by_service_type("weather")] == ["openweathermap"]
        assert "weatherapi" not in [p.id for p in registry.active_providers()]

        registry.activate("weatherapi")
        assert len(registry.find_by_service_type("weather")) == 2

    def test_require_unknown_provider(self, registry: ProviderRegistry):
        with pytest.raises(NoProviderAvailableError) as exc_info:
            registry.require("missing")

        assert exc_info.value.code == ErrorCode.NO_SUITABLE_PROVIDER
        assert registry.get("missing") is None

    def test_reregistration_keeps_position(self, registry: ProviderRegistry, provider_factory):
        updated = provider_factory("openweathermap", 0.0002)

        registry.register(updated)

        assert registry.all()[0].cost_per_call == 0.0002
        assert len(registry) == 4

    def test_record_outcome_is_ewma(self, registry: ProviderRegistry):
        assert registry.record_outcome("coingecko", False) == pytest.approx(0.76)
        assert registry.record_outcome("coingecko", True) == pytest.approx(0.2 + 0.8 * 0.76)

    def test_reliability_stays_in_unit_interval(self, registry: ProviderRegistry):
        for _ in range(50):
            score = registry.record_outcome("coingecko", True)

        assert 0.0 <= score <= 1.0
        assert score == pytest.approx(1.0, abs=1e-3)

    def test_merge_remote_counts_new_providers(self, registry: ProviderRegistry, provider_factory):
        added = registry.merge_remote([provider_factory("weatherapi", 0.00007), provider_factory("remote", 0.0001)])

        assert added == 1
        assert registry.all()[-1].id == "remote"
        assert registry.require("weatherapi").cost_per_call == 0.00007

    def test_merge_remote_keeps_local_state(self, registry: ProviderRegistry, provider_factory):
        registry.deactivate("weatherapi")
        for _ in range(5):
            registry.record_outcome("openweathermap", success=False)
        learned = registry.require("openweathermap").reliability_score
        address = registry.require("openweathermap").address

        registry.merge_remote(
            [
                provider_factory("weatherapi", 0.00007, reliability_score=0.99),
                provider_factory("openweathermap", 0.00009, name="OWM", reliability_score=0.95),
            ]
        )

        assert registry.require("weatherapi").is_active is False
        openweathermap = registry.require("openweathermap")
        assert openweathermap.reliability_score == pytest.approx(learned)
        assert openweathermap.cost_per_call == 0.00009
        assert openweathermap.name == "OWM"
        assert openweathermap.address == address

    def test_merge_remote_skips_unpriced_providers(self, registry: ProviderRegistry, provider_factory):
        added = registry.merge_remote([provider_factory("free", 0.0), provider_factory("weatherapi", 0.0)])

        assert added == 0
        assert "free" not in registry
        assert registry.require("weatherapi").cost_per_call == 0.00008

    def test_statistics(self, registry: ProviderRegistry):
        registry.deactivate("coingecko")

        stats = registry.statistics()

        assert stats["total_providers"] == 4
        assert stats["active_providers"] == 3
        assert stats["service_type_counts"]["weather"] == 2
