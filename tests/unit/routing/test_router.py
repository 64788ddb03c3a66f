"""
Tests for the External Router

Degraded-mode gating, timeouts, the health-check state machine and the
bounded-staleness cache.
"""

import asyncio
from unittest.mock import AsyncMock

import pytest

from autopay_agent.errors import ConnectivityError, OracleTimeoutError, RouterUnavailableError
from autopay_agent.metrics import UsageMetrics
from autopay_agent.observability import ObservabilityAdapter
from autopay_agent.routing import ExternalRouter, OracleHealth, RebalancingSuggestion, RouterHealth


async def _hang(*args, **kwargs):
    await asyncio.sleep(10)


@pytest.fixture
def router(mock_oracle: AsyncMock, observability: ObservabilityAdapter, clock) -> ExternalRouter:
    return ExternalRouter(mock_oracle, timeout=0.05, suggestion_ttl=60.0, observability=observability, clock=clock)


async def _degrade(router: ExternalRouter, mock_oracle: AsyncMock) -> None:
    mock_oracle.optimize_route.side_effect = ConnectionError("refused")
    with pytest.raises(ConnectivityError):
        await router.suggest_route("REI", 0.001)
    mock_oracle.optimize_route.side_effect = None
    mock_oracle.optimize_route.reset_mock()


class TestHealthyRouter:
    """Test calls while the oracle is healthy."""

    @pytest.mark.asyncio
    async def test_suggest_route_passes_through(self, router: ExternalRouter, mock_oracle: AsyncMock):
        mock_oracle.optimize_route.return_value = "weatherapi"

        assert await router.suggest_route("REI", 0.0001) == "weatherapi"
        mock_oracle.optimize_route.assert_awaited_once_with("REI", 0.0001)
        assert router.health == RouterHealth.HEALTHY

    @pytest.mark.asyncio
    async def test_no_suggestion_is_not_a_failure(self, router: ExternalRouter, mock_oracle: AsyncMock):
        assert await router.suggest_route("REI", 0.0001) is None
        assert router.is_healthy

    @pytest.mark.asyncio
    async def test_rebalancing_suggestions(self, router: ExternalRouter, mock_oracle: AsyncMock):
        suggestion = RebalancingSuggestion(from_chain="ETH", to_chain="REI", potential_savings=0.01)
        mock_oracle.get_rebalancing_suggestions.return_value = [suggestion]

        assert await router.get_rebalancing_suggestions() == [suggestion]


class TestDegradedMode:
    """Test transitions to Degraded and short-circuiting."""

    @pytest.mark.asyncio
    async def test_failure_degrades_and_wraps(self, router: ExternalRouter, mock_oracle: AsyncMock):
        mock_oracle.optimize_route.side_effect = RuntimeError("boom")

        with pytest.raises(ConnectivityError):
            await router.suggest_route("REI", 0.001)

        assert router.health == RouterHealth.DEGRADED
        assert "boom" in router.status().last_error

    @pytest.mark.asyncio
    async def test_timeout_degrades(self, router: ExternalRouter, mock_oracle: AsyncMock):
        mock_oracle.optimize_route.side_effect = _hang

        with pytest.raises(OracleTimeoutError):
            await router.suggest_route("REI", 0.001)

        assert router.health == RouterHealth.DEGRADED

    @pytest.mark.asyncio
    async def test_degraded_router_never_calls_oracle(
        self, router: ExternalRouter, mock_oracle: AsyncMock, observability: ObservabilityAdapter
    ):
        await _degrade(router, mock_oracle)

        with pytest.raises(RouterUnavailableError):
            await router.suggest_route("REI", 0.001)
        with pytest.raises(RouterUnavailableError):
            await router.get_rebalancing_suggestions()

        mock_oracle.optimize_route.assert_not_awaited()
        mock_oracle.get_rebalancing_suggestions.assert_not_awaited()
        assert observability.counter("router.fallback") == 2

    @pytest.mark.asyncio
    async def test_router_without_oracle_is_degraded(self, observability: ObservabilityAdapter):
        router = ExternalRouter(None, observability=observability)

        assert router.health == RouterHealth.DEGRADED
        assert router.status().oracle_configured is False
        with pytest.raises(RouterUnavailableError):
            await router.suggest_route("REI", 0.001)
        assert await router.check_health() == RouterHealth.DEGRADED


class TestHealthCheck:
    """Test the health check state machine."""

    @pytest.mark.asyncio
    async def test_health_check_recovers_degraded_router(self, router: ExternalRouter, mock_oracle: AsyncMock):
        await _degrade(router, mock_oracle)

        assert await router.check_health() == RouterHealth.HEALTHY
        mock_oracle.optimize_route.return_value = "weatherapi"
        assert await router.suggest_route("REI", 0.001) == "weatherapi"

    @pytest.mark.asyncio
    async def test_health_check_passes_through_reconnecting(self, router: ExternalRouter, mock_oracle: AsyncMock):
        await _degrade(router, mock_oracle)
        seen: list[RouterHealth] = []

        async def health_check():
            seen.append(router.health)
            return OracleHealth.HEALTHY

        mock_oracle.health_check.side_effect = health_check

        await router.check_health()

        assert seen == [RouterHealth.RECONNECTING]

    @pytest.mark.asyncio
    async def test_failed_health_check_stays_degraded(self, router: ExternalRouter, mock_oracle: AsyncMock):
        await _degrade(router, mock_oracle)
        mock_oracle.health_check.side_effect = ConnectionError("still down")

        assert await router.check_health() == RouterHealth.DEGRADED

    @pytest.mark.asyncio
    async def test_health_check_timeout_degrades(self, router: ExternalRouter, mock_oracle: AsyncMock):
        mock_oracle.health_check.side_effect = _hang

        assert await router.check_health() == RouterHealth.DEGRADED

    @pytest.mark.asyncio
    async def test_unhealthy_report_degrades(self, router: ExternalRouter, mock_oracle: AsyncMock):
        mock_oracle.health_check.return_value = OracleHealth.UNHEALTHY

        assert await router.check_health() == RouterHealth.DEGRADED
        assert router.status().last_checked is not None


class TestStalenessBound:
    """Test cached listings served while the oracle is unavailable."""

    @pytest.mark.asyncio
    async def test_fresh_cache_served_while_degraded(
        self, router: ExternalRouter, mock_oracle: AsyncMock, provider_factory, clock
    ):
        listing = [provider_factory("remote", 0.0001)]
        mock_oracle.list_service_providers.return_value = listing
        assert await router.list_service_providers() == listing

        await _degrade(router, mock_oracle)
        clock.advance(30)

        assert await router.list_service_providers() == listing

    @pytest.mark.asyncio
    async def test_stale_cache_discarded(self, router: ExternalRouter, mock_oracle: AsyncMock, clock):
        mock_oracle.get_usage_metrics.return_value = UsageMetrics(total_requests=5)
        await router.get_usage_metrics(3600)

        await _degrade(router, mock_oracle)
        clock.advance(61)

        with pytest.raises(RouterUnavailableError):
            await router.get_usage_metrics(3600)

    @pytest.mark.asyncio
    async def test_route_suggestions_never_cached(self, router: ExternalRouter, mock_oracle: AsyncMock):
        mock_oracle.optimize_route.return_value = "weatherapi"
        await router.suggest_route("REI", 0.001)

        await _degrade(router, mock_oracle)

        with pytest.raises(RouterUnavailableError):
            await router.suggest_route("REI", 0.001)


class TestClose:
    """Test close()."""

    @pytest.mark.asyncio
    async def test_close_is_idempotent(self, router: ExternalRouter, mock_oracle: AsyncMock):
        await router.close()
        await router.close()

        mock_oracle.close.assert_awaited_once()
