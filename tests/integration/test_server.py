"""
Tests for the MCP server tools

Tools are called through FunctionTool.fn with the module-level agent
replaced by a test instance.
"""

from typing import Any

import pytest

from autopay_agent import server
from autopay_agent.agent import AutonomousAgent
from autopay_agent.config import AgentConfig
from autopay_agent.errors import ErrorCode
from autopay_agent.providers import ServiceRequest


@pytest.fixture
def running_agent(monkeypatch: pytest.MonkeyPatch, agent_config: AgentConfig, clock) -> AutonomousAgent:
    agent = AutonomousAgent(agent_config, clock=clock)
    monkeypatch.setattr(server, "_agent", agent)
    return agent


@pytest.fixture
def no_agent(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(server, "_agent", None)


async def call(tool: Any, **kwargs: Any) -> dict[str, Any]:
    return await tool.fn(**kwargs)


class TestAgentNotRunning:
    """Every tool reports a stopped agent instead of raising."""

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "tool,kwargs",
        [
            (server.check_status, {}),
            (server.get_budget_status, {}),
            (server.recommend_provider, {"service_type": "weather"}),
            (server.get_usage_forecast, {}),
        ],
    )
    async def test_not_running(self, no_agent, tool, kwargs):
        result = await call(tool, **kwargs)

        assert result["success"] is False
        assert result["error_code"] == ErrorCode.INTERNAL_ERROR.value
        assert result["message"] == "Agent is not running"


class TestCheckStatus:
    """Test check_status tool."""

    @pytest.mark.asyncio
    async def test_degraded_without_oracle(self, running_agent: AutonomousAgent):
        result = await call(server.check_status)

        assert result["status"] == "degraded"
        assert result["service"] == "autopay-agent"
        assert result["router"]["oracle_configured"] is False
        assert result["emergency_stop"] is False
        assert "details" not in result
        assert running_agent.observability.counter("tools.check_status") == 1

    @pytest.mark.asyncio
    async def test_details(self, running_agent: AutonomousAgent):
        result = await call(server.check_status, include_details=True)

        assert len(result["details"]["jobs"]) == 5
        assert "usage" in result["details"]


class TestGetBudgetStatus:
    """Test get_budget_status tool."""

    @pytest.mark.asyncio
    async def test_own_principal(self, running_agent: AutonomousAgent):
        result = await call(server.get_budget_status)

        assert result["success"] is True
        assert result["principal"] == "agent"
        assert result["daily_limit"] == "0.01"
        assert result["daily_utilization"] == 0.0

    @pytest.mark.asyncio
    async def test_unknown_principal(self, running_agent: AutonomousAgent):
        result = await call(server.get_budget_status, principal="stranger")

        assert result["success"] is False
        assert result["error_code"] == ErrorCode.BUDGET_NOT_CONFIGURED.value
        assert result["details"]["principal"] == "stranger"

    @pytest.mark.asyncio
    async def test_empty_principal_rejected(self, running_agent: AutonomousAgent):
        result = await call(server.get_budget_status, principal="")

        assert result["error_code"] == ErrorCode.INVALID_INPUT.value
        assert running_agent.observability.counter("validation.failed") == 1


class TestRecommendProvider:
    """Test recommend_provider tool."""

    @pytest.mark.asyncio
    async def test_local_recommendation(self, running_agent: AutonomousAgent):
        result = await call(server.recommend_provider, service_type="weather")

        assert result["success"] is True
        assert result["provider_id"] == "weatherapi"
        assert result["source"] == "local"
        assert result["estimated_cost"] == pytest.approx(0.00008)
        # Recommending never pays
        assert running_agent.ledger.payments == []

    @pytest.mark.asyncio
    async def test_priority_pricing(self, running_agent: AutonomousAgent):
        result = await call(server.recommend_provider, service_type="weather", priority="high")

        assert result["estimated_cost"] == pytest.approx(0.00008 * 1.5)

    @pytest.mark.asyncio
    async def test_unknown_service_type(self, running_agent: AutonomousAgent):
        result = await call(server.recommend_provider, service_type="teleportation")

        assert result["success"] is False
        assert result["error_code"] == ErrorCode.NO_SUITABLE_PROVIDER.value

    @pytest.mark.asyncio
    async def test_invalid_max_cost(self, running_agent: AutonomousAgent):
        result = await call(server.recommend_provider, service_type="weather", max_cost=0)

        assert result["error_code"] == ErrorCode.INVALID_INPUT.value


class TestGetUsageForecast:
    """Test get_usage_forecast tool."""

    @pytest.mark.asyncio
    async def test_forecast_without_history(self, running_agent: AutonomousAgent):
        result = await call(server.get_usage_forecast)

        assert result["success"] is True
        assert len(result["forecasts"]) == 24
        assert result["predicted_24h_usage"] == 0.0
        assert result["forecasts"][0]["confidence"] == 0.5
        assert "report" not in result

    @pytest.mark.asyncio
    async def test_budget_allocation_and_report(self, running_agent: AutonomousAgent):
        await running_agent.handle_service_request(ServiceRequest(service_type="weather"))

        result = await call(server.get_usage_forecast, service_type="weather", total_budget=0.024, include_report=True)

        assert sum(f["allocated_budget"] for f in result["forecasts"]) == pytest.approx(0.024)
        assert result["predicted_24h_usage"] > 0
        assert result["report"]["summary"]["requests"] == 1
        assert result["report"]["providers"][0]["provider_id"] == "weatherapi"
        assert running_agent.observability.counter("tools.get_usage_forecast") == 1

    @pytest.mark.asyncio
    async def test_invalid_budget(self, running_agent: AutonomousAgent):
        result = await call(server.get_usage_forecast, total_budget=-1.0)

        assert result["error_code"] == ErrorCode.INVALID_INPUT.value
