"""
Autopay Agent - Server

FastMCP server using stdio transport (Model Context Protocol).

- The lifespan builds the agent from configuration, starts its jobs and
  stops them (waiting for in-flight ticks) on shutdown
- Tools are read-mostly: status, budget, provider recommendations and usage forecasts
- Structured JSON logging on stderr
"""

import logging
from contextlib import asynccontextmanager
from typing import Any

from fastmcp import FastMCP

from . import __version__
from .agent import AutonomousAgent
from .config import load_config
from .errors import AgentError, ErrorCode, make_error_response
from .observability import ObservabilityAdapter, configure_logging
from .providers import RequestPriority, ServiceRequest
from .routing import RouterHealth
from .validation import (
    CheckStatusInput,
    GetBudgetStatusInput,
    GetUsageForecastInput,
    RecommendProviderInput,
    validate_input,
)

logger = logging.getLogger(__name__)

_agent: AutonomousAgent | None = None


def _observability() -> ObservabilityAdapter | None:
    return _agent.observability if _agent is not None else None


@asynccontextmanager
async def server_lifespan(server: Any) -> Any:
    """Server lifespan manager (startup/shutdown)."""
    await initialize_server()
    try:
        yield
    finally:
        await cleanup_server()


mcp = FastMCP("Autopay Agent - Autonomous Payment Routing", lifespan=server_lifespan)


def _not_running() -> dict[str, Any]:
    return make_error_response(ErrorCode.INTERNAL_ERROR, "Agent is not running")


@mcp.tool()
@validate_input(CheckStatusInput, _observability)
async def check_status(include_details: bool = False) -> dict[str, Any]:
    """
    Check agent health and status.

    Args:
        include_details: Include jobs, policy and metric details

    Returns:
        Agent status information
    """
    if _agent is None:
        return _not_running()

    _agent.observability.increment("tools.check_status")
    router = _agent.router.status()
    healthy = _agent.running and router.state == RouterHealth.HEALTHY and not _agent.gateway.emergency_stop

    status: dict[str, Any] = {
        "status": "healthy" if healthy else "degraded",
        "service": "autopay-agent",
        "version": __version__,
        "running": _agent.running,
        "router": router.model_dump(mode="json"),
        "emergency_stop": _agent.gateway.emergency_stop,
        "emergency_mode": _agent.policy.settings.emergency_mode,
    }

    if include_details:
        status["details"] = _agent.status()

    return status


@mcp.tool()
@validate_input(GetBudgetStatusInput, _observability)
async def get_budget_status(principal: str | None = None) -> dict[str, Any]:
    """
    Report spend, limits and remaining budget for a principal.

    Args:
        principal: Principal to report on (default: the agent's own principal)

    Returns:
        Budget status with remaining amounts and utilization
    """
    if _agent is None:
        return _not_running()

    _agent.observability.increment("tools.get_budget_status")
    target = principal or _agent.principal

    try:
        status = _agent.guard.status(target)
    except AgentError as e:
        return make_error_response(e.code, e.message, e.details)

    return {
        "success": True,
        **status.model_dump(mode="json"),
        "daily_utilization": status.daily_utilization,
        "monthly_utilization": status.monthly_utilization,
    }


@mcp.tool()
@validate_input(RecommendProviderInput, _observability)
async def recommend_provider(
    service_type: str,
    max_cost: float = 0.01,
    priority: RequestPriority = RequestPriority.NORMAL,
    bulk: int = 1,
    chain: str | None = None,
) -> dict[str, Any]:
    """
    Recommend a provider for a request without paying for it.

    Uses the optimization oracle when it is healthy and local scoring otherwise.

    Args:
        service_type: Service type to route
        max_cost: Maximum acceptable cost per call
        priority: Request priority (high, normal, low)
        bulk: Units requested in one call
        chain: Settlement chain

    Returns:
        Recommended provider, reason, confidence and estimated cost
    """
    if _agent is None:
        return _not_running()

    _agent.observability.increment("tools.recommend_provider")
    request = ServiceRequest(service_type=service_type, max_cost=max_cost, priority=priority, bulk=bulk, chain=chain)

    try:
        decision = await _agent.policy.make_immediate_decision(request)
    except AgentError as e:
        return make_error_response(e.code, e.message, e.details)

    provider = decision.provider
    return {
        "success": True,
        "provider_id": decision.provider_id,
        "provider_name": provider.name,
        "reason": decision.reason,
        "confidence": decision.confidence,
        "source": decision.source.value,
        "score": decision.score,
        "estimated_cost": provider.calculate_cost(request),
    }


@mcp.tool()
@validate_input(GetUsageForecastInput, _observability)
async def get_usage_forecast(
    service_type: str | None = None,
    total_budget: float | None = None,
    include_report: bool = False,
) -> dict[str, Any]:
    """
    Forecast spend for the next 24 hours from learned usage patterns.

    Args:
        service_type: Service type to forecast (default: all traffic)
        total_budget: Optional budget to allocate across the forecast hours
        include_report: Include the usage report

    Returns:
        Hourly forecasts with confidence, plus budget allocation and report when requested
    """
    if _agent is None:
        return _not_running()

    _agent.observability.increment("tools.get_usage_forecast")
    analytics = _agent.analytics
    analytics.refresh()

    if total_budget is not None:
        forecasts = analytics.predict_budget_allocation(total_budget, service_type)
    else:
        forecasts = analytics.predict_next_24_hours(service_type)

    result: dict[str, Any] = {
        "success": True,
        "service_type": service_type,
        "predicted_24h_usage": sum(f.predicted_usage for f in forecasts),
        "forecasts": [f.model_dump() for f in forecasts],
    }
    if include_report:
        result["report"] = analytics.generate_report()
    return result


async def initialize_server() -> None:
    """Initialize the agent on startup."""
    global _agent

    if _agent is not None:
        return

    config = load_config()
    configure_logging(config.log_level)
    logger.info(f"Configuration loaded: environment={config.environment}")

    try:
        agent = AutonomousAgent(config)
        await agent.start()
    except Exception as e:
        logger.error(f"Failed to initialize server: {e}", exc_info=True)
        raise

    agent.observability.increment("server.startup")
    _agent = agent
    logger.info("Autopay agent server initialized successfully")


async def cleanup_server() -> None:
    """Stop the agent on shutdown."""
    global _agent

    if _agent is None:
        return

    logger.info("Cleaning up autopay agent server...")
    agent, _agent = _agent, None

    try:
        agent.observability.increment("server.shutdown")
        await agent.stop()
        logger.info("Autopay agent server cleanup complete")
    except Exception as e:
        logger.error(f"Error during cleanup: {e}", exc_info=True)


def main() -> None:
    """CLI entry point for the autopay-agent command."""
    mcp.run()


if __name__ == "__main__":
    main()
