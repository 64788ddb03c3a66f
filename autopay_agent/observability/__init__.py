"""
Autopay Agent - Observability Module

Metrics, span timing and structured logging for the agent runtime.
The agent creates one ObservabilityAdapter and hands it to each component.

Usage:
    from autopay_agent.observability import ObservabilityAdapter

    obs = ObservabilityAdapter()
    obs.increment("scheduler.tick.success", tags={"job": "optimize"})
    obs.gauge("budget.daily_remaining", 0.004)

    with obs.trace("policy.tick"):
        # timed code here
        pass
"""

from .monitoring import JSONFormatter, ObservabilityAdapter, configure_logging

__all__ = [
    "ObservabilityAdapter",
    "JSONFormatter",
    "configure_logging",
]
