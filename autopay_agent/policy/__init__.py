"""
Decision policy: rule evaluation, decision execution and routing decisions.
"""

from .decisions import (
    Decision,
    DecisionAction,
    DecisionHistory,
    DecisionType,
    DiscoverProviders,
    Priority,
    ReduceCosts,
    ReselectProviders,
    SwitchFasterProviders,
    TickRecord,
)
from .engine import (
    DecisionPolicy,
    DecisionSource,
    HealthReport,
    PerformanceMetrics,
    PolicySnapshot,
    RoutingDecision,
)
from .settings import OptimizationSettings

__all__ = [
    "Decision",
    "DecisionAction",
    "DecisionHistory",
    "DecisionPolicy",
    "DecisionSource",
    "DecisionType",
    "DiscoverProviders",
    "HealthReport",
    "OptimizationSettings",
    "PerformanceMetrics",
    "PolicySnapshot",
    "Priority",
    "ReduceCosts",
    "ReselectProviders",
    "RoutingDecision",
    "SwitchFasterProviders",
    "TickRecord",
]
