"""
External optimization oracle client with degraded-mode routing.
"""

from ..resilience import RouterHealth
from .models import OracleHealth, RebalancingSuggestion, RemoteProvider
from .oracle import HttpOptimizationOracle, OptimizationOracle
from .router import ExternalRouter, RouterStatus

__all__ = [
    "ExternalRouter",
    "HttpOptimizationOracle",
    "OptimizationOracle",
    "OracleHealth",
    "RebalancingSuggestion",
    "RemoteProvider",
    "RouterHealth",
    "RouterStatus",
]
