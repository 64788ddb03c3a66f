"""
Autopay Agent - Configuration Module

Provides typed configuration loading and validation.
"""

from .loader import load_config
from .schemas import (
    AgentConfig,
    BudgetConfig,
    Environment,
    LogLevel,
    ObservabilityConfig,
    PolicyConfig,
    RouterConfig,
    SchedulerConfig,
)

__all__ = [
    # Loader
    "load_config",
    # Main config
    "AgentConfig",
    # Enums
    "Environment",
    "LogLevel",
    # Config sections
    "SchedulerConfig",
    "PolicyConfig",
    "BudgetConfig",
    "RouterConfig",
    "ObservabilityConfig",
]
