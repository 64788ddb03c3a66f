"""
Autopay Agent

Autonomous payment-routing agent: periodically analyzes usage and budget,
routes paid service requests to the best provider (through an optimization
oracle when reachable, by local scoring otherwise) and never lets a payment
breach a principal's budget.
"""

__version__ = "1.0.0"

from .agent import AutonomousAgent, ServiceResult
from .config import AgentConfig, load_config

__all__ = [
    "__version__",
    "AgentConfig",
    "AutonomousAgent",
    "ServiceResult",
    "load_config",
]
