"""
Autopay Agent - Resilience Module

Router health state machine (pybreaker) and retry with exponential backoff.
"""

from .circuit_breaker import RouterCircuit, RouterHealth, RouterStateListener
from .retry import RetryConfig, retry_with_backoff

__all__ = [
    "RetryConfig",
    "RouterCircuit",
    "RouterHealth",
    "RouterStateListener",
    "retry_with_backoff",
]
