"""
Autopay Agent - Input Validation Module

Pydantic-based validation for MCP tool inputs.
"""

from .decorators import validate_input
from .tool_schemas import (
    CheckStatusInput,
    GetBudgetStatusInput,
    GetUsageForecastInput,
    RecommendProviderInput,
)

__all__ = [
    # Decorator
    "validate_input",
    # Tool input schemas
    "CheckStatusInput",
    "GetBudgetStatusInput",
    "GetUsageForecastInput",
    "RecommendProviderInput",
]
