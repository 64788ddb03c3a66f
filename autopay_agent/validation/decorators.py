"""
Autopay Agent - Validation Decorators

Applies Pydantic validation to MCP tool inputs.

- validate_input decorator for automatic input validation
- Structured error responses with ErrorCode
- Validation failures counted on the agent's observability adapter
"""

import functools
import logging
from collections.abc import Callable
from typing import Any

from pydantic import BaseModel, ValidationError

from ..errors import ErrorCode, make_error_response
from ..observability import ObservabilityAdapter

logger = logging.getLogger(__name__)

ObservabilityProvider = Callable[[], ObservabilityAdapter | None]


def validate_input(
    schema: type[BaseModel],
    observability: ObservabilityProvider | None = None,
) -> Callable[[Callable[..., Any]], Callable[..., Any]]:
    """
    Decorator to validate async tool inputs using a Pydantic schema.

    Args:
        schema: Pydantic model class for input validation
        observability: Returns the adapter to count failures on (None = not counted)

    Returns:
        Decorated function with automatic validation

    Example:
        >>> @validate_input(RecommendProviderInput)
        ... async def recommend_provider(service_type: str, max_cost: float = 0.01, **kwargs):
        ...     pass

    Error Response:
        {
            "success": False,
            "error_code": "INVALID_INPUT",
            "message": "Input validation failed",
            "details": {
                "validation_errors": [
                    {
                        "field": "max_cost",
                        "message": "Input should be greater than 0",
                        "type": "greater_than"
                    }
                ]
            }
        }
    """

    def decorator(func: Callable[..., Any]) -> Callable[..., Any]:
        @functools.wraps(func)
        async def wrapper(*args: Any, **kwargs: Any) -> Any:
            try:
                validated = schema(**kwargs)
            except ValidationError as e:
                validation_errors = [
                    {
                        "field": " -> ".join(str(loc) for loc in error["loc"]),
                        "message": error["msg"],
                        "type": error["type"],
                    }
                    for error in e.errors()
                ]

                logger.warning(
                    f"Input validation failed for {func.__name__}",
                    extra={"function": func.__name__, "validation_errors": validation_errors},
                )

                obs = observability() if observability else None
                if obs is not None:
                    obs.increment(
                        "validation.failed",
                        tags={"function": func.__name__, "error_count": str(len(validation_errors))},
                    )

                return make_error_response(
                    error_code=ErrorCode.INVALID_INPUT,
                    message="Input validation failed",
                    context={"validation_errors": validation_errors, "function": func.__name__},
                )

            return await func(*args, **validated.model_dump())

        return wrapper

    return decorator
