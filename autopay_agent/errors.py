"""
Autopay Agent - Core Error Types

Defines the exception hierarchy for the autonomous payment agent.
All exceptions inherit from AgentError for consistent error handling.

Taxonomy:
- BudgetViolationError: spend limits, emergency threshold, inactive budget
- ConnectivityError: optimization oracle unreachable or timed out
- NoProviderAvailableError: nothing to route a request to
- DecisionExecutionError: a single decision failed to execute
- SchedulerFatalError: unrecoverable scheduler setup failures
"""

from enum import Enum
from typing import Any


class ErrorCode(str, Enum):
    """
    Standard error codes surfaced to callers and tool responses.

    Budget codes mirror the ledger collaborator's rejection reasons so
    both layers report violations the same way.
    """

    # Input validation errors
    INVALID_INPUT = "INVALID_INPUT"
    INVALID_CONFIGURATION = "INVALID_CONFIGURATION"

    # Budget errors
    DAILY_LIMIT_EXCEEDED = "DAILY_LIMIT_EXCEEDED"
    MONTHLY_LIMIT_EXCEEDED = "MONTHLY_LIMIT_EXCEEDED"
    EMERGENCY_THRESHOLD_EXCEEDED = "EMERGENCY_THRESHOLD_EXCEEDED"
    BUDGET_INACTIVE = "BUDGET_INACTIVE"
    BUDGET_NOT_CONFIGURED = "BUDGET_NOT_CONFIGURED"

    # Ledger errors
    INSUFFICIENT_PAYMENT = "INSUFFICIENT_PAYMENT"
    PROVIDER_NOT_REGISTERED = "PROVIDER_NOT_REGISTERED"
    EMERGENCY_STOP_ACTIVE = "EMERGENCY_STOP_ACTIVE"

    # Provider selection errors
    NO_PROVIDERS_AVAILABLE = "NO_PROVIDERS_AVAILABLE"
    NO_SUITABLE_PROVIDER = "NO_SUITABLE_PROVIDER"

    # Router errors
    ROUTER_UNAVAILABLE = "ROUTER_UNAVAILABLE"
    ROUTER_TIMEOUT = "ROUTER_TIMEOUT"

    # Runtime errors
    DECISION_FAILED = "DECISION_FAILED"
    SCHEDULER_FATAL = "SCHEDULER_FATAL"
    INTERNAL_ERROR = "INTERNAL_ERROR"


class AgentError(Exception):
    """Base exception for all autopay agent errors."""

    def __init__(
        self,
        message: str,
        details: dict[str, Any] | None = None,
        code: ErrorCode = ErrorCode.INTERNAL_ERROR,
    ):
        super().__init__(message)
        self.message = message
        self.details = details or {}
        self.code = code

    def to_dict(self) -> dict[str, Any]:
        """Convert exception to dictionary for tool responses."""
        return {
            "error": self.__class__.__name__,
            "error_code": self.code.value,
            "message": self.message,
            "details": self.details,
        }


class ConfigurationError(AgentError):
    """Raised when configuration is invalid or missing."""

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(message, details, code=ErrorCode.INVALID_CONFIGURATION)


class ValidationError(AgentError):
    """Raised when a request fails input validation."""

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(message, details, code=ErrorCode.INVALID_INPUT)


class BudgetViolationError(AgentError):
    """
    Raised when a reservation would break a budget invariant.

    Always recoverable locally: loops log it, the immediate-decision path
    surfaces it to the caller.
    """

    def __init__(
        self,
        code: ErrorCode,
        principal: str,
        amount: float,
        details: dict[str, Any] | None = None,
    ):
        message = f"Budget violation for {principal}: {code.value} (amount={amount})"
        error_details = {"principal": principal, "amount": amount}
        error_details.update(details or {})
        super().__init__(message, error_details, code=code)
        self.principal = principal
        self.amount = amount


class BudgetNotConfiguredError(AgentError):
    """Raised when a principal has no budget configured."""

    def __init__(self, principal: str):
        super().__init__(
            f"No budget configured for principal: {principal}",
            {"principal": principal},
            code=ErrorCode.BUDGET_NOT_CONFIGURED,
        )
        self.principal = principal


class InvalidBudgetConfigurationError(AgentError):
    """Raised when budget limits violate daily <= monthly or are negative."""

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(message, details, code=ErrorCode.INVALID_CONFIGURATION)


class LedgerRejectedError(AgentError):
    """Raised when the ledger collaborator refuses a payment."""

    def __init__(self, code: ErrorCode, message: str | None = None, details: dict[str, Any] | None = None):
        super().__init__(message or f"Ledger rejected payment: {code.value}", details, code=code)


class ConnectivityError(AgentError):
    """Raised when the optimization oracle cannot be reached."""

    def __init__(
        self,
        message: str,
        details: dict[str, Any] | None = None,
        code: ErrorCode = ErrorCode.ROUTER_UNAVAILABLE,
    ):
        super().__init__(message, details, code=code)


class RouterUnavailableError(ConnectivityError):
    """Raised when a router call is short-circuited because the router is not healthy."""

    def __init__(self, state: str):
        super().__init__(f"External router is {state}; call short-circuited", {"router_state": state})
        self.state = state


class OracleTimeoutError(ConnectivityError):
    """Raised when an oracle call exceeds its timeout."""

    def __init__(self, operation: str, timeout: float):
        super().__init__(
            f"Oracle call {operation} timed out after {timeout}s",
            {"operation": operation, "timeout": timeout},
            code=ErrorCode.ROUTER_TIMEOUT,
        )
        self.operation = operation
        self.timeout = timeout


class NoProviderAvailableError(AgentError):
    """Raised when no provider can serve a request. Not retried automatically."""

    def __init__(
        self,
        code: ErrorCode = ErrorCode.NO_PROVIDERS_AVAILABLE,
        service_type: str | None = None,
    ):
        if service_type:
            message = f"No provider available for service type: {service_type}"
        else:
            message = "No providers available"
        super().__init__(message, {"service_type": service_type}, code=code)
        self.service_type = service_type


class DecisionExecutionError(AgentError):
    """Raised when executing a decision fails. Attached to the decision record."""

    def __init__(self, decision_type: str, message: str, details: dict[str, Any] | None = None):
        error_details = {"decision_type": decision_type}
        error_details.update(details or {})
        super().__init__(message, error_details, code=ErrorCode.DECISION_FAILED)
        self.decision_type = decision_type


class SchedulerFatalError(AgentError):
    """Raised for unrecoverable scheduler startup errors, e.g. invalid job registration."""

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(message, details, code=ErrorCode.SCHEDULER_FATAL)


def make_error_response(
    error_code: ErrorCode,
    message: str,
    context: dict[str, Any] | None = None,
) -> dict[str, Any]:
    """
    Create a standardized error response for MCP tools.

    Args:
        error_code: Standard error code
        message: Human-readable error message
        context: Additional context/details

    Returns:
        Standardized error response dictionary

    Example:
        >>> make_error_response(
        ...     ErrorCode.NO_SUITABLE_PROVIDER,
        ...     "No provider for weather",
        ...     {"service_type": "weather"}
        ... )
        {
            "success": False,
            "error_code": "NO_SUITABLE_PROVIDER",
            "message": "No provider for weather",
            "details": {"service_type": "weather"}
        }
    """
    return {
        "success": False,
        "error_code": error_code.value,
        "message": message,
        "details": context or {},
    }


def extract_error_code(error: Exception) -> ErrorCode:
    """
    Extract appropriate ErrorCode from an exception.

    Args:
        error: Exception to categorize

    Returns:
        Appropriate ErrorCode for the exception
    """
    if isinstance(error, AgentError):
        return error.code

    if isinstance(error, TimeoutError):
        return ErrorCode.ROUTER_TIMEOUT

    return ErrorCode.INTERNAL_ERROR
