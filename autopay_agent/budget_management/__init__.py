"""
Budget Management Module

Time-windowed spend limiting for the agent's principals.

Public API:
    - BudgetGuard: Per-principal daily/monthly limits and emergency threshold
    - BudgetStatus: Read-only projection of a budget
    - Reservation: Committed spend, released on payment failure
    - BudgetConfig: Configuration schema

Usage:
    >>> from autopay_agent.budget_management import BudgetGuard
    >>>
    >>> guard = BudgetGuard()
    >>> guard.set_limits("agent", daily=0.01, monthly=0.1, emergency=0.005)
    >>> reservation = guard.check_and_reserve("agent", 0.004)
    >>> guard.status("agent").daily_remaining
    Decimal('0.006')
"""

from .config import DAY_SECONDS, MONTH_SECONDS, BudgetConfig, BudgetWindow
from .guard import Amount, Budget, BudgetGuard, BudgetStatus, Reservation, roll_window, to_amount

__all__ = [
    "Amount",
    "Budget",
    "BudgetConfig",
    "BudgetGuard",
    "BudgetStatus",
    "BudgetWindow",
    "DAY_SECONDS",
    "MONTH_SECONDS",
    "Reservation",
    "roll_window",
    "to_amount",
]
