"""
Budget Guard

Tracks per-principal spend against daily and monthly limits plus a
per-transaction emergency threshold. Pure state and time logic, no I/O.

Windows reset lazily: every read or write first rolls the daily (24h) and
monthly (30-day) windows forward by whole windows, so a reset applied twice
in the same window is a no-op. check_and_reserve() is synchronous and never
suspends, which makes each reservation atomic on the event loop; callers that
await between reserving and paying (the execution gateway) serialize per
principal themselves.
"""

import logging
import time
from collections.abc import Callable
from decimal import Decimal

from pydantic import BaseModel, ConfigDict, Field

from ..errors import (
    BudgetNotConfiguredError,
    BudgetViolationError,
    ErrorCode,
    InvalidBudgetConfigurationError,
    ValidationError,
)
from ..observability import ObservabilityAdapter
from .config import DAY_SECONDS, MONTH_SECONDS

logger = logging.getLogger(__name__)

Amount = Decimal | float | int | str


def to_amount(value: Amount) -> Decimal:
    """Convert a monetary value to Decimal without binary float noise."""
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def roll_window(last_reset: float, now: float, length: float) -> float:
    """
    Advance a window start by whole windows until it covers ``now``.

    Returns ``last_reset`` unchanged while ``now`` is inside the current window.
    """
    if now < last_reset + length:
        return last_reset
    elapsed = int((now - last_reset) // length)
    return last_reset + elapsed * length


class Budget(BaseModel):
    """Spend state for one principal. Owned exclusively by BudgetGuard."""

    principal: str
    daily_limit: Decimal = Field(..., ge=0)
    monthly_limit: Decimal = Field(..., ge=0)
    emergency_threshold: Decimal = Field(..., ge=0)
    daily_spent: Decimal = Field(default=Decimal("0"), ge=0)
    monthly_spent: Decimal = Field(default=Decimal("0"), ge=0)
    last_day_reset: float
    last_month_reset: float
    is_active: bool = True

    model_config = ConfigDict(validate_assignment=False)

    def apply_resets(self, now: float) -> bool:
        """
        Roll both windows forward to ``now``.

        Returns:
            True if either counter was reset
        """
        reset = False

        day_start = roll_window(self.last_day_reset, now, DAY_SECONDS)
        if day_start != self.last_day_reset:
            self.last_day_reset = day_start
            self.daily_spent = Decimal("0")
            reset = True

        month_start = roll_window(self.last_month_reset, now, MONTH_SECONDS)
        if month_start != self.last_month_reset:
            self.last_month_reset = month_start
            self.monthly_spent = Decimal("0")
            reset = True

        return reset


class BudgetStatus(BaseModel):
    """Read-only projection of a budget at a point in time."""

    principal: str
    is_active: bool
    daily_limit: Decimal
    monthly_limit: Decimal
    emergency_threshold: Decimal
    daily_spent: Decimal
    monthly_spent: Decimal
    daily_remaining: Decimal
    monthly_remaining: Decimal
    last_day_reset: float
    last_month_reset: float

    @property
    def daily_utilization(self) -> float:
        """Fraction of the daily limit already spent (0.0 for a zero limit)."""
        if self.daily_limit <= 0:
            return 0.0
        return float(self.daily_spent / self.daily_limit)

    @property
    def monthly_utilization(self) -> float:
        """Fraction of the monthly limit already spent (0.0 for a zero limit)."""
        if self.monthly_limit <= 0:
            return 0.0
        return float(self.monthly_spent / self.monthly_limit)


class Reservation(BaseModel):
    """A committed reservation, kept by the caller so it can be released on payment failure."""

    principal: str
    amount: Decimal
    day_window: float
    month_window: float
    reserved_at: float


class BudgetGuard:
    """
    Enforces spend invariants and exposes remaining budget.

    Invariant: after any committed reservation, daily_spent <= daily_limit and
    monthly_spent <= monthly_limit for every principal.
    """

    def __init__(
        self,
        clock: Callable[[], float] | None = None,
        observability: ObservabilityAdapter | None = None,
    ):
        """
        Initialize budget guard.

        Args:
            clock: Time source returning epoch seconds (default: time.time)
            observability: Metrics adapter
        """
        self._clock = clock or time.time
        self._obs = observability or ObservabilityAdapter()
        self._budgets: dict[str, Budget] = {}

    def set_limits(
        self,
        principal: str,
        daily: Amount,
        monthly: Amount,
        emergency: Amount,
    ) -> BudgetStatus:
        """
        Create or reconfigure a principal's budget.

        Existing spend and window starts are preserved on reconfiguration.

        Args:
            principal: Principal identity
            daily: Daily limit
            monthly: Monthly limit
            emergency: Per-transaction emergency threshold

        Returns:
            Status after configuration

        Raises:
            InvalidBudgetConfigurationError: If daily > monthly or any value is negative
        """
        daily_limit = to_amount(daily)
        monthly_limit = to_amount(monthly)
        emergency_threshold = to_amount(emergency)

        if min(daily_limit, monthly_limit, emergency_threshold) < 0:
            raise InvalidBudgetConfigurationError(
                "Budget limits must be non-negative",
                {"principal": principal, "daily": str(daily_limit), "monthly": str(monthly_limit)},
            )
        if daily_limit > monthly_limit:
            raise InvalidBudgetConfigurationError(
                f"Daily limit {daily_limit} exceeds monthly limit {monthly_limit}",
                {"principal": principal, "daily": str(daily_limit), "monthly": str(monthly_limit)},
            )

        now = self._clock()
        budget = self._budgets.get(principal)
        if budget is None:
            budget = Budget(
                principal=principal,
                daily_limit=daily_limit,
                monthly_limit=monthly_limit,
                emergency_threshold=emergency_threshold,
                last_day_reset=now,
                last_month_reset=now,
            )
            self._budgets[principal] = budget
            logger.info(
                f"Budget created for {principal}",
                extra={"principal": principal, "daily_limit": str(daily_limit), "monthly_limit": str(monthly_limit)},
            )
        else:
            budget.apply_resets(now)
            budget.daily_limit = daily_limit
            budget.monthly_limit = monthly_limit
            budget.emergency_threshold = emergency_threshold
            logger.info(
                f"Budget reconfigured for {principal}",
                extra={"principal": principal, "daily_limit": str(daily_limit), "monthly_limit": str(monthly_limit)},
            )

        return self._project(budget)

    def deactivate(self, principal: str) -> None:
        """Deactivate a budget; reservations fail with BUDGET_INACTIVE until reactivated."""
        self._get(principal).is_active = False
        logger.warning(f"Budget deactivated for {principal}", extra={"principal": principal})

    def activate(self, principal: str) -> None:
        """Reactivate a previously deactivated budget."""
        self._get(principal).is_active = True
        logger.info(f"Budget activated for {principal}", extra={"principal": principal})

    def has_budget(self, principal: str) -> bool:
        """Whether a budget is configured for the principal."""
        return principal in self._budgets

    def principals(self) -> list[str]:
        """All principals with a configured budget."""
        return list(self._budgets)

    def check_and_reserve(
        self,
        principal: str,
        amount: Amount,
        elevated: bool = False,
    ) -> Reservation:
        """
        Validate and commit a spend against the principal's budget.

        Args:
            principal: Principal identity
            amount: Amount to reserve (must be positive)
            elevated: Caller holds elevated authorization for amounts above
                the emergency threshold

        Returns:
            Reservation record

        Raises:
            BudgetNotConfiguredError: No budget for the principal
            ValidationError: Non-positive amount
            BudgetViolationError: BUDGET_INACTIVE, EMERGENCY_THRESHOLD_EXCEEDED,
                DAILY_LIMIT_EXCEEDED or MONTHLY_LIMIT_EXCEEDED
        """
        value = to_amount(amount)
        if value <= 0:
            raise ValidationError("Reservation amount must be positive", {"principal": principal, "amount": str(value)})

        budget = self._get(principal)
        budget.apply_resets(self._clock())

        if not budget.is_active:
            self._reject(ErrorCode.BUDGET_INACTIVE, budget, value)

        if value > budget.emergency_threshold and not elevated:
            self._reject(ErrorCode.EMERGENCY_THRESHOLD_EXCEEDED, budget, value)

        if budget.daily_spent + value > budget.daily_limit:
            self._reject(ErrorCode.DAILY_LIMIT_EXCEEDED, budget, value)

        if budget.monthly_spent + value > budget.monthly_limit:
            self._reject(ErrorCode.MONTHLY_LIMIT_EXCEEDED, budget, value)

        budget.daily_spent += value
        budget.monthly_spent += value

        self._obs.increment("budget.reservation.accepted", tags={"principal": principal})
        logger.debug(
            f"Reserved {value} for {principal}",
            extra={
                "principal": principal,
                "amount": str(value),
                "daily_spent": str(budget.daily_spent),
                "monthly_spent": str(budget.monthly_spent),
            },
        )

        return Reservation(
            principal=principal,
            amount=value,
            day_window=budget.last_day_reset,
            month_window=budget.last_month_reset,
            reserved_at=self._clock(),
        )

    def release(self, reservation: Reservation) -> None:
        """
        Return a reservation whose payment did not go through.

        Only windows that are still current are credited; a window that has
        rolled over since the reservation already dropped the spend.
        """
        budget = self._get(reservation.principal)
        budget.apply_resets(self._clock())

        if budget.last_day_reset == reservation.day_window:
            budget.daily_spent = max(Decimal("0"), budget.daily_spent - reservation.amount)
        if budget.last_month_reset == reservation.month_window:
            budget.monthly_spent = max(Decimal("0"), budget.monthly_spent - reservation.amount)

        logger.info(
            f"Released reservation of {reservation.amount} for {reservation.principal}",
            extra={"principal": reservation.principal, "amount": str(reservation.amount)},
        )

    def status(self, principal: str) -> BudgetStatus:
        """
        Current limits, spend and remaining budget.

        Applies the lazy window resets to a copy; stored state is not mutated.
        """
        projected = self._get(principal).model_copy()
        projected.apply_resets(self._clock())
        return self._project(projected)

    def _get(self, principal: str) -> Budget:
        budget = self._budgets.get(principal)
        if budget is None:
            raise BudgetNotConfiguredError(principal)
        return budget

    def _reject(self, code: ErrorCode, budget: Budget, amount: Decimal) -> None:
        self._obs.increment("budget.reservation.rejected", tags={"principal": budget.principal, "reason": code.value})
        logger.warning(
            f"Reservation rejected for {budget.principal}: {code.value}",
            extra={
                "principal": budget.principal,
                "amount": str(amount),
                "reason": code.value,
                "daily_spent": str(budget.daily_spent),
                "daily_limit": str(budget.daily_limit),
                "monthly_spent": str(budget.monthly_spent),
                "monthly_limit": str(budget.monthly_limit),
            },
        )
        raise BudgetViolationError(
            code,
            budget.principal,
            float(amount),
            {
                "daily_spent": str(budget.daily_spent),
                "daily_limit": str(budget.daily_limit),
                "monthly_spent": str(budget.monthly_spent),
                "monthly_limit": str(budget.monthly_limit),
            },
        )

    @staticmethod
    def _project(budget: Budget) -> BudgetStatus:
        return BudgetStatus(
            principal=budget.principal,
            is_active=budget.is_active,
            daily_limit=budget.daily_limit,
            monthly_limit=budget.monthly_limit,
            emergency_threshold=budget.emergency_threshold,
            daily_spent=budget.daily_spent,
            monthly_spent=budget.monthly_spent,
            daily_remaining=max(Decimal("0"), budget.daily_limit - budget.daily_spent),
            monthly_remaining=max(Decimal("0"), budget.monthly_limit - budget.monthly_spent),
            last_day_reset=budget.last_day_reset,
            last_month_reset=budget.last_month_reset,
        )
