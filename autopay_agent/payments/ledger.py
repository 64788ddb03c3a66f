"""
Ledger Collaborator

The settlement layer that actually moves funds, seen only through its
authorization contract. The ledger enforces the same budget invariants as the
BudgetGuard at its own layer and may reject a payment with
DAILY_LIMIT_EXCEEDED, MONTHLY_LIMIT_EXCEEDED, INSUFFICIENT_PAYMENT,
PROVIDER_NOT_REGISTERED or EMERGENCY_STOP_ACTIVE.

InMemoryLedger is the reference implementation used by default and in tests.
"""

import logging
import time
from abc import ABC, abstractmethod
from collections.abc import Callable
from decimal import Decimal
from uuid import uuid4

from pydantic import BaseModel, Field

from ..budget_management import Amount, BudgetGuard, to_amount
from ..errors import BudgetNotConfiguredError, BudgetViolationError, ErrorCode, LedgerRejectedError

logger = logging.getLogger(__name__)


class PaymentReceipt(BaseModel):
    """Outcome of a settled payment."""

    tx_id: str
    success: bool = True
    principal: str
    provider_address: str
    amount: Decimal
    service_type: str
    timestamp: float


class LedgerBudgetStatus(BaseModel):
    """Budget as seen by the ledger."""

    daily_limit: Decimal
    monthly_limit: Decimal
    daily_spent: Decimal
    monthly_spent: Decimal
    daily_remaining: Decimal = Field(default=Decimal("0"))
    monthly_remaining: Decimal = Field(default=Decimal("0"))


class Ledger(ABC):
    """Abstract ledger/authorization collaborator."""

    @abstractmethod
    async def reserve_and_pay(
        self,
        principal: str,
        provider_address: str,
        amount: Decimal,
        service_type: str,
    ) -> PaymentReceipt:
        """
        Authorize and settle one payment.

        Raises:
            LedgerRejectedError: If the ledger refuses the payment
        """
        pass

    @abstractmethod
    async def get_budget_status(self, principal: str) -> LedgerBudgetStatus:
        """Ledger-side budget for a principal."""
        pass

    @abstractmethod
    async def is_emergency_stopped(self) -> bool:
        """Whether the ledger has halted all payments."""
        pass

    async def close(self) -> None:
        """Release connections. Default: nothing to release."""
        return None


class InMemoryLedger(Ledger):
    """
    In-process ledger keeping its own budget records, provider registrations,
    emergency stop flag and payment history.
    """

    def __init__(self, clock: Callable[[], float] | None = None):
        self._clock = clock or time.time
        self._budgets = BudgetGuard(clock=self._clock)
        self._providers: dict[str, Decimal] = {}
        self._emergency_stop = False
        self.payments: list[PaymentReceipt] = []

    def set_budget(self, principal: str, daily: Amount, monthly: Amount, emergency: Amount) -> None:
        self._budgets.set_limits(principal, daily, monthly, emergency)

    def register_provider(self, address: str, cost_per_call: Amount) -> None:
        """Register a payee and its minimum accepted payment."""
        self._providers[address] = to_amount(cost_per_call)

    def set_emergency_stop(self, active: bool) -> None:
        self._emergency_stop = active
        logger.warning(f"Ledger emergency stop {'engaged' if active else 'released'}")

    async def reserve_and_pay(
        self,
        principal: str,
        provider_address: str,
        amount: Decimal,
        service_type: str,
    ) -> PaymentReceipt:
        if self._emergency_stop:
            raise LedgerRejectedError(ErrorCode.EMERGENCY_STOP_ACTIVE)

        minimum = self._providers.get(provider_address)
        if minimum is None:
            raise LedgerRejectedError(ErrorCode.PROVIDER_NOT_REGISTERED, details={"provider": provider_address})

        value = to_amount(amount)
        if value < minimum:
            raise LedgerRejectedError(
                ErrorCode.INSUFFICIENT_PAYMENT,
                details={"provider": provider_address, "amount": str(value), "minimum": str(minimum)},
            )

        try:
            # The ledger does not apply the per-transaction emergency threshold
            self._budgets.check_and_reserve(principal, value, elevated=True)
        except BudgetViolationError as e:
            raise LedgerRejectedError(e.code, details=e.details) from e
        except BudgetNotConfiguredError as e:
            raise LedgerRejectedError(ErrorCode.BUDGET_NOT_CONFIGURED, details=e.details) from e

        receipt = PaymentReceipt(
            tx_id=f"0x{uuid4().hex}",
            principal=principal,
            provider_address=provider_address,
            amount=value,
            service_type=service_type,
            timestamp=self._clock(),
        )
        self.payments.append(receipt)
        logger.info(
            f"Payment settled: {receipt.tx_id}",
            extra={"principal": principal, "provider": provider_address, "amount": str(value)},
        )
        return receipt

    async def get_budget_status(self, principal: str) -> LedgerBudgetStatus:
        status = self._budgets.status(principal)
        return LedgerBudgetStatus(
            daily_limit=status.daily_limit,
            monthly_limit=status.monthly_limit,
            daily_spent=status.daily_spent,
            monthly_spent=status.monthly_spent,
            daily_remaining=status.daily_remaining,
            monthly_remaining=status.monthly_remaining,
        )

    async def is_emergency_stopped(self) -> bool:
        return self._emergency_stop
