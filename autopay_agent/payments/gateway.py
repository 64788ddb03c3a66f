"""
Execution Gateway

The only component allowed to request an actual payment. Every payment is
reserved against the BudgetGuard first, then settled through the ledger; a
ledger failure releases the reservation.

Reservations for one principal are serialized with a per-principal lock held
across reserve, settle and (on failure) release, so a principal's budget never
interleaves two payments. Different principals proceed independently.

Payments can also be queued with submit() and settled by sweep(), which the
payment-sweep job calls; failed payments are retried on later sweeps.
"""

import asyncio
import logging
import time
from collections import defaultdict
from collections.abc import Callable
from decimal import Decimal
from enum import Enum
from uuid import uuid4

from pydantic import BaseModel, Field

from ..budget_management import Amount, BudgetGuard, to_amount
from ..errors import (
    AgentError,
    BudgetNotConfiguredError,
    BudgetViolationError,
    ErrorCode,
    LedgerRejectedError,
    ValidationError,
)
from ..observability import ObservabilityAdapter
from .ledger import Ledger, PaymentReceipt

logger = logging.getLogger(__name__)

MAX_PAYMENT_RETRIES = 3
PAYMENT_HISTORY_LIMIT = 1000

# Ledger rejections that will not succeed on a later sweep
_PERMANENT_LEDGER_CODES = frozenset(
    {
        ErrorCode.DAILY_LIMIT_EXCEEDED,
        ErrorCode.MONTHLY_LIMIT_EXCEEDED,
        ErrorCode.INSUFFICIENT_PAYMENT,
        ErrorCode.PROVIDER_NOT_REGISTERED,
        ErrorCode.BUDGET_NOT_CONFIGURED,
    }
)


class PaymentStatus(str, Enum):
    """Lifecycle of a queued payment."""

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


class PendingPayment(BaseModel):
    """A payment queued for the payment-sweep job."""

    id: str = Field(default_factory=lambda: uuid4().hex)
    principal: str
    provider_address: str
    amount: Decimal = Field(..., gt=0)
    service_type: str
    elevated: bool = False
    status: PaymentStatus = PaymentStatus.PENDING
    retries: int = 0
    created_at: float
    updated_at: float
    tx_id: str | None = None
    last_error: str | None = None

    @property
    def is_terminal(self) -> bool:
        return self.status in (PaymentStatus.COMPLETED, PaymentStatus.FAILED, PaymentStatus.CANCELLED)


class SweepResult(BaseModel):
    """Outcome counts of one sweep."""

    processed: int = 0
    completed: int = 0
    failed: int = 0
    requeued: int = 0


class ExecutionGateway:
    """
    Budget-guarded payment execution.

    Example:
        >>> gateway = ExecutionGateway(guard, ledger)
        >>> receipt = await gateway.pay("agent", "0xabc...", Decimal("0.0001"), "weather")
    """

    def __init__(
        self,
        guard: BudgetGuard,
        ledger: Ledger,
        observability: ObservabilityAdapter | None = None,
        clock: Callable[[], float] | None = None,
        max_retries: int = MAX_PAYMENT_RETRIES,
    ):
        self.guard = guard
        self.ledger = ledger
        self._obs = observability or ObservabilityAdapter()
        self._clock = clock or time.time
        self.max_retries = max_retries
        self._locks: defaultdict[str, asyncio.Lock] = defaultdict(asyncio.Lock)
        self._payments: dict[str, PendingPayment] = {}
        self.emergency_stop = False

    def set_emergency_stop(self, active: bool) -> None:
        """Block (or unblock) every payment through the gateway."""
        if active != self.emergency_stop:
            log = logger.warning if active else logger.info
            log(f"Gateway emergency stop {'engaged' if active else 'released'}")
        self.emergency_stop = active

    async def refresh_emergency_stop(self) -> bool:
        """
        Mirror the ledger's emergency stop flag.

        If the ledger cannot be asked, payments are halted until the next check.
        """
        try:
            stopped = await self.ledger.is_emergency_stopped()
        except Exception as e:
            logger.error(f"Failed to check ledger emergency stop: {e}", exc_info=True)
            stopped = True

        self.set_emergency_stop(stopped)
        return stopped

    async def pay(
        self,
        principal: str,
        provider_address: str,
        amount: Amount,
        service_type: str,
        elevated: bool = False,
    ) -> PaymentReceipt:
        """
        Reserve budget and settle one payment.

        Args:
            principal: Principal paying
            provider_address: Payee settlement address
            amount: Amount to pay
            service_type: Service type paid for
            elevated: Caller holds authorization above the emergency threshold

        Returns:
            Ledger receipt

        Raises:
            LedgerRejectedError: Emergency stop active, or the ledger refused the payment
            BudgetViolationError: The BudgetGuard refused the reservation
            BudgetNotConfiguredError: No budget for the principal
        """
        if self.emergency_stop:
            self._obs.increment("gateway.payment.failure", tags={"reason": ErrorCode.EMERGENCY_STOP_ACTIVE.value})
            raise LedgerRejectedError(ErrorCode.EMERGENCY_STOP_ACTIVE, "Payments halted by emergency stop")

        value = to_amount(amount)

        async with self._locks[principal]:
            reservation = self.guard.check_and_reserve(principal, value, elevated=elevated)

            try:
                receipt = await self.ledger.reserve_and_pay(principal, provider_address, value, service_type)
                if not receipt.success:
                    raise LedgerRejectedError(
                        ErrorCode.INTERNAL_ERROR,
                        f"Ledger reported unsuccessful payment {receipt.tx_id}",
                        {"tx_id": receipt.tx_id},
                    )
            except (Exception, asyncio.CancelledError) as e:
                self.guard.release(reservation)
                reason = e.code.value if isinstance(e, AgentError) else type(e).__name__
                self._obs.increment("gateway.payment.failure", tags={"reason": reason})
                logger.warning(
                    f"Payment to {provider_address} failed, reservation released: {e}",
                    extra={"principal": principal, "provider": provider_address, "amount": str(value), "reason": reason},
                )
                raise

        self._obs.increment("gateway.payment.success", tags={"service_type": service_type})
        self._obs.histogram("gateway.payment.amount", float(value), tags={"service_type": service_type})
        logger.info(
            f"Payment executed: {receipt.tx_id}",
            extra={"principal": principal, "provider": provider_address, "amount": str(value), "tx_id": receipt.tx_id},
        )
        return receipt

    def submit(
        self,
        principal: str,
        provider_address: str,
        amount: Amount,
        service_type: str,
        elevated: bool = False,
    ) -> PendingPayment:
        """Queue a payment for the next sweep."""
        value = to_amount(amount)
        if value <= 0:
            raise ValidationError("Payment amount must be positive", {"amount": str(value)})

        now = self._clock()
        payment = PendingPayment(
            principal=principal,
            provider_address=provider_address,
            amount=value,
            service_type=service_type,
            elevated=elevated,
            created_at=now,
            updated_at=now,
        )
        self._payments[payment.id] = payment
        logger.debug(f"Payment queued: {payment.id}", extra={"payment_id": payment.id, "principal": principal})
        return payment

    def cancel(self, payment_id: str) -> PendingPayment:
        """
        Cancel a queued payment.

        Raises:
            ValidationError: Unknown payment, or the payment is not PENDING
        """
        payment = self._payments.get(payment_id)
        if payment is None:
            raise ValidationError(f"Unknown payment: {payment_id}", {"payment_id": payment_id})
        if payment.status != PaymentStatus.PENDING:
            raise ValidationError(
                f"Payment {payment_id} cannot be cancelled in status {payment.status.value}",
                {"payment_id": payment_id, "status": payment.status.value},
            )

        payment.status = PaymentStatus.CANCELLED
        payment.updated_at = self._clock()
        logger.info(f"Payment cancelled: {payment_id}", extra={"payment_id": payment_id})
        return payment

    def get_payment(self, payment_id: str) -> PendingPayment | None:
        return self._payments.get(payment_id)

    def pending(self) -> list[PendingPayment]:
        """Payments awaiting a sweep, oldest first."""
        return [p for p in self._payments.values() if p.status == PaymentStatus.PENDING]

    async def sweep(self) -> SweepResult:
        """
        Settle every pending payment.

        Budget violations and permanent ledger rejections fail a payment
        immediately; other failures requeue it until it has been retried
        max_retries times.
        """
        result = SweepResult()

        if self.emergency_stop:
            logger.warning("Payment sweep skipped: emergency stop active", extra={"pending": len(self.pending())})
            return result

        for payment in self.pending():
            # Cancelled between the snapshot and now
            if payment.status != PaymentStatus.PENDING:
                continue

            result.processed += 1
            payment.status = PaymentStatus.PROCESSING
            payment.updated_at = self._clock()

            try:
                receipt = await self.pay(
                    payment.principal,
                    payment.provider_address,
                    payment.amount,
                    payment.service_type,
                    elevated=payment.elevated,
                )
            except (BudgetViolationError, BudgetNotConfiguredError) as e:
                self._fail(payment, e.message)
                result.failed += 1
            except LedgerRejectedError as e:
                if e.code in _PERMANENT_LEDGER_CODES:
                    self._fail(payment, e.message)
                    result.failed += 1
                elif self._requeue(payment, e.message):
                    result.requeued += 1
                else:
                    result.failed += 1
            except Exception as e:
                logger.error(
                    f"Failed to process payment {payment.id}: {e}",
                    extra={"payment_id": payment.id, "retries": payment.retries},
                    exc_info=True,
                )
                if self._requeue(payment, str(e)):
                    result.requeued += 1
                else:
                    result.failed += 1
            else:
                payment.status = PaymentStatus.COMPLETED
                payment.tx_id = receipt.tx_id
                payment.updated_at = self._clock()
                result.completed += 1

        self._prune()

        if result.processed:
            logger.info(
                f"Payment sweep processed {result.processed} payments",
                extra=result.model_dump(),
            )
        return result

    def _fail(self, payment: PendingPayment, error: str) -> None:
        payment.status = PaymentStatus.FAILED
        payment.last_error = error
        payment.updated_at = self._clock()
        logger.warning(f"Payment failed: {payment.id}", extra={"payment_id": payment.id, "error": error})

    def _requeue(self, payment: PendingPayment, error: str) -> bool:
        """Return the payment to PENDING unless its retries are exhausted."""
        if payment.retries >= self.max_retries:
            self._fail(payment, error)
            return False

        payment.retries += 1
        payment.status = PaymentStatus.PENDING
        payment.last_error = error
        payment.updated_at = self._clock()
        return True

    def _prune(self) -> None:
        """Drop the oldest finished payments beyond the history limit."""
        terminal = [p for p in self._payments.values() if p.is_terminal]
        excess = len(terminal) - PAYMENT_HISTORY_LIMIT
        for payment in terminal[: max(0, excess)]:
            del self._payments[payment.id]
