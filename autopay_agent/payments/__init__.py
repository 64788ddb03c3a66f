"""
Budget-guarded payment execution and the ledger collaborator.
"""

from .gateway import (
    MAX_PAYMENT_RETRIES,
    ExecutionGateway,
    PaymentStatus,
    PendingPayment,
    SweepResult,
)
from .ledger import InMemoryLedger, Ledger, LedgerBudgetStatus, PaymentReceipt

__all__ = [
    "ExecutionGateway",
    "InMemoryLedger",
    "Ledger",
    "LedgerBudgetStatus",
    "MAX_PAYMENT_RETRIES",
    "PaymentReceipt",
    "PaymentStatus",
    "PendingPayment",
    "SweepResult",
]
