"""
Tests for the in-memory ledger
"""

from decimal import Decimal

import pytest

from autopay_agent.errors import ErrorCode, LedgerRejectedError
from autopay_agent.payments import InMemoryLedger


@pytest.fixture
def ledger(clock) -> InMemoryLedger:
    ledger = InMemoryLedger(clock=clock)
    ledger.set_budget("agent", "0.01", "0.1", "0.005")
    ledger.register_provider("0xweather", "0.001")
    return ledger


class TestInMemoryLedger:
    """Test ledger-side enforcement."""

    @pytest.mark.asyncio
    async def test_successful_payment(self, ledger: InMemoryLedger):
        receipt = await ledger.reserve_and_pay("agent", "0xweather", Decimal("0.002"), "weather")

        assert receipt.success
        assert receipt.tx_id.startswith("0x")
        assert ledger.payments == [receipt]
        status = await ledger.get_budget_status("agent")
        assert status.daily_spent == Decimal("0.002")
        assert status.daily_remaining == Decimal("0.008")

    @pytest.mark.asyncio
    async def test_ledger_ignores_emergency_threshold(self, ledger: InMemoryLedger):
        await ledger.reserve_and_pay("agent", "0xweather", Decimal("0.006"), "weather")

        assert (await ledger.get_budget_status("agent")).daily_spent == Decimal("0.006")

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "address,amount,code",
        [
            ("0xunknown", "0.002", ErrorCode.PROVIDER_NOT_REGISTERED),
            ("0xweather", "0.0005", ErrorCode.INSUFFICIENT_PAYMENT),
            ("0xweather", "0.02", ErrorCode.DAILY_LIMIT_EXCEEDED),
        ],
    )
    async def test_rejections(self, ledger: InMemoryLedger, address: str, amount: str, code: ErrorCode):
        with pytest.raises(LedgerRejectedError) as exc_info:
            await ledger.reserve_and_pay("agent", address, Decimal(amount), "weather")

        assert exc_info.value.code == code
        assert ledger.payments == []

    @pytest.mark.asyncio
    async def test_unknown_principal(self, ledger: InMemoryLedger):
        with pytest.raises(LedgerRejectedError) as exc_info:
            await ledger.reserve_and_pay("stranger", "0xweather", Decimal("0.002"), "weather")

        assert exc_info.value.code == ErrorCode.BUDGET_NOT_CONFIGURED

    @pytest.mark.asyncio
    async def test_emergency_stop(self, ledger: InMemoryLedger):
        ledger.set_emergency_stop(True)

        assert await ledger.is_emergency_stopped()
        with pytest.raises(LedgerRejectedError) as exc_info:
            await ledger.reserve_and_pay("agent", "0xweather", Decimal("0.002"), "weather")
        assert exc_info.value.code == ErrorCode.EMERGENCY_STOP_ACTIVE
