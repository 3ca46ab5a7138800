"""LedgerService 통합 테스트 (외부 호출 인터페이스)"""

import asyncio
from dataclasses import replace
from datetime import date
from decimal import Decimal

import pytest
import pytest_asyncio

from core.ledger.errors import (
    InsufficientBalance,
    LedgerValidationError,
    MissingExchangeRate,
)
from core.ledger.models import OperatorPayment
from core.ledger.rates import ExchangeRateResolver
from core.ledger.service import LedgerService
from core.types import MovementType, OperatorPaymentStatus


@pytest_asyncio.fixture
async def ledger(ledger_config, clock) -> LedgerService:
    async with LedgerService.open(ledger_config, clock=clock) as service:
        yield service


class TestLedgerService:
    """서비스 기본 흐름"""

    @pytest.mark.asyncio
    async def test_record_and_balance(self, ledger: LedgerService) -> None:
        account_id = await ledger.store.create_account("Caja USD", "USD", Decimal("100"))

        await ledger.record(account_id, "EXPENSE", "USD", Decimal("30"), method="Efectivo")
        assert await ledger.current_balance(account_id) == Decimal("70")

        await ledger.validate_expense(account_id, Decimal("70"), "USD")
        with pytest.raises(InsufficientBalance):
            await ledger.validate_expense(account_id, Decimal("80"), "USD")

    @pytest.mark.asyncio
    async def test_daily_series(self, ledger: LedgerService) -> None:
        account_id = await ledger.store.create_account("Caja USD", "USD", Decimal("100"))
        await ledger.record(account_id, "INCOME", "USD", Decimal("5"))

        series = await ledger.daily_series([account_id], "2024-01-09", "2024-01-10")

        assert [entry.balance for entry in series] == [Decimal("100"), Decimal("105")]

    @pytest.mark.asyncio
    async def test_rates(self, ledger: LedgerService) -> None:
        assert await ledger.latest_rate() == Decimal("1000")

        await ledger.upsert_rate("2024-01-05", Decimal("820"))
        await ledger.upsert_rate("2024-01-06", Decimal("825"))

        assert await ledger.resolve_rate("2024-01-05") == Decimal("820")
        assert await ledger.latest_rate() == Decimal("825")
        rates = await ledger.resolve_rates_batch(["2024-01-06", "2024-01-06"])
        assert rates == {date(2024, 1, 6): Decimal("825")}

    @pytest.mark.asyncio
    async def test_latest_rate_without_fallback(self, ledger_config, clock) -> None:
        config = replace(ledger_config, fallback_exchange_rate=None)
        async with LedgerService.open(config, clock=clock) as service:
            with pytest.raises(MissingExchangeRate):
                await service.latest_rate()

    @pytest.mark.asyncio
    async def test_rate_written_later_is_visible(self, ledger: LedgerService, db) -> None:
        """호출 간 캐시를 공유하지 않음"""
        assert await ledger.resolve_rate("2024-01-05") is None

        await ExchangeRateResolver(db).upsert_rate("2024-01-05", Decimal("820"))

        assert await ledger.resolve_rate("2024-01-05") == Decimal("820")

    @pytest.mark.asyncio
    async def test_request_resolver_shared_across_calls(self, ledger: LedgerService) -> None:
        await ledger.upsert_rate("2024-01-05", Decimal("820"))
        resolver = ledger.new_resolver()

        await ledger.resolve_rates_batch(["2024-01-05", "2024-01-06"], resolver=resolver)
        assert await ledger.resolve_rate("2024-01-06", resolver=resolver) == Decimal("820")
        await ledger.create_sale_iva("op-1", Decimal("100000"), "ARS", "2024-01-05", resolver=resolver)

        assert resolver.lookup_count == 2
        assert ledger.new_resolver() is not resolver


class TestOperatorPaymentFlow:
    """운영사 지급 예정 → 지급"""

    @pytest.mark.asyncio
    async def test_pay_operator(self, ledger: LedgerService) -> None:
        account_id = await ledger.store.create_account("Banco USD", "USD", Decimal("2000"))
        due = ledger.calculate_due_date("AEREO", "2024-01-05")
        payment = await ledger.create_operator_payment(
            "op-1", "operator-1", Decimal("1900"), "USD", due
        )

        paid = await ledger.pay_operator(payment.payment_id, account_id, method="transferencia")

        assert paid.status == OperatorPaymentStatus.PAID
        movement = await ledger.store.get_movement(paid.ledger_movement_id)
        assert movement.movement_type == MovementType.OPERATOR_PAYMENT
        assert movement.operation_id == "op-1"
        assert await ledger.current_balance(account_id) == Decimal("100")

        with pytest.raises(LedgerValidationError):
            await ledger.pay_operator(payment.payment_id, account_id)

    @pytest.mark.asyncio
    async def test_pay_operator_ars_at_market_rate(self, ledger: LedgerService) -> None:
        account_id = await ledger.store.create_account("Banco USD", "USD", Decimal("100"))
        await ledger.upsert_rate("2024-01-10", Decimal("1250"))
        payment = await ledger.create_operator_payment(
            "op-2", "operator-1", Decimal("50000"), "ARS", "2024-02-01"
        )

        paid = await ledger.pay_operator(payment.payment_id, account_id)

        movement = await ledger.store.get_movement(paid.ledger_movement_id)
        assert movement.exchange_rate == Decimal("1250")
        assert await ledger.current_balance(account_id) == Decimal("60")

    @pytest.mark.asyncio
    async def test_pay_operator_insufficient(self, ledger: LedgerService) -> None:
        account_id = await ledger.store.create_account("Banco USD", "USD", Decimal("10"))
        payment = await ledger.create_operator_payment(
            "op-3", "operator-1", Decimal("500"), "USD", "2024-02-01"
        )

        with pytest.raises(InsufficientBalance):
            await ledger.pay_operator(payment.payment_id, account_id)

        stored = await ledger.deriver.get_operator_payment("op-3")
        assert stored.status == OperatorPaymentStatus.PENDING
        assert stored.ledger_movement_id is None

    @pytest.mark.asyncio
    async def test_concurrent_pay_debits_once(self, ledger: LedgerService) -> None:
        """같은 지급을 동시에 두 번 실행 → 이동 1건만 남음"""
        account_id = await ledger.store.create_account("Banco USD", "USD", Decimal("5000"))
        payment = await ledger.create_operator_payment(
            "op-4", "operator-1", Decimal("1900"), "USD", "2024-02-01"
        )

        results = await asyncio.gather(
            ledger.pay_operator(payment.payment_id, account_id),
            ledger.pay_operator(payment.payment_id, account_id),
            return_exceptions=True,
        )

        paid = [r for r in results if isinstance(r, OperatorPayment)]
        failed = [r for r in results if isinstance(r, LedgerValidationError)]
        assert len(paid) == 1
        assert len(failed) == 1

        movements = await ledger.store.movements_for_operation("op-4")
        assert [m.movement_id for m in movements] == [paid[0].ledger_movement_id]
        assert await ledger.current_balance(account_id) == Decimal("3100")

    @pytest.mark.asyncio
    async def test_pay_unknown_payment(self, ledger: LedgerService) -> None:
        with pytest.raises(LedgerValidationError):
            await ledger.pay_operator("opay-missing", "acc-1")

    @pytest.mark.asyncio
    async def test_iva_through_service(self, ledger: LedgerService) -> None:
        sale = await ledger.create_sale_iva("op-1", Decimal("2000"), "USD", "2024-01-05", Decimal("1900"))
        purchase = await ledger.create_purchase_iva("op-1", "operator-1", Decimal("1210"), "USD", "2024-01-05")

        assert sale.iva_amount == Decimal("21")
        assert purchase.iva_amount == Decimal("210")
