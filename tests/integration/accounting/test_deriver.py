"""TaxAndPayableDeriver 통합 테스트 (IVA / 운영사 지급)"""

import asyncio
import sqlite3
from dataclasses import replace
from datetime import date
from decimal import Decimal

import pytest
import pytest_asyncio

from core.accounting.deriver import TaxAndPayableDeriver
from core.ledger.errors import (
    InvalidAmount,
    InvalidProductTypeForDueDate,
    LedgerValidationError,
    MissingExchangeRate,
)
from core.ledger.rates import ExchangeRateResolver
from core.ledger.store import LedgerMovementStore
from core.types import Currency, IVADirection, OperatorPaymentStatus


@pytest_asyncio.fixture
async def deriver(db, ledger_config, clock) -> TaxAndPayableDeriver:
    return TaxAndPayableDeriver(db, ledger_config, clock=clock)


class TestSaleIVA:
    """매출 IVA"""

    @pytest.mark.asyncio
    async def test_margin_based_usd(self, deriver: TaxAndPayableDeriver) -> None:
        """판매 2000, 원가 1900 (USD) → IVA 21"""
        record = await deriver.create_sale_iva(
            "op-1", Decimal("2000"), "USD", "2024-01-05", operator_cost=Decimal("1900")
        )

        assert record.record_id == "iva-SALE-op-1"
        assert record.direction == IVADirection.SALE
        assert record.iva_amount == Decimal("21")
        assert record.net_amount == Decimal("79")
        assert record.operator_cost == Decimal("1900")
        assert record.iva_base_amount == Decimal("21")
        assert record.reference_date == date(2024, 1, 5)

    @pytest.mark.asyncio
    async def test_ars_converted_with_recorded_rate(
        self, deriver: TaxAndPayableDeriver
    ) -> None:
        await deriver.new_resolver().upsert_rate("2024-01-01", Decimal("800"))

        record = await deriver.create_sale_iva("op-2", Decimal("100000"), "ARS", "2024-01-05")

        assert record.currency == Currency.ARS
        assert record.exchange_rate == Decimal("800")
        assert record.iva_amount == Decimal("21000")
        assert record.iva_base_amount == Decimal("26.25")

    @pytest.mark.asyncio
    async def test_idempotent(self, deriver: TaxAndPayableDeriver, db) -> None:
        first = await deriver.create_sale_iva("op-1", Decimal("2000"), "USD", "2024-01-05")
        second = await deriver.create_sale_iva("op-1", Decimal("9999"), "USD", "2024-02-05")

        assert second.record_id == first.record_id
        assert second.gross_amount == Decimal("2000")
        row = await db.fetchone("SELECT COUNT(*) FROM iva_record")
        assert row[0] == 1

    @pytest.mark.asyncio
    async def test_concurrent_creation(self, deriver: TaxAndPayableDeriver, db) -> None:
        results = await asyncio.gather(
            deriver.create_sale_iva("op-1", Decimal("2000"), "USD", "2024-01-05"),
            deriver.create_sale_iva("op-1", Decimal("2000"), "USD", "2024-01-05"),
        )

        assert results[0].record_id == results[1].record_id
        row = await db.fetchone("SELECT COUNT(*) FROM iva_record")
        assert row[0] == 1

    @pytest.mark.asyncio
    async def test_write_once(self, deriver: TaxAndPayableDeriver, db) -> None:
        await deriver.create_sale_iva("op-1", Decimal("2000"), "USD", "2024-01-05")

        with pytest.raises(sqlite3.IntegrityError):
            await db.execute("UPDATE iva_record SET iva_amount = '0'")

    @pytest.mark.asyncio
    async def test_missing_rate(self, db, ledger_config, clock) -> None:
        deriver = TaxAndPayableDeriver(db, ledger_config, clock=clock)

        with pytest.raises(MissingExchangeRate):
            await deriver.create_sale_iva(
                "op-1", Decimal("1000"), "ARS", "2024-01-05", resolver=ExchangeRateResolver(db)
            )
        assert await deriver.get_iva_record("op-1", "SALE") is None

    @pytest.mark.asyncio
    async def test_invalid_gross(self, deriver: TaxAndPayableDeriver) -> None:
        with pytest.raises(InvalidAmount):
            await deriver.create_sale_iva("op-1", Decimal("0"), "USD", "2024-01-05")


class TestPurchaseIVA:
    """매입 IVA"""

    @pytest.mark.asyncio
    async def test_purchase(self, deriver: TaxAndPayableDeriver) -> None:
        record = await deriver.create_purchase_iva(
            "op-1", "operator-1", Decimal("1210"), "USD", "2024-01-05"
        )

        assert record.record_id == "iva-PURCHASE-op-1"
        assert record.operator_id == "operator-1"
        assert record.net_amount == Decimal("1000")
        assert record.iva_amount == Decimal("210")

    @pytest.mark.asyncio
    async def test_sale_and_purchase_coexist(self, deriver: TaxAndPayableDeriver) -> None:
        await deriver.create_sale_iva("op-1", Decimal("2000"), "USD", "2024-01-05")
        await deriver.create_purchase_iva("op-1", "operator-1", Decimal("1210"), "USD", "2024-01-05")

        assert await deriver.get_iva_record("op-1", IVADirection.SALE) is not None
        assert await deriver.get_iva_record("op-1", IVADirection.PURCHASE) is not None


class TestIVAReports:
    """기간 조회 / 월별 포지션"""

    @pytest.mark.asyncio
    async def test_list_and_position(self, deriver: TaxAndPayableDeriver) -> None:
        await deriver.create_sale_iva("op-1", Decimal("1000"), "USD", "2024-01-05")
        await deriver.create_purchase_iva("op-1", "operator-1", Decimal("605"), "USD", "2024-01-05")
        await deriver.create_sale_iva("op-2", Decimal("500"), "USD", "2024-01-31")
        await deriver.create_sale_iva("op-3", Decimal("500"), "USD", "2024-02-01")

        january = await deriver.list_iva_records("2024-01-01", "2024-01-31")
        assert [r.operation_id for r in january] == ["op-1", "op-1", "op-2"]
        sales = await deriver.list_iva_records("2024-01-01", "2024-12-31", direction="SALE")
        assert len(sales) == 3

        position = await deriver.monthly_iva_position(2024, 1)
        assert position.sale_iva == Decimal("315")
        assert position.purchase_iva == Decimal("105")
        assert position.sale_count == 2
        assert position.purchase_count == 1
        assert position.position == Decimal("210")

    @pytest.mark.asyncio
    async def test_december_position(self, deriver: TaxAndPayableDeriver) -> None:
        await deriver.create_sale_iva("op-9", Decimal("100"), "USD", "2024-12-31")

        position = await deriver.monthly_iva_position(2024, 12)

        assert position.sale_iva == Decimal("21")


class TestOperatorPayments:
    """운영사 지급"""

    @pytest.mark.asyncio
    async def test_create_idempotent(self, deriver: TaxAndPayableDeriver) -> None:
        first = await deriver.create_operator_payment(
            "op-1", "operator-1", Decimal("1900"), "USD", "2024-02-01", notes="hotel"
        )
        second = await deriver.create_operator_payment(
            "op-1", "operator-2", Decimal("5"), "ARS", "2024-03-01"
        )

        assert first.payment_id == "opay-op-1"
        assert first.status == OperatorPaymentStatus.PENDING
        assert second.payment_id == first.payment_id
        assert second.operator_id == "operator-1"
        assert second.amount == Decimal("1900")

    @pytest.mark.asyncio
    async def test_due_date_uses_configured_grace(self, db, ledger_config, clock) -> None:
        deriver = TaxAndPayableDeriver(db, replace(ledger_config, due_date_grace_days=15), clock=clock)

        assert deriver.calculate_due_date("HOTEL", "2024-01-05") == date(2024, 1, 20)
        assert deriver.calculate_due_date("AEREO", "2024-01-05") == date(2024, 1, 15)
        with pytest.raises(InvalidProductTypeForDueDate):
            deriver.calculate_due_date("TREN", "2024-01-05")

    @pytest.mark.asyncio
    async def test_mark_paid(self, deriver: TaxAndPayableDeriver, db, ledger_config, clock) -> None:
        store = LedgerMovementStore(db, ledger_config, clock=clock)
        account_id = await store.create_account("Banco", "USD", Decimal("5000"))
        payment = await deriver.create_operator_payment(
            "op-1", "operator-1", Decimal("1900"), "USD", "2024-02-01"
        )
        movement_id = await store.record(
            account_id, "OPERATOR_PAYMENT", "USD", Decimal("1900"), operation_id="op-1"
        )
        other_id = await store.record(account_id, "OPERATOR_PAYMENT", "USD", Decimal("1"))

        paid = await deriver.mark_operator_payment_paid(payment.payment_id, movement_id)
        assert paid.status == OperatorPaymentStatus.PAID
        assert paid.ledger_movement_id == movement_id

        # 같은 이동으로 재호출 → no-op
        again = await deriver.mark_operator_payment_paid(payment.payment_id, movement_id)
        assert again == paid

        with pytest.raises(LedgerValidationError):
            await deriver.mark_operator_payment_paid(payment.payment_id, other_id)

    @pytest.mark.asyncio
    async def test_mark_paid_unknown(self, deriver: TaxAndPayableDeriver) -> None:
        payment = await deriver.create_operator_payment(
            "op-1", "operator-1", Decimal("10"), "USD", "2024-02-01"
        )

        with pytest.raises(LedgerValidationError):
            await deriver.mark_operator_payment_paid("opay-missing", "mv-1")
        with pytest.raises(LedgerValidationError):
            await deriver.mark_operator_payment_paid(payment.payment_id, "mv-missing")

    @pytest.mark.asyncio
    async def test_overdue(self, deriver: TaxAndPayableDeriver) -> None:
        await deriver.create_operator_payment("op-1", "operator-1", Decimal("10"), "USD", "2024-01-05")
        await deriver.create_operator_payment("op-2", "operator-2", Decimal("10"), "USD", "2024-01-08")
        await deriver.create_operator_payment("op-3", "operator-1", Decimal("10"), "USD", "2024-01-10")

        overdue = await deriver.overdue_operator_payments("2024-01-10")
        assert [p.operation_id for p in overdue] == ["op-1", "op-2"]
        only_one = await deriver.overdue_operator_payments("2024-01-10", operator_id="operator-1")
        assert [p.operation_id for p in only_one] == ["op-1"]

        assert await deriver.refresh_overdue("2024-01-10") == 2
        assert await deriver.refresh_overdue("2024-01-10") == 0
        assert (await deriver.get_operator_payment("op-1")).status == OperatorPaymentStatus.OVERDUE

        # OVERDUE도 여전히 미지급 목록에 포함
        assert len(await deriver.overdue_operator_payments("2024-01-10")) == 2
