"""
IVA / 운영사 지급 레코드 생성 (TaxAndPayableDeriver)

operation 단위 멱등성:
- IVA: (operation_id, direction)당 1건
- 운영사 지급: operation_id당 1건

생성 전 기존 레코드를 조회하여 있으면 그대로 반환.
동시 생성 경합은 UNIQUE 제약 + INSERT OR IGNORE 후 재조회로 처리.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from typing import TYPE_CHECKING, Any, Callable

from core.accounting.iva import calculate_purchase_iva, calculate_sale_iva
from core.accounting.payables import calculate_due_date
from core.config.loader import LedgerConfig
from core.ledger.errors import LedgerValidationError
from core.ledger.models import IVARecord, OperatorPayment
from core.ledger.money import ZERO, parse_currency, positive_amount, quantize
from core.ledger.rates import ExchangeRateResolver
from core.types import Currency, IVADirection, OperatorPaymentStatus, ProductType
from core.utils.idempotency import make_iva_record_id, make_operator_payment_id
from core.utils.timezone import now_utc, parse_date, to_storage

if TYPE_CHECKING:
    from adapters.db.sqlite_adapter import SQLiteAdapter

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class IVAPosition:
    """월별 IVA 포지션 (기준통화)

    position > 0: 납부 예정, position < 0: 이월 공제
    """

    year: int
    month: int
    sale_iva: Decimal
    purchase_iva: Decimal
    sale_count: int
    purchase_count: int

    @property
    def position(self) -> Decimal:
        return self.sale_iva - self.purchase_iva


class TaxAndPayableDeriver:
    """IVA / 운영사 지급 레코드 생성기

    Args:
        db: SQLite 어댑터
        config: Ledger 설정 (IVA 세율, 자리수, 만기 유예일)
        clock: 현재 UTC 시각 함수 (테스트에서 주입)
    """

    def __init__(
        self,
        db: SQLiteAdapter,
        config: LedgerConfig | None = None,
        clock: Callable[[], datetime] = now_utc,
    ):
        self.db = db
        self.config = config or LedgerConfig()
        self.clock = clock

    def new_resolver(self) -> ExchangeRateResolver:
        """요청 단위 환율 조회기 (새 캐시)"""
        return ExchangeRateResolver.from_config(self.db, self.config)

    def _to_base(self, value: Decimal, currency: Currency, rate: Decimal) -> Decimal:
        """세액 기준통화 환산 (0 허용)"""
        base = self.config.base_currency
        if currency == base:
            return value
        converted = value / rate if base == Currency.USD else value * rate
        return quantize(converted, self.config.base_amount_decimals)

    # -------------------------------------------------------------------------
    # IVA
    # -------------------------------------------------------------------------

    async def get_iva_record(
        self,
        operation_id: str,
        direction: IVADirection | str,
    ) -> IVARecord | None:
        """operation의 IVA 레코드 조회"""
        row = await self.db.fetchone(
            f"""
            SELECT {IVARecord.select_columns()}
            FROM iva_record
            WHERE operation_id = ? AND direction = ?
            """,
            (operation_id, IVADirection(direction).value),
        )
        return IVARecord.from_row(row) if row else None

    async def _create_iva(
        self,
        direction: IVADirection,
        operation_id: str,
        operator_id: str | None,
        gross_amount: Decimal | str | int,
        operator_cost: Decimal | str | int,
        currency: Currency | str,
        reference_date: date | datetime | str,
        resolver: ExchangeRateResolver | None,
    ) -> IVARecord:
        existing = await self.get_iva_record(operation_id, direction)
        if existing is not None:
            logger.debug(f"IVA 레코드 이미 존재: {existing.record_id}")
            return existing

        cur = parse_currency(currency)
        gross = positive_amount(gross_amount)
        if direction == IVADirection.SALE:
            amounts = calculate_sale_iva(
                gross, operator_cost, self.config.iva_rate, self.config.tax_decimals
            )
            cost = Decimal(str(operator_cost))
        else:
            amounts = calculate_purchase_iva(
                gross, self.config.iva_rate, self.config.tax_decimals
            )
            cost = ZERO

        day = parse_date(reference_date)
        rate = await (resolver or self.new_resolver()).effective_rate(day)

        record = IVARecord(
            record_id=make_iva_record_id(direction.value, operation_id),
            direction=direction,
            operation_id=operation_id,
            operator_id=operator_id,
            gross_amount=gross,
            operator_cost=cost,
            net_amount=amounts.net_amount,
            iva_amount=amounts.iva_amount,
            currency=cur,
            exchange_rate=rate,
            iva_base_amount=self._to_base(amounts.iva_amount, cur, rate),
            reference_date=day,
            created_at=self.clock(),
        )

        async with self.db.transaction(immediate=True):
            cursor = await self.db.execute(
                f"""
                INSERT OR IGNORE INTO iva_record ({IVARecord.select_columns()})
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    record.record_id,
                    record.direction.value,
                    record.operation_id,
                    record.operator_id,
                    str(record.gross_amount),
                    str(record.operator_cost),
                    str(record.net_amount),
                    str(record.iva_amount),
                    record.currency.value,
                    str(record.exchange_rate),
                    str(record.iva_base_amount),
                    record.reference_date.isoformat(),
                    to_storage(record.created_at),
                ),
            )
            inserted = cursor.rowcount > 0

        if not inserted:
            logger.info(f"IVA 레코드 동시 생성 감지, 기존 레코드 사용: {operation_id} {direction.value}")
            stored = await self.get_iva_record(operation_id, direction)
            assert stored is not None
            return stored

        logger.info(
            f"IVA 레코드 생성: {record.record_id} iva={record.iva_amount} {cur.value} "
            f"(base={record.iva_base_amount})"
        )
        return record

    async def create_sale_iva(
        self,
        operation_id: str,
        gross_amount: Decimal | str | int,
        currency: Currency | str,
        reference_date: date | datetime | str,
        operator_cost: Decimal | str | int = ZERO,
        resolver: ExchangeRateResolver | None = None,
    ) -> IVARecord:
        """매출 IVA 생성 (멱등)

        resolver를 주면 해당 요청의 환율 캐시를 공유.

        Raises:
            InvalidAmount, UnsupportedCurrency, MissingExchangeRate
        """
        return await self._create_iva(
            IVADirection.SALE, operation_id, None,
            gross_amount, operator_cost, currency, reference_date, resolver,
        )

    async def create_purchase_iva(
        self,
        operation_id: str,
        operator_id: str | None,
        gross_amount: Decimal | str | int,
        currency: Currency | str,
        reference_date: date | datetime | str,
        resolver: ExchangeRateResolver | None = None,
    ) -> IVARecord:
        """매입 IVA 생성 (멱등)

        Raises:
            InvalidAmount, UnsupportedCurrency, MissingExchangeRate
        """
        return await self._create_iva(
            IVADirection.PURCHASE, operation_id, operator_id,
            gross_amount, ZERO, currency, reference_date, resolver,
        )

    async def list_iva_records(
        self,
        date_from: date | str,
        date_to: date | str,
        direction: IVADirection | str | None = None,
    ) -> list[IVARecord]:
        """기간 내 IVA 레코드 (reference_date 기준, 양끝 포함)"""
        sql = f"""
            SELECT {IVARecord.select_columns()}
            FROM iva_record
            WHERE reference_date >= ? AND reference_date <= ?
        """
        params: list[Any] = [parse_date(date_from).isoformat(), parse_date(date_to).isoformat()]
        if direction is not None:
            sql += " AND direction = ?"
            params.append(IVADirection(direction).value)
        sql += " ORDER BY reference_date, record_id"

        rows = await self.db.fetchall(sql, tuple(params))
        return [IVARecord.from_row(row) for row in rows]

    async def monthly_iva_position(self, year: int, month: int) -> IVAPosition:
        """월별 IVA 포지션 (매출 IVA - 매입 IVA, 기준통화)"""
        first = date(year, month, 1)
        last = date(year + (month // 12), month % 12 + 1, 1)
        rows = await self.db.fetchall(
            """
            SELECT direction, iva_base_amount
            FROM iva_record
            WHERE reference_date >= ? AND reference_date < ?
            """,
            (first.isoformat(), last.isoformat()),
        )

        sale_iva = purchase_iva = ZERO
        sale_count = purchase_count = 0
        for direction, amount in rows:
            if direction == IVADirection.SALE.value:
                sale_iva += Decimal(amount)
                sale_count += 1
            else:
                purchase_iva += Decimal(amount)
                purchase_count += 1

        return IVAPosition(
            year=year,
            month=month,
            sale_iva=sale_iva,
            purchase_iva=purchase_iva,
            sale_count=sale_count,
            purchase_count=purchase_count,
        )

    # -------------------------------------------------------------------------
    # 운영사 지급
    # -------------------------------------------------------------------------

    def calculate_due_date(
        self,
        product_type: ProductType | str | None,
        created_date: date | datetime | str,
        checkin_date: date | datetime | str | None = None,
        departure_date: date | datetime | str | None = None,
    ) -> date:
        """설정된 유예일로 만기일 계산 (순수)"""
        return calculate_due_date(
            product_type,
            created_date,
            checkin_date,
            departure_date,
            grace_days=self.config.due_date_grace_days,
        )

    async def get_operator_payment(self, operation_id: str) -> OperatorPayment | None:
        """operation의 운영사 지급 조회"""
        row = await self.db.fetchone(
            f"SELECT {OperatorPayment.select_columns()} FROM operator_payment WHERE operation_id = ?",
            (operation_id,),
        )
        return OperatorPayment.from_row(row) if row else None

    async def get_operator_payment_by_id(self, payment_id: str) -> OperatorPayment | None:
        """payment_id로 운영사 지급 조회"""
        row = await self.db.fetchone(
            f"SELECT {OperatorPayment.select_columns()} FROM operator_payment WHERE payment_id = ?",
            (payment_id,),
        )
        return OperatorPayment.from_row(row) if row else None

    async def create_operator_payment(
        self,
        operation_id: str,
        operator_id: str,
        amount: Decimal | str | int,
        currency: Currency | str,
        due_date: date | datetime | str,
        notes: str | None = None,
    ) -> OperatorPayment:
        """운영사 지급 예정 생성 (멱등, operation당 1건)

        Raises:
            InvalidAmount, UnsupportedCurrency
        """
        existing = await self.get_operator_payment(operation_id)
        if existing is not None:
            logger.debug(f"운영사 지급 이미 존재: {existing.payment_id}")
            return existing

        now = self.clock()
        payment = OperatorPayment(
            payment_id=make_operator_payment_id(operation_id),
            operation_id=operation_id,
            operator_id=operator_id,
            amount=positive_amount(amount),
            currency=parse_currency(currency),
            due_date=parse_date(due_date),
            status=OperatorPaymentStatus.PENDING,
            notes=notes,
            created_at=now,
            updated_at=now,
        )

        async with self.db.transaction(immediate=True):
            inserted = await self.insert_operator_payment(payment)

        if not inserted:
            logger.info(f"운영사 지급 동시 생성 감지, 기존 레코드 사용: {operation_id}")
            stored = await self.get_operator_payment(operation_id)
            assert stored is not None
            return stored

        logger.info(
            f"운영사 지급 생성: {payment.payment_id} {payment.amount} "
            f"{payment.currency.value} (만기 {payment.due_date})"
        )
        return payment

    async def insert_operator_payment(self, payment: OperatorPayment) -> bool:
        """운영사 지급 INSERT OR IGNORE (호출자의 트랜잭션 안에서 실행)

        Returns:
            새로 기록되었으면 True, UNIQUE 충돌로 무시되었으면 False
        """
        cursor = await self.db.execute(
            f"""
            INSERT OR IGNORE INTO operator_payment ({OperatorPayment.select_columns()})
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                payment.payment_id,
                payment.operation_id,
                payment.recurring_id,
                payment.operator_id,
                str(payment.amount),
                payment.currency.value,
                payment.due_date.isoformat(),
                payment.status.value,
                payment.ledger_movement_id,
                payment.notes,
                to_storage(payment.created_at),
                to_storage(payment.updated_at),
            ),
        )
        return cursor.rowcount > 0

    async def mark_operator_payment_paid(
        self,
        payment_id: str,
        movement_id: str,
    ) -> OperatorPayment:
        """운영사 지급 완료 처리

        같은 movement로 다시 호출하면 no-op.

        Raises:
            LedgerValidationError: 지급 또는 이동이 없거나, 다른 이동으로 이미 지급된 경우
        """
        async with self.db.transaction(immediate=True):
            payment = await self.get_operator_payment_by_id(payment_id)
            if (
                payment is not None
                and payment.status == OperatorPaymentStatus.PAID
                and payment.ledger_movement_id == movement_id
            ):
                return payment

            row = await self.db.fetchone(
                "SELECT 1 FROM ledger_movement WHERE movement_id = ?",
                (movement_id,),
            )
            if row is None:
                raise LedgerValidationError(f"이동을 찾을 수 없습니다: {movement_id}")

            await self.settle_operator_payment(payment_id, movement_id)

        updated = await self.get_operator_payment_by_id(payment_id)
        assert updated is not None
        return updated

    async def settle_operator_payment(self, payment_id: str, movement_id: str) -> None:
        """운영사 지급 PAID 전환 (호출자의 트랜잭션 안에서 실행)

        PAID가 아닌 행만 갱신. 갱신된 행이 없으면 예외를 던져 호출자의
        트랜잭션 전체(같이 기록한 이동 포함)를 롤백시킴.

        Raises:
            LedgerValidationError: 지급이 없거나 이미 지급된 경우
        """
        cursor = await self.db.execute(
            """
            UPDATE operator_payment
            SET status = ?, ledger_movement_id = ?, updated_at = ?
            WHERE payment_id = ? AND status != ?
            """,
            (
                OperatorPaymentStatus.PAID.value,
                movement_id,
                to_storage(self.clock()),
                payment_id,
                OperatorPaymentStatus.PAID.value,
            ),
        )
        if cursor.rowcount == 0:
            payment = await self.get_operator_payment_by_id(payment_id)
            if payment is None:
                raise LedgerValidationError(f"운영사 지급을 찾을 수 없습니다: {payment_id}")
            raise LedgerValidationError(
                f"이미 지급된 운영사 지급입니다: {payment_id} "
                f"(movement {payment.ledger_movement_id})"
            )

        logger.info(f"운영사 지급 완료: {payment_id} (movement {movement_id})")

    async def overdue_operator_payments(
        self,
        as_of: date | str,
        operator_id: str | None = None,
    ) -> list[OperatorPayment]:
        """만기가 지난 미지급 운영사 지급 (만기일 오름차순)

        PENDING / OVERDUE 중 due_date < as_of.
        """
        sql = f"""
            SELECT {OperatorPayment.select_columns()}
            FROM operator_payment
            WHERE status IN (?, ?) AND due_date < ?
        """
        params: list[Any] = [
            OperatorPaymentStatus.PENDING.value,
            OperatorPaymentStatus.OVERDUE.value,
            parse_date(as_of).isoformat(),
        ]
        if operator_id is not None:
            sql += " AND operator_id = ?"
            params.append(operator_id)
        sql += " ORDER BY due_date, payment_id"

        rows = await self.db.fetchall(sql, tuple(params))
        return [OperatorPayment.from_row(row) for row in rows]

    async def refresh_overdue(self, as_of: date | str) -> int:
        """만기가 지난 PENDING 지급을 OVERDUE로 전환

        Returns:
            전환된 건수
        """
        async with self.db.transaction():
            cursor = await self.db.execute(
                """
                UPDATE operator_payment
                SET status = ?, updated_at = ?
                WHERE status = ? AND due_date < ?
                """,
                (
                    OperatorPaymentStatus.OVERDUE.value,
                    to_storage(self.clock()),
                    OperatorPaymentStatus.PENDING.value,
                    parse_date(as_of).isoformat(),
                ),
            )
            updated = cursor.rowcount

        if updated:
            logger.info(f"운영사 지급 {updated}건 OVERDUE 전환 (기준일 {parse_date(as_of)})")
        return updated
