"""
운영사 정기 지급 (RecurringPaymentScheduler)

operation과 무관한 고정 비용(사무실 임대, 시스템 사용료 등)을 주기별로
운영사 지급(PENDING)으로 생성.

회차 규칙:
- 첫 회차는 start_date, 이후 calculate_next_due_date로 이동
- MONTHLY / QUARTERLY / YEARLY는 start_date의 일자를 유지 (월말은 해당 월 마지막 날로 조정)
- end_date 이후 회차는 생성하지 않음
- 회차당 운영사 지급 1건 (결정적 payment_id + UNIQUE(recurring_id, due_date))

실행이 밀린 경우 as_of까지 도래한 회차를 모두 생성.
"""

from __future__ import annotations

import calendar
import logging
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from decimal import Decimal
from typing import TYPE_CHECKING, Any, Callable

from pydantic import ValidationError

from core.accounting.deriver import TaxAndPayableDeriver
from core.config.loader import LedgerConfig
from core.ledger.errors import LedgerError, LedgerValidationError
from core.ledger.models import OperatorPayment, RecurringPayment
from core.ledger.money import parse_currency, positive_amount
from core.types import Currency, OperatorPaymentStatus, RecurringFrequency
from core.utils.idempotency import make_recurring_id, make_recurring_payment_id
from core.utils.timezone import now_utc, parse_date, to_storage

if TYPE_CHECKING:
    from adapters.db.sqlite_adapter import SQLiteAdapter

logger = logging.getLogger(__name__)

DAY_STEPS: dict[RecurringFrequency, int] = {
    RecurringFrequency.WEEKLY: 7,
    RecurringFrequency.BIWEEKLY: 14,
}

MONTH_STEPS: dict[RecurringFrequency, int] = {
    RecurringFrequency.MONTHLY: 1,
    RecurringFrequency.QUARTERLY: 3,
    RecurringFrequency.YEARLY: 12,
}

# update_recurring_payment로 변경 가능한 항목
MUTABLE_FIELDS: frozenset[str] = frozenset({
    "amount",
    "currency",
    "frequency",
    "end_date",
    "next_due_date",
    "is_active",
    "description",
    "notes",
    "invoice_number",
    "reference",
})


def parse_frequency(frequency: RecurringFrequency | str) -> RecurringFrequency:
    """주기 파싱 (대소문자 무시)

    Raises:
        LedgerValidationError: 알 수 없는 주기
    """
    if isinstance(frequency, RecurringFrequency):
        return frequency
    try:
        return RecurringFrequency(str(frequency).strip().upper())
    except ValueError as e:
        raise LedgerValidationError(f"지원하지 않는 지급 주기: {frequency!r}") from e


def add_months(day: date, months: int, anchor_day: int | None = None) -> date:
    """월 단위 이동 (anchor_day가 없는 달은 그 달 마지막 날)"""
    total = day.month - 1 + months
    year, month = day.year + total // 12, total % 12 + 1
    last_day = calendar.monthrange(year, month)[1]
    return date(year, month, min(anchor_day or day.day, last_day))


def calculate_next_due_date(
    last_due: date | datetime | str,
    frequency: RecurringFrequency | str,
    anchor_day: int | None = None,
) -> date:
    """다음 회차 일자 계산 (순수)

    Example:
        >>> calculate_next_due_date(date(2024, 1, 31), "MONTHLY")
        datetime.date(2024, 2, 29)
        >>> calculate_next_due_date(date(2024, 2, 29), "MONTHLY", anchor_day=31)
        datetime.date(2024, 3, 31)
    """
    day = parse_date(last_due)
    freq = parse_frequency(frequency)
    if freq in DAY_STEPS:
        return day + timedelta(days=DAY_STEPS[freq])
    return add_months(day, MONTH_STEPS[freq], anchor_day)


def _period_due(recurring: RecurringPayment, due: date, as_of: date) -> bool:
    if not recurring.is_active or due > as_of or recurring.start_date > as_of:
        return False
    return recurring.end_date is None or due <= recurring.end_date


def should_generate(recurring: RecurringPayment, as_of: date | datetime | str) -> bool:
    """next_due_date 회차를 as_of 기준으로 생성해야 하는지 (순수)"""
    return _period_due(recurring, recurring.next_due_date, parse_date(as_of))


@dataclass
class RecurringRunSummary:
    """정기 지급 일괄 생성 결과"""

    generated: int = 0
    errors: list[str] = field(default_factory=list)


class RecurringPaymentScheduler:
    """운영사 정기 지급 관리 및 회차별 지급 생성

    Args:
        db: SQLite 어댑터
        config: Ledger 설정
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
        self.deriver = TaxAndPayableDeriver(db, self.config, clock)

    # -------------------------------------------------------------------------
    # 정기 지급 관리
    # -------------------------------------------------------------------------

    async def create_recurring_payment(
        self,
        operator_id: str,
        amount: Decimal | str | int,
        currency: Currency | str,
        frequency: RecurringFrequency | str,
        start_date: date | datetime | str,
        description: str,
        end_date: date | datetime | str | None = None,
        notes: str | None = None,
        invoice_number: str | None = None,
        reference: str | None = None,
        created_by: str | None = None,
    ) -> RecurringPayment:
        """정기 지급 등록 (첫 회차 = start_date)

        Raises:
            InvalidAmount, UnsupportedCurrency, LedgerValidationError
        """
        start = parse_date(start_date)
        now = self.clock()
        try:
            recurring = RecurringPayment(
                recurring_id=make_recurring_id(),
                operator_id=operator_id,
                amount=positive_amount(amount),
                currency=parse_currency(currency),
                frequency=parse_frequency(frequency),
                start_date=start,
                end_date=parse_date(end_date) if end_date else None,
                next_due_date=start,
                description=description,
                notes=notes,
                invoice_number=invoice_number,
                reference=reference,
                created_by=created_by,
                created_at=now,
                updated_at=now,
            )
        except ValidationError as e:
            raise LedgerValidationError(f"정기 지급 값이 유효하지 않습니다: {e}") from e

        async with self.db.transaction():
            await self.db.execute(
                f"""
                INSERT INTO recurring_payment ({RecurringPayment.select_columns()})
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    recurring.recurring_id,
                    recurring.operator_id,
                    str(recurring.amount),
                    recurring.currency.value,
                    recurring.frequency.value,
                    recurring.start_date.isoformat(),
                    recurring.end_date.isoformat() if recurring.end_date else None,
                    recurring.next_due_date.isoformat(),
                    None,
                    1,
                    recurring.description,
                    recurring.notes,
                    recurring.invoice_number,
                    recurring.reference,
                    recurring.created_by,
                    to_storage(now),
                    to_storage(now),
                ),
            )

        logger.info(
            f"정기 지급 등록: {recurring.recurring_id} {recurring.amount} "
            f"{recurring.currency.value} {recurring.frequency.value} (시작 {start})"
        )
        return recurring

    async def get_recurring_payment(self, recurring_id: str) -> RecurringPayment | None:
        """정기 지급 단건 조회"""
        row = await self.db.fetchone(
            f"SELECT {RecurringPayment.select_columns()} FROM recurring_payment WHERE recurring_id = ?",
            (recurring_id,),
        )
        return RecurringPayment.from_row(row) if row else None

    async def list_recurring_payments(
        self,
        operator_id: str | None = None,
        is_active: bool | None = None,
    ) -> list[RecurringPayment]:
        """정기 지급 목록 (다음 회차 오름차순)"""
        conditions: list[str] = []
        params: list[Any] = []
        if operator_id is not None:
            conditions.append("operator_id = ?")
            params.append(operator_id)
        if is_active is not None:
            conditions.append("is_active = ?")
            params.append(1 if is_active else 0)

        where = f"WHERE {' AND '.join(conditions)}" if conditions else ""
        rows = await self.db.fetchall(
            f"""
            SELECT {RecurringPayment.select_columns()}
            FROM recurring_payment
            {where}
            ORDER BY next_due_date, recurring_id
            """,
            tuple(params),
        )
        return [RecurringPayment.from_row(row) for row in rows]

    async def update_recurring_payment(self, recurring_id: str, **changes: Any) -> RecurringPayment:
        """정기 지급 변경 (MUTABLE_FIELDS만 허용)

        이미 생성된 운영사 지급에는 영향 없음.

        Raises:
            LedgerValidationError: 정기 지급이 없거나, 변경 불가 항목 / 잘못된 값
        """
        unknown = set(changes) - MUTABLE_FIELDS
        if unknown:
            raise LedgerValidationError(f"변경할 수 없는 항목입니다: {sorted(unknown)}")
        if "amount" in changes:
            changes["amount"] = positive_amount(changes["amount"])
        if "currency" in changes:
            changes["currency"] = parse_currency(changes["currency"])
        if "frequency" in changes:
            changes["frequency"] = parse_frequency(changes["frequency"])

        async with self.db.transaction(immediate=True):
            current = await self.get_recurring_payment(recurring_id)
            if current is None:
                raise LedgerValidationError(f"정기 지급을 찾을 수 없습니다: {recurring_id}")
            try:
                updated = RecurringPayment.model_validate(
                    {**current.model_dump(), **changes, "updated_at": self.clock()}
                )
            except ValidationError as e:
                raise LedgerValidationError(f"정기 지급 값이 유효하지 않습니다: {e}") from e

            await self.db.execute(
                """
                UPDATE recurring_payment
                SET amount = ?, currency = ?, frequency = ?, end_date = ?,
                    next_due_date = ?, is_active = ?, description = ?, notes = ?,
                    invoice_number = ?, reference = ?, updated_at = ?
                WHERE recurring_id = ?
                """,
                (
                    str(updated.amount),
                    updated.currency.value,
                    updated.frequency.value,
                    updated.end_date.isoformat() if updated.end_date else None,
                    updated.next_due_date.isoformat(),
                    1 if updated.is_active else 0,
                    updated.description,
                    updated.notes,
                    updated.invoice_number,
                    updated.reference,
                    to_storage(updated.updated_at),
                    recurring_id,
                ),
            )

        logger.info(f"정기 지급 변경: {recurring_id} {sorted(changes)}")
        return updated

    async def deactivate_recurring_payment(self, recurring_id: str) -> RecurringPayment:
        """정기 지급 비활성화 (삭제 대신)"""
        return await self.update_recurring_payment(recurring_id, is_active=False)

    # -------------------------------------------------------------------------
    # 회차 생성
    # -------------------------------------------------------------------------

    async def generate_payments(
        self,
        recurring_id: str,
        as_of: date | datetime | str,
    ) -> list[OperatorPayment]:
        """as_of까지 도래한 회차의 운영사 지급 생성 (멱등)

        지급 INSERT와 next_due_date 이동을 한 트랜잭션에서 수행.

        Returns:
            새로 생성된 운영사 지급 (이미 있던 회차 제외)

        Raises:
            LedgerValidationError: 정기 지급이 없는 경우
        """
        day = parse_date(as_of)
        created: list[OperatorPayment] = []

        async with self.db.transaction(immediate=True):
            recurring = await self.get_recurring_payment(recurring_id)
            if recurring is None:
                raise LedgerValidationError(f"정기 지급을 찾을 수 없습니다: {recurring_id}")

            now = self.clock()
            due = recurring.next_due_date
            last_generated = recurring.last_generated_date
            while _period_due(recurring, due, day):
                payment = OperatorPayment(
                    payment_id=make_recurring_payment_id(recurring_id, due),
                    recurring_id=recurring_id,
                    operator_id=recurring.operator_id,
                    amount=recurring.amount,
                    currency=recurring.currency,
                    due_date=due,
                    status=OperatorPaymentStatus.PENDING,
                    notes=f"Pago recurrente: {recurring.description} ({recurring.frequency.value})",
                    created_at=now,
                    updated_at=now,
                )
                if await self.deriver.insert_operator_payment(payment):
                    created.append(payment)
                last_generated = due
                due = calculate_next_due_date(due, recurring.frequency, recurring.start_date.day)

            if due != recurring.next_due_date:
                await self.db.execute(
                    """
                    UPDATE recurring_payment
                    SET next_due_date = ?, last_generated_date = ?, updated_at = ?
                    WHERE recurring_id = ?
                    """,
                    (due.isoformat(), last_generated.isoformat(), to_storage(now), recurring_id),
                )

        for payment in created:
            logger.info(
                f"정기 지급 회차 생성: {payment.payment_id} {payment.amount} "
                f"{payment.currency.value} (만기 {payment.due_date})"
            )
        return created

    async def generate_all_recurring_payments(
        self,
        as_of: date | datetime | str,
    ) -> RecurringRunSummary:
        """활성 정기 지급 전체에 대해 도래한 회차 생성

        정기 지급 단위로 처리하며, 검증 오류(LedgerError)는 해당 건만 오류로 집계.
        """
        day = parse_date(as_of)
        rows = await self.db.fetchall(
            f"""
            SELECT {RecurringPayment.select_columns()}
            FROM recurring_payment
            WHERE is_active = 1 AND next_due_date <= ?
            ORDER BY next_due_date, recurring_id
            """,
            (day.isoformat(),),
        )

        summary = RecurringRunSummary()
        for row in rows:
            recurring_id = row[0]
            try:
                created = await self.generate_payments(recurring_id, day)
            except LedgerError as e:
                summary.errors.append(f"{recurring_id}: {e}")
                logger.error(f"정기 지급 생성 실패: {recurring_id}: {e}")
                continue
            summary.generated += len(created)

        logger.info(
            f"정기 지급 생성 완료: {summary.generated}건 (오류 {len(summary.errors)}, 기준일 {day})"
        )
        return summary
