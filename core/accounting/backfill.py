"""
과거 operation 회계 레코드 백필

IVA(매출/매입)와 운영사 지급이 없는 과거 operation에 대해 레코드 생성.
생성은 TaxAndPayableDeriver의 멱등 메서드를 그대로 사용하므로 여러 번 실행해도 안전.

operation 단위로 처리하며, 검증 오류(LedgerError)는 해당 operation만 실패로 집계.
인프라 오류는 그대로 전파.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from typing import TYPE_CHECKING, Iterable

from pydantic import BaseModel, ConfigDict

from core.ledger.errors import LedgerError
from core.types import Currency, ProductType

if TYPE_CHECKING:
    from core.accounting.deriver import TaxAndPayableDeriver

logger = logging.getLogger(__name__)


class OperationSnapshot(BaseModel):
    """백필 입력 operation (외부 시스템 레코드의 필요한 부분)"""

    model_config = ConfigDict(frozen=True)

    operation_id: str
    created_at: datetime
    sale_amount_total: Decimal | None = None
    sale_currency: Currency = Currency.ARS
    operator_id: str | None = None
    operator_cost: Decimal | None = None
    operator_cost_currency: Currency = Currency.ARS
    product_type: ProductType | None = None
    departure_date: date | None = None
    checkin_date: date | None = None

    @property
    def reference_date(self) -> date:
        """IVA 기준일 (출발일, 없으면 생성일)"""
        return self.departure_date or self.created_at.date()

    @property
    def has_sale(self) -> bool:
        return self.sale_amount_total is not None and self.sale_amount_total > 0

    @property
    def has_operator_cost(self) -> bool:
        return (
            self.operator_id is not None
            and self.operator_cost is not None
            and self.operator_cost > 0
        )


@dataclass
class BackfillSummary:
    """백필 결과 집계"""

    iva_created: int = 0
    iva_errors: int = 0
    payments_created: int = 0
    payments_errors: int = 0
    skipped: int = 0
    failed_operations: list[str] = field(default_factory=list)

    @property
    def total_created(self) -> int:
        return self.iva_created + self.payments_created


async def backfill_operations(
    deriver: TaxAndPayableDeriver,
    operations: Iterable[OperationSnapshot],
    dry_run: bool = False,
) -> BackfillSummary:
    """operation 목록에 대해 누락된 IVA / 운영사 지급 생성

    Args:
        deriver: TaxAndPayableDeriver
        operations: 대상 operation
        dry_run: True면 생성 대상만 집계 (쓰기 없음)

    Returns:
        BackfillSummary
    """
    summary = BackfillSummary()

    for op in operations:
        created_any = False
        failed = False

        # 1. IVA
        try:
            if op.has_sale and await deriver.get_iva_record(op.operation_id, "SALE") is None:
                if not dry_run:
                    # 원가 통화가 같을 때만 마진 기준으로 계산
                    cost = (
                        op.operator_cost
                        if op.has_operator_cost and op.operator_cost_currency == op.sale_currency
                        else Decimal("0")
                    )
                    await deriver.create_sale_iva(
                        op.operation_id,
                        op.sale_amount_total,
                        op.sale_currency,
                        op.reference_date,
                        operator_cost=cost,
                    )
                summary.iva_created += 1
                created_any = True

            if op.has_operator_cost and await deriver.get_iva_record(op.operation_id, "PURCHASE") is None:
                if not dry_run:
                    await deriver.create_purchase_iva(
                        op.operation_id,
                        op.operator_id,
                        op.operator_cost,
                        op.operator_cost_currency,
                        op.reference_date,
                    )
                summary.iva_created += 1
                created_any = True
        except LedgerError as e:
            summary.iva_errors += 1
            failed = True
            summary.failed_operations.append(op.operation_id)
            logger.error(f"IVA 백필 실패: operation={op.operation_id}: {e}")

        # 2. 운영사 지급
        try:
            if op.has_operator_cost and await deriver.get_operator_payment(op.operation_id) is None:
                if not dry_run:
                    due_date = deriver.calculate_due_date(
                        op.product_type,
                        op.created_at.date(),
                        op.checkin_date,
                        op.departure_date,
                    )
                    await deriver.create_operator_payment(
                        op.operation_id,
                        op.operator_id,
                        op.operator_cost,
                        op.operator_cost_currency,
                        due_date,
                        notes=f"과거 operation {op.operation_id[:8]} 자동 생성 (백필)",
                    )
                summary.payments_created += 1
                created_any = True
        except LedgerError as e:
            summary.payments_errors += 1
            failed = True
            if op.operation_id not in summary.failed_operations:
                summary.failed_operations.append(op.operation_id)
            logger.error(f"운영사 지급 백필 실패: operation={op.operation_id}: {e}")

        if not created_any and not failed:
            summary.skipped += 1

    logger.info(
        f"백필 완료{' (dry-run)' if dry_run else ''}: IVA {summary.iva_created}건 "
        f"(오류 {summary.iva_errors}), 운영사 지급 {summary.payments_created}건 "
        f"(오류 {summary.payments_errors}), 건너뜀 {summary.skipped}건"
    )
    return summary
