"""
환차손익 (FX_GAIN / FX_LOSS)

판매 통화와 결제 통화가 다를 때 두 금액을 각각의 환율로 기준통화(USD) 환산하여 비교.
operation당 환차 이동은 최대 1건 (재호출 시 기존 이동 반환).
- 결제 환산액 > 판매 환산액: FX_GAIN
- 결제 환산액 < 판매 환산액: FX_LOSS
- 차이 절대값 < fx_min_difference: 기록하지 않음
"""

from __future__ import annotations

import logging
import sqlite3
from dataclasses import dataclass
from decimal import Decimal
from typing import TYPE_CHECKING

from core.ledger.money import ZERO, parse_currency, positive_amount, to_base_amount
from core.types import Currency, MovementType, PaymentMethod

if TYPE_CHECKING:
    from core.ledger.store import LedgerMovementStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class FXDifference:
    """환차 계산 결과 (기준통화 단위)"""

    fx_type: MovementType | None
    amount: Decimal
    sale_base: Decimal
    payment_base: Decimal

    @property
    def is_significant(self) -> bool:
        return self.fx_type is not None


def compute_fx_difference(
    sale_amount: Decimal | str | int,
    sale_currency: Currency | str,
    sale_rate: Decimal | str | None,
    payment_amount: Decimal | str | int,
    payment_currency: Currency | str,
    payment_rate: Decimal | str | None,
    base_currency: Currency = Currency.USD,
    decimals: int = 8,
    min_difference: Decimal = Decimal("0.01"),
) -> FXDifference:
    """환차 계산 (순수 함수)

    Raises:
        CurrencyMismatchWithoutRate: 기준통화가 아닌 쪽의 환율 누락
    """
    sale_cur = parse_currency(sale_currency)
    payment_cur = parse_currency(payment_currency)

    _, sale_base = to_base_amount(
        positive_amount(sale_amount), sale_cur,
        None if sale_cur == base_currency else sale_rate,
        base_currency, decimals,
    )
    _, payment_base = to_base_amount(
        positive_amount(payment_amount), payment_cur,
        None if payment_cur == base_currency else payment_rate,
        base_currency, decimals,
    )

    if sale_cur == payment_cur:
        return FXDifference(None, ZERO, sale_base, payment_base)

    difference = payment_base - sale_base
    if abs(difference) < min_difference:
        return FXDifference(None, ZERO, sale_base, payment_base)

    fx_type = MovementType.FX_GAIN if difference > ZERO else MovementType.FX_LOSS
    return FXDifference(fx_type, abs(difference), sale_base, payment_base)


async def record_fx_difference(
    store: LedgerMovementStore,
    operation_id: str,
    sale_amount: Decimal | str | int,
    sale_currency: Currency | str,
    sale_rate: Decimal | str | None,
    payment_amount: Decimal | str | int,
    payment_currency: Currency | str,
    payment_rate: Decimal | str | None,
    account_id: str | None = None,
    created_by: str | None = None,
) -> tuple[FXDifference, str | None]:
    """환차 계산 후 FX_GAIN / FX_LOSS 이동 기록 (기준통화, operation당 1건)

    같은 operation에 이미 환차 이동이 있으면 새로 기록하지 않고 그 movement_id 반환.

    Returns:
        (계산 결과, movement_id 또는 None)
    """
    config = store.config
    result = compute_fx_difference(
        sale_amount, sale_currency, sale_rate,
        payment_amount, payment_currency, payment_rate,
        base_currency=config.base_currency,
        decimals=config.base_amount_decimals,
        min_difference=config.fx_min_difference,
    )
    if not result.is_significant:
        logger.debug(f"환차 없음 또는 기준 미만: operation={operation_id}")
        return result, None

    existing = await store.fx_movement_for_operation(operation_id)
    if existing is not None:
        logger.info(f"환차 이동 이미 존재: operation={operation_id} ({existing.movement_id})")
        return result, existing.movement_id

    movement = store.build_movement(
        movement_type=result.fx_type,
        currency=config.base_currency,
        amount=result.amount,
        method=PaymentMethod.OTHER,
        reference=(
            f"sale {sale_amount} {parse_currency(sale_currency).value} "
            f"(base {result.sale_base}), payment {payment_amount} "
            f"{parse_currency(payment_currency).value} (base {result.payment_base})"
        ),
        created_by=created_by,
        account_id=account_id,
        operation_id=operation_id,
        concept=f"FX {parse_currency(sale_currency).value} -> {parse_currency(payment_currency).value}",
    )
    try:
        movement_id = await store.save(movement)
    except sqlite3.IntegrityError:
        # 동시 기록: UNIQUE 인덱스 충돌 후 기존 이동 사용
        existing = await store.fx_movement_for_operation(operation_id)
        if existing is None:
            raise
        logger.info(f"환차 이동 동시 기록 감지, 기존 이동 사용: operation={operation_id}")
        return result, existing.movement_id

    logger.info(
        f"환차 기록: operation={operation_id} {result.fx_type.value} {result.amount}"
    )
    return result, movement_id
