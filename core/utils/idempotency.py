"""
Idempotency 유틸리티

Ledger 레코드 ID 생성 기능 제공
규칙:
- 이동(movement): mv-{uuid}  (append-only, 매번 새 ID)
- IVA: iva-{direction}-{operation_id}  (operation당 방향별 1건)
- 운영사 지급: opay-{operation_id}  (operation당 1건)
- 정기 지급 회차: opay-{recurring_id}-{YYYY-MM-DD}  (회차당 1건)
"""

from datetime import date
from uuid import uuid4

MOVEMENT_PREFIX: str = "mv"
IVA_PREFIX: str = "iva"
OPERATOR_PAYMENT_PREFIX: str = "opay"
ACCOUNT_PREFIX: str = "acc"
RECURRING_PREFIX: str = "rec"


def make_movement_id() -> str:
    """새 이동 ID 생성

    Returns:
        mv-{uuid4} 형식
    """
    return f"{MOVEMENT_PREFIX}-{uuid4()}"


def make_account_id() -> str:
    """새 계정 ID 생성"""
    return f"{ACCOUNT_PREFIX}-{uuid4()}"


def make_iva_record_id(direction: str, operation_id: str) -> str:
    """결정적 IVA 레코드 ID 생성

    Args:
        direction: SALE 또는 PURCHASE
        operation_id: 원천 operation ID

    Returns:
        iva-{direction}-{operation_id} 형식

    Example:
        >>> make_iva_record_id("SALE", "op-123")
        'iva-SALE-op-123'
    """
    if not operation_id:
        raise ValueError("operation_id는 비어 있을 수 없습니다")

    return f"{IVA_PREFIX}-{direction}-{operation_id}"


def make_operator_payment_id(operation_id: str) -> str:
    """결정적 운영사 지급 ID 생성

    Example:
        >>> make_operator_payment_id("op-123")
        'opay-op-123'
    """
    if not operation_id:
        raise ValueError("operation_id는 비어 있을 수 없습니다")

    return f"{OPERATOR_PAYMENT_PREFIX}-{operation_id}"


def make_recurring_id() -> str:
    """새 정기 지급 ID 생성"""
    return f"{RECURRING_PREFIX}-{uuid4()}"


def make_recurring_payment_id(recurring_id: str, due_date: date) -> str:
    """결정적 정기 지급 회차 ID 생성

    Example:
        >>> make_recurring_payment_id("rec-1", date(2024, 2, 1))
        'opay-rec-1-2024-02-01'
    """
    if not recurring_id:
        raise ValueError("recurring_id는 비어 있을 수 없습니다")

    return f"{OPERATOR_PAYMENT_PREFIX}-{recurring_id}-{due_date.isoformat()}"
