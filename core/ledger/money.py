"""
금액 / 환산 유틸리티

기준통화(USD) 환산, 잔액 부호, 결제 수단 정규화.
환율 규약: rate = 1 USD당 ARS.
"""

import unicodedata
from decimal import ROUND_HALF_EVEN, Decimal, InvalidOperation
from typing import Any

from core.ledger.errors import (
    CurrencyMismatchWithoutRate,
    InvalidAmount,
    InvalidExchangeRate,
    UnsupportedCurrency,
)
from core.types import MOVEMENT_SIGNS, Currency, MovementType, PaymentMethod

ZERO = Decimal("0")

# 자유 입력 결제 수단 → 정규화 값 (소문자, 악센트 제거 후 비교)
METHOD_ALIASES: dict[str, PaymentMethod] = {
    "efectivo": PaymentMethod.CASH,
    "cash": PaymentMethod.CASH,
    "caja": PaymentMethod.CASH,
    "transferencia": PaymentMethod.BANK,
    "transferencia bancaria": PaymentMethod.BANK,
    "banco": PaymentMethod.BANK,
    "bank": PaymentMethod.BANK,
    "deposito": PaymentMethod.BANK,
    "mercado pago": PaymentMethod.MP,
    "mercadopago": PaymentMethod.MP,
    "mp": PaymentMethod.MP,
    "usd": PaymentMethod.USD,
    "dolares": PaymentMethod.USD,
    "other": PaymentMethod.OTHER,
    "otro": PaymentMethod.OTHER,
}


def to_decimal(value: Any) -> Decimal:
    """숫자 입력을 Decimal로 변환 (float은 문자열 경유)"""
    if isinstance(value, Decimal):
        return value
    try:
        return Decimal(str(value))
    except (InvalidOperation, ValueError) as e:
        raise InvalidAmount(value) from e


def parse_currency(value: Currency | str) -> Currency:
    """통화 파싱

    Raises:
        UnsupportedCurrency: ARS/USD가 아닌 경우
    """
    if isinstance(value, Currency):
        return value
    try:
        return Currency(str(value).strip().upper())
    except ValueError as e:
        raise UnsupportedCurrency(value) from e


def positive_amount(value: Any) -> Decimal:
    """양의 유한 금액 검증"""
    amount = to_decimal(value)
    if not amount.is_finite() or amount <= ZERO:
        raise InvalidAmount(value)
    return amount


def positive_rate(value: Any) -> Decimal:
    """양의 유한 환율 검증"""
    try:
        rate = value if isinstance(value, Decimal) else Decimal(str(value))
    except (InvalidOperation, ValueError) as e:
        raise InvalidExchangeRate(value) from e
    if not rate.is_finite() or rate <= ZERO:
        raise InvalidExchangeRate(value)
    return rate


def quantize(value: Decimal, decimals: int) -> Decimal:
    """소수점 자리수 고정 (ROUND_HALF_EVEN)"""
    return value.quantize(Decimal(1).scaleb(-decimals), rounding=ROUND_HALF_EVEN)


def to_base_amount(
    amount: Decimal,
    currency: Currency,
    exchange_rate: Decimal | str | None,
    base_currency: Currency,
    decimals: int,
) -> tuple[Decimal | None, Decimal]:
    """기준통화 환산

    - 기준통화: 환율 없음, base_amount = amount
    - 기준통화 아님: 환율 필수 (> 0)
        - 기준 USD, 통화 ARS: amount / rate
        - 기준 ARS, 통화 USD: amount * rate

    Returns:
        (저장할 환율 또는 None, base_amount)

    Raises:
        CurrencyMismatchWithoutRate: 환율 누락
        InvalidExchangeRate: 환율 <= 0
    """
    if currency == base_currency:
        return None, amount

    if exchange_rate is None:
        raise CurrencyMismatchWithoutRate(currency.value, base_currency.value)

    rate = positive_rate(exchange_rate)
    if base_currency == Currency.USD:
        base_amount = amount / rate
    else:
        base_amount = amount * rate
    return rate, quantize(base_amount, decimals)


def signed_amount(movement_type: MovementType | str, base_amount: Decimal) -> Decimal:
    """잔액 반영용 부호 적용 금액"""
    sign = MOVEMENT_SIGNS[MovementType(movement_type)]
    if sign == 0:
        return ZERO
    return base_amount if sign > 0 else -base_amount


def _fold(text: str) -> str:
    normalized = unicodedata.normalize("NFKD", text)
    stripped = "".join(c for c in normalized if not unicodedata.combining(c))
    return " ".join(stripped.lower().replace("_", " ").replace("-", " ").split())


def normalize_method(raw: str | PaymentMethod | None) -> tuple[PaymentMethod, str | None]:
    """결제 수단 정규화

    Returns:
        (정규화 값, 보존해야 할 원문)
        - 인식된 값: 원문 None
        - 인식 불가: (OTHER, 원문) → 호출자가 reference에 보존
    """
    if raw is None:
        return PaymentMethod.OTHER, None
    if isinstance(raw, PaymentMethod):
        return raw, None

    text = raw.strip()
    if not text:
        return PaymentMethod.OTHER, None

    try:
        return PaymentMethod(text.upper()), None
    except ValueError:
        pass

    method = METHOD_ALIASES.get(_fold(text))
    if method is not None:
        return method, None
    return PaymentMethod.OTHER, text


def merge_reference(reference: str | None, raw_method: str | None) -> str | None:
    """인식 불가 결제 수단 원문을 reference에 덧붙임"""
    if not raw_method:
        return reference
    note = f"[method: {raw_method}]"
    if reference:
        return f"{reference} {note}"
    return note
