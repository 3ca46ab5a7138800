"""
IVA 계산 (순수 함수)

- 매출 IVA: 마진(gross - operator_cost)에 대해 iva_rate 적용
    iva = margin × rate, net = margin - iva
    예: 판매 2000, 원가 1900 → 마진 100 → IVA 21, net 79
- 매입 IVA: 원가에 IVA 포함
    net = gross / (1 + rate), iva = gross - net
    예: 원가 1210 → net 1000, IVA 210

결과는 tax_decimals 자리로 반올림 (ROUND_HALF_EVEN).
"""

from dataclasses import dataclass
from decimal import Decimal

from core.constants import Defaults
from core.ledger.errors import InvalidAmount
from core.ledger.money import ZERO, positive_amount, quantize, to_decimal


@dataclass(frozen=True)
class IVAAmounts:
    """IVA 계산 결과"""

    net_amount: Decimal
    iva_amount: Decimal
    margin: Decimal | None = None  # 매출만 해당


def calculate_sale_iva(
    gross_amount: Decimal | str | int,
    operator_cost: Decimal | str | int = ZERO,
    iva_rate: Decimal = Defaults.IVA_RATE,
    decimals: int = Defaults.TAX_DECIMALS,
) -> IVAAmounts:
    """매출 IVA (마진 기준)

    마진이 음수면 IVA는 0, net은 음수 마진 그대로.

    Raises:
        InvalidAmount: gross <= 0 또는 operator_cost < 0
    """
    gross = positive_amount(gross_amount)
    cost = to_decimal(operator_cost)
    if not cost.is_finite() or cost < ZERO:
        raise InvalidAmount(operator_cost)

    margin = quantize(gross - cost, decimals)
    iva = quantize(max(margin, ZERO) * iva_rate, decimals)
    return IVAAmounts(net_amount=margin - iva, iva_amount=iva, margin=margin)


def calculate_purchase_iva(
    gross_amount: Decimal | str | int,
    iva_rate: Decimal = Defaults.IVA_RATE,
    decimals: int = Defaults.TAX_DECIMALS,
) -> IVAAmounts:
    """매입 IVA (IVA 포함 원가에서 역산)

    Raises:
        InvalidAmount: gross <= 0
    """
    gross = positive_amount(gross_amount)
    net = quantize(gross / (Decimal("1") + iva_rate), decimals)
    return IVAAmounts(net_amount=net, iva_amount=quantize(gross, decimals) - net)
