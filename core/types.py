"""
타입 정의 모듈

Ledger 전반에서 사용하는 Enum 정의
모든 Enum은 str을 상속하여 문자열 직렬화 가능
"""

from enum import Enum


class Currency(str, Enum):
    """통화"""

    ARS = "ARS"
    USD = "USD"


class MovementType(str, Enum):
    """Ledger 이동 유형"""

    INCOME = "INCOME"
    EXPENSE = "EXPENSE"
    FX_GAIN = "FX_GAIN"  # 환차익
    FX_LOSS = "FX_LOSS"  # 환차손
    COMMISSION = "COMMISSION"  # 판매자 수수료 (잔액 영향 없음)
    OPERATOR_PAYMENT = "OPERATOR_PAYMENT"  # 운영사(공급자) 지급


class PaymentMethod(str, Enum):
    """결제 수단 (정규화된 값)"""

    CASH = "CASH"
    BANK = "BANK"
    MP = "MP"  # Mercado Pago
    USD = "USD"  # 달러 현금
    OTHER = "OTHER"


class IVADirection(str, Enum):
    """IVA 방향 (매출 / 매입)"""

    SALE = "SALE"
    PURCHASE = "PURCHASE"


class ProductType(str, Enum):
    """여행 상품 유형"""

    AEREO = "AEREO"  # 항공
    HOTEL = "HOTEL"
    PAQUETE = "PAQUETE"  # 패키지
    CRUCERO = "CRUCERO"  # 크루즈
    OTRO = "OTRO"  # 기타


class OperatorPaymentStatus(str, Enum):
    """운영사 지급 상태"""

    PENDING = "PENDING"
    PAID = "PAID"
    OVERDUE = "OVERDUE"


class RecurringFrequency(str, Enum):
    """정기 지급 주기"""

    WEEKLY = "WEEKLY"
    BIWEEKLY = "BIWEEKLY"  # 2주
    MONTHLY = "MONTHLY"
    QUARTERLY = "QUARTERLY"  # 3개월
    YEARLY = "YEARLY"


# 잔액 부호: +1 증가, -1 감소, 0 영향 없음
MOVEMENT_SIGNS: dict[MovementType, int] = {
    MovementType.INCOME: 1,
    MovementType.FX_GAIN: 1,
    MovementType.EXPENSE: -1,
    MovementType.FX_LOSS: -1,
    MovementType.OPERATOR_PAYMENT: -1,
    MovementType.COMMISSION: 0,
}

# 잔액 검증(마이너스 잔고 방지) 대상 유형
GATED_MOVEMENT_TYPES: frozenset[MovementType] = frozenset({
    MovementType.EXPENSE,
    MovementType.OPERATOR_PAYMENT,
})
