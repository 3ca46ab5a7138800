"""
Ledger 예외 정의

검증 오류는 쓰기를 완전히 차단 (부분 적용된 이동은 존재하지 않음).
인프라 오류 (aiosqlite / sqlite3)는 감싸지 않고 그대로 전파.
"""

from decimal import Decimal


class LedgerError(Exception):
    """Ledger 최상위 예외"""

    pass


class LedgerValidationError(LedgerError):
    """입력 검증 실패 (쓰기 차단)"""

    pass


class AccountNotFound(LedgerValidationError):
    """금융 계정 없음"""

    def __init__(self, account_id: str):
        self.account_id = account_id
        super().__init__(f"금융 계정을 찾을 수 없습니다: {account_id}")


class AccountInactive(LedgerValidationError):
    """비활성 금융 계정"""

    def __init__(self, account_id: str, name: str | None = None):
        self.account_id = account_id
        self.name = name
        super().__init__(f"금융 계정이 비활성 상태입니다: {name or account_id}")


class CurrencyMismatchWithoutRate(LedgerValidationError):
    """기준통화가 아닌 이동에 환율 누락"""

    def __init__(self, currency: str, base_currency: str):
        self.currency = currency
        self.base_currency = base_currency
        super().__init__(
            f"{currency} 이동을 {base_currency}로 환산하려면 환율이 필요합니다"
        )


class InvalidAmount(LedgerValidationError):
    """금액이 0 이하이거나 유한하지 않음"""

    def __init__(self, amount: object):
        self.amount = amount
        super().__init__(f"금액은 0보다 커야 합니다: {amount}")


class InvalidExchangeRate(LedgerValidationError):
    """환율이 0 이하이거나 유한하지 않음"""

    def __init__(self, rate: object):
        self.rate = rate
        super().__init__(f"환율은 0보다 커야 합니다: {rate}")


class UnsupportedCurrency(LedgerValidationError):
    """지원하지 않는 통화"""

    def __init__(self, currency: object):
        self.currency = currency
        super().__init__(f"지원하지 않는 통화입니다: {currency}")


class InsufficientBalance(LedgerValidationError):
    """잔액 부족 (마이너스 잔고 불허)

    available, requested 모두 기준통화 단위.
    """

    def __init__(self, account_id: str, available: Decimal, requested: Decimal):
        self.account_id = account_id
        self.available = available
        self.requested = requested
        super().__init__(
            f"잔액이 부족합니다 (계정 {account_id}): "
            f"가용 {available}, 요청 {requested}"
        )


class InvalidProductTypeForDueDate(LedgerValidationError):
    """만기일 정책이 없는 상품 유형"""

    def __init__(self, product_type: object):
        self.product_type = product_type
        super().__init__(f"만기일을 계산할 수 없는 상품 유형입니다: {product_type}")


class MissingExchangeRate(LedgerError):
    """Fallback을 포함해 사용할 수 있는 환율이 전혀 없음"""

    def __init__(self, rate_date: object = None):
        self.rate_date = rate_date
        super().__init__(f"사용 가능한 환율이 없습니다 (기준일: {rate_date})")


class MalformedRow(LedgerError):
    """저장소에서 읽은 행이 엔티티 스키마와 맞지 않음"""

    def __init__(self, entity: str, detail: str):
        self.entity = entity
        self.detail = detail
        super().__init__(f"{entity} 행 형식 오류: {detail}")


class CheckpointError(LedgerError):
    """잔액 체크포인트 생성 불가 (마감되지 않은 날짜 등)"""

    pass
