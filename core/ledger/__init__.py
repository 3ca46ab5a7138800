"""
다중 통화 Ledger

ARS/USD 이동을 날짜별 환율로 기준통화(USD)로 환산하여 append-only로 기록.
계정별 잔액 계산, 마이너스 잔고 방지, 일별 잔액 재구성.

사용 예시:
```python
from core.ledger import LedgerMovementStore, BalanceReconstructor

store = LedgerMovementStore(db, config)
account_id = await store.create_account("Caja ARS", "ARS")

# ARS 1000 입금 (환율 1000) → base_amount = 1 USD
await store.record(account_id, "INCOME", "ARS", Decimal("1000"),
                   exchange_rate=Decimal("1000"), method="Efectivo")

balance = await store.validator.current_balance(account_id)  # Decimal("1")

series = await BalanceReconstructor(db, config).daily_series(
    [account_id], date(2024, 1, 1), date(2024, 1, 31)
)
```

외부 호출자는 core.ledger.service.LedgerService를 사용.
"""

from core.ledger.balance import BalanceValidator
from core.ledger.errors import (
    AccountInactive,
    AccountNotFound,
    CheckpointError,
    CurrencyMismatchWithoutRate,
    InsufficientBalance,
    InvalidAmount,
    InvalidExchangeRate,
    InvalidProductTypeForDueDate,
    LedgerError,
    LedgerValidationError,
    MalformedRow,
    MissingExchangeRate,
    UnsupportedCurrency,
)
from core.ledger.models import (
    BalanceCheckpoint,
    DailyBalance,
    ExchangeRate,
    FinancialAccount,
    IVARecord,
    LedgerMovement,
    OperatorPayment,
)
from core.ledger.rates import ExchangeRateResolver
from core.ledger.reconstruction import BalanceReconstructor
from core.ledger.schema import init_ledger_schema
from core.ledger.store import LedgerMovementStore

__all__ = [
    # 핵심 클래스
    "ExchangeRateResolver",
    "LedgerMovementStore",
    "BalanceValidator",
    "BalanceReconstructor",
    "init_ledger_schema",
    # 엔티티
    "FinancialAccount",
    "LedgerMovement",
    "ExchangeRate",
    "IVARecord",
    "OperatorPayment",
    "BalanceCheckpoint",
    "DailyBalance",
    # 예외
    "LedgerError",
    "LedgerValidationError",
    "AccountNotFound",
    "AccountInactive",
    "CurrencyMismatchWithoutRate",
    "InvalidAmount",
    "InvalidExchangeRate",
    "UnsupportedCurrency",
    "InsufficientBalance",
    "InvalidProductTypeForDueDate",
    "MissingExchangeRate",
    "MalformedRow",
    "CheckpointError",
]
