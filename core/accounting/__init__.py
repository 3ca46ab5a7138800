"""
회계 파생 레코드 (IVA / 운영사 지급 / 정기 지급)

operation 단위로 멱등하게 생성되는 세금 및 지급 예정 레코드.

사용 예시:
```python
from core.accounting import TaxAndPayableDeriver, calculate_due_date

deriver = TaxAndPayableDeriver(db, config)

# 같은 operation_id로 다시 호출해도 기존 레코드 반환
record = await deriver.create_sale_iva("op-1", Decimal("2000"), "USD", date(2024, 1, 5),
                                       operator_cost=Decimal("1900"))

due = calculate_due_date("HOTEL", date(2024, 1, 5), checkin_date=date(2024, 3, 1))
```
"""

from core.accounting.backfill import BackfillSummary, OperationSnapshot, backfill_operations
from core.accounting.deriver import IVAPosition, TaxAndPayableDeriver
from core.accounting.iva import IVAAmounts, calculate_purchase_iva, calculate_sale_iva
from core.accounting.payables import DUE_DATE_POLICIES, DueDatePolicy, calculate_due_date
from core.accounting.recurring import (
    RecurringPaymentScheduler,
    RecurringRunSummary,
    calculate_next_due_date,
    should_generate,
)

__all__ = [
    # 핵심 클래스
    "TaxAndPayableDeriver",
    "IVAPosition",
    # 계산 (순수 함수)
    "IVAAmounts",
    "calculate_sale_iva",
    "calculate_purchase_iva",
    "DueDatePolicy",
    "DUE_DATE_POLICIES",
    "calculate_due_date",
    "calculate_next_due_date",
    "should_generate",
    # 정기 지급
    "RecurringPaymentScheduler",
    "RecurringRunSummary",
    # 백필
    "OperationSnapshot",
    "BackfillSummary",
    "backfill_operations",
]
