"""
Ledger 엔티티 모델 (Pydantic)

저장소 경계에서 행을 검증하여 타입이 보장된 엔티티로 변환.
형식이 맞지 않는 행은 MalformedRow로 즉시 거부.
"""

from datetime import date, datetime
from decimal import Decimal
from typing import Any, ClassVar, Sequence

from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator

from core.ledger.errors import MalformedRow
from core.types import (
    Currency,
    IVADirection,
    MovementType,
    OperatorPaymentStatus,
    PaymentMethod,
    RecurringFrequency,
)


class LedgerRow(BaseModel):
    """DB 행 기반 불변 엔티티

    COLUMNS 순서대로 SELECT한 튜플을 from_row()로 변환.
    """

    model_config = ConfigDict(frozen=True)

    COLUMNS: ClassVar[tuple[str, ...]] = ()

    @classmethod
    def select_columns(cls, alias: str | None = None) -> str:
        """SELECT 절 컬럼 목록"""
        if alias:
            return ", ".join(f"{alias}.{c}" for c in cls.COLUMNS)
        return ", ".join(cls.COLUMNS)

    @classmethod
    def from_row(cls, row: Sequence[Any]):
        """DB 행 → 엔티티

        Raises:
            MalformedRow: 컬럼 수 불일치 또는 검증 실패
        """
        if len(row) != len(cls.COLUMNS):
            raise MalformedRow(
                cls.__name__,
                f"컬럼 수 불일치 (기대 {len(cls.COLUMNS)}, 실제 {len(row)})",
            )
        try:
            return cls.model_validate(dict(zip(cls.COLUMNS, row)))
        except ValidationError as e:
            raise MalformedRow(cls.__name__, str(e)) from e


class FinancialAccount(LedgerRow):
    """금융 계정

    initial_balance는 계정 통화 기준, initial_base_balance는 생성 시 1회 환산된 기준통화 값.
    """

    COLUMNS: ClassVar[tuple[str, ...]] = (
        "account_id", "name", "currency", "initial_balance",
        "initial_exchange_rate", "initial_base_balance",
        "is_active", "owner_id", "created_at",
    )

    account_id: str = Field(min_length=1)
    name: str
    currency: Currency
    initial_balance: Decimal
    initial_exchange_rate: Decimal | None = None
    initial_base_balance: Decimal
    is_active: bool = True
    owner_id: str | None = None
    created_at: datetime


class LedgerMovement(LedgerRow):
    """Ledger 이동 (불변, append-only)"""

    COLUMNS: ClassVar[tuple[str, ...]] = (
        "movement_id", "account_id", "operation_id", "lead_id",
        "movement_type", "currency", "amount_original", "exchange_rate",
        "base_amount", "method", "reference", "concept",
        "created_by", "created_at",
    )

    movement_id: str = Field(min_length=1)
    account_id: str | None = None
    operation_id: str | None = None
    lead_id: str | None = None
    movement_type: MovementType
    currency: Currency
    amount_original: Decimal = Field(gt=0)
    exchange_rate: Decimal | None = Field(default=None, gt=0)
    base_amount: Decimal = Field(ge=0)
    method: PaymentMethod
    reference: str | None = None
    concept: str | None = None
    created_by: str | None = None
    created_at: datetime

    @model_validator(mode="after")
    def _identity_without_rate(self) -> "LedgerMovement":
        # 환율이 없으면 항등 환산이어야 함
        if self.exchange_rate is None and self.base_amount != self.amount_original:
            raise ValueError("환율 없는 이동의 base_amount가 amount_original과 다릅니다")
        return self


class ExchangeRate(LedgerRow):
    """환율 (rate_date 기준 1 USD당 ARS)"""

    COLUMNS: ClassVar[tuple[str, ...]] = (
        "rate_date", "rate", "source", "notes", "created_by",
    )

    rate_date: date
    rate: Decimal = Field(gt=0)
    source: str = "MANUAL"
    notes: str | None = None
    created_by: str | None = None


class IVARecord(LedgerRow):
    """IVA 레코드 (operation당 방향별 1건)"""

    COLUMNS: ClassVar[tuple[str, ...]] = (
        "record_id", "direction", "operation_id", "operator_id",
        "gross_amount", "operator_cost", "net_amount", "iva_amount",
        "currency", "exchange_rate", "iva_base_amount", "reference_date",
        "created_at",
    )

    record_id: str = Field(min_length=1)
    direction: IVADirection
    operation_id: str = Field(min_length=1)
    operator_id: str | None = None
    gross_amount: Decimal
    operator_cost: Decimal = Decimal("0")
    net_amount: Decimal
    iva_amount: Decimal
    currency: Currency
    exchange_rate: Decimal = Field(gt=0)
    iva_base_amount: Decimal
    reference_date: date
    created_at: datetime


class OperatorPayment(LedgerRow):
    """운영사 지급 예정 (operation당 1건 또는 정기 지급 회차당 1건)"""

    COLUMNS: ClassVar[tuple[str, ...]] = (
        "payment_id", "operation_id", "recurring_id", "operator_id", "amount", "currency",
        "due_date", "status", "ledger_movement_id", "notes",
        "created_at", "updated_at",
    )

    payment_id: str = Field(min_length=1)
    operation_id: str | None = None
    recurring_id: str | None = None
    operator_id: str = Field(min_length=1)
    amount: Decimal = Field(gt=0)
    currency: Currency
    due_date: date
    status: OperatorPaymentStatus = OperatorPaymentStatus.PENDING
    ledger_movement_id: str | None = None
    notes: str | None = None
    created_at: datetime
    updated_at: datetime

    @model_validator(mode="after")
    def _check_source(self) -> "OperatorPayment":
        if not self.operation_id and not self.recurring_id:
            raise ValueError("operation_id 또는 recurring_id가 필요합니다")
        return self


class RecurringPayment(LedgerRow):
    """운영사 정기 지급

    next_due_date 회차가 되면 운영사 지급(PENDING)을 생성하고 다음 회차로 이동.
    삭제 대신 is_active=False로 비활성화.
    """

    COLUMNS: ClassVar[tuple[str, ...]] = (
        "recurring_id", "operator_id", "amount", "currency", "frequency",
        "start_date", "end_date", "next_due_date", "last_generated_date",
        "is_active", "description", "notes", "invoice_number", "reference",
        "created_by", "created_at", "updated_at",
    )

    recurring_id: str = Field(min_length=1)
    operator_id: str = Field(min_length=1)
    amount: Decimal = Field(gt=0)
    currency: Currency
    frequency: RecurringFrequency
    start_date: date
    end_date: date | None = None
    next_due_date: date
    last_generated_date: date | None = None
    is_active: bool = True
    description: str = Field(min_length=1)
    notes: str | None = None
    invoice_number: str | None = None
    reference: str | None = None
    created_by: str | None = None
    created_at: datetime
    updated_at: datetime

    @model_validator(mode="after")
    def _check_dates(self) -> "RecurringPayment":
        if self.end_date is not None and self.end_date < self.start_date:
            raise ValueError("end_date는 start_date 이후여야 합니다")
        return self


class BalanceCheckpoint(LedgerRow):
    """일별 잔액 체크포인트 (해당 영업일 종료 시점 잔액, 기준통화)"""

    COLUMNS: ClassVar[tuple[str, ...]] = (
        "account_id", "checkpoint_date", "balance", "movement_count",
    )

    account_id: str = Field(min_length=1)
    checkpoint_date: date
    balance: Decimal
    movement_count: int = Field(ge=0)


class DailyBalance(BaseModel):
    """일별 잔액 시계열 항목 (모든 계정 합계)"""

    model_config = ConfigDict(frozen=True)

    date: date
    balance: Decimal
    by_account: dict[str, Decimal] = Field(default_factory=dict)
