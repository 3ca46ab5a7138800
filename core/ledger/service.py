"""
Ledger 서비스 (외부 호출 인터페이스)

외부 호출자(API 라우트, 스크립트)가 사용하는 좁은 진입점.
구성 요소를 하나의 DB 어댑터 / 설정으로 묶어 생성.

사용 예시:
```python
async with LedgerService.open(config) as ledger:
    account_id = await ledger.store.create_account("Caja USD", "USD", Decimal("100"))
    await ledger.record(account_id, "EXPENSE", "USD", Decimal("30"), method="Efectivo")
    balance = await ledger.current_balance(account_id)  # Decimal("70")
```
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from datetime import date, datetime
from decimal import Decimal
from typing import TYPE_CHECKING, AsyncIterator, Callable, Iterable

from adapters.db.sqlite_adapter import SQLiteAdapter
from core.accounting.deriver import TaxAndPayableDeriver
from core.accounting.recurring import RecurringPaymentScheduler
from core.config.loader import LedgerConfig
from core.ledger.balance import BalanceValidator
from core.ledger.errors import LedgerValidationError, MissingExchangeRate
from core.ledger.rates import ExchangeRateResolver
from core.ledger.reconstruction import BalanceReconstructor
from core.ledger.schema import init_ledger_schema
from core.ledger.store import LedgerMovementStore
from core.types import (
    Currency,
    MovementType,
    OperatorPaymentStatus,
    PaymentMethod,
    ProductType,
)
from core.utils.timezone import now_utc

if TYPE_CHECKING:
    from core.ledger.models import DailyBalance, ExchangeRate, IVARecord, OperatorPayment

logger = logging.getLogger(__name__)


class LedgerService:
    """Ledger 외부 인터페이스

    환율 캐시는 논리적 요청 단위. 환율을 읽는 메서드는 resolver 인자를 받으며,
    주지 않으면 호출마다 new_resolver()로 새 조회기를 만듦.
    여러 호출이 캐시를 공유해야 하면 new_resolver() 결과를 직접 전달.

    Args:
        db: 연결된 SQLite 어댑터
        config: Ledger 설정
        clock: 현재 UTC 시각 함수 (테스트에서 주입)
    """

    def __init__(
        self,
        db: SQLiteAdapter,
        config: LedgerConfig | None = None,
        clock: Callable[[], datetime] = now_utc,
    ):
        self.db = db
        self.config = config or LedgerConfig()
        self.clock = clock
        self.store = LedgerMovementStore(db, self.config, clock)
        self.validator: BalanceValidator = self.store.validator
        self.reconstructor = BalanceReconstructor(db, self.config, clock)
        self.deriver = TaxAndPayableDeriver(db, self.config, clock)
        self.recurring = RecurringPaymentScheduler(db, self.config, clock)

    @classmethod
    @asynccontextmanager
    async def open(
        cls,
        config: LedgerConfig,
        clock: Callable[[], datetime] = now_utc,
    ) -> AsyncIterator[LedgerService]:
        """DB 연결 + 스키마 초기화 후 서비스 제공, 종료 시 연결 해제"""
        db = SQLiteAdapter(config.db_path)
        await db.connect()
        try:
            await init_ledger_schema(db)
            yield cls(db, config, clock)
        finally:
            await db.close()

    def new_resolver(self) -> ExchangeRateResolver:
        """요청 단위 환율 조회기 (새 캐시, 서비스 상태는 바꾸지 않음)"""
        return ExchangeRateResolver.from_config(self.db, self.config)

    # -------------------------------------------------------------------------
    # 이동 / 잔액
    # -------------------------------------------------------------------------

    async def record(
        self,
        account_id: str | None,
        movement_type: MovementType | str,
        currency: Currency | str,
        amount: Decimal | str | int,
        exchange_rate: Decimal | str | None = None,
        method: str | PaymentMethod | None = None,
        reference: str | None = None,
        created_by: str | None = None,
        operation_id: str | None = None,
        lead_id: str | None = None,
        concept: str | None = None,
    ) -> str:
        """이동 기록 → movement_id"""
        return await self.store.record(
            account_id,
            movement_type,
            currency,
            amount,
            exchange_rate=exchange_rate,
            method=method,
            reference=reference,
            created_by=created_by,
            operation_id=operation_id,
            lead_id=lead_id,
            concept=concept,
        )

    async def validate_expense(
        self,
        account_id: str,
        amount: Decimal | str | int,
        currency: Currency | str,
        exchange_rate: Decimal | str | None = None,
    ) -> None:
        """지출 가능 여부 검증 (InsufficientBalance 발생 시 불가)"""
        await self.validator.validate_expense(account_id, amount, currency, exchange_rate)

    async def current_balance(self, account_id: str) -> Decimal:
        """현재 잔액 (기준통화)"""
        return await self.validator.current_balance(account_id)

    async def daily_series(
        self,
        account_ids: Iterable[str],
        date_from: date | str,
        date_to: date | str,
    ) -> list[DailyBalance]:
        """일별 잔액 시계열"""
        return await self.reconstructor.daily_series(account_ids, date_from, date_to)

    # -------------------------------------------------------------------------
    # 환율
    # -------------------------------------------------------------------------

    async def resolve_rate(
        self,
        rate_date: date | datetime | str,
        resolver: ExchangeRateResolver | None = None,
    ) -> Decimal | None:
        """해당 일자 이하 가장 최근 환율"""
        return await (resolver or self.new_resolver()).resolve(rate_date)

    async def resolve_rates_batch(
        self,
        dates: Iterable[date | datetime | str],
        resolver: ExchangeRateResolver | None = None,
    ) -> dict[date, Decimal | None]:
        """여러 일자 환율 일괄 조회"""
        return await (resolver or self.new_resolver()).resolve_batch(dates)

    async def latest_rate(self, resolver: ExchangeRateResolver | None = None) -> Decimal:
        """가장 최근 환율 (없으면 설정 Fallback)

        Raises:
            MissingExchangeRate: 기록된 환율도 Fallback도 없는 경우
        """
        rate = await (resolver or self.new_resolver()).latest()
        if rate is not None:
            return rate
        if self.config.fallback_exchange_rate is not None:
            return self.config.fallback_exchange_rate
        raise MissingExchangeRate()

    async def upsert_rate(
        self,
        rate_date: date | datetime | str,
        rate: Decimal | str | int,
        source: str = "MANUAL",
        notes: str | None = None,
        created_by: str | None = None,
    ) -> ExchangeRate:
        """환율 등록 또는 갱신 (일자당 1건)"""
        return await self.new_resolver().upsert_rate(rate_date, rate, source, notes, created_by)

    # -------------------------------------------------------------------------
    # IVA / 운영사 지급
    # -------------------------------------------------------------------------

    async def create_sale_iva(
        self,
        operation_id: str,
        gross_amount: Decimal | str | int,
        currency: Currency | str,
        reference_date: date | datetime | str,
        operator_cost: Decimal | str | int = Decimal("0"),
        resolver: ExchangeRateResolver | None = None,
    ) -> IVARecord:
        """매출 IVA 생성 (멱등)"""
        return await self.deriver.create_sale_iva(
            operation_id, gross_amount, currency, reference_date, operator_cost,
            resolver=resolver,
        )

    async def create_purchase_iva(
        self,
        operation_id: str,
        operator_id: str | None,
        gross_amount: Decimal | str | int,
        currency: Currency | str,
        reference_date: date | datetime | str,
        resolver: ExchangeRateResolver | None = None,
    ) -> IVARecord:
        """매입 IVA 생성 (멱등)"""
        return await self.deriver.create_purchase_iva(
            operation_id, operator_id, gross_amount, currency, reference_date,
            resolver=resolver,
        )

    async def create_operator_payment(
        self,
        operation_id: str,
        operator_id: str,
        amount: Decimal | str | int,
        currency: Currency | str,
        due_date: date | datetime | str,
        notes: str | None = None,
    ) -> OperatorPayment:
        """운영사 지급 예정 생성 (멱등)"""
        return await self.deriver.create_operator_payment(
            operation_id, operator_id, amount, currency, due_date, notes
        )

    def calculate_due_date(
        self,
        product_type: ProductType | str | None,
        created_date: date | datetime | str,
        checkin_date: date | datetime | str | None = None,
        departure_date: date | datetime | str | None = None,
    ) -> date:
        """운영사 지급 만기일 (순수)"""
        return self.deriver.calculate_due_date(
            product_type, created_date, checkin_date, departure_date
        )

    async def pay_operator(
        self,
        payment_id: str,
        account_id: str,
        method: str | PaymentMethod | None = None,
        exchange_rate: Decimal | str | None = None,
        created_by: str | None = None,
        resolver: ExchangeRateResolver | None = None,
    ) -> OperatorPayment:
        """운영사 지급 실행

        OPERATOR_PAYMENT 이동 기록(잔액 검증 포함)과 지급 완료 처리를 하나의
        BEGIN IMMEDIATE 트랜잭션으로 수행. 어느 쪽이든 실패하면 둘 다 기록되지 않음.
        환율을 주지 않으면 오늘 기준 시장 환율 사용.

        Raises:
            LedgerValidationError: 지급이 없거나 이미 지급된 경우
            InsufficientBalance: 잔액 부족
        """
        payment = await self.deriver.get_operator_payment_by_id(payment_id)
        if payment is None:
            raise LedgerValidationError(f"운영사 지급을 찾을 수 없습니다: {payment_id}")
        if payment.status == OperatorPaymentStatus.PAID:
            raise LedgerValidationError(f"이미 지급된 운영사 지급입니다: {payment_id}")

        if exchange_rate is None:
            exchange_rate = await self.store.market_rate(payment.currency, resolver=resolver)

        movement = self.store.build_movement(
            movement_type=MovementType.OPERATOR_PAYMENT,
            currency=payment.currency,
            amount=payment.amount,
            exchange_rate=exchange_rate,
            method=method,
            reference=f"operator {payment.operator_id}",
            created_by=created_by,
            account_id=account_id,
            operation_id=payment.operation_id,
            concept=f"Pago a operador {payment.payment_id}",
        )

        async def settle() -> None:
            await self.deriver.settle_operator_payment(payment_id, movement.movement_id)

        # 상태 재확인은 settle 안에서 (동시 지급 시 두 번째 호출은 이동까지 롤백)
        await self.store.save(movement, before_commit=settle)

        paid = await self.deriver.get_operator_payment_by_id(payment_id)
        assert paid is not None
        return paid
