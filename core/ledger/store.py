"""
Ledger 저장소 (LedgerMovementStore)

금융 계정 관리 및 append-only 이동 기록/조회.

쓰기 규칙:
- base_amount는 기록 시점에 1회 계산되고 이후 변경되지 않음
- 지출성 이동(EXPENSE, OPERATOR_PAYMENT)은 같은 BEGIN IMMEDIATE 트랜잭션 안에서
  잔액 검증 후 기록 (계정별 asyncio.Lock 보유)
- 검증 실패 시 어떤 행도 기록되지 않음
"""

from __future__ import annotations

import asyncio
import logging
from contextlib import AsyncExitStack, asynccontextmanager
from datetime import date, datetime
from decimal import Decimal
from typing import TYPE_CHECKING, Any, AsyncIterator, Awaitable, Callable

from core.config.loader import LedgerConfig
from core.ledger.balance import BalanceValidator
from core.ledger.errors import (
    AccountInactive,
    AccountNotFound,
    InvalidAmount,
    LedgerValidationError,
)
from core.ledger.models import FinancialAccount, LedgerMovement
from core.ledger.money import (
    ZERO,
    merge_reference,
    normalize_method,
    parse_currency,
    positive_amount,
    to_base_amount,
    to_decimal,
)
from core.ledger.rates import ExchangeRateResolver
from core.types import GATED_MOVEMENT_TYPES, Currency, MovementType, PaymentMethod
from core.utils.idempotency import make_account_id, make_movement_id
from core.utils.timezone import (
    business_timezone,
    day_end_utc,
    day_start_utc,
    local_date,
    now_utc,
    parse_date,
    to_storage,
)

if TYPE_CHECKING:
    from adapters.db.sqlite_adapter import SQLiteAdapter

logger = logging.getLogger(__name__)

ADJUSTMENT_CONCEPT = "ADJUSTMENT"
TRANSFER_CONCEPT = "TRANSFER"


class LedgerMovementStore:
    """Ledger 이동 저장소

    Args:
        db: SQLite 어댑터
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
        self.validator = BalanceValidator(db, self.config)
        self.clock = clock
        self.tz = business_timezone(self.config.utc_offset_hours)
        self._locks: dict[str, asyncio.Lock] = {}

    # -------------------------------------------------------------------------
    # 계정별 잠금
    # -------------------------------------------------------------------------

    def _lock_for(self, account_id: str) -> asyncio.Lock:
        lock = self._locks.get(account_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[account_id] = lock
        return lock

    @asynccontextmanager
    async def account_locks(self, *account_ids: str | None) -> AsyncIterator[None]:
        """계정별 잠금 획득 (교착 방지를 위해 정렬 순서로 획득)"""
        ids = sorted({a for a in account_ids if a})
        async with AsyncExitStack() as stack:
            for account_id in ids:
                await stack.enter_async_context(self._lock_for(account_id))
            yield

    # -------------------------------------------------------------------------
    # 금융 계정
    # -------------------------------------------------------------------------

    async def create_account(
        self,
        name: str,
        currency: Currency | str,
        initial_balance: Decimal | str | int = ZERO,
        initial_exchange_rate: Decimal | str | None = None,
        owner_id: str | None = None,
    ) -> str:
        """금융 계정 생성

        initial_balance는 계정 통화 기준. 기준통화가 아니고 잔액이 0이 아니면
        initial_exchange_rate가 필요하며 initial_base_balance로 1회 환산하여 저장.

        Returns:
            account_id

        Raises:
            UnsupportedCurrency, InvalidAmount, CurrencyMismatchWithoutRate, InvalidExchangeRate
        """
        cur = parse_currency(currency)
        balance = to_decimal(initial_balance)
        if not balance.is_finite() or balance < ZERO:
            raise InvalidAmount(initial_balance)

        if cur == self.config.base_currency:
            rate, base_balance = None, balance
        elif balance == ZERO and initial_exchange_rate is None:
            rate, base_balance = None, ZERO
        else:
            rate, base_balance = to_base_amount(
                balance,
                cur,
                initial_exchange_rate,
                self.config.base_currency,
                self.config.base_amount_decimals,
            )

        account = FinancialAccount(
            account_id=make_account_id(),
            name=name,
            currency=cur,
            initial_balance=balance,
            initial_exchange_rate=rate,
            initial_base_balance=base_balance,
            is_active=True,
            owner_id=owner_id,
            created_at=self.clock(),
        )

        async with self.db.transaction():
            await self.db.execute(
                f"""
                INSERT INTO financial_account ({FinancialAccount.select_columns()})
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    account.account_id,
                    account.name,
                    account.currency.value,
                    str(account.initial_balance),
                    str(rate) if rate is not None else None,
                    str(account.initial_base_balance),
                    1,
                    account.owner_id,
                    to_storage(account.created_at),
                ),
            )

        logger.info(
            f"금융 계정 생성: {account.account_id} ({name}, {cur.value}, "
            f"initial={balance}, base={base_balance})"
        )
        return account.account_id

    async def get_account(self, account_id: str) -> FinancialAccount | None:
        """계정 단건 조회"""
        row = await self.db.fetchone(
            f"SELECT {FinancialAccount.select_columns()} FROM financial_account WHERE account_id = ?",
            (account_id,),
        )
        return FinancialAccount.from_row(row) if row else None

    async def list_accounts(
        self,
        owner_id: str | None = None,
        active_only: bool = False,
    ) -> list[FinancialAccount]:
        """계정 목록 조회 (생성 순)"""
        conditions: list[str] = []
        params: list[Any] = []
        if owner_id is not None:
            conditions.append("owner_id = ?")
            params.append(owner_id)
        if active_only:
            conditions.append("is_active = 1")

        where = f"WHERE {' AND '.join(conditions)}" if conditions else ""
        rows = await self.db.fetchall(
            f"""
            SELECT {FinancialAccount.select_columns()}
            FROM financial_account
            {where}
            ORDER BY created_at, account_id
            """,
            tuple(params),
        )
        return [FinancialAccount.from_row(row) for row in rows]

    async def _update_account(self, account_id: str, column: str, value: Any) -> None:
        async with self.db.transaction():
            cursor = await self.db.execute(
                f"UPDATE financial_account SET {column} = ? WHERE account_id = ?",
                (value, account_id),
            )
            if cursor.rowcount == 0:
                raise AccountNotFound(account_id)

    async def set_account_active(self, account_id: str, is_active: bool) -> None:
        """계정 활성/비활성 전환

        Raises:
            AccountNotFound: 계정이 없는 경우
        """
        await self._update_account(account_id, "is_active", 1 if is_active else 0)
        logger.info(f"금융 계정 {'활성화' if is_active else '비활성화'}: {account_id}")

    async def rename_account(self, account_id: str, name: str) -> None:
        """계정 이름 변경

        Raises:
            AccountNotFound: 계정이 없는 경우
        """
        await self._update_account(account_id, "name", name)

    # -------------------------------------------------------------------------
    # 이동 기록
    # -------------------------------------------------------------------------

    def build_movement(
        self,
        movement_type: MovementType | str,
        currency: Currency | str,
        amount: Decimal | str | int,
        exchange_rate: Decimal | str | None = None,
        method: str | PaymentMethod | None = None,
        reference: str | None = None,
        created_by: str | None = None,
        account_id: str | None = None,
        operation_id: str | None = None,
        lead_id: str | None = None,
        concept: str | None = None,
    ) -> LedgerMovement:
        """입력 검증 및 기준통화 환산 (저장 전)

        Raises:
            UnsupportedCurrency, InvalidAmount, CurrencyMismatchWithoutRate, InvalidExchangeRate
        """
        mtype = MovementType(movement_type)
        cur = parse_currency(currency)
        value = positive_amount(amount)

        if cur == self.config.base_currency and exchange_rate is not None:
            logger.debug(f"기준통화({cur.value}) 이동에 전달된 환율 무시: {exchange_rate}")
            exchange_rate = None

        rate, base_amount = to_base_amount(
            value,
            cur,
            exchange_rate,
            self.config.base_currency,
            self.config.base_amount_decimals,
        )

        normalized_method, raw_method = normalize_method(method)

        return LedgerMovement(
            movement_id=make_movement_id(),
            account_id=account_id,
            operation_id=operation_id,
            lead_id=lead_id,
            movement_type=mtype,
            currency=cur,
            amount_original=value,
            exchange_rate=rate,
            base_amount=base_amount,
            method=normalized_method,
            reference=merge_reference(reference, raw_method),
            concept=concept,
            created_by=created_by,
            created_at=self.clock(),
        )

    def new_resolver(self) -> ExchangeRateResolver:
        """요청 단위 환율 조회기 (새 캐시)"""
        return ExchangeRateResolver.from_config(self.db, self.config)

    async def market_rate(
        self,
        currency: Currency | str,
        rate_date: date | datetime | str | None = None,
        resolver: ExchangeRateResolver | None = None,
    ) -> Decimal | None:
        """기준통화가 아닌 통화의 시장 환율 (기준통화면 None)

        rate_date 기본값은 오늘 (영업일 기준). 환율은 effective_rate 규칙
        (resolve → latest → Fallback) 으로 결정. resolver를 주지 않으면 호출마다 새로 생성.

        Raises:
            MissingExchangeRate: 사용할 수 있는 환율이 없는 경우
        """
        if parse_currency(currency) == self.config.base_currency:
            return None
        day = parse_date(rate_date) if rate_date is not None else local_date(self.clock(), self.tz)
        return await (resolver or self.new_resolver()).effective_rate(day)

    async def _ensure_active(self, account_id: str) -> FinancialAccount:
        account = await self.validator.load_account(account_id)
        if not account.is_active:
            raise AccountInactive(account_id, account.name)
        return account

    async def _insert_movement(self, movement: LedgerMovement) -> None:
        await self.db.execute(
            f"""
            INSERT INTO ledger_movement ({LedgerMovement.select_columns()})
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                movement.movement_id,
                movement.account_id,
                movement.operation_id,
                movement.lead_id,
                movement.movement_type.value,
                movement.currency.value,
                str(movement.amount_original),
                str(movement.exchange_rate) if movement.exchange_rate is not None else None,
                str(movement.base_amount),
                movement.method.value,
                movement.reference,
                movement.concept,
                movement.created_by,
                to_storage(movement.created_at),
            ),
        )

    async def save(
        self,
        movement: LedgerMovement,
        before_commit: Callable[[], Awaitable[None]] | None = None,
    ) -> str:
        """검증된 이동 저장

        계정 존재/활성 확인과 (지출성 유형의) 잔액 검증을 INSERT와 같은
        BEGIN IMMEDIATE 트랜잭션 안에서 수행.

        Args:
            movement: build_movement로 만든 이동
            before_commit: INSERT 후 같은 트랜잭션에서 실행할 후속 쓰기.
                예외를 던지면 이동까지 전체 롤백. 내부에서 트랜잭션을 새로 열면 안 됨.

        Raises:
            AccountNotFound, AccountInactive, InsufficientBalance
        """
        async with self.account_locks(movement.account_id):
            async with self.db.transaction(immediate=True):
                if movement.account_id is not None:
                    await self._ensure_active(movement.account_id)
                    if movement.movement_type in GATED_MOVEMENT_TYPES:
                        await self.validator.check_available(
                            movement.account_id, movement.base_amount
                        )
                await self._insert_movement(movement)
                if before_commit is not None:
                    await before_commit()

        logger.info(
            f"이동 기록: {movement.movement_id} {movement.movement_type.value} "
            f"{movement.amount_original} {movement.currency.value} "
            f"(base={movement.base_amount}, account={movement.account_id})"
        )
        return movement.movement_id

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
        """이동 기록

        Returns:
            movement_id

        Raises:
            AccountNotFound: 계정이 없는 경우
            AccountInactive: 비활성 계정
            CurrencyMismatchWithoutRate: 기준통화가 아닌데 환율이 없는 경우
            InvalidAmount / InvalidExchangeRate / UnsupportedCurrency: 입력 오류
            InsufficientBalance: 지출성 이동이 잔액을 초과하는 경우
        """
        movement = self.build_movement(
            movement_type=movement_type,
            currency=currency,
            amount=amount,
            exchange_rate=exchange_rate,
            method=method,
            reference=reference,
            created_by=created_by,
            account_id=account_id,
            operation_id=operation_id,
            lead_id=lead_id,
            concept=concept,
        )
        return await self.save(movement)

    async def record_at_market_rate(
        self,
        account_id: str | None,
        movement_type: MovementType | str,
        currency: Currency | str,
        amount: Decimal | str | int,
        rate_date: date | datetime | str | None = None,
        resolver: ExchangeRateResolver | None = None,
        **kwargs: Any,
    ) -> str:
        """기록된 시장 환율로 이동 기록

        Raises:
            MissingExchangeRate: 사용할 수 있는 환율이 없는 경우
        """
        rate = await self.market_rate(currency, rate_date, resolver)
        return await self.record(
            account_id, movement_type, currency, amount, exchange_rate=rate, **kwargs
        )

    async def record_adjustment(
        self,
        account_id: str,
        delta: Decimal | str | int,
        created_by: str | None = None,
        reason: str | None = None,
        currency: Currency | str | None = None,
        exchange_rate: Decimal | str | None = None,
    ) -> str:
        """잔액 보정 이동 기록

        초기 잔액은 변경하지 않고 보정 이동(INCOME/EXPENSE, concept=ADJUSTMENT)으로 기록.
        delta 양수는 INCOME, 음수는 EXPENSE (잔액 검증 적용).
        currency 기본값은 기준통화.

        Raises:
            InvalidAmount: delta == 0
        """
        value = to_decimal(delta)
        if not value.is_finite() or value == ZERO:
            raise InvalidAmount(delta)

        mtype = MovementType.INCOME if value > ZERO else MovementType.EXPENSE
        return await self.record(
            account_id,
            mtype,
            currency or self.config.base_currency,
            abs(value),
            exchange_rate=exchange_rate,
            method=PaymentMethod.OTHER,
            reference=reason,
            created_by=created_by,
            concept=ADJUSTMENT_CONCEPT,
        )

    async def transfer(
        self,
        from_account_id: str,
        to_account_id: str,
        amount: Decimal | str | int,
        currency: Currency | str,
        exchange_rate: Decimal | str | None = None,
        method: str | PaymentMethod | None = None,
        created_by: str | None = None,
        reference: str | None = None,
    ) -> tuple[str, str]:
        """계정 간 이체 (EXPENSE + INCOME 원자적 기록)

        두 계정 잠금을 정렬 순서로 획득 후 단일 트랜잭션에서 기록.

        Returns:
            (출금 movement_id, 입금 movement_id)

        Raises:
            LedgerValidationError: 같은 계정 간 이체
            AccountNotFound, AccountInactive, InsufficientBalance 등
        """
        if from_account_id == to_account_id:
            raise LedgerValidationError("같은 계정 간 이체는 할 수 없습니다")

        common = dict(
            currency=currency,
            amount=amount,
            exchange_rate=exchange_rate,
            method=method,
            reference=reference,
            created_by=created_by,
            concept=TRANSFER_CONCEPT,
        )
        outgoing = self.build_movement(
            movement_type=MovementType.EXPENSE, account_id=from_account_id, **common
        )
        incoming = self.build_movement(
            movement_type=MovementType.INCOME, account_id=to_account_id, **common
        )

        async with self.account_locks(from_account_id, to_account_id):
            async with self.db.transaction(immediate=True):
                await self._ensure_active(from_account_id)
                await self._ensure_active(to_account_id)
                await self.validator.check_available(from_account_id, outgoing.base_amount)
                await self._insert_movement(outgoing)
                await self._insert_movement(incoming)

        logger.info(
            f"계정 이체: {from_account_id} → {to_account_id} "
            f"{outgoing.amount_original} {outgoing.currency.value} (base={outgoing.base_amount})"
        )
        return outgoing.movement_id, incoming.movement_id

    # -------------------------------------------------------------------------
    # 이동 조회
    # -------------------------------------------------------------------------

    async def get_movement(self, movement_id: str) -> LedgerMovement | None:
        """이동 단건 조회"""
        row = await self.db.fetchone(
            f"SELECT {LedgerMovement.select_columns()} FROM ledger_movement WHERE movement_id = ?",
            (movement_id,),
        )
        return LedgerMovement.from_row(row) if row else None

    async def list_movements(
        self,
        account_id: str | None = None,
        movement_type: MovementType | str | None = None,
        operation_id: str | None = None,
        lead_id: str | None = None,
        date_from: date | str | None = None,
        date_to: date | str | None = None,
        limit: int = 100,
        offset: int = 0,
    ) -> list[LedgerMovement]:
        """이동 목록 조회 (최신순)

        date_from / date_to는 영업일(로컬 날짜) 기준, 양끝 포함.
        """
        conditions: list[str] = []
        params: list[Any] = []

        if account_id is not None:
            conditions.append("account_id = ?")
            params.append(account_id)
        if movement_type is not None:
            conditions.append("movement_type = ?")
            params.append(MovementType(movement_type).value)
        if operation_id is not None:
            conditions.append("operation_id = ?")
            params.append(operation_id)
        if lead_id is not None:
            conditions.append("lead_id = ?")
            params.append(lead_id)
        if date_from is not None:
            conditions.append("created_at >= ?")
            params.append(to_storage(day_start_utc(parse_date(date_from), self.tz)))
        if date_to is not None:
            conditions.append("created_at < ?")
            params.append(to_storage(day_end_utc(parse_date(date_to), self.tz)))

        where = f"WHERE {' AND '.join(conditions)}" if conditions else ""
        params.extend([limit, offset])

        rows = await self.db.fetchall(
            f"""
            SELECT {LedgerMovement.select_columns()}
            FROM ledger_movement
            {where}
            ORDER BY created_at DESC, movement_id DESC
            LIMIT ? OFFSET ?
            """,
            tuple(params),
        )
        return [LedgerMovement.from_row(row) for row in rows]

    async def movements_for_operation(self, operation_id: str) -> list[LedgerMovement]:
        """operation에 연결된 이동 (시간순)"""
        rows = await self.db.fetchall(
            f"""
            SELECT {LedgerMovement.select_columns()}
            FROM ledger_movement
            WHERE operation_id = ?
            ORDER BY created_at, movement_id
            """,
            (operation_id,),
        )
        return [LedgerMovement.from_row(row) for row in rows]

    async def fx_movement_for_operation(self, operation_id: str) -> LedgerMovement | None:
        """operation에 기록된 환차 이동 (FX_GAIN / FX_LOSS, operation당 최대 1건)"""
        row = await self.db.fetchone(
            f"""
            SELECT {LedgerMovement.select_columns()}
            FROM ledger_movement
            WHERE operation_id = ? AND movement_type IN (?, ?)
            """,
            (operation_id, MovementType.FX_GAIN.value, MovementType.FX_LOSS.value),
        )
        return LedgerMovement.from_row(row) if row else None

    async def movements_for_lead(self, lead_id: str) -> list[LedgerMovement]:
        """lead에 연결된 이동 (시간순)"""
        rows = await self.db.fetchall(
            f"""
            SELECT {LedgerMovement.select_columns()}
            FROM ledger_movement
            WHERE lead_id = ?
            ORDER BY created_at, movement_id
            """,
            (lead_id,),
        )
        return [LedgerMovement.from_row(row) for row in rows]
