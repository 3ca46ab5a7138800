"""
잔액 검증 (BalanceValidator)

잔액 = initial_base_balance + Σ sign(movement_type) × base_amount (기준통화).
합계는 순서와 무관하며 Decimal로 계산.

마이너스 잔고는 어떤 경우에도 허용하지 않음.
validate_expense()를 쓰기와 원자적으로 묶으려면 LedgerMovementStore의
쓰기 트랜잭션 안에서 호출해야 함 (store.record가 그렇게 동작).
"""

from __future__ import annotations

import logging
from decimal import Decimal
from typing import TYPE_CHECKING, Iterable

from core.config.loader import LedgerConfig
from core.ledger.errors import AccountNotFound, InsufficientBalance
from core.ledger.models import FinancialAccount
from core.ledger.money import (
    ZERO,
    parse_currency,
    positive_amount,
    signed_amount,
    to_base_amount,
)
from core.types import Currency

if TYPE_CHECKING:
    from adapters.db.sqlite_adapter import SQLiteAdapter

logger = logging.getLogger(__name__)


class BalanceValidator:
    """계정 잔액 계산 및 지출 검증

    Args:
        db: SQLite 어댑터
        config: Ledger 설정 (기준통화, 환산 자리수)
    """

    def __init__(self, db: SQLiteAdapter, config: LedgerConfig | None = None):
        self.db = db
        self.config = config or LedgerConfig()

    async def load_account(self, account_id: str) -> FinancialAccount:
        """계정 조회

        Raises:
            AccountNotFound: 계정이 없는 경우
        """
        row = await self.db.fetchone(
            f"SELECT {FinancialAccount.select_columns()} FROM financial_account WHERE account_id = ?",
            (account_id,),
        )
        if row is None:
            raise AccountNotFound(account_id)
        return FinancialAccount.from_row(row)

    async def movement_sum(self, account_id: str) -> Decimal:
        """계정의 부호 적용 이동 합계 (기준통화)"""
        rows = await self.db.fetchall(
            "SELECT movement_type, base_amount FROM ledger_movement WHERE account_id = ?",
            (account_id,),
        )
        return sum((signed_amount(mtype, Decimal(amount)) for mtype, amount in rows), ZERO)

    async def current_balance(self, account_id: str) -> Decimal:
        """현재 잔액 (기준통화)

        Raises:
            AccountNotFound: 계정이 없는 경우
        """
        account = await self.load_account(account_id)
        return account.initial_base_balance + await self.movement_sum(account_id)

    def requested_base_amount(
        self,
        amount: Decimal | str | int,
        currency: Currency | str,
        exchange_rate: Decimal | str | None = None,
    ) -> Decimal:
        """지출 요청 금액의 기준통화 환산값"""
        cur = parse_currency(currency)
        value = positive_amount(amount)
        if cur == self.config.base_currency:
            exchange_rate = None
        _, base_amount = to_base_amount(
            value,
            cur,
            exchange_rate,
            self.config.base_currency,
            self.config.base_amount_decimals,
        )
        return base_amount

    async def check_available(self, account_id: str, requested: Decimal) -> Decimal:
        """잔액이 requested(기준통화) 이상인지 검증

        Returns:
            검증 시점의 가용 잔액

        Raises:
            InsufficientBalance: 차감 후 잔액이 음수가 되는 경우
        """
        available = await self.current_balance(account_id)
        if available - requested < ZERO:
            logger.warning(
                f"잔액 부족: account={account_id}, available={available}, requested={requested}"
            )
            raise InsufficientBalance(account_id, available, requested)
        return available

    async def validate_expense(
        self,
        account_id: str,
        amount: Decimal | str | int,
        currency: Currency | str,
        exchange_rate: Decimal | str | None = None,
    ) -> None:
        """지출 가능 여부 검증

        Raises:
            AccountNotFound: 계정이 없는 경우
            InsufficientBalance: 차감 후 잔액이 음수가 되는 경우 (available, requested 기준통화)
            CurrencyMismatchWithoutRate: 기준통화가 아닌데 환율이 없는 경우
        """
        requested = self.requested_base_amount(amount, currency, exchange_rate)
        await self.check_available(account_id, requested)

    async def balances_batch(self, account_ids: Iterable[str]) -> dict[str, Decimal]:
        """여러 계정 잔액 일괄 계산 (쿼리 2회)

        존재하지 않는 계정은 0.
        """
        ids = list(dict.fromkeys(account_ids))
        if not ids:
            return {}

        placeholders = ", ".join("?" for _ in ids)
        account_rows = await self.db.fetchall(
            f"""
            SELECT {FinancialAccount.select_columns()}
            FROM financial_account
            WHERE account_id IN ({placeholders})
            """,
            tuple(ids),
        )
        balances = {account_id: ZERO for account_id in ids}
        for row in account_rows:
            account = FinancialAccount.from_row(row)
            balances[account.account_id] = account.initial_base_balance

        movement_rows = await self.db.fetchall(
            f"""
            SELECT account_id, movement_type, base_amount
            FROM ledger_movement
            WHERE account_id IN ({placeholders})
            """,
            tuple(ids),
        )
        for account_id, mtype, amount in movement_rows:
            balances[account_id] += signed_amount(mtype, Decimal(amount))

        return balances
