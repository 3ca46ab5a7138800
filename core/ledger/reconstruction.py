"""
일별 잔액 재구성 (BalanceReconstructor)

계정 목록과 기간 [date_from, date_to] (영업일 기준, 양끝 포함)에 대해
하루 1건의 잔액 시계열을 생성.

알고리즘:
1. 계정 1회 로드 (initial_base_balance)
2. date_from 이전 마지막 체크포인트 1회 로드 (있으면 시작 잔액으로 사용)
3. 이동 1회 로드 (위: date_to 종료 시각, 아래: 계정별 체크포인트 종료 시각)
4. (계정, 영업일) 버킷 집계 후 날짜 순회, 이동 없는 날은 전날 잔액 유지

체크포인트는 마감된 영업일(오늘 이전)에 대해서만 생성.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from datetime import date, datetime, timedelta
from decimal import Decimal
from typing import TYPE_CHECKING, Any, Callable, Iterable

from core.config.loader import LedgerConfig
from core.ledger.errors import AccountNotFound, CheckpointError
from core.ledger.models import BalanceCheckpoint, DailyBalance, FinancialAccount
from core.ledger.money import ZERO, signed_amount
from core.utils.timezone import (
    business_timezone,
    day_end_utc,
    iter_days,
    local_date,
    now_utc,
    parse_date,
    to_storage,
)

if TYPE_CHECKING:
    from adapters.db.sqlite_adapter import SQLiteAdapter

logger = logging.getLogger(__name__)


class BalanceReconstructor:
    """일별 잔액 재구성 및 체크포인트 관리

    Args:
        db: SQLite 어댑터
        config: Ledger 설정 (영업일 시차, 체크포인트 주기)
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
        self.tz = business_timezone(self.config.utc_offset_hours)

    def today(self) -> date:
        """현재 영업일"""
        return local_date(self.clock(), self.tz)

    # -------------------------------------------------------------------------
    # 일별 시계열
    # -------------------------------------------------------------------------

    async def daily_series(
        self,
        account_ids: Iterable[str],
        date_from: date | str,
        date_to: date | str,
    ) -> list[DailyBalance]:
        """일별 잔액 시계열

        Returns:
            date_from ~ date_to 하루 1건 (빈 날짜 없음).
            존재하지 않는 계정은 0으로 기여.

        Raises:
            ValueError: date_from > date_to
        """
        start = parse_date(date_from)
        end = parse_date(date_to)
        if start > end:
            raise ValueError(f"date_from({start})이 date_to({end})보다 늦습니다")

        ids = list(dict.fromkeys(account_ids))
        if not ids:
            return [DailyBalance(date=day, balance=ZERO) for day in iter_days(start, end)]

        accounts = await self._load_accounts(ids)
        checkpoints = await self._checkpoints_before(ids, start)

        # 시작 잔액과 이동 조회 하한
        running: dict[str, Decimal] = {}
        lower_bounds: dict[str, str] = {}
        for account_id in ids:
            checkpoint = checkpoints.get(account_id)
            if checkpoint is not None:
                running[account_id] = checkpoint.balance
                lower_bounds[account_id] = to_storage(
                    day_end_utc(checkpoint.checkpoint_date, self.tz)
                )
            elif account_id in accounts:
                running[account_id] = accounts[account_id].initial_base_balance
            else:
                running[account_id] = ZERO

        rows = await self._load_movements(
            [a for a in ids if a in accounts], lower_bounds, end
        )

        buckets: dict[date, dict[str, Decimal]] = defaultdict(lambda: defaultdict(lambda: ZERO))
        for account_id, mtype, amount, created_at in rows:
            delta = signed_amount(mtype, Decimal(amount))
            day = local_date(datetime.fromisoformat(created_at), self.tz)
            if day < start:
                running[account_id] += delta
            else:
                buckets[day][account_id] += delta

        series: list[DailyBalance] = []
        for day in iter_days(start, end):
            for account_id, delta in buckets.get(day, {}).items():
                running[account_id] += delta
            series.append(
                DailyBalance(
                    date=day,
                    balance=sum(running.values(), ZERO),
                    by_account=dict(running),
                )
            )

        logger.debug(
            f"일별 잔액 재구성: {len(ids)}개 계정, {start} ~ {end}, "
            f"이동 {len(rows)}건 (체크포인트 {len(checkpoints)}건 사용)"
        )
        return series

    async def _load_accounts(self, ids: list[str]) -> dict[str, FinancialAccount]:
        placeholders = ", ".join("?" for _ in ids)
        rows = await self.db.fetchall(
            f"""
            SELECT {FinancialAccount.select_columns()}
            FROM financial_account
            WHERE account_id IN ({placeholders})
            """,
            tuple(ids),
        )
        accounts = [FinancialAccount.from_row(row) for row in rows]
        return {a.account_id: a for a in accounts}

    async def _checkpoints_before(
        self,
        ids: list[str],
        before: date,
    ) -> dict[str, BalanceCheckpoint]:
        """계정별 before 이전 마지막 체크포인트 (쿼리 1회)"""
        placeholders = ", ".join("?" for _ in ids)
        rows = await self.db.fetchall(
            f"""
            SELECT {BalanceCheckpoint.select_columns("bc")}
            FROM balance_checkpoint bc
            WHERE bc.account_id IN ({placeholders})
                AND bc.checkpoint_date = (
                    SELECT MAX(checkpoint_date) FROM balance_checkpoint
                    WHERE account_id = bc.account_id AND checkpoint_date < ?
                )
            """,
            (*ids, before.isoformat()),
        )
        checkpoints = [BalanceCheckpoint.from_row(row) for row in rows]
        return {c.account_id: c for c in checkpoints}

    async def _load_movements(
        self,
        ids: list[str],
        lower_bounds: dict[str, str],
        until: date,
    ) -> list[tuple[Any, ...]]:
        """계정 이동 조회 (쿼리 1회, until 종료 시각 미만)"""
        if not ids:
            return []

        clauses: list[str] = []
        params: list[Any] = []
        unbounded = [a for a in ids if a not in lower_bounds]
        if unbounded:
            clauses.append(f"account_id IN ({', '.join('?' for _ in unbounded)})")
            params.extend(unbounded)
        for account_id in ids:
            if account_id in lower_bounds:
                clauses.append("(account_id = ? AND created_at >= ?)")
                params.extend([account_id, lower_bounds[account_id]])

        params.append(to_storage(day_end_utc(until, self.tz)))
        return await self.db.fetchall(
            f"""
            SELECT account_id, movement_type, base_amount, created_at
            FROM ledger_movement
            WHERE ({' OR '.join(clauses)})
                AND created_at < ?
            """,
            tuple(params),
        )

    # -------------------------------------------------------------------------
    # 체크포인트
    # -------------------------------------------------------------------------

    async def latest_checkpoint(
        self,
        account_id: str,
        on_or_before: date | None = None,
    ) -> BalanceCheckpoint | None:
        """계정의 마지막 체크포인트 (on_or_before 이하)"""
        sql = f"SELECT {BalanceCheckpoint.select_columns()} FROM balance_checkpoint WHERE account_id = ?"
        params: list[Any] = [account_id]
        if on_or_before is not None:
            sql += " AND checkpoint_date <= ?"
            params.append(on_or_before.isoformat())
        sql += " ORDER BY checkpoint_date DESC LIMIT 1"

        row = await self.db.fetchone(sql, tuple(params))
        return BalanceCheckpoint.from_row(row) if row else None

    async def create_checkpoint(
        self,
        account_id: str,
        as_of: date | str,
    ) -> BalanceCheckpoint:
        """as_of 영업일 종료 시점 잔액 체크포인트 생성

        이미 존재하면 기존 체크포인트 반환.
        직전 체크포인트 이후 이동만 합산.

        Raises:
            CheckpointError: as_of가 마감되지 않은 영업일 (오늘 이후)
            AccountNotFound: 계정이 없는 경우
        """
        day = parse_date(as_of)
        if day >= self.today():
            raise CheckpointError(f"마감되지 않은 영업일은 체크포인트를 만들 수 없습니다: {day}")

        async with self.db.transaction(immediate=True):
            row = await self.db.fetchone(
                f"SELECT {FinancialAccount.select_columns()} FROM financial_account WHERE account_id = ?",
                (account_id,),
            )
            if row is None:
                raise AccountNotFound(account_id)
            account = FinancialAccount.from_row(row)

            previous = await self.latest_checkpoint(account_id, on_or_before=day)
            if previous is not None and previous.checkpoint_date == day:
                return previous

            if previous is not None:
                balance = previous.balance
                count = previous.movement_count
                lower = to_storage(day_end_utc(previous.checkpoint_date, self.tz))
            else:
                balance = account.initial_base_balance
                count = 0
                lower = ""

            rows = await self.db.fetchall(
                """
                SELECT movement_type, base_amount
                FROM ledger_movement
                WHERE account_id = ? AND created_at >= ? AND created_at < ?
                """,
                (account_id, lower, to_storage(day_end_utc(day, self.tz))),
            )
            for mtype, amount in rows:
                balance += signed_amount(mtype, Decimal(amount))
            count += len(rows)

            checkpoint = BalanceCheckpoint(
                account_id=account_id,
                checkpoint_date=day,
                balance=balance,
                movement_count=count,
            )
            await self.db.execute(
                """
                INSERT INTO balance_checkpoint (
                    account_id, checkpoint_date, balance, movement_count, created_at
                ) VALUES (?, ?, ?, ?, ?)
                """,
                (
                    account_id,
                    day.isoformat(),
                    str(balance),
                    count,
                    to_storage(self.clock()),
                ),
            )

        logger.info(f"잔액 체크포인트 생성: {account_id} {day} = {balance} (이동 {count}건)")
        return checkpoint

    async def ensure_checkpoints(
        self,
        account_ids: Iterable[str] | None = None,
        as_of: date | str | None = None,
    ) -> list[BalanceCheckpoint]:
        """체크포인트 주기(checkpoint_interval_days)가 지난 계정에 체크포인트 생성

        Args:
            account_ids: 대상 계정 (None이면 전체)
            as_of: 체크포인트 일자 (None이면 어제)

        Returns:
            새로 생성된 체크포인트 목록
        """
        day = parse_date(as_of) if as_of is not None else self.today() - timedelta(days=1)

        if account_ids is None:
            rows = await self.db.fetchall(
                "SELECT account_id FROM financial_account ORDER BY account_id"
            )
            ids = [row[0] for row in rows]
        else:
            ids = list(dict.fromkeys(account_ids))

        interval = timedelta(days=self.config.checkpoint_interval_days)
        created: list[BalanceCheckpoint] = []
        for account_id in ids:
            latest = await self.latest_checkpoint(account_id)
            if latest is not None and day - latest.checkpoint_date < interval:
                continue
            created.append(await self.create_checkpoint(account_id, day))

        if created:
            logger.info(f"체크포인트 {len(created)}건 생성 (기준일 {day})")
        return created
