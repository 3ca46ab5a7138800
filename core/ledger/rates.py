"""
환율 조회 (ExchangeRateResolver)

rate_date → rate (1 USD당 ARS) 시계열 조회.
- resolve: 해당 일자 이하 가장 최근 환율
- resolve_batch: 중복 제거 후 고유 일자당 1회 조회
- latest: 기록된 가장 최근 환율
- effective_rate: resolve → latest → 설정 Fallback → MissingExchangeRate

조회 결과는 인스턴스 단위로 캐시. 논리적 요청 하나당 인스턴스 하나를 사용.
"""

from __future__ import annotations

import logging
from datetime import date, datetime
from decimal import Decimal
from typing import TYPE_CHECKING, Iterable

from core.ledger.errors import MissingExchangeRate
from core.ledger.models import ExchangeRate
from core.ledger.money import positive_rate
from core.utils.timezone import now_utc, parse_date, to_storage

if TYPE_CHECKING:
    from adapters.db.sqlite_adapter import SQLiteAdapter
    from core.config.loader import LedgerConfig

logger = logging.getLogger(__name__)

_UNSET = object()


class ExchangeRateResolver:
    """환율 조회기

    Args:
        db: SQLite 어댑터
        fallback_rate: 시스템 전체 최종 Fallback 환율 (None이면 Fallback 없음)

    Attributes:
        lookup_count: 실제로 DB에 발행한 일자별 조회 수 (캐시 적중 제외)
    """

    def __init__(self, db: SQLiteAdapter, fallback_rate: Decimal | None = None):
        self.db = db
        self.fallback_rate = fallback_rate
        self.lookup_count = 0
        self._cache: dict[date, Decimal | None] = {}
        self._latest: object = _UNSET

    @classmethod
    def from_config(cls, db: SQLiteAdapter, config: LedgerConfig) -> ExchangeRateResolver:
        """설정의 fallback_exchange_rate를 사용하는 조회기 생성"""
        return cls(db, fallback_rate=config.fallback_exchange_rate)

    def clear_cache(self) -> None:
        """캐시 초기화 (환율 변경 후 호출)"""
        self._cache.clear()
        self._latest = _UNSET

    async def resolve(self, rate_date: date | datetime | str) -> Decimal | None:
        """해당 일자 이하 가장 최근 환율

        Returns:
            환율 또는 None (해당 일자 이전 환율 없음)
        """
        day = parse_date(rate_date)
        if day in self._cache:
            return self._cache[day]

        self.lookup_count += 1
        row = await self.db.fetchone(
            f"""
            SELECT {ExchangeRate.select_columns()}
            FROM exchange_rate
            WHERE rate_date <= ?
            ORDER BY rate_date DESC
            LIMIT 1
            """,
            (day.isoformat(),),
        )
        rate = ExchangeRate.from_row(row).rate if row else None
        self._cache[day] = rate
        return rate

    async def resolve_batch(
        self,
        dates: Iterable[date | datetime | str],
    ) -> dict[date, Decimal | None]:
        """여러 일자 환율 일괄 조회

        입력 일자를 먼저 중복 제거하여 고유 일자당 최대 1회만 조회.

        Example:
            >>> await resolver.resolve_batch(["2024-01-05", "2024-01-05", "2024-01-06"])
            {date(2024, 1, 5): Decimal("820"), date(2024, 1, 6): Decimal("825")}
            >>> resolver.lookup_count
            2
        """
        unique_dates = list(dict.fromkeys(parse_date(d) for d in dates))
        result: dict[date, Decimal | None] = {}
        for day in unique_dates:
            result[day] = await self.resolve(day)
        return result

    async def latest(self) -> Decimal | None:
        """기록된 가장 최근 환율"""
        if self._latest is not _UNSET:
            return self._latest  # type: ignore[return-value]

        row = await self.db.fetchone(
            f"""
            SELECT {ExchangeRate.select_columns()}
            FROM exchange_rate
            ORDER BY rate_date DESC
            LIMIT 1
            """
        )
        rate = ExchangeRate.from_row(row).rate if row else None
        self._latest = rate
        return rate

    async def effective_rate(self, rate_date: date | datetime | str) -> Decimal:
        """Fallback을 포함한 적용 환율

        resolve(rate_date) → latest() → fallback_rate 순서.

        Raises:
            MissingExchangeRate: 어떤 환율도 사용할 수 없는 경우
        """
        rate = await self.resolve(rate_date)
        if rate is not None:
            return rate

        rate = await self.latest()
        if rate is not None:
            logger.warning(
                f"{parse_date(rate_date)} 이전 환율 없음, 최근 환율 사용: {rate}"
            )
            return rate

        if self.fallback_rate is not None:
            logger.warning(
                f"기록된 환율 없음, Fallback 환율 사용: {self.fallback_rate}"
            )
            return self.fallback_rate

        raise MissingExchangeRate(parse_date(rate_date))

    async def get_rate(self, rate_date: date | datetime | str) -> ExchangeRate | None:
        """정확히 해당 일자에 기록된 환율 행"""
        row = await self.db.fetchone(
            f"SELECT {ExchangeRate.select_columns()} FROM exchange_rate WHERE rate_date = ?",
            (parse_date(rate_date).isoformat(),),
        )
        return ExchangeRate.from_row(row) if row else None

    async def upsert_rate(
        self,
        rate_date: date | datetime | str,
        rate: Decimal | str | int,
        source: str = "MANUAL",
        notes: str | None = None,
        created_by: str | None = None,
    ) -> ExchangeRate:
        """환율 등록 또는 갱신 (일자당 1건)

        Raises:
            InvalidExchangeRate: rate <= 0
        """
        day = parse_date(rate_date)
        value = positive_rate(rate)
        now = to_storage(now_utc())

        async with self.db.transaction():
            await self.db.execute(
                """
                INSERT INTO exchange_rate (
                    rate_date, rate, source, notes, created_by, created_at, updated_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(rate_date) DO UPDATE SET
                    rate = excluded.rate,
                    source = excluded.source,
                    notes = excluded.notes,
                    updated_at = excluded.updated_at
                """,
                (day.isoformat(), str(value), source, notes, created_by, now, now),
            )

        self.clear_cache()
        logger.info(f"환율 저장: {day} = {value} ({source})")
        return ExchangeRate(
            rate_date=day, rate=value, source=source, notes=notes, created_by=created_by
        )

    async def rates_in_range(
        self,
        date_from: date | datetime | str,
        date_to: date | datetime | str,
    ) -> list[ExchangeRate]:
        """기간 내 기록된 환율 목록 (일자 오름차순)"""
        rows = await self.db.fetchall(
            f"""
            SELECT {ExchangeRate.select_columns()}
            FROM exchange_rate
            WHERE rate_date >= ? AND rate_date <= ?
            ORDER BY rate_date
            """,
            (parse_date(date_from).isoformat(), parse_date(date_to).isoformat()),
        )
        return [ExchangeRate.from_row(row) for row in rows]
