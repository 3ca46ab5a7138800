"""BalanceReconstructor 통합 테스트

고정 시계로 일자별 이동을 기록한 뒤 일별 잔액 시계열 / 체크포인트 검증.
"""

from dataclasses import replace
from datetime import date, datetime, timezone
from decimal import Decimal

import pytest
import pytest_asyncio

from core.ledger.errors import AccountNotFound, CheckpointError
from core.ledger.reconstruction import BalanceReconstructor
from core.ledger.store import LedgerMovementStore

NOW = datetime(2024, 1, 10, 15, 0, tzinfo=timezone.utc)


def at(day: int, hour: int = 15, minute: int = 0) -> datetime:
    return datetime(2024, 1, day, hour, minute, tzinfo=timezone.utc)


@pytest_asyncio.fixture
async def store(db, ledger_config, clock) -> LedgerMovementStore:
    return LedgerMovementStore(db, ledger_config, clock=clock)


@pytest_asyncio.fixture
async def reconstructor(db, ledger_config, clock) -> BalanceReconstructor:
    return BalanceReconstructor(db, ledger_config, clock=clock)


@pytest_asyncio.fixture
async def history(store: LedgerMovementStore, clock) -> str:
    """01-01 USD 100 → 01-03 +50 → 01-05 -30 (현재 시각은 01-10으로 복원)"""
    clock.set(at(1))
    account_id = await store.create_account("Caja USD", "USD", Decimal("100"))
    clock.set(at(3))
    await store.record(account_id, "INCOME", "USD", Decimal("50"))
    clock.set(at(5))
    await store.record(account_id, "EXPENSE", "USD", Decimal("30"))
    clock.set(NOW)
    return account_id


class TestDailySeries:
    """daily_series"""

    @pytest.mark.asyncio
    async def test_carry_forward(self, reconstructor: BalanceReconstructor, history: str) -> None:
        series = await reconstructor.daily_series([history], "2024-01-01", "2024-01-07")

        assert [entry.date for entry in series] == [date(2024, 1, d) for d in range(1, 8)]
        assert [entry.balance for entry in series] == [
            Decimal("100"), Decimal("100"), Decimal("150"), Decimal("150"),
            Decimal("120"), Decimal("120"), Decimal("120"),
        ]
        assert series[-1].by_account == {history: Decimal("120")}

    @pytest.mark.asyncio
    async def test_window_starts_after_movements(
        self, reconstructor: BalanceReconstructor, history: str
    ) -> None:
        """기간 이전 이동도 시작 잔액에 반영"""
        series = await reconstructor.daily_series([history], "2024-01-04", "2024-01-05")

        assert [entry.balance for entry in series] == [Decimal("150"), Decimal("120")]

    @pytest.mark.asyncio
    async def test_business_day_boundary(
        self, store: LedgerMovementStore, reconstructor: BalanceReconstructor, history: str, clock
    ) -> None:
        """UTC 01-07 02:30 = ART 01-06 23:30 → 01-06 잔액에 반영"""
        clock.set(at(7, hour=2, minute=30))
        await store.record(history, "INCOME", "USD", Decimal("5"))
        clock.set(NOW)

        series = await reconstructor.daily_series([history], "2024-01-06", "2024-01-07")

        assert [entry.balance for entry in series] == [Decimal("125"), Decimal("125")]

    @pytest.mark.asyncio
    async def test_multiple_accounts(
        self, store: LedgerMovementStore, reconstructor: BalanceReconstructor, history: str, clock
    ) -> None:
        clock.set(at(2))
        other = await store.create_account("Caja ARS", "ARS", Decimal("10000"), Decimal("1000"))
        clock.set(at(4))
        await store.record(other, "EXPENSE", "ARS", Decimal("5000"), exchange_rate=Decimal("1000"))
        clock.set(NOW)

        series = await reconstructor.daily_series(
            [history, other, "acc-missing"], "2024-01-03", "2024-01-05"
        )

        assert [entry.balance for entry in series] == [
            Decimal("160"), Decimal("155"), Decimal("125"),
        ]
        assert series[1].by_account == {
            history: Decimal("150"),
            other: Decimal("5"),
            "acc-missing": Decimal("0"),
        }

    @pytest.mark.asyncio
    async def test_single_day(self, reconstructor: BalanceReconstructor, history: str) -> None:
        series = await reconstructor.daily_series([history], "2024-01-03", "2024-01-03")

        assert len(series) == 1
        assert series[0].balance == Decimal("150")

    @pytest.mark.asyncio
    async def test_no_accounts(self, reconstructor: BalanceReconstructor) -> None:
        series = await reconstructor.daily_series([], "2024-01-01", "2024-01-03")

        assert [entry.balance for entry in series] == [Decimal("0")] * 3

    @pytest.mark.asyncio
    async def test_invalid_range(self, reconstructor: BalanceReconstructor) -> None:
        with pytest.raises(ValueError):
            await reconstructor.daily_series(["acc-1"], "2024-01-05", "2024-01-01")


class TestCheckpoints:
    """create_checkpoint / ensure_checkpoints"""

    @pytest.mark.asyncio
    async def test_create_checkpoint(
        self, reconstructor: BalanceReconstructor, history: str
    ) -> None:
        checkpoint = await reconstructor.create_checkpoint(history, "2024-01-03")

        assert checkpoint.balance == Decimal("150")
        assert checkpoint.movement_count == 1
        assert await reconstructor.latest_checkpoint(history) == checkpoint

    @pytest.mark.asyncio
    async def test_idempotent(self, reconstructor: BalanceReconstructor, history: str) -> None:
        first = await reconstructor.create_checkpoint(history, "2024-01-03")
        second = await reconstructor.create_checkpoint(history, date(2024, 1, 3))

        assert first == second

    @pytest.mark.asyncio
    async def test_chained(self, reconstructor: BalanceReconstructor, history: str) -> None:
        await reconstructor.create_checkpoint(history, "2024-01-03")
        later = await reconstructor.create_checkpoint(history, "2024-01-08")

        assert later.balance == Decimal("120")
        assert later.movement_count == 2
        earlier = await reconstructor.latest_checkpoint(history, on_or_before=date(2024, 1, 7))
        assert earlier.checkpoint_date == date(2024, 1, 3)

    @pytest.mark.asyncio
    async def test_series_uses_checkpoint(
        self, reconstructor: BalanceReconstructor, history: str
    ) -> None:
        """체크포인트 사용 결과 == 전체 재계산 결과"""
        full = await reconstructor.daily_series([history], "2024-01-04", "2024-01-09")

        await reconstructor.create_checkpoint(history, "2024-01-02")
        await reconstructor.create_checkpoint(history, "2024-01-03")
        with_checkpoint = await reconstructor.daily_series([history], "2024-01-04", "2024-01-09")

        assert with_checkpoint == full

    @pytest.mark.asyncio
    async def test_open_day_rejected(
        self, reconstructor: BalanceReconstructor, history: str
    ) -> None:
        """오늘(01-10) 이후는 마감되지 않음"""
        with pytest.raises(CheckpointError):
            await reconstructor.create_checkpoint(history, "2024-01-10")
        with pytest.raises(CheckpointError):
            await reconstructor.create_checkpoint(history, "2024-02-01")

    @pytest.mark.asyncio
    async def test_unknown_account(self, reconstructor: BalanceReconstructor) -> None:
        with pytest.raises(AccountNotFound):
            await reconstructor.create_checkpoint("acc-missing", "2024-01-03")

    @pytest.mark.asyncio
    async def test_ensure_checkpoints_interval(
        self, db, ledger_config, clock, history: str
    ) -> None:
        reconstructor = BalanceReconstructor(
            db, replace(ledger_config, checkpoint_interval_days=2), clock=clock
        )

        created = await reconstructor.ensure_checkpoints(as_of="2024-01-05")
        assert [c.checkpoint_date for c in created] == [date(2024, 1, 5)]

        assert await reconstructor.ensure_checkpoints(as_of="2024-01-06") == []

        created = await reconstructor.ensure_checkpoints([history], as_of="2024-01-07")
        assert created[0].balance == Decimal("120")

    @pytest.mark.asyncio
    async def test_ensure_checkpoints_defaults_to_yesterday(
        self, reconstructor: BalanceReconstructor, history: str
    ) -> None:
        created = await reconstructor.ensure_checkpoints()

        assert [c.checkpoint_date for c in created] == [date(2024, 1, 9)]
