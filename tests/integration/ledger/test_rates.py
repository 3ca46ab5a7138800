"""ExchangeRateResolver 통합 테스트"""

from datetime import date
from decimal import Decimal

import pytest
import pytest_asyncio

from core.ledger.errors import InvalidExchangeRate, MissingExchangeRate
from core.ledger.rates import ExchangeRateResolver


@pytest_asyncio.fixture
async def resolver(db) -> ExchangeRateResolver:
    """Fallback 없는 조회기"""
    return ExchangeRateResolver(db)


@pytest_asyncio.fixture
async def seeded(resolver: ExchangeRateResolver) -> ExchangeRateResolver:
    await resolver.upsert_rate("2024-01-05", Decimal("820"))
    await resolver.upsert_rate("2024-01-06", Decimal("825"), source="BCRA", created_by="admin")
    return resolver


class TestResolve:
    """resolve / resolve_batch"""

    @pytest.mark.asyncio
    async def test_exact_and_carry_forward(self, seeded: ExchangeRateResolver) -> None:
        assert await seeded.resolve("2024-01-05") == Decimal("820")
        assert await seeded.resolve(date(2024, 1, 10)) == Decimal("825")

    @pytest.mark.asyncio
    async def test_before_first_rate(self, seeded: ExchangeRateResolver) -> None:
        assert await seeded.resolve("2024-01-04") is None

    @pytest.mark.asyncio
    async def test_batch_deduplicates(self, seeded: ExchangeRateResolver) -> None:
        """같은 일자는 한 번만 조회"""
        rates = await seeded.resolve_batch(["2024-01-05", "2024-01-05", "2024-01-06"])

        assert rates == {
            date(2024, 1, 5): Decimal("820"),
            date(2024, 1, 6): Decimal("825"),
        }
        assert seeded.lookup_count == 2

    @pytest.mark.asyncio
    async def test_cache_per_instance(self, seeded: ExchangeRateResolver, db) -> None:
        await seeded.resolve("2024-01-05")
        await seeded.resolve("2024-01-05")
        assert seeded.lookup_count == 1

        fresh = ExchangeRateResolver(db)
        await fresh.resolve("2024-01-05")
        assert fresh.lookup_count == 1

    @pytest.mark.asyncio
    async def test_upsert_clears_cache(self, seeded: ExchangeRateResolver) -> None:
        assert await seeded.resolve("2024-01-06") == Decimal("825")

        await seeded.upsert_rate("2024-01-06", Decimal("830"))

        assert await seeded.resolve("2024-01-06") == Decimal("830")


class TestFallback:
    """latest / effective_rate"""

    @pytest.mark.asyncio
    async def test_latest(self, seeded: ExchangeRateResolver) -> None:
        assert await seeded.latest() == Decimal("825")

    @pytest.mark.asyncio
    async def test_effective_uses_latest_before_history(self, seeded: ExchangeRateResolver) -> None:
        assert await seeded.effective_rate("2023-12-31") == Decimal("825")

    @pytest.mark.asyncio
    async def test_effective_uses_config_fallback(self, db) -> None:
        resolver = ExchangeRateResolver(db, fallback_rate=Decimal("1000"))

        assert await resolver.latest() is None
        assert await resolver.effective_rate("2024-01-05") == Decimal("1000")

    @pytest.mark.asyncio
    async def test_missing_everything(self, resolver: ExchangeRateResolver) -> None:
        with pytest.raises(MissingExchangeRate):
            await resolver.effective_rate("2024-01-05")


class TestManageRates:
    """환율 등록 / 조회"""

    @pytest.mark.asyncio
    async def test_upsert_overwrites(self, seeded: ExchangeRateResolver) -> None:
        await seeded.upsert_rate("2024-01-05", "850", notes="corrección")

        stored = await seeded.get_rate("2024-01-05")
        assert stored.rate == Decimal("850")
        assert stored.notes == "corrección"
        assert len(await seeded.rates_in_range("2024-01-01", "2024-01-31")) == 2

    @pytest.mark.asyncio
    async def test_get_rate_exact_only(self, seeded: ExchangeRateResolver) -> None:
        assert await seeded.get_rate("2024-01-07") is None
        stored = await seeded.get_rate("2024-01-06")
        assert stored.source == "BCRA"
        assert stored.created_by == "admin"

    @pytest.mark.asyncio
    async def test_range(self, seeded: ExchangeRateResolver) -> None:
        rates = await seeded.rates_in_range("2024-01-06", "2024-01-31")

        assert [r.rate_date for r in rates] == [date(2024, 1, 6)]

    @pytest.mark.asyncio
    async def test_invalid_rate(self, resolver: ExchangeRateResolver) -> None:
        with pytest.raises(InvalidExchangeRate):
            await resolver.upsert_rate("2024-01-05", Decimal("0"))
        assert await resolver.latest() is None
