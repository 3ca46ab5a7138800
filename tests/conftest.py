"""
pytest 공통 fixture 정의

설정 파일, 임시 DB, 고정 시계 fixture
"""

import tempfile
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest
import pytest_asyncio

from adapters.db.sqlite_adapter import SQLiteAdapter
from core.config.loader import LedgerConfig, Settings
from core.ledger.schema import init_ledger_schema


class FakeClock:
    """테스트용 고정 시계 (UTC)"""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now = self.now + timedelta(**kwargs)

    def set(self, now: datetime) -> None:
        self.now = now


@pytest.fixture
def temp_dir() -> Path:
    """OS 독립적인 임시 디렉토리 생성"""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def temp_config_file(temp_dir: Path) -> Path:
    """테스트용 ledger.yaml 파일 생성"""
    config_content = f"""# 테스트용 ledger.yaml
base_currency: USD
db_path: {(temp_dir / "ledger_test.db").as_posix()}

exchange_rates:
  fallback: 950

iva:
  rate: 0.21
  decimals: 2

ledger:
  base_amount_decimals: 8
  utc_offset_hours: -3
  checkpoint_interval_days: 7
  fx_min_difference: 0.05

payables:
  due_date_grace_days: 15
"""
    config_path = temp_dir / "ledger.yaml"
    config_path.write_text(config_content, encoding="utf-8")
    return config_path


@pytest.fixture(autouse=True)
def reset_settings():
    """Settings 싱글턴 초기화"""
    Settings.reset()
    yield
    Settings.reset()


@pytest.fixture
def clock() -> FakeClock:
    """2024-01-10 15:00 UTC (ART 12:00) 고정 시계"""
    return FakeClock(datetime(2024, 1, 10, 15, 0, tzinfo=timezone.utc))


@pytest.fixture
def ledger_config(temp_dir: Path) -> LedgerConfig:
    """기본 Ledger 설정 (임시 DB 경로)"""
    return LedgerConfig(db_path=temp_dir / "ledger.db")


@pytest_asyncio.fixture
async def db(ledger_config: LedgerConfig) -> SQLiteAdapter:
    """스키마가 초기화된 임시 DB"""
    adapter = SQLiteAdapter(ledger_config.db_path)
    await adapter.connect()
    await init_ledger_schema(adapter)
    yield adapter
    await adapter.close()
