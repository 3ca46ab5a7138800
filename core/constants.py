"""
하드코딩 상수 - 변경될 일이 거의 없는 고정값

중요: 경로는 반드시 pathlib.Path 사용 (Windows/Linux 크로스 플랫폼)
"""

from decimal import Decimal
from pathlib import Path


# 프로젝트 루트 (이 파일 기준 2단계 상위: core/constants.py → tourledger/)
PROJECT_ROOT: Path = Path(__file__).resolve().parent.parent


class Defaults:
    """기본값 상수

    ledger.yaml에 값이 없을 때 사용.
    """

    BASE_CURRENCY: str = "USD"

    # 환율을 전혀 찾을 수 없을 때의 최종 Fallback (ARS per 1 USD)
    # 시스템 전체에서 이 값 하나만 사용
    FALLBACK_EXCHANGE_RATE: Decimal = Decimal("1000")

    IVA_RATE: Decimal = Decimal("0.21")  # 아르헨티나 IVA 21%
    BASE_AMOUNT_DECIMALS: int = 8
    TAX_DECIMALS: int = 2

    UTC_OFFSET_HOURS: int = -3  # 아르헨티나 (서머타임 없음)
    CHECKPOINT_INTERVAL_DAYS: int = 30
    DUE_DATE_GRACE_DAYS: int = 30
    FX_MIN_DIFFERENCE: Decimal = Decimal("0.01")  # USD

    LOG_LEVEL: str = "INFO"


class Paths:
    """프로젝트 경로 상수 (pathlib 사용 - OS 독립적)"""

    # 디렉토리
    CONFIG_DIR: Path = PROJECT_ROOT / "config"
    DATA_DIR: Path = PROJECT_ROOT / "data"
    LOGS_DIR: Path = PROJECT_ROOT / "logs"
    SCRIPTS_LOGS_DIR: Path = LOGS_DIR / "scripts"

    # 설정 파일
    CONFIG_FILE: Path = CONFIG_DIR / "ledger.yaml"

    # DB 파일
    LEDGER_DB: Path = DATA_DIR / "tourledger.db"
