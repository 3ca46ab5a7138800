"""
설정 로더

ledger.yaml 로드 및 Ledger 설정 생성
"""

from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any

import yaml

from core.constants import PROJECT_ROOT, Defaults, Paths
from core.types import Currency


@dataclass(frozen=True)
class LedgerConfig:
    """Ledger 설정 (ledger.yaml에서 로드)

    불변 데이터 구조로 설정 변경 방지.
    fallback_exchange_rate는 시스템 전체에서 유일한 최종 환율 Fallback.
    None이면 Fallback 없음 (환율이 없으면 MissingExchangeRate).
    """

    base_currency: Currency = Currency.USD
    fallback_exchange_rate: Decimal | None = Defaults.FALLBACK_EXCHANGE_RATE
    iva_rate: Decimal = Defaults.IVA_RATE
    base_amount_decimals: int = Defaults.BASE_AMOUNT_DECIMALS
    tax_decimals: int = Defaults.TAX_DECIMALS
    utc_offset_hours: int = Defaults.UTC_OFFSET_HOURS
    checkpoint_interval_days: int = Defaults.CHECKPOINT_INTERVAL_DAYS
    due_date_grace_days: int = Defaults.DUE_DATE_GRACE_DAYS
    fx_min_difference: Decimal = Defaults.FX_MIN_DIFFERENCE
    db_path: Path = field(default=Paths.LEDGER_DB)


class ConfigLoadError(Exception):
    """설정 로드 실패 예외"""

    pass


def _decimal(value: Any, key: str) -> Decimal:
    try:
        result = Decimal(str(value))
    except InvalidOperation as e:
        raise ConfigLoadError(f"ledger.yaml의 '{key}' 값이 숫자가 아닙니다: {value!r}") from e
    if not result.is_finite():
        raise ConfigLoadError(f"ledger.yaml의 '{key}' 값이 유효하지 않습니다: {value!r}")
    return result


def _positive_int(value: Any, key: str) -> int:
    if not isinstance(value, int) or isinstance(value, bool) or value <= 0:
        raise ConfigLoadError(f"ledger.yaml의 '{key}'는 양의 정수여야 합니다: {value!r}")
    return value


def load_config(path: Path | None = None) -> LedgerConfig:
    """ledger.yaml 파일 로드

    Args:
        path: ledger.yaml 경로 (None이면 기본 경로 사용)

    Returns:
        LedgerConfig 인스턴스

    Raises:
        ConfigLoadError: 파일이 없거나 형식이 잘못된 경우
        ValueError: 유효하지 않은 base_currency인 경우
    """
    if path is None:
        path = Paths.CONFIG_FILE

    if not path.exists():
        raise ConfigLoadError(f"ledger.yaml 파일을 찾을 수 없습니다: {path}")

    try:
        content = path.read_text(encoding="utf-8")
        data = yaml.safe_load(content)
    except yaml.YAMLError as e:
        raise ConfigLoadError(f"ledger.yaml 파싱 실패: {e}") from e

    if data is None:
        raise ConfigLoadError("ledger.yaml이 비어 있습니다")

    if not isinstance(data, dict):
        raise ConfigLoadError("ledger.yaml 최상위는 매핑이어야 합니다")

    # base_currency 검증
    currency_str = str(data.get("base_currency", Defaults.BASE_CURRENCY)).upper()
    try:
        base_currency = Currency(currency_str)
    except ValueError as e:
        valid = [c.value for c in Currency]
        raise ValueError(
            f"유효하지 않은 base_currency입니다: '{currency_str}'. "
            f"유효한 값: {valid}"
        ) from e

    rates = data.get("exchange_rates") or {}
    iva = data.get("iva") or {}
    ledger = data.get("ledger") or {}
    payables = data.get("payables") or {}

    # 최종 환율 Fallback (null이면 비활성화)
    fallback: Decimal | None = Defaults.FALLBACK_EXCHANGE_RATE
    if "fallback" in rates:
        raw_fallback = rates.get("fallback")
        fallback = None if raw_fallback is None else _decimal(raw_fallback, "exchange_rates.fallback")
        if fallback is not None and fallback <= 0:
            raise ConfigLoadError("exchange_rates.fallback은 0보다 커야 합니다")

    iva_rate = _decimal(iva.get("rate", Defaults.IVA_RATE), "iva.rate")
    if not Decimal("0") <= iva_rate < Decimal("1"):
        raise ConfigLoadError(f"iva.rate는 0 이상 1 미만이어야 합니다: {iva_rate}")

    db_path = Path(data.get("db_path") or Paths.LEDGER_DB)
    if not db_path.is_absolute():
        db_path = PROJECT_ROOT / db_path

    return LedgerConfig(
        base_currency=base_currency,
        fallback_exchange_rate=fallback,
        iva_rate=iva_rate,
        base_amount_decimals=_positive_int(
            ledger.get("base_amount_decimals", Defaults.BASE_AMOUNT_DECIMALS),
            "ledger.base_amount_decimals",
        ),
        tax_decimals=_positive_int(
            iva.get("decimals", Defaults.TAX_DECIMALS), "iva.decimals"
        ),
        utc_offset_hours=int(ledger.get("utc_offset_hours", Defaults.UTC_OFFSET_HOURS)),
        checkpoint_interval_days=_positive_int(
            ledger.get("checkpoint_interval_days", Defaults.CHECKPOINT_INTERVAL_DAYS),
            "ledger.checkpoint_interval_days",
        ),
        due_date_grace_days=_positive_int(
            payables.get("due_date_grace_days", Defaults.DUE_DATE_GRACE_DAYS),
            "payables.due_date_grace_days",
        ),
        fx_min_difference=_decimal(
            ledger.get("fx_min_difference", Defaults.FX_MIN_DIFFERENCE),
            "ledger.fx_min_difference",
        ),
        db_path=db_path,
    )


class Settings:
    """애플리케이션 설정 (싱글턴 패턴)

    ledger.yaml을 로드하고 관련 설정을 제공
    """

    _instance: "Settings | None" = None
    _config: LedgerConfig | None = None

    def __new__(cls, config_path: Path | None = None) -> "Settings":
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __init__(self, config_path: Path | None = None) -> None:
        if self._config is None:
            self._config = load_config(config_path)

    @property
    def config(self) -> LedgerConfig:
        """로드된 Ledger 설정"""
        assert self._config is not None
        return self._config

    @property
    def db_path(self) -> Path:
        """Ledger DB 경로"""
        assert self._config is not None
        return self._config.db_path

    @classmethod
    def reset(cls) -> None:
        """싱글턴 인스턴스 초기화 (테스트용)"""
        cls._instance = None
        cls._config = None


def get_settings(config_path: Path | None = None) -> Settings:
    """Settings 인스턴스 반환

    Args:
        config_path: ledger.yaml 경로 (None이면 기본 경로 사용)

    Returns:
        Settings 싱글턴 인스턴스
    """
    return Settings(config_path)
