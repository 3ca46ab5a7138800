"""
타임존 유틸리티

내부 저장: UTC | 영업일 기준: 아르헨티나 (UTC-3) 원칙 준수를 위한 헬퍼 함수
"""

from datetime import date, datetime, time, timedelta, timezone

from core.constants import Defaults

# 아르헨티나 타임존 (UTC-3, 서머타임 없음)
ART = timezone(timedelta(hours=Defaults.UTC_OFFSET_HOURS))


def business_timezone(utc_offset_hours: int = Defaults.UTC_OFFSET_HOURS) -> timezone:
    """영업일 계산용 고정 오프셋 타임존

    Args:
        utc_offset_hours: UTC 대비 시차 (기본 -3)
    """
    if utc_offset_hours == Defaults.UTC_OFFSET_HOURS:
        return ART
    return timezone(timedelta(hours=utc_offset_hours))


def now_utc() -> datetime:
    """현재 UTC 시간 반환 (타임존 명시)

    datetime.now(timezone.utc)의 축약형.

    Returns:
        현재 UTC 시간 (tzinfo=timezone.utc)
    """
    return datetime.now(timezone.utc)


def ensure_utc(dt: datetime) -> datetime:
    """datetime을 UTC로 변환 (naive면 UTC로 간주)"""
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def to_storage(dt: datetime) -> str:
    """DB 저장용 ISO 문자열

    항상 UTC + 마이크로초 고정 형식으로 저장하여 문자열 비교가 시간 순서와 일치.

    Example:
        >>> to_storage(datetime(2024, 1, 5, 12, 0, tzinfo=timezone.utc))
        '2024-01-05T12:00:00.000000+00:00'
    """
    return ensure_utc(dt).isoformat(timespec="microseconds")


def local_date(dt: datetime, tz: timezone = ART) -> date:
    """UTC datetime이 속한 영업일(로컬 날짜)

    Example:
        >>> local_date(datetime(2024, 1, 6, 2, 0, tzinfo=timezone.utc))
        datetime.date(2024, 1, 5)  # ART 기준 23:00
    """
    return ensure_utc(dt).astimezone(tz).date()


def day_start_utc(day: date, tz: timezone = ART) -> datetime:
    """로컬 날짜가 시작되는 시각 (00:00 로컬) 을 UTC로 반환"""
    return datetime.combine(day, time.min, tzinfo=tz).astimezone(timezone.utc)


def day_end_utc(day: date, tz: timezone = ART) -> datetime:
    """로컬 날짜가 끝나는 시각 (다음날 00:00 로컬) 을 UTC로 반환

    `created_at < day_end_utc(day)` 조건으로 해당 날짜까지의 이동을 조회.
    """
    next_midnight = datetime.combine(day + timedelta(days=1), time.min, tzinfo=tz)
    return next_midnight.astimezone(timezone.utc)


def parse_date(value: date | datetime | str) -> date:
    """date / datetime / 'YYYY-MM-DD' 문자열을 date로 변환"""
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    return date.fromisoformat(value[:10])


def iter_days(date_from: date, date_to: date):
    """date_from ~ date_to (포함) 날짜 순회"""
    current = date_from
    while current <= date_to:
        yield current
        current += timedelta(days=1)
