"""
유틸리티 패키지

ID 생성, 타임존 처리 등 공통 유틸리티
"""

from core.utils.timezone import (
    ART,
    business_timezone,
    day_end_utc,
    day_start_utc,
    ensure_utc,
    iter_days,
    local_date,
    now_utc,
    parse_date,
    to_storage,
)

__all__ = [
    "ART",
    "business_timezone",
    "day_end_utc",
    "day_start_utc",
    "ensure_utc",
    "iter_days",
    "local_date",
    "now_utc",
    "parse_date",
    "to_storage",
]
