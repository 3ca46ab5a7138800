"""
운영사 지급 만기일 정책

상품 유형별 만기일 기준(anchor)과 오프셋:
- AEREO: 생성일 + 10일
- HOTEL: 체크인 - 30일
- PAQUETE / CRUCERO / OTRO: 출발일

기준일이 없으면 출발일, 출발일도 없으면 생성일 + grace_days.
calculate_due_date는 순수 함수 (현재 시각을 참조하지 않음).
"""

from dataclasses import dataclass
from datetime import date, datetime, timedelta

from core.constants import Defaults
from core.ledger.errors import InvalidProductTypeForDueDate
from core.types import ProductType
from core.utils.timezone import parse_date


@dataclass(frozen=True)
class DueDatePolicy:
    """만기일 정책 항목

    anchor: "created" | "checkin" | "departure"
    offset_days: 기준일 대비 일수 (음수 = 이전)
    """

    anchor: str
    offset_days: int = 0


DUE_DATE_POLICIES: dict[ProductType, DueDatePolicy] = {
    ProductType.AEREO: DueDatePolicy("created", 10),
    ProductType.HOTEL: DueDatePolicy("checkin", -30),
    ProductType.PAQUETE: DueDatePolicy("departure"),
    ProductType.CRUCERO: DueDatePolicy("departure"),
    ProductType.OTRO: DueDatePolicy("departure"),
}


def parse_product_type(product_type: ProductType | str | None) -> ProductType:
    """상품 유형 파싱 (None → OTRO)

    Raises:
        InvalidProductTypeForDueDate: 정책이 없는 유형
    """
    if product_type is None:
        return ProductType.OTRO
    if isinstance(product_type, ProductType):
        return product_type
    try:
        return ProductType(str(product_type).strip().upper())
    except ValueError as e:
        raise InvalidProductTypeForDueDate(product_type) from e


def calculate_due_date(
    product_type: ProductType | str | None,
    created_date: date | datetime | str,
    checkin_date: date | datetime | str | None = None,
    departure_date: date | datetime | str | None = None,
    grace_days: int = Defaults.DUE_DATE_GRACE_DAYS,
) -> date:
    """운영사 지급 만기일 계산

    Example:
        >>> calculate_due_date("AEREO", date(2024, 1, 5))
        datetime.date(2024, 1, 15)
        >>> calculate_due_date("HOTEL", date(2024, 1, 5), checkin_date=date(2024, 3, 1))
        datetime.date(2024, 1, 31)
        >>> calculate_due_date("HOTEL", date(2024, 1, 5))
        datetime.date(2024, 2, 4)

    Raises:
        InvalidProductTypeForDueDate: 알 수 없는 상품 유형
    """
    policy = DUE_DATE_POLICIES[parse_product_type(product_type)]

    created = parse_date(created_date)
    anchors = {
        "created": created,
        "checkin": parse_date(checkin_date) if checkin_date else None,
        "departure": parse_date(departure_date) if departure_date else None,
    }

    anchor = anchors[policy.anchor]
    if anchor is not None:
        return anchor + timedelta(days=policy.offset_days)

    if anchors["departure"] is not None:
        return anchors["departure"]

    return created + timedelta(days=grace_days)
