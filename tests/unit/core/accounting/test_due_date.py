"""
core/accounting/payables.py 테스트

상품 유형별 운영사 지급 만기일
"""

from datetime import date, datetime, timezone

import pytest

from core.accounting.payables import DUE_DATE_POLICIES, calculate_due_date
from core.ledger.errors import InvalidProductTypeForDueDate
from core.types import ProductType

CREATED = date(2024, 1, 5)


class TestCalculateDueDate:
    """calculate_due_date 함수 테스트"""

    def test_aereo(self) -> None:
        """항공: 생성일 + 10일"""
        assert calculate_due_date(ProductType.AEREO, CREATED) == date(2024, 1, 15)

    def test_aereo_ignores_departure(self) -> None:
        assert calculate_due_date("AEREO", CREATED, departure_date=date(2024, 6, 1)) == date(2024, 1, 15)

    def test_hotel(self) -> None:
        """호텔: 체크인 - 30일"""
        assert calculate_due_date("HOTEL", CREATED, checkin_date=date(2024, 3, 1)) == date(2024, 1, 31)

    def test_hotel_without_checkin_uses_departure(self) -> None:
        assert calculate_due_date("HOTEL", CREATED, departure_date=date(2024, 3, 1)) == date(2024, 3, 1)

    def test_hotel_without_dates(self) -> None:
        """기준일 없음 → 생성일 + grace_days"""
        assert calculate_due_date("HOTEL", CREATED) == date(2024, 2, 4)
        assert calculate_due_date("HOTEL", CREATED, grace_days=15) == date(2024, 1, 20)

    @pytest.mark.parametrize("product_type", ["PAQUETE", "CRUCERO", "OTRO"])
    def test_departure_based(self, product_type: str) -> None:
        assert calculate_due_date(product_type, CREATED, departure_date="2024-04-10") == date(2024, 4, 10)

    def test_none_is_otro(self) -> None:
        assert calculate_due_date(None, CREATED, departure_date=date(2024, 4, 10)) == date(2024, 4, 10)

    def test_lowercase_and_datetime_input(self) -> None:
        created = datetime(2024, 1, 5, 18, 30, tzinfo=timezone.utc)
        assert calculate_due_date("aereo", created) == date(2024, 1, 15)

    def test_unknown_type(self) -> None:
        with pytest.raises(InvalidProductTypeForDueDate):
            calculate_due_date("TREN", CREATED)

    def test_every_product_type_has_policy(self) -> None:
        assert set(DUE_DATE_POLICIES) == set(ProductType)
