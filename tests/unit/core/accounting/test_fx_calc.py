"""
core/ledger/fx.py compute_fx_difference 테스트
"""

from decimal import Decimal

import pytest

from core.ledger.errors import CurrencyMismatchWithoutRate
from core.ledger.fx import compute_fx_difference
from core.types import MovementType


class TestComputeFXDifference:
    """compute_fx_difference 함수 테스트"""

    def test_gain(self) -> None:
        """USD 100 판매, ARS 110000 결제 (환율 1000) → 결제 110 USD → FX_GAIN 10"""
        result = compute_fx_difference("100", "USD", None, "110000", "ARS", "1000")

        assert result.fx_type == MovementType.FX_GAIN
        assert result.amount == Decimal("10")
        assert result.sale_base == Decimal("100")
        assert result.payment_base == Decimal("110")

    def test_loss(self) -> None:
        """ARS 100000 판매 (환율 1000 → 100 USD), USD 80 결제 → FX_LOSS 20"""
        result = compute_fx_difference("100000", "ARS", "1000", "100000", "ARS", "1250")

        # 같은 통화는 환차 대상 아님
        assert result.fx_type is None

        result = compute_fx_difference("100000", "ARS", "1000", "80", "USD", None)
        assert result.fx_type == MovementType.FX_LOSS
        assert result.amount == Decimal("20")

    def test_below_threshold(self) -> None:
        result = compute_fx_difference(
            "100", "USD", None, "100005", "ARS", "1000", min_difference=Decimal("0.01")
        )

        assert result.payment_base == Decimal("100.005")
        assert not result.is_significant
        assert result.amount == Decimal("0")

    def test_threshold_inclusive(self) -> None:
        result = compute_fx_difference(
            "100", "USD", None, "100010", "ARS", "1000", min_difference=Decimal("0.01")
        )

        assert result.fx_type == MovementType.FX_GAIN
        assert result.amount == Decimal("0.01")

    def test_missing_rate(self) -> None:
        with pytest.raises(CurrencyMismatchWithoutRate):
            compute_fx_difference("100", "USD", None, "110000", "ARS", None)
