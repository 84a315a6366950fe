"""
Tests for pricing.py - tiered sale price

Tests:
- Tier boundaries (inclusive upper thresholds)
- Monotonic price as supply is consumed
- price_curve vectorization over numpy arrays
"""

import numpy as np
import pytest
from decimal import Decimal
from hypothesis import given, settings
from hypothesis import strategies as st

from tokensale import calculate_price, price_curve, DEFAULT_PRICE_TIERS, BASE_PRICE
from tokensale.pricing import validate_price_tiers


class TestCalculatePrice:

    @pytest.mark.parametrize("remaining,expected", [
        (Decimal("0"), Decimal("0.12")),
        (Decimal("2500000"), Decimal("0.12")),
        (Decimal("3000000"), Decimal("0.12")),
        (Decimal("3000000.000001"), Decimal("0.11")),
        (Decimal("6000000"), Decimal("0.11")),
        (Decimal("9000000"), Decimal("0.10")),
        (Decimal("10000000"), Decimal("0.095")),
        (Decimal("12000000"), Decimal("0.095")),
        (Decimal("12000000.000001"), Decimal("0.09")),
        (Decimal("20000000"), Decimal("0.09")),
    ])
    def test_tiers(self, remaining, expected):
        assert calculate_price(remaining) == expected

    def test_accepts_int(self):
        assert calculate_price(15_000_000) == BASE_PRICE

    def test_custom_tiers(self):
        tiers = ((Decimal("100"), Decimal("2")),)
        assert calculate_price(Decimal("50"), tiers, Decimal("1")) == Decimal("2")
        assert calculate_price(Decimal("150"), tiers, Decimal("1")) == Decimal("1")

    @given(
        st.decimals(min_value=0, max_value=30_000_000, places=6),
        st.decimals(min_value=0, max_value=30_000_000, places=6),
    )
    @settings(max_examples=200)
    def test_price_never_falls_as_supply_shrinks(self, a, b):
        low, high = sorted((a, b))
        assert calculate_price(low) >= calculate_price(high)


class TestValidatePriceTiers:

    def test_default_tiers_valid(self):
        validate_price_tiers(DEFAULT_PRICE_TIERS, BASE_PRICE)

    def test_unsorted_thresholds(self):
        with pytest.raises(ValueError, match="ascending"):
            validate_price_tiers(((Decimal("5"), Decimal("1")), (Decimal("3"), Decimal("1"))), Decimal("1"))

    def test_non_positive_price(self):
        with pytest.raises(ValueError, match="positive"):
            validate_price_tiers(((Decimal("5"), Decimal("0")),), Decimal("1"))
        with pytest.raises(ValueError, match="positive"):
            validate_price_tiers(DEFAULT_PRICE_TIERS, Decimal("0"))


class TestVectorizedOperations:

    def test_scalar_returns_float(self):
        assert price_curve(2_500_000) == pytest.approx(0.12)
        assert isinstance(price_curve(2_500_000), float)

    def test_array_matches_scalar(self):
        supplies = np.array([0, 2_500_000, 5_000_000, 8_000_000, 10_000_000, 15_000_000])
        prices = price_curve(supplies)
        assert prices.shape == supplies.shape
        expected = [float(calculate_price(Decimal(int(s)))) for s in supplies]
        np.testing.assert_allclose(prices, expected)

    def test_preserves_shape(self):
        grid = np.linspace(0, 15_000_000, 12).reshape(3, 4)
        assert price_curve(grid).shape == (3, 4)

    def test_rejects_negative(self):
        with pytest.raises(ValueError):
            price_curve(np.array([1.0, -1.0]))

    def test_rejects_nan(self):
        with pytest.raises(ValueError):
            price_curve(float("nan"))
