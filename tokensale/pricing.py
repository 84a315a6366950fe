"""
pricing.py - Supply-Tiered Sale Price

The unit price of the sale token depends only on how much of the public
supply is left at the moment of purchase. Thresholds are expressed in whole
sale-token units and compared against the current remaining supply:

    remaining <= 3,000,000   -> 0.12
    remaining <= 6,000,000   -> 0.11
    remaining <= 9,000,000   -> 0.10
    remaining <= 12,000,000  -> 0.095
    otherwise                -> 0.09

Provides:
- calculate_price: exact Decimal price used for settlement
- price_curve: vectorized float prices for analytics and plotting
"""

import numpy as np
from decimal import Decimal
from typing import Tuple, Union


# Type alias for scalar or array inputs
Numeric = Union[float, np.ndarray]

# (threshold, price) pairs, thresholds ascending
PriceTiers = Tuple[Tuple[Decimal, Decimal], ...]

DEFAULT_PRICE_TIERS: PriceTiers = (
    (Decimal("3000000"), Decimal("0.12")),
    (Decimal("6000000"), Decimal("0.11")),
    (Decimal("9000000"), Decimal("0.10")),
    (Decimal("12000000"), Decimal("0.095")),
)

# Price once remaining supply is above every threshold
BASE_PRICE = Decimal("0.09")


def validate_price_tiers(tiers: PriceTiers, base_price: Decimal) -> None:
    """
    Check a tier table before it is used.

    Raises:
        ValueError: If thresholds are not strictly ascending, or any price is
                    not positive
    """
    previous = None
    for threshold, price in tiers:
        if price <= 0:
            raise ValueError(f"tier price must be positive, got {price}")
        if previous is not None and threshold <= previous:
            raise ValueError(
                f"tier thresholds must be strictly ascending, got {threshold} after {previous}"
            )
        previous = threshold
    if base_price <= 0:
        raise ValueError(f"base_price must be positive, got {base_price}")


def calculate_price(
    remaining_supply: Decimal,
    tiers: PriceTiers = DEFAULT_PRICE_TIERS,
    base_price: Decimal = BASE_PRICE,
) -> Decimal:
    """
    Unit price of the sale token for the given remaining supply.

    Pure and total: every non-negative supply maps to a price.

    Example:
        >>> calculate_price(Decimal("2500000"))
        Decimal('0.12')
        >>> calculate_price(Decimal("20000000"))
        Decimal('0.09')
    """
    if not isinstance(remaining_supply, Decimal):
        remaining_supply = Decimal(str(remaining_supply))
    for threshold, price in tiers:
        if remaining_supply <= threshold:
            return price
    return base_price


def price_curve(
    remaining: Numeric,
    tiers: PriceTiers = DEFAULT_PRICE_TIERS,
    base_price: Decimal = BASE_PRICE,
) -> Numeric:
    """
    Vectorized tier lookup over float supplies.

    Accepts a scalar or any array-like of remaining supplies and returns
    float prices of the same shape. Settlement never uses this; it is for
    plotting price paths and what-if analysis over many supply levels.

    Raises:
        ValueError: If any supply is negative or not finite
    """
    r = np.asarray(remaining, dtype=float)
    if not np.all(np.isfinite(r)) or np.any(r < 0):
        raise ValueError("remaining supply must be non-negative and finite")

    flat = np.atleast_1d(r)
    prices = np.full(flat.shape, float(base_price))
    # walk from the widest tier down so narrower tiers overwrite
    for threshold, price in reversed(tiers):
        prices = np.where(flat <= float(threshold), float(price), prices)

    if r.ndim == 0:
        return float(prices[0])
    return prices.reshape(r.shape)
