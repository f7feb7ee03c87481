"""Online discount and deposit arithmetic, in whole currency units."""
from __future__ import annotations
from decimal import Decimal, ROUND_HALF_UP
from typing import Iterable
from .config import DEPOSIT_PCT, ONLINE_DISCOUNT_PCT
from .errors import BookingValidationError
from .models import PriceBreakdown

_HUNDRED = Decimal(100)


def _round_half_up(value: Decimal) -> int:
    return int(value.quantize(Decimal(1), rounding=ROUND_HALF_UP))


def price_booking(
    prices: Iterable[int],
    discount_pct: int = ONLINE_DISCOUNT_PCT,
    deposit_pct: int = DEPOSIT_PCT,
) -> PriceBreakdown:
    """Total, discounted total and deposit for the selected services.

    Rounding happens only at the discounted total and at the deposit, half up:
    500000 -> 450000 -> 225000.
    """
    prices = list(prices)
    if any(p < 0 for p in prices):
        raise BookingValidationError("price", "Service prices must not be negative")
    if not 0 <= discount_pct <= 100 or not 0 <= deposit_pct <= 100:
        raise BookingValidationError("discount", "Percentages must be between 0 and 100")

    total = sum(prices)
    discounted = _round_half_up(Decimal(total) * (_HUNDRED - discount_pct) / _HUNDRED)
    deposit = _round_half_up(Decimal(discounted) * deposit_pct / _HUNDRED)
    return PriceBreakdown(total=total, discounted=discounted, deposit=deposit)


def format_price(amount: int) -> str:
    """500000 -> '500.000đ'"""
    return f"{amount:,}".replace(",", ".") + "đ"
