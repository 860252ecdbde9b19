"""
Money arithmetic for task pricing.

All amounts that reach the payment processor are integer cents. Decimal
inputs are converted with round-half-up, and the platform fee is carved
out of the total so that fee and payee share always sum to the total.
"""

from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import NamedTuple

EMERGENCY_CATEGORY = "emergency"

TASK_CATEGORIES: frozenset[str] = frozenset(
    {
        "junk_removal",
        "moving_help",
        "cleaning",
        "handyman",
        "plumbing",
        "electrical",
        "auto_towing",
        "furniture_assembly",
        "delivery_errands",
        "yard_work",
        "painting",
        "repairs_general",
        "tech_computer",
        EMERGENCY_CATEGORY,
        "other",
    }
)

_CENT = Decimal("1")

# Largest amount accepted for any single charge or price
MAX_AMOUNT = Decimal("1000000")
MAX_AMOUNT_LABEL = f"${MAX_AMOUNT:,.2f}"


class FeeSplit(NamedTuple):
    """Platform fee and payee share for one charge, in cents."""

    amount_cents: int
    platform_fee_cents: int
    payee_amount_cents: int


def parse_amount(value: object) -> Decimal | None:
    """
    Parse a JSON number or numeric string into a Decimal.

    Returns None for non-numeric input and for magnitudes above MAX_AMOUNT,
    so every accepted amount converts to cents without overflow.
    """
    if isinstance(value, bool) or value is None:
        return None
    if not isinstance(value, (int, float, str)):
        return None
    try:
        amount = Decimal(str(value))
    except InvalidOperation:
        return None
    if not amount.is_finite() or abs(amount) > MAX_AMOUNT:
        return None
    return amount


def to_cents(amount: Decimal) -> int:
    """Convert a currency amount to integer cents, rounding half up."""
    return int((amount * 100).quantize(_CENT, rounding=ROUND_HALF_UP))


def from_cents(amount_cents: int) -> float:
    """Render cents as a currency amount for JSON responses."""
    return float(Decimal(amount_cents) / 100)


def split_fee(amount_cents: int, fee_percent: Decimal) -> FeeSplit:
    """
    Split a charge into platform fee and payee share.

    fee = round_half_up(amount * fee_percent / 100); the payee share is the
    remainder and is never rounded on its own.
    """
    if amount_cents <= 0:
        msg = f"amount_cents must be positive, got {amount_cents}"
        raise ValueError(msg)
    fee = int((Decimal(amount_cents) * fee_percent / 100).quantize(_CENT, rounding=ROUND_HALF_UP))
    return FeeSplit(
        amount_cents=amount_cents,
        platform_fee_cents=fee,
        payee_amount_cents=amount_cents - fee,
    )


def minimum_price_cents(category: str, min_price: Decimal, emergency_min_price: Decimal) -> int:
    """Return the inclusive minimum task price for a category, in cents."""
    if category == EMERGENCY_CATEGORY:
        return to_cents(emergency_min_price)
    return to_cents(min_price)
