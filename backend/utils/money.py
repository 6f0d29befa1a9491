# backend/utils/money.py
from datetime import datetime, timezone
from decimal import Decimal, ROUND_HALF_UP

CENT = Decimal("0.01")


def to_money(value) -> Decimal:
    """Normalise any numeric input to a 2-place Decimal (half-up)."""
    if value is None:
        return Decimal("0.00")
    if not isinstance(value, Decimal):
        value = Decimal(str(value))
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


def to_minor_units(amount) -> int:
    # 12.34 -> 1234
    return int((to_money(amount) * 100).to_integral_value(rounding=ROUND_HALF_UP))


def from_minor_units(cents: int) -> Decimal:
    return to_money(Decimal(cents) / 100)


def utcnow() -> datetime:
    # Naive UTC, the form every DateTime column in this app stores
    return datetime.now(timezone.utc).replace(tzinfo=None)
