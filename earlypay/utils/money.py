"""Fixed-point money helpers: amounts are integer cents, rates are Decimal"""

from decimal import Decimal, ROUND_HALF_UP


def apply_rate(amount_cents: int, rate: Decimal) -> int:
    """Apply a fractional rate to a cent amount, rounding half-up to a whole cent"""
    return int((Decimal(amount_cents) * rate).quantize(Decimal("1"), rounding=ROUND_HALF_UP))
