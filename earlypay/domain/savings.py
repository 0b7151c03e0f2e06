"""Savings calculation - discount, processing fee and net savings for a payment"""

from typing import Optional

from earlypay.domain.models import DiscountTier, FeeSchedule, PaymentType, SavingsBreakdown
from earlypay.utils.money import apply_rate


def discount_for(amount_cents: int, tier: Optional[DiscountTier]) -> int:
    """
    Discount earned on `amount_cents` under `tier`.

    discount = min(amount × rate rounded half-up, tier cap, amount)
    """
    if tier is None or amount_cents <= 0:
        return 0
    discount = apply_rate(amount_cents, tier.discount_rate)
    if tier.maximum_discount_cents is not None:
        discount = min(discount, tier.maximum_discount_cents)
    return max(0, min(discount, amount_cents))


def calculate(
    amount_cents: int,
    tier: Optional[DiscountTier],
    fee_schedule: FeeSchedule,
    payment_type: PaymentType = PaymentType.FULL,
) -> SavingsBreakdown:
    """
    Compute the savings breakdown for paying `amount_cents` early.

    All arithmetic is in integer cents so discount + final == amount exactly.
    Net savings go negative when the fee outweighs the discount.
    """
    discount = discount_for(amount_cents, tier)
    fee = fee_schedule.fee(payment_type, amount_cents)
    return SavingsBreakdown(
        amount_cents=amount_cents,
        discount_cents=discount,
        processing_fee_cents=fee,
        final_cents=amount_cents - discount,
        net_savings_cents=discount - fee,
    )


def is_beneficial(discount_cents: int, amount_cents: int) -> bool:
    """Worth highlighting when the discount is at least $1 or 0.5% of the amount, whichever is larger"""
    minimum_benefit = max(100, (amount_cents + 199) // 200)
    return discount_cents >= minimum_benefit
