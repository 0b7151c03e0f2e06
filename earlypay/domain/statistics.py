"""Early payment analytics derived from the audit trail"""

from collections import Counter
from decimal import Decimal, ROUND_HALF_UP
from typing import Iterable

from earlypay.domain.models import CommitState, EarlyPaymentRecord, EarlyPaymentStatistics


def summarize(records: Iterable[EarlyPaymentRecord]) -> EarlyPaymentStatistics:
    """
    Aggregate completed early payments.

    Only `completed` records count, one per idempotency key, so replays and
    intermediate states never inflate the totals. The average discount rate is
    the mean of discount / original per payment, to four places.
    """
    completed = {}
    for record in records:
        if record.state == CommitState.COMPLETED:
            completed.setdefault(record.idempotency_key, record)

    payments = list(completed.values())
    rates = [
        Decimal(record.discount_cents) / Decimal(record.original_cents)
        for record in payments
        if record.original_cents > 0
    ]
    average_rate = sum(rates, Decimal("0")) / len(rates) if rates else Decimal("0")

    time_ranges = Counter(record.discount_tier for record in payments if record.discount_tier)
    # Ties go to the alphabetically first label so the answer is stable
    ranked = sorted(time_ranges.items(), key=lambda item: (-item[1], item[0]))

    return EarlyPaymentStatistics(
        total_early_payments=len(payments),
        total_savings_provided_cents=sum(record.discount_cents for record in payments),
        total_processing_fees_cents=sum(record.processing_fee_cents for record in payments),
        average_discount_rate=average_rate.quantize(Decimal("0.0001"), rounding=ROUND_HALF_UP),
        most_popular_time_range=ranked[0][0] if ranked else None,
        time_range_counts=dict(ranked),
    )
