"""Discount schedule resolution - which tier applies to an installment today"""

import logging
from datetime import datetime, timedelta
from decimal import Decimal
from typing import List, Optional, Sequence, Tuple

from earlypay.domain.models import DiscountTier, Installment
from earlypay.infrastructure.observability.metrics import config_warning_counter
from earlypay.utils.date_utils import days_between, start_of_day_utc

logger = logging.getLogger(__name__)


def default_discount_tiers() -> Tuple[DiscountTier, ...]:
    """Platform default tier set offered to merchants without custom rules"""
    return (
        DiscountTier.from_time_range("0-7days", "0.02", 1_000, 5_000, "Pay within 7 days for 2% discount"),
        DiscountTier.from_time_range("8-14days", "0.015", 1_000, 3_000, "Pay within 14 days for 1.5% discount"),
        DiscountTier.from_time_range("15-30days", "0.01", 1_000, 2_000, "Pay within 30 days for 1% discount"),
    )


def find_overlaps(tiers: Sequence[DiscountTier]) -> List[Tuple[DiscountTier, DiscountTier]]:
    """Return pairs of tiers whose day windows intersect"""
    ordered = sorted(tiers, key=lambda t: t.window_start_days)
    overlaps = []
    for i, first in enumerate(ordered):
        for second in ordered[i + 1:]:
            if first.window_end_days is None or second.window_start_days < first.window_end_days:
                overlaps.append((first, second))
    return overlaps


def validate_tiers(tiers: Sequence[DiscountTier]) -> List[str]:
    """
    Check a merchant's tier set for configuration mistakes.

    Returns human-readable problems; an empty list means the set is usable.
    """
    errors: List[str] = []
    if not tiers:
        errors.append("At least one discount tier must be configured")

    for index, tier in enumerate(tiers, start=1):
        if tier.discount_rate <= 0 or tier.discount_rate > 1:
            errors.append(f"Discount tier {index}: rate must be between 0 and 1")
        if tier.minimum_amount_cents < 0:
            errors.append(f"Discount tier {index}: minimum amount cannot be negative")
        if tier.maximum_discount_cents is not None and tier.maximum_discount_cents <= 0:
            errors.append(f"Discount tier {index}: maximum discount must be positive")
        if tier.window_end_days is not None and tier.window_end_days <= tier.window_start_days:
            errors.append(f"Discount tier {index}: window {tier.time_range} is empty")

    for first, second in find_overlaps(tiers):
        errors.append(f"Discount tiers {first.time_range} and {second.time_range} overlap")

    return errors


def resolve(installment: Installment, tiers: Sequence[DiscountTier], now: datetime) -> Optional[DiscountTier]:
    """
    Pick the discount tier for paying an installment at `now`.

    Rules:
    - Paying on or after the due date is not early: no tier
    - A tier matches when its window contains the days early and the
      installment meets its minimum amount
    - Overlapping matches are a configuration mistake; the tier with the
      smallest window start wins and a warning is emitted instead of failing
    """
    days_early = days_between(now, installment.due_date)
    if days_early <= 0:
        return None

    matches = [
        tier for tier in tiers
        if tier.contains(days_early) and tier.minimum_amount_cents <= installment.amount_cents
    ]
    if not matches:
        return None

    matches.sort(key=lambda t: (t.window_start_days, -t.discount_rate))
    if len(matches) > 1:
        config_warning_counter.labels(kind="overlapping_tiers").inc()
        logger.warning(
            "Overlapping discount tiers matched",
            extra={
                "installment_id": installment.installment_id,
                "days_early": days_early,
                "tiers": [t.time_range for t in matches],
                "selected": matches[0].time_range,
            },
        )
    return matches[0]


def tier_available_until(installment: Installment, tier: DiscountTier) -> datetime:
    """
    Instant at which `tier` stops applying to `installment`.

    Days early only shrink as time passes, so a tier lapses once fewer than
    max(window_start, 1) days remain before the due date.
    """
    last_eligible_days_early = max(tier.window_start_days, 1)
    return start_of_day_utc(installment.due_date - timedelta(days=last_eligible_days_early - 1))


def more_favorable(candidate: DiscountTier, current: Optional[DiscountTier]) -> bool:
    """Higher rate wins; equal rates prefer the larger cap"""
    if current is None:
        return True
    if candidate.discount_rate != current.discount_rate:
        return candidate.discount_rate > current.discount_rate
    return _cap(candidate) > _cap(current)


def _cap(tier: DiscountTier) -> Decimal:
    if tier.maximum_discount_cents is None:
        return Decimal("Infinity")
    return Decimal(tier.maximum_discount_cents)
