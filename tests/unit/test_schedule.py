"""Unit tests for discount tier resolution"""

import pytest
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from earlypay.domain.models import DiscountTier, Installment
from earlypay.domain.schedule import (
    default_discount_tiers,
    find_overlaps,
    more_favorable,
    resolve,
    tier_available_until,
    validate_tiers,
)


def _installment(now: datetime, days: int, amount_cents: int = 25_000) -> Installment:
    return Installment(
        installment_id=f"inst_{days}",
        transaction_id="txn_1",
        due_date=now.date() + timedelta(days=days),
        amount_cents=amount_cents,
    )


def test_time_range_labels_map_to_half_open_windows():
    """Test "0-7days" covers 0..7 inclusive and "31+days" is unbounded"""
    week = DiscountTier.from_time_range("0-7days", "0.02")
    assert (week.window_start_days, week.window_end_days) == (0, 8)
    assert week.contains(7)
    assert not week.contains(8)
    assert week.time_range == "0-7days"

    open_ended = DiscountTier.from_time_range("31+days", "0.005")
    assert open_ended.window_end_days is None
    assert open_ended.contains(400)
    assert open_ended.time_range == "31+days"


def test_time_range_rejects_unknown_label():
    with pytest.raises(ValueError):
        DiscountTier.from_time_range("next week", "0.02")


def test_resolve_picks_tier_containing_days_early(now, tiered_config):
    """Test 10 days early falls in the 8-14 day tier"""
    tier = resolve(_installment(now, 10), tiered_config.discount_tiers, now)

    assert tier is not None
    assert tier.time_range == "8-14days"
    assert tier.discount_rate == Decimal("0.015")


def test_resolve_on_or_after_due_date_returns_none(now, tiered_config):
    """Test paying on the due date or later is not early"""
    assert resolve(_installment(now, 0), tiered_config.discount_tiers, now) is None
    assert resolve(_installment(now, -3), tiered_config.discount_tiers, now) is None


def test_resolve_outside_every_window_returns_none(now, tiered_config):
    assert resolve(_installment(now, 45), tiered_config.discount_tiers, now) is None


def test_resolve_respects_minimum_amount(now, seven_day_tier):
    """Test installment below the tier's $50 minimum gets no tier"""
    assert resolve(_installment(now, 3, amount_cents=4_999), [seven_day_tier], now) is None
    assert resolve(_installment(now, 3, amount_cents=5_000), [seven_day_tier], now) == seven_day_tier


def test_resolve_overlapping_tiers_smallest_start_wins(now):
    """Test overlap is tolerated deterministically rather than failing"""
    wide = DiscountTier.from_time_range("0-30days", "0.01")
    narrow = DiscountTier.from_time_range("5-10days", "0.03")

    tier = resolve(_installment(now, 7), [narrow, wide], now)

    assert tier == wide


def test_tier_available_until_is_midnight_utc_before_lapse(now):
    """Test the 8-14 day tier lapses when fewer than 8 days remain"""
    installment = _installment(now, 10)
    tier = DiscountTier.from_time_range("8-14days", "0.015")

    until = tier_available_until(installment, tier)

    assert until == datetime.combine(installment.due_date - timedelta(days=7), datetime.min.time(), tzinfo=timezone.utc)
    assert until > now


def test_tier_available_until_zero_start_runs_to_due_date(now, seven_day_tier):
    installment = _installment(now, 3)

    until = tier_available_until(installment, seven_day_tier)

    assert until.date() == installment.due_date
    assert until.tzinfo == timezone.utc


def test_default_tiers_are_valid():
    assert validate_tiers(default_discount_tiers()) == []


def test_validate_tiers_reports_problems():
    tiers = [
        DiscountTier.from_time_range("0-10days", "0.02"),
        DiscountTier.from_time_range("5-20days", "1.5"),
        DiscountTier(window_start_days=30, window_end_days=30, discount_rate=Decimal("0.01")),
    ]

    errors = validate_tiers(tiers)

    assert any("rate must be between 0 and 1" in e for e in errors)
    assert any("overlap" in e for e in errors)
    assert any("is empty" in e for e in errors)


def test_validate_tiers_requires_at_least_one():
    assert validate_tiers([]) == ["At least one discount tier must be configured"]


def test_find_overlaps_with_open_ended_tier():
    tiers = [
        DiscountTier.from_time_range("31+days", "0.005"),
        DiscountTier.from_time_range("40-50days", "0.01"),
        DiscountTier.from_time_range("0-7days", "0.02"),
    ]

    overlaps = find_overlaps(tiers)

    assert len(overlaps) == 1
    assert {overlaps[0][0].time_range, overlaps[0][1].time_range} == {"31+days", "40-50days"}


def test_more_favorable_prefers_rate_then_cap():
    low = DiscountTier.from_time_range("0-7days", "0.01")
    high = DiscountTier.from_time_range("8-14days", "0.02", maximum_discount_cents=1_000)
    high_uncapped = DiscountTier.from_time_range("15-30days", "0.02")

    assert more_favorable(low, None)
    assert more_favorable(high, low)
    assert not more_favorable(low, high)
    assert more_favorable(high_uncapped, high)
