"""Unit tests for early payment statistics"""

from dataclasses import replace
from decimal import Decimal
from earlypay.domain.models import CommitState, EarlyPaymentRecord, PaymentStatus, PaymentType
from earlypay.domain.statistics import summarize


def _record(now, key, state=CommitState.COMPLETED, original=10_000, discount=200, fee=0, tier="0-7days"):
    return EarlyPaymentRecord(
        record_id=f"rec_{key}_{state.value}",
        idempotency_key=key,
        transaction_id="txn_1",
        payment_type=PaymentType.FULL,
        state=state,
        status=PaymentStatus.for_state(state),
        installment_ids=("txn_1_inst_1",),
        original_cents=original,
        discount_cents=discount,
        processing_fee_cents=fee,
        final_cents=original - discount,
        payment_method_ref="pm_card_visa",
        recorded_at=now,
        discount_tier=tier,
    )


def test_summarize_completed_payments(now):
    records = [
        _record(now, "a", state=CommitState.CAPTURING),
        _record(now, "a", fee=100),
        _record(now, "b", original=20_000, discount=300, tier="8-14days"),
        _record(now, "c", discount=200),
        _record(now, "d", state=CommitState.REJECTED, discount=0),
    ]

    stats = summarize(records)

    assert stats.total_early_payments == 3
    assert stats.total_savings_provided_cents == 700
    assert stats.total_processing_fees_cents == 100
    # (0.02 + 0.015 + 0.02) / 3
    assert stats.average_discount_rate == Decimal("0.0183")
    assert stats.most_popular_time_range == "0-7days"
    assert stats.time_range_counts == {"0-7days": 2, "8-14days": 1}


def test_summarize_counts_a_key_once(now):
    completed = _record(now, "a")

    stats = summarize([completed, replace(completed, record_id="rec_dup")])

    assert stats.total_early_payments == 1
    assert stats.total_savings_provided_cents == 200


def test_summarize_nothing(now):
    stats = summarize([])

    assert stats.total_early_payments == 0
    assert stats.average_discount_rate == Decimal("0")
    assert stats.most_popular_time_range is None
