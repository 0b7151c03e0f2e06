"""Unit tests for early payment option generation"""

from dataclasses import replace
from datetime import timedelta
from earlypay.domain.models import InstallmentStatus, MerchantEarlyPaymentConfig, PaymentType, TransactionStatus
from earlypay.domain.options import full_option, generate, rank


def test_generate_full_and_partial_options_ranked(make_transaction, tiered_config, now):
    """Test full payment (best tier on whole balance) ranks above single-tier partial runs"""
    transaction = make_transaction(amounts=(10_000, 10_000, 10_000, 10_000), due_in_days=(3, 10, 20, 45))

    options = generate(transaction, tiered_config, now)

    assert [opt.payment_type for opt in options] == [PaymentType.FULL] + [PaymentType.PARTIAL] * 3
    assert options[0].original_cents == 40_000
    assert options[0].discount_cents == 800
    assert [opt.net_savings_cents for opt in options[1:]] == [200, 150, 100]
    assert [opt.net_savings_cents for opt in options] == sorted((opt.net_savings_cents for opt in options), reverse=True)


def test_generate_single_installment_two_percent(make_transaction, seven_day_tier, now):
    """Test $250.00 due in 3 days under a 2% tier quotes $5.00 off"""
    config = MerchantEarlyPaymentConfig(merchant_id="merchant_1", discount_tiers=(seven_day_tier,))
    transaction = make_transaction(amounts=(25_000,), due_in_days=(3,))

    options = generate(transaction, config, now)

    assert len(options) == 1
    assert options[0].discount_cents == 500
    assert options[0].final_cents == 24_500
    assert options[0].discount_percentage == 2


def test_generate_groups_contiguous_installments_sharing_a_tier(make_transaction, tiered_config, now):
    transaction = make_transaction(amounts=(10_000, 10_000, 10_000), due_in_days=(2, 4, 10))

    options = generate(transaction, tiered_config, now)
    partial = [opt for opt in options if opt.payment_type == PaymentType.PARTIAL]

    assert [len(opt.installment_ids) for opt in partial] == [2, 1]
    assert partial[0].discount_cents == 400


def test_no_option_expires_in_the_past(make_transaction, tiered_config, now):
    transaction = make_transaction(amounts=(10_000, 10_000, 10_000), due_in_days=(1, 9, 16))

    options = generate(transaction, tiered_config, now)

    assert options
    assert all(opt.available_until > now for opt in options)


def test_due_today_or_overdue_yields_no_options(make_transaction, tiered_config, now):
    transaction = make_transaction(amounts=(10_000, 10_000), due_in_days=(0, -5))

    assert generate(transaction, tiered_config, now) == []


def test_generate_skips_settled_installments(make_transaction, tiered_config, now):
    transaction = make_transaction(amounts=(10_000, 20_000), due_in_days=(3, 10))
    transaction.installments[0].status = InstallmentStatus.COMPLETED

    full = full_option(transaction, tiered_config, now)

    assert full.original_cents == 20_000
    assert full.installment_ids == (transaction.installments[1].installment_id,)


def test_generate_disabled_merchant(make_transaction, tiered_config, now):
    transaction = make_transaction()

    assert generate(transaction, replace(tiered_config, enabled=False), now) == []


def test_generate_closed_transaction(make_transaction, tiered_config, now):
    transaction = make_transaction()
    transaction.status = TransactionStatus.COMPLETED

    assert generate(transaction, tiered_config, now) == []


def test_generate_without_partial_payments(make_transaction, tiered_config, now):
    transaction = make_transaction(amounts=(10_000, 10_000), due_in_days=(3, 10))

    options = generate(transaction, replace(tiered_config, allow_partial_payments=False), now)

    assert [opt.payment_type for opt in options] == [PaymentType.FULL]


def test_generate_applies_merchant_amount_limits(make_transaction, tiered_config, now):
    transaction = make_transaction(amounts=(10_000, 10_000), due_in_days=(3, 10))

    options = generate(transaction, replace(tiered_config, maximum_early_payment_cents=15_000), now)

    assert all(opt.original_cents <= 15_000 for opt in options)
    assert all(opt.payment_type == PaymentType.PARTIAL for opt in options)


def test_generate_is_deterministic(make_transaction, tiered_config, now):
    transaction = make_transaction(amounts=(10_000, 10_000, 10_000, 10_000), due_in_days=(3, 10, 20, 45))

    assert generate(transaction, tiered_config, now) == generate(transaction, tiered_config, now)


def test_rank_ties_prefer_soonest_expiry(make_transaction, tiered_config, now):
    transaction = make_transaction(amounts=(10_000,), due_in_days=(3,))
    option = full_option(transaction, tiered_config, now)
    later = replace(option, option_id="later", available_until=option.available_until + timedelta(days=2))
    partial = replace(option, option_id="partial", payment_type=PaymentType.PARTIAL)

    ranked = rank([later, partial, option])

    assert [opt.option_id for opt in ranked] == [option.option_id, "partial", "later"]
