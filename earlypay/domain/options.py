"""Early payment option generation and ranking"""

from datetime import date, datetime, timedelta
from itertools import groupby
from typing import List, Optional

from earlypay.domain import restrictions, schedule
from earlypay.domain.aggregation import combine, option_id, quote_installment
from earlypay.domain.models import (
    DiscountTier,
    EarlyPaymentOption,
    EarlyPaymentUsage,
    MerchantEarlyPaymentConfig,
    PaymentType,
    Transaction,
    TransactionStatus,
)
from earlypay.domain.savings import calculate
from earlypay.utils.date_utils import start_of_day_utc


def within_limits(config: MerchantEarlyPaymentConfig, amount_cents: int) -> bool:
    """Merchant's minimum/maximum early payment amount"""
    if amount_cents < config.minimum_early_payment_cents:
        return False
    if config.maximum_early_payment_cents is not None and amount_cents > config.maximum_early_payment_cents:
        return False
    return True


def full_option(
    transaction: Transaction,
    config: MerchantEarlyPaymentConfig,
    now: datetime,
) -> Optional[EarlyPaymentOption]:
    """
    Quote paying the whole outstanding balance at `now`.

    The tier is the most favorable one resolved over the open installments
    (nearest due date wins a tie) and is applied to the full balance.
    Returns None when nothing is outstanding.
    """
    open_installments = transaction.open_installments
    if not open_installments:
        return None

    best_tier: Optional[DiscountTier] = None
    available_until = start_of_day_utc(now.date() + timedelta(days=1))
    for installment in open_installments:
        tier = schedule.resolve(installment, config.discount_tiers, now)
        if tier is not None and schedule.more_favorable(tier, best_tier):
            best_tier = tier
            available_until = schedule.tier_available_until(installment, tier)

    savings = calculate(transaction.outstanding_cents, best_tier, config.fee_schedule, PaymentType.FULL)
    installment_ids = tuple(inst.installment_id for inst in open_installments)
    return EarlyPaymentOption(
        option_id=option_id(transaction.transaction_id, PaymentType.FULL, installment_ids),
        transaction_id=transaction.transaction_id,
        payment_type=PaymentType.FULL,
        original_cents=savings.amount_cents,
        discount_tier=best_tier,
        discount_cents=savings.discount_cents,
        processing_fee_cents=savings.processing_fee_cents,
        final_cents=savings.final_cents,
        net_savings_cents=savings.net_savings_cents,
        available_until=available_until,
        installment_ids=installment_ids,
    )


def partial_candidates(
    transaction: Transaction,
    config: MerchantEarlyPaymentConfig,
    now: datetime,
) -> List[EarlyPaymentOption]:
    """
    One partial option per maximal contiguous run of open installments
    sharing the same resolved tier.

    Runs without a tier earn nothing and runs covering every open
    installment duplicate the full option, so both are skipped.
    """
    open_installments = transaction.open_installments
    quotes = [quote_installment(inst, config.discount_tiers, now) for inst in open_installments]

    candidates = []
    for tier, run in groupby(quotes, key=lambda quote: quote.discount_tier):
        lines = list(run)
        if tier is None or len(lines) == len(open_installments):
            continue
        candidates.append(combine(transaction, lines, config.fee_schedule))
    return candidates


def rank(options: List[EarlyPaymentOption]) -> List[EarlyPaymentOption]:
    """
    Order options best-first.

    Net savings descending; ties go to the option expiring soonest so it is
    seen before it lapses, then full before partial, then earliest due date.
    """
    return sorted(
        options,
        key=lambda opt: (
            -opt.net_savings_cents,
            opt.available_until,
            0 if opt.payment_type == PaymentType.FULL else 1,
            opt.lines[0].due_date if opt.lines else date.min,
            opt.option_id,
        ),
    )


def generate(
    transaction: Transaction,
    config: MerchantEarlyPaymentConfig,
    now: datetime,
    usage: EarlyPaymentUsage | None = None,
) -> List[EarlyPaymentOption]:
    """
    Main entry point: ranked early payment options for a transaction.

    Deterministic for identical inputs. Options without any discount are not
    offered, so a transaction with no resolvable tier yields an empty list.
    Merchant restrictions that block the transaction today (blackout date,
    usage limits) also yield an empty list.
    """
    if not config.enabled or transaction.status != TransactionStatus.ACTIVE:
        return []
    if restrictions.blocked_reason(config.restrictions, now, usage or EarlyPaymentUsage()) is not None:
        return []

    options: List[EarlyPaymentOption] = []
    full = full_option(transaction, config, now)
    if full is not None and full.discount_cents > 0:
        options.append(full)

    if config.allow_partial_payments:
        options.extend(opt for opt in partial_candidates(transaction, config, now) if opt.discount_cents > 0)

    return rank([
        opt for opt in options
        if within_limits(config, opt.original_cents)
        and restrictions.meets_minimum_days(config.restrictions, transaction, opt, now)
    ])
