"""Partial selection aggregation - one combined quote for customer-chosen installments"""

from datetime import datetime, timedelta
from typing import Dict, List, Optional, Sequence

from earlypay.domain import schedule
from earlypay.domain.exceptions import SelectionError
from earlypay.domain.models import (
    DiscountTier,
    EarlyPaymentOption,
    FeeMode,
    FeeSchedule,
    Installment,
    InstallmentQuote,
    MerchantEarlyPaymentConfig,
    PaymentType,
    Transaction,
    TransactionStatus,
)
from earlypay.domain.savings import discount_for
from earlypay.utils.date_utils import start_of_day_utc


def quote_installment(installment: Installment, tiers: Sequence[DiscountTier], now: datetime) -> InstallmentQuote:
    """Resolve the tier and discount for a single installment paid at `now`"""
    tier = schedule.resolve(installment, tiers, now)
    if tier is not None:
        available_until = schedule.tier_available_until(installment, tier)
    else:
        # Nothing to lose by waiting; the quote is good for the rest of today
        available_until = start_of_day_utc(now.date() + timedelta(days=1))
    return InstallmentQuote(
        installment_id=installment.installment_id,
        due_date=installment.due_date,
        amount_cents=installment.amount_cents,
        discount_tier=tier,
        discount_cents=discount_for(installment.amount_cents, tier),
        available_until=available_until,
    )


def batch_fee(fee_schedule: FeeSchedule, lines: Sequence[InstallmentQuote]) -> int:
    """Processing fee for a partial batch, charged per the schedule's explicit fee mode"""
    if fee_schedule.partial_fee_mode == FeeMode.PER_INSTALLMENT:
        return sum(fee_schedule.fee(PaymentType.PARTIAL, line.amount_cents) for line in lines)
    return fee_schedule.fee(PaymentType.PARTIAL, sum(line.amount_cents for line in lines))


def option_id(transaction_id: str, payment_type: PaymentType, installment_ids: Sequence[str]) -> str:
    return f"{transaction_id}:{payment_type.value}:{'+'.join(installment_ids)}"


def combine(
    transaction: Transaction,
    lines: Sequence[InstallmentQuote],
    fee_schedule: FeeSchedule,
) -> EarlyPaymentOption:
    """Sum per-installment quotes into one partial option with a batch-level fee"""
    amount = sum(line.amount_cents for line in lines)
    discount = sum(line.discount_cents for line in lines)
    fee = batch_fee(fee_schedule, lines)

    tier: Optional[DiscountTier] = None
    for line in lines:
        if line.discount_tier is not None and schedule.more_favorable(line.discount_tier, tier):
            tier = line.discount_tier

    eligible = [line for line in lines if line.discount_tier is not None]
    available_until = min(line.available_until for line in (eligible or lines))
    installment_ids = tuple(line.installment_id for line in lines)

    return EarlyPaymentOption(
        option_id=option_id(transaction.transaction_id, PaymentType.PARTIAL, installment_ids),
        transaction_id=transaction.transaction_id,
        payment_type=PaymentType.PARTIAL,
        original_cents=amount,
        discount_tier=tier,
        discount_cents=discount,
        processing_fee_cents=fee,
        final_cents=amount - discount,
        net_savings_cents=discount - fee,
        available_until=available_until,
        installment_ids=installment_ids,
        lines=tuple(lines),
        fee_mode=fee_schedule.partial_fee_mode,
    )


def select_installments(transaction: Transaction, installment_ids: Sequence[str]) -> List[Installment]:
    """
    Validate a selection against the transaction's installment list.

    Raises:
        SelectionError: empty or duplicate selection, unknown or foreign id,
            installment not open for payment, or transaction closed
    """
    if not installment_ids:
        raise SelectionError("No installments selected")
    if len(set(installment_ids)) != len(installment_ids):
        raise SelectionError("Installment selected more than once")
    if transaction.status != TransactionStatus.ACTIVE:
        raise SelectionError(f"Transaction {transaction.transaction_id} is {transaction.status.value}")

    by_id: Dict[str, Installment] = {inst.installment_id: inst for inst in transaction.installments}
    selected = []
    for installment_id in installment_ids:
        installment = by_id.get(installment_id)
        if installment is None or installment.transaction_id != transaction.transaction_id:
            raise SelectionError(
                f"Installment {installment_id} does not belong to transaction {transaction.transaction_id}"
            )
        if not installment.is_open:
            raise SelectionError(f"Installment {installment_id} is {installment.status.value}")
        selected.append(installment)

    return sorted(selected, key=lambda inst: (inst.due_date, inst.installment_id))


def aggregate(
    transaction: Transaction,
    installment_ids: Sequence[str],
    config: MerchantEarlyPaymentConfig,
    now: datetime,
) -> EarlyPaymentOption:
    """
    Build the combined quote for paying the selected installments early.

    Aggregate discount is the sum of independently computed per-installment
    discounts; the processing fee is charged once per batch or once per
    installment depending on the merchant's fee mode.
    """
    selected = select_installments(transaction, installment_ids)
    lines = [quote_installment(inst, config.discount_tiers, now) for inst in selected]
    return combine(transaction, lines, config.fee_schedule)
