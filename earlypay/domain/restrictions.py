"""Merchant eligibility restrictions - blackout dates, usage limits, excluded payment methods"""

from datetime import datetime
from typing import Optional

from earlypay.domain.exceptions import RestrictionError
from earlypay.domain.models import (
    EarlyPaymentOption,
    EarlyPaymentRestrictions,
    EarlyPaymentUsage,
    MerchantEarlyPaymentConfig,
    Transaction,
)
from earlypay.domain.ports import InstallmentLedger
from earlypay.utils.date_utils import days_between, start_of_month_utc


def load_usage(
    ledger: InstallmentLedger,
    transaction: Transaction,
    config: MerchantEarlyPaymentConfig,
    now: datetime,
) -> EarlyPaymentUsage:
    """Count settled early payments, only when a limit needs the numbers"""
    restrictions = config.restrictions
    if not restrictions.counts_usage:
        return EarlyPaymentUsage()

    transaction_count = 0
    if restrictions.max_early_payments_per_transaction is not None:
        transaction_count = ledger.count_settlements(transaction_id=transaction.transaction_id)

    merchant_month_count = 0
    if restrictions.max_early_payments_per_month is not None:
        merchant_month_count = ledger.count_settlements(
            merchant_id=config.merchant_id,
            since=start_of_month_utc(now),
        )
    return EarlyPaymentUsage(transaction_count=transaction_count, merchant_month_count=merchant_month_count)


def blocked_reason(
    restrictions: EarlyPaymentRestrictions,
    now: datetime,
    usage: EarlyPaymentUsage,
) -> Optional[str]:
    """Why no early payment may be taken on this transaction today, or None"""
    if now.date() in restrictions.blackout_dates:
        return f"Early payment unavailable on blackout date {now.date().isoformat()}"

    per_transaction = restrictions.max_early_payments_per_transaction
    if per_transaction is not None and usage.transaction_count >= per_transaction:
        return f"Transaction already has {usage.transaction_count} early payments (limit {per_transaction})"

    per_month = restrictions.max_early_payments_per_month
    if per_month is not None and usage.merchant_month_count >= per_month:
        return f"Merchant monthly early payment limit of {per_month} reached"

    return None


def meets_minimum_days(
    restrictions: EarlyPaymentRestrictions,
    transaction: Transaction,
    option: EarlyPaymentOption,
    now: datetime,
) -> bool:
    """Every installment in the option is at least minimum_days_before_early from due"""
    if restrictions.minimum_days_before_early <= 0:
        return True
    selected = set(option.installment_ids)
    due_dates = [inst.due_date for inst in transaction.installments if inst.installment_id in selected]
    if not due_dates:
        return True
    return days_between(now, min(due_dates)) >= restrictions.minimum_days_before_early


def payment_method_allowed(restrictions: EarlyPaymentRestrictions, payment_method_ref: str) -> bool:
    return not any(payment_method_ref.startswith(prefix) for prefix in restrictions.excluded_payment_methods)


def check(
    restrictions: EarlyPaymentRestrictions,
    transaction: Transaction,
    option: EarlyPaymentOption,
    payment_method_ref: str,
    now: datetime,
    usage: EarlyPaymentUsage,
) -> None:
    """
    Enforce every restriction against a concrete request.

    Raises:
        RestrictionError: carrying the "not eligible" reason
    """
    reason = blocked_reason(restrictions, now, usage)
    if reason is not None:
        raise RestrictionError(reason)
    if not payment_method_allowed(restrictions, payment_method_ref):
        raise RestrictionError(f"Payment method {payment_method_ref} excluded from early payment")
    if not meets_minimum_days(restrictions, transaction, option, now):
        raise RestrictionError(
            f"Installments must be at least {restrictions.minimum_days_before_early} days before due"
        )
