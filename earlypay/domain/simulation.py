"""What-if evaluation of early payment scenarios without committing anything"""

from datetime import datetime
from typing import List, Sequence

from earlypay.domain.aggregation import aggregate
from earlypay.domain.exceptions import REASON_SELECTION_INVALID, SelectionError
from earlypay.domain.models import (
    EarlyPaymentOption,
    MerchantEarlyPaymentConfig,
    PaymentType,
    Scenario,
    ScenarioOutcome,
    Transaction,
)
from earlypay.domain.options import full_option
from earlypay.utils.date_utils import days_until

SAVINGS_WEIGHT = 0.8
URGENCY_WEIGHT = 0.2
SAVINGS_SATURATION = 0.05  # 5% net savings earns the full savings component


def installments_for_amount(transaction: Transaction, amount_cents: int) -> List[str]:
    """
    Shortest due-ordered run of open installments that sums exactly to `amount_cents`.

    Raises:
        SelectionError: when no prefix of the schedule matches the amount
    """
    selected = []
    running = 0
    for installment in transaction.open_installments:
        if running >= amount_cents:
            break
        selected.append(installment.installment_id)
        running += installment.amount_cents
    if amount_cents <= 0 or running != amount_cents:
        raise SelectionError(f"No installment run sums to {amount_cents} cents")
    return selected


def recommendation_score(option: EarlyPaymentOption, payment_date: datetime) -> float:
    """
    Score from 0.0 to 1.0 blending relative savings and urgency.

    Weights:
    - 80%: net savings / original amount, saturating at 5%
    - 20%: 1 / days until the quote expires (minimum 1 day)
    """
    if option.original_cents <= 0:
        return 0.0
    relative_savings = max(option.net_savings_cents / option.original_cents, 0.0)
    savings_score = min(relative_savings / SAVINGS_SATURATION, 1.0)
    urgency_score = 1.0 / max(days_until(payment_date, option.available_until), 1)
    return round(SAVINGS_WEIGHT * savings_score + URGENCY_WEIGHT * urgency_score, 4)


def project(
    transaction: Transaction,
    scenario: Scenario,
    config: MerchantEarlyPaymentConfig,
    payment_date: datetime,
) -> EarlyPaymentOption:
    if scenario.payment_type == PaymentType.FULL:
        option = full_option(transaction, config, payment_date)
        if option is None:
            raise SelectionError("Nothing outstanding to pay")
        if scenario.amount_cents is not None and scenario.amount_cents != option.original_cents:
            raise SelectionError("Full payment amount differs from outstanding balance")
        return option

    if not config.allow_partial_payments:
        raise SelectionError("Merchant does not accept partial early payments")
    installment_ids = list(scenario.installment_ids)
    if not installment_ids and scenario.amount_cents is not None:
        installment_ids = installments_for_amount(transaction, scenario.amount_cents)
    option = aggregate(transaction, installment_ids, config, payment_date)
    if scenario.amount_cents is not None and scenario.amount_cents != option.original_cents:
        raise SelectionError("Partial payment amount differs from sum of selected installments")
    return option


def simulate(
    transaction: Transaction,
    scenarios: Sequence[Scenario],
    config: MerchantEarlyPaymentConfig,
    now: datetime,
) -> List[ScenarioOutcome]:
    """
    Main entry point: project each scenario onto an option and score it.

    Pure: reads the transaction snapshot only. Outcomes keep the input order;
    scenarios that cannot be quoted get no option and a zero score.
    """
    outcomes = []
    for scenario in scenarios:
        payment_date = scenario.payment_date or now
        try:
            option = project(transaction, scenario, config, payment_date)
        except SelectionError:
            outcomes.append(ScenarioOutcome(scenario, None, 0.0, REASON_SELECTION_INVALID))
            continue
        outcomes.append(ScenarioOutcome(scenario, option, recommendation_score(option, payment_date)))
    return outcomes
