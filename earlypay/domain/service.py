"""Early payment service - the operations exposed to the API layer"""

from datetime import datetime
from typing import Callable, List, Optional, Sequence

from earlypay.domain import options as option_generator
from earlypay.domain import simulation
from earlypay.domain.cache import TTLCache
from earlypay.domain.exceptions import DomainException
from earlypay.domain.models import (
    CommitState,
    EarlyPaymentOption,
    EarlyPaymentRequest,
    EarlyPaymentResult,
    MerchantEarlyPaymentConfig,
    PaymentStatus,
    Scenario,
    ScenarioOutcome,
)
from earlypay.domain.ports import InstallmentLedger, MerchantConfigSource
from earlypay.domain.restrictions import load_usage
from earlypay.domain.settlement import SettlementCommitter, derive_option, idempotency_key
from earlypay.infrastructure.observability.metrics import options_counter
from earlypay.utils.date_utils import utcnow


class EarlyPaymentService:
    """Read-only quoting plus the side-effecting commit"""

    def __init__(
        self,
        ledger: InstallmentLedger,
        config_source: MerchantConfigSource,
        committer: SettlementCommitter,
        config_cache: Optional[TTLCache[MerchantEarlyPaymentConfig]] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.ledger = ledger
        self.config_source = config_source
        self.committer = committer
        self.config_cache = config_cache
        self._clock = clock

    def merchant_config(self, merchant_id: str) -> MerchantEarlyPaymentConfig:
        """
        Merchant config for browsing (options, simulations), through the
        caller-supplied cache when one is given. Quotes that a commit will
        be checked against read the source directly, the way the committer does.
        """
        if self.config_cache is None:
            return self.config_source.get_config(merchant_id)
        return self.config_cache.get_or_load(merchant_id, lambda: self.config_source.get_config(merchant_id))

    def generate_options(self, transaction_id: str) -> List[EarlyPaymentOption]:
        transaction = self.ledger.get_transaction(transaction_id)
        config = self.merchant_config(transaction.merchant_id)
        now = self._clock()
        usage = load_usage(self.ledger, transaction, config, now)
        generated = option_generator.generate(transaction, config, now, usage)
        for option in generated:
            options_counter.labels(payment_type=option.payment_type.value).inc()
        return generated

    def calculate(self, request: EarlyPaymentRequest) -> EarlyPaymentResult:
        """
        Quote a request exactly as commit would validate it, without side effects.

        Invalid requests come back as a failed result carrying the stable reason.
        """
        key = idempotency_key(request)
        try:
            transaction = self.ledger.get_transaction(request.transaction_id)
            config = self.config_source.get_config(transaction.merchant_id)
            now = self._clock()
            usage = load_usage(self.ledger, transaction, config, now)
            option = derive_option(request, transaction, config, now, self.committer.quote_epsilon_cents, usage)
        except DomainException as e:
            return EarlyPaymentResult(
                result_id=key,
                transaction_id=request.transaction_id,
                payment_type=request.payment_type,
                status=PaymentStatus.FAILED,
                state=CommitState.REJECTED,
                original_cents=request.amount_cents,
                discount_cents=0,
                processing_fee_cents=0,
                final_cents=request.amount_cents,
                net_savings_cents=0,
                idempotency_key=key,
                installment_ids=tuple(request.installment_ids),
                payment_method_ref=request.payment_method_ref,
                failure_reason=e.reason,
            )

        return EarlyPaymentResult(
            result_id=key,
            transaction_id=request.transaction_id,
            payment_type=request.payment_type,
            status=PaymentStatus.PROCESSING,
            state=CommitState.RECEIVED,
            original_cents=option.original_cents,
            discount_cents=option.discount_cents,
            processing_fee_cents=option.processing_fee_cents,
            final_cents=option.final_cents,
            net_savings_cents=option.net_savings_cents,
            idempotency_key=key,
            installment_ids=option.installment_ids,
            payment_method_ref=request.payment_method_ref,
        )

    async def commit(self, request: EarlyPaymentRequest, request_id: str = "unknown") -> EarlyPaymentResult:
        return await self.committer.commit(request, request_id=request_id)

    def simulate(self, transaction_id: str, scenarios: Sequence[Scenario]) -> List[ScenarioOutcome]:
        transaction = self.ledger.get_transaction(transaction_id)
        config = self.merchant_config(transaction.merchant_id)
        return simulation.simulate(transaction, scenarios, config, self._clock())
