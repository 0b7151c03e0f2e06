"""Settlement commit state machine - turns a chosen early payment into exactly one settlement"""

import asyncio
import hashlib
import logging
import uuid
from collections import defaultdict
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import datetime
from typing import Awaitable, Callable, Dict, Optional, Tuple

from earlypay.config import settings
from earlypay.domain import restrictions
from earlypay.domain.aggregation import aggregate
from earlypay.domain.exceptions import (
    REASON_QUOTE_EXPIRED,
    REASON_TEMPORARILY_UNAVAILABLE,
    AuditError,
    CaptureError,
    CaptureTimeoutError,
    DomainException,
    LedgerError,
    ValidationError,
)
from earlypay.domain.models import (
    CaptureReceipt,
    CommitState,
    EarlyPaymentOption,
    EarlyPaymentRecord,
    EarlyPaymentRequest,
    EarlyPaymentResult,
    EarlyPaymentUsage,
    MerchantEarlyPaymentConfig,
    PaymentStatus,
    PaymentType,
    Transaction,
    TransactionStatus,
)
from earlypay.domain.options import full_option, within_limits
from earlypay.domain.ports import AuditSink, InstallmentLedger, MerchantConfigSource, PaymentCaptureGateway
from earlypay.domain.restrictions import load_usage
from earlypay.infrastructure.observability.logging import log_commit_outcome, log_state_transition
from earlypay.infrastructure.observability.metrics import (
    audit_failure_counter,
    capture_failure_counter,
    capture_latency_histogram,
    record_commit,
    replay_counter,
    settlement_failure_counter,
)
from earlypay.utils.date_utils import utcnow

logger = logging.getLogger(__name__)


def idempotency_key(request: EarlyPaymentRequest) -> str:
    """Deterministic key over (transaction, payment type, sorted installment ids, amount)"""
    material = "|".join([
        request.transaction_id,
        request.payment_type.value,
        ",".join(sorted(request.installment_ids)),
        str(request.amount_cents),
    ])
    return hashlib.sha256(material.encode("utf-8")).hexdigest()


def derive_option(
    request: EarlyPaymentRequest,
    transaction: Transaction,
    config: MerchantEarlyPaymentConfig,
    now: datetime,
    quote_epsilon_cents: int,
    usage: EarlyPaymentUsage | None = None,
) -> EarlyPaymentOption:
    """
    Re-derive the option a request claims from current ledger data.

    Client-supplied quotes are never trusted: the declared amount must match
    the current balance or selection, and any quoted final amount or quoted
    amount due (final plus fee) must be within `quote_epsilon_cents` of the
    re-derived one.

    Raises:
        ValidationError: stale, altered or malformed request
        SelectionError: invalid partial selection
        RestrictionError: merchant restrictions forbid the payment
    """
    if not config.enabled:
        raise ValidationError(f"Early payment disabled for merchant {config.merchant_id}")
    if transaction.status != TransactionStatus.ACTIVE:
        raise ValidationError(f"Transaction is {transaction.status.value}", REASON_QUOTE_EXPIRED)

    if request.payment_type == PaymentType.FULL:
        if request.installment_ids:
            raise ValidationError("Full early payment cannot select installments")
        option = full_option(transaction, config, now)
        if option is None:
            raise ValidationError("Nothing outstanding on transaction", REASON_QUOTE_EXPIRED)
        if request.amount_cents != option.original_cents:
            raise ValidationError("Declared amount differs from outstanding balance", REASON_QUOTE_EXPIRED)
    else:
        if not config.allow_partial_payments:
            raise ValidationError("Merchant does not accept partial early payments")
        option = aggregate(transaction, request.installment_ids, config, now)
        if request.amount_cents != option.original_cents:
            raise ValidationError("Declared amount differs from sum of selected installments")

    if not within_limits(config, option.original_cents):
        raise ValidationError("Amount outside merchant early payment limits")

    restrictions.check(
        config.restrictions, transaction, option, request.payment_method_ref, now, usage or EarlyPaymentUsage()
    )

    if request.quoted_final_cents is not None:
        if abs(option.final_cents - request.quoted_final_cents) > quote_epsilon_cents:
            raise ValidationError("Quote expired or altered", REASON_QUOTE_EXPIRED)
    if request.quoted_amount_due_cents is not None:
        if abs(option.amount_due_cents - request.quoted_amount_due_cents) > quote_epsilon_cents:
            raise ValidationError("Amount due changed since quote", REASON_QUOTE_EXPIRED)

    return option


def requires_approval(config: MerchantEarlyPaymentConfig, option: EarlyPaymentOption) -> bool:
    if config.require_merchant_approval:
        return True
    return config.approval_threshold_cents is not None and option.original_cents >= config.approval_threshold_cents


class TransactionLocks:
    """
    In-process per-transaction mutual exclusion; entries are dropped once
    nobody holds or waits. Exclusion across workers comes from the ledger
    claim taken inside the lock.
    """

    def __init__(self):
        self._locks: Dict[str, asyncio.Lock] = {}
        self._users: Dict[str, int] = defaultdict(int)

    @asynccontextmanager
    async def hold(self, transaction_id: str):
        lock = self._locks.setdefault(transaction_id, asyncio.Lock())
        self._users[transaction_id] += 1
        try:
            async with lock:
                yield
        finally:
            self._users[transaction_id] -= 1
            if self._users[transaction_id] == 0:
                del self._users[transaction_id]
                del self._locks[transaction_id]

    def __len__(self) -> int:
        return len(self._locks)


@dataclass
class _Attempt:
    """Mutable bookkeeping for one commit call"""

    request: EarlyPaymentRequest
    key: str
    request_id: str
    started_at: datetime
    claim_token: str = field(default_factory=lambda: str(uuid.uuid4()))
    state: CommitState = CommitState.RECEIVED
    option: Optional[EarlyPaymentOption] = None
    receipt: Optional[CaptureReceipt] = None
    cancel_requested: bool = False
    records: list = field(default_factory=list)


class SettlementCommitter:
    """
    Executes an early payment request exactly once.

    States: received → validating → capturing → settling → completed, with
    exits rejected, capture_failed, pending_approval and settlement_failed.
    Commits are serialized per transaction, in process by TransactionLocks
    and across workers by a ledger claim; every transition is appended to
    the audit sink.
    """

    def __init__(
        self,
        ledger: InstallmentLedger,
        gateway: PaymentCaptureGateway,
        config_source: MerchantConfigSource,
        audit: AuditSink,
        locks: TransactionLocks | None = None,
        capture_timeout_seconds: float | None = None,
        capture_max_retries: int | None = None,
        settlement_max_retries: int | None = None,
        settlement_backoff_base: float | None = None,
        quote_epsilon_cents: int | None = None,
        claim_ttl_seconds: float | None = None,
        claim_attempts: int | None = None,
        claim_wait_seconds: float | None = None,
        clock: Callable[[], datetime] = utcnow,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.ledger = ledger
        self.gateway = gateway
        self.config_source = config_source
        self.audit = audit
        self.locks = locks if locks is not None else TransactionLocks()
        self.capture_timeout_seconds = _default(capture_timeout_seconds, settings.capture_timeout_seconds)
        self.capture_max_retries = _default(capture_max_retries, settings.capture_max_retries)
        self.settlement_max_retries = _default(settlement_max_retries, settings.settlement_max_retries)
        self.settlement_backoff_base = _default(settlement_backoff_base, settings.settlement_backoff_base)
        self.quote_epsilon_cents = _default(quote_epsilon_cents, settings.quote_epsilon_cents)
        self.claim_ttl_seconds = _default(claim_ttl_seconds, settings.commit_claim_ttl_seconds)
        self.claim_attempts = max(_default(claim_attempts, settings.commit_claim_attempts), 1)
        self.claim_wait_seconds = _default(claim_wait_seconds, settings.commit_claim_wait_seconds)
        self._clock = clock
        self._sleep = sleep

    async def commit(self, request: EarlyPaymentRequest, request_id: str = "unknown") -> EarlyPaymentResult:
        """
        Commit an early payment request.

        Flow:
        1. Claim the transaction in the ledger (waits briefly for other workers)
        2. Replay the stored outcome if this idempotency key already completed
        3. Validate against current ledger data (no side effects)
        4. Stop at pending_approval for approval-required merchants
        5. Capture the discounted amount plus fee through the gateway
        6. Settle all targeted installments atomically
        """
        attempt = _Attempt(request=request, key=idempotency_key(request), request_id=request_id, started_at=self._clock())
        self._transition(attempt, CommitState.RECEIVED)

        async with self.locks.hold(request.transaction_id):
            try:
                claimed = await self._claim(attempt)
            except DomainException as e:
                return self._finish(attempt, CommitState.REJECTED, reason=e.reason, detail=str(e))
            if not claimed:
                return self._finish(
                    attempt,
                    CommitState.REJECTED,
                    reason=REASON_TEMPORARILY_UNAVAILABLE,
                    detail="Transaction is being committed by another worker",
                )
            try:
                result = await self._run(attempt)
            finally:
                self._release(attempt)

        if attempt.cancel_requested:
            raise asyncio.CancelledError()
        return result

    async def _run(self, attempt: _Attempt) -> EarlyPaymentResult:
        request = attempt.request
        replay = self._find_completed(attempt.key)
        if replay is not None:
            replay_counter.inc()
            log_commit_outcome(attempt.request_id, request.transaction_id, CommitState.COMPLETED.value, replayed=True)
            return _result_from_record(replay, replayed=True)

        try:
            config = self._validate(attempt)
        except DomainException as e:
            return self._finish(attempt, CommitState.REJECTED, reason=e.reason, detail=str(e))
        except Exception as e:
            logger.error(
                f"Unexpected error while validating: {e}",
                exc_info=True,
                extra={"request_id": attempt.request_id, "transaction_id": request.transaction_id},
            )
            return self._finish(attempt, CommitState.REJECTED, reason=REASON_TEMPORARILY_UNAVAILABLE, detail=str(e))

        if requires_approval(config, attempt.option):
            return self._finish(attempt, CommitState.PENDING_APPROVAL)

        try:
            attempt.receipt = await self._capture(attempt)
        except CaptureError as e:
            capture_failure_counter.labels(kind="timeout" if isinstance(e, CaptureTimeoutError) else "declined").inc()
            return self._finish(attempt, CommitState.CAPTURE_FAILED, reason=e.reason, detail=str(e))

        # Once settling starts the commit must reach a terminal state, however often it is cancelled
        settle = asyncio.ensure_future(self._settle(attempt))
        while not settle.done():
            try:
                await asyncio.shield(settle)
            except asyncio.CancelledError:
                attempt.cancel_requested = True
        return settle.result()

    async def _claim(self, attempt: _Attempt) -> bool:
        transaction_id = attempt.request.transaction_id
        for number in range(1, self.claim_attempts + 1):
            if self.ledger.claim(transaction_id, attempt.claim_token, self.claim_ttl_seconds):
                return True
            if number < self.claim_attempts:
                await self._sleep(self.claim_wait_seconds)
        logger.warning(
            "Transaction claim held by another commit",
            extra={"request_id": attempt.request_id, "transaction_id": transaction_id},
        )
        return False

    def _release(self, attempt: _Attempt) -> None:
        try:
            self.ledger.release(attempt.request.transaction_id, attempt.claim_token)
        except LedgerError as e:
            # The claim lapses on its own after claim_ttl_seconds
            logger.warning(
                f"Transaction claim release failed: {e}",
                extra={"request_id": attempt.request_id, "transaction_id": attempt.request.transaction_id},
            )

    def _validate(self, attempt: _Attempt) -> MerchantEarlyPaymentConfig:
        self._transition(attempt, CommitState.VALIDATING)
        transaction = self.ledger.get_transaction(attempt.request.transaction_id)
        config = self.config_source.get_config(transaction.merchant_id)
        now = self._clock()
        usage = load_usage(self.ledger, transaction, config, now)
        attempt.option = derive_option(attempt.request, transaction, config, now, self.quote_epsilon_cents, usage)
        return config

    async def _capture(self, attempt: _Attempt) -> CaptureReceipt:
        """Capture with bounded wait; retryable gateway errors honor the retry hint"""
        self._transition(attempt, CommitState.CAPTURING)
        retries = 0
        while True:
            try:
                return await self._capture_once(attempt)
            except CaptureError as e:
                if not e.retryable or retries >= self.capture_max_retries or attempt.cancel_requested:
                    raise
                retries += 1
                logger.warning(
                    f"Capture failed, retrying: {e}",
                    extra={"request_id": attempt.request_id, "transaction_id": attempt.request.transaction_id, "retry": retries},
                )
                await self._sleep(e.retry_after_seconds if e.retry_after_seconds is not None else 2 ** (retries - 1))

    async def _capture_once(self, attempt: _Attempt) -> CaptureReceipt:
        option = attempt.option
        task = asyncio.ensure_future(
            self.gateway.capture(attempt.key, attempt.request.payment_method_ref, option.amount_due_cents)
        )
        try:
            with capture_latency_histogram.time():
                return await asyncio.wait_for(asyncio.shield(task), timeout=self.capture_timeout_seconds)
        except asyncio.TimeoutError:
            task.cancel()
            if self.gateway.supports_cancellation:
                await self.gateway.cancel(attempt.key)
            raise CaptureTimeoutError(f"Payment gateway timeout after {self.capture_timeout_seconds}s")
        except asyncio.CancelledError:
            if self.gateway.supports_cancellation:
                task.cancel()
                self._finish(
                    attempt,
                    CommitState.CAPTURE_FAILED,
                    reason=REASON_TEMPORARILY_UNAVAILABLE,
                    detail="Commit cancelled during capture",
                )
                await asyncio.shield(self.gateway.cancel(attempt.key))
                raise
            # Gateway cannot abort an in-flight capture: finish the commit, cancel afterwards
            attempt.cancel_requested = True
            while not task.done():
                try:
                    await asyncio.shield(task)
                except asyncio.CancelledError:
                    pass
            return task.result()

    async def _settle(self, attempt: _Attempt) -> EarlyPaymentResult:
        """Mark every targeted installment settled, re-attempting with the same key"""
        self._transition(attempt, CommitState.SETTLING)
        option = attempt.option
        attempts = self.settlement_max_retries + 1
        for number in range(1, attempts + 1):
            try:
                self.ledger.mark_settled(
                    attempt.request.transaction_id,
                    option.installment_ids,
                    option.discount_cents,
                    attempt.key,
                )
                return self._finish(attempt, CommitState.COMPLETED)
            except LedgerError as e:
                settlement_failure_counter.inc()
                if number == attempts:
                    logger.error(
                        f"Captured payment could not be settled, reconciliation required: {e}",
                        extra={
                            "request_id": attempt.request_id,
                            "transaction_id": attempt.request.transaction_id,
                            "idempotency_key": attempt.key,
                            "capture_reference": attempt.receipt.capture_reference,
                        },
                    )
                    return self._finish(
                        attempt,
                        CommitState.SETTLEMENT_FAILED,
                        reason=REASON_TEMPORARILY_UNAVAILABLE,
                        detail=str(e),
                    )
                await self._sleep(self.settlement_backoff_base * (2 ** (number - 1)))

    def _find_completed(self, key: str) -> Optional[EarlyPaymentRecord]:
        try:
            return self.audit.find_completed(key)
        except AuditError as e:
            audit_failure_counter.inc()
            logger.error(f"Audit lookup failed: {e}", extra={"idempotency_key": key})
            return None

    def _transition(
        self,
        attempt: _Attempt,
        state: CommitState,
        reason: str | None = None,
        detail: str | None = None,
    ) -> EarlyPaymentRecord:
        attempt.state = state
        option = attempt.option
        request = attempt.request
        record = EarlyPaymentRecord(
            record_id=str(uuid.uuid4()),
            idempotency_key=attempt.key,
            transaction_id=request.transaction_id,
            payment_type=request.payment_type,
            state=state,
            status=PaymentStatus.for_state(state),
            installment_ids=option.installment_ids if option else tuple(request.installment_ids),
            original_cents=option.original_cents if option else request.amount_cents,
            discount_cents=option.discount_cents if option else 0,
            processing_fee_cents=option.processing_fee_cents if option else 0,
            final_cents=option.final_cents if option else request.amount_cents,
            payment_method_ref=request.payment_method_ref,
            recorded_at=self._clock(),
            discount_tier=option.discount_tier.time_range if option and option.discount_tier else None,
            capture_reference=attempt.receipt.capture_reference if attempt.receipt else None,
            failure_reason=reason,
            detail=detail,
        )
        attempt.records.append(record)
        try:
            self.audit.append(record)
        except AuditError as e:
            audit_failure_counter.inc()
            logger.error(f"Audit append failed: {e}", extra={"idempotency_key": attempt.key, "state": state.value})
        log_state_transition(attempt.request_id, request.transaction_id, attempt.key, state.value, detail)
        return record

    def _finish(
        self,
        attempt: _Attempt,
        state: CommitState,
        reason: str | None = None,
        detail: str | None = None,
    ) -> EarlyPaymentResult:
        if not state.is_terminal:
            raise ValueError(f"Commit cannot finish in non-terminal state {state.value}")
        record = self._transition(attempt, state, reason=reason, detail=detail)
        duration_ms = (self._clock() - attempt.started_at).total_seconds() * 1000
        record_commit(state.value, record.discount_cents if state == CommitState.COMPLETED else 0)
        log_commit_outcome(attempt.request_id, record.transaction_id, state.value, duration_ms=duration_ms)
        return _result_from_record(record)


def _result_from_record(record: EarlyPaymentRecord, replayed: bool = False) -> EarlyPaymentResult:
    settled: Tuple[str, ...] = record.installment_ids if record.state == CommitState.COMPLETED else ()
    return EarlyPaymentResult(
        result_id=str(uuid.uuid4()),
        transaction_id=record.transaction_id,
        payment_type=record.payment_type,
        status=record.status,
        state=record.state,
        original_cents=record.original_cents,
        discount_cents=record.discount_cents,
        processing_fee_cents=record.processing_fee_cents,
        final_cents=record.final_cents,
        net_savings_cents=record.discount_cents - record.processing_fee_cents,
        idempotency_key=record.idempotency_key,
        record_id=record.record_id,
        installment_ids=record.installment_ids,
        settled_installment_ids=settled,
        payment_method_ref=record.payment_method_ref,
        failure_reason=record.failure_reason,
        processed_at=record.recorded_at,
        replayed=replayed,
    )


def _default(value, fallback):
    return fallback if value is None else value
