"""Interfaces of the collaborators the engine depends on"""

from datetime import datetime
from typing import Optional, Protocol, Sequence, Tuple

from earlypay.domain.models import (
    CaptureReceipt,
    DiscountTier,
    EarlyPaymentRecord,
    FeeSchedule,
    MerchantEarlyPaymentConfig,
    Transaction,
)


class InstallmentLedger(Protocol):
    def get_transaction(self, transaction_id: str) -> Transaction:
        """Raises TransactionNotFoundError when the id is unknown"""
        ...

    def mark_settled(
        self,
        transaction_id: str,
        installment_ids: Sequence[str],
        discount_cents: int,
        idempotency_key: str,
    ) -> None:
        """Settle every installment or none; raises LedgerError on failure"""
        ...

    def claim(self, transaction_id: str, holder: str, ttl_seconds: float) -> bool:
        """
        Take the cross-process commit claim on a transaction.

        True when `holder` now owns it; False while another holder's claim
        is live. Claims lapse after `ttl_seconds` so a crashed worker never
        blocks a transaction for good.
        """
        ...

    def release(self, transaction_id: str, holder: str) -> None:
        ...

    def count_settlements(
        self,
        transaction_id: Optional[str] = None,
        merchant_id: Optional[str] = None,
        since: Optional[datetime] = None,
    ) -> int:
        ...


class PaymentCaptureGateway(Protocol):
    supports_cancellation: bool

    async def capture(self, idempotency_key: str, payment_method_ref: str, amount_cents: int) -> CaptureReceipt:
        """Raises CaptureError; repeated calls with one key must not charge twice"""
        ...

    async def cancel(self, idempotency_key: str) -> None:
        ...


class MerchantConfigSource(Protocol):
    def get_config(self, merchant_id: str) -> MerchantEarlyPaymentConfig:
        """Raises ConfigurationError when the merchant has no configuration"""
        ...

    def get_discount_tiers(self, merchant_id: str) -> Tuple[DiscountTier, ...]:
        ...

    def get_fee_schedule(self, merchant_id: str) -> FeeSchedule:
        ...

    def allows_partial_payments(self, merchant_id: str) -> bool:
        ...

    def requires_approval(self, merchant_id: str) -> bool:
        ...


class AuditSink(Protocol):
    def append(self, record: EarlyPaymentRecord) -> None:
        """Raises AuditError; records are never updated or deleted"""
        ...

    def find_completed(self, idempotency_key: str) -> Optional[EarlyPaymentRecord]:
        ...
