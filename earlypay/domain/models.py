"""Domain models - pure Python dataclasses representing business entities"""

import re
from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Dict, List, Optional, Tuple

from earlypay.utils.money import apply_rate


class PaymentType(str, Enum):
    FULL = "full"
    PARTIAL = "partial"


class InstallmentStatus(str, Enum):
    SCHEDULED = "scheduled"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


OPEN_INSTALLMENT_STATUSES = frozenset({InstallmentStatus.SCHEDULED, InstallmentStatus.FAILED})


class TransactionStatus(str, Enum):
    ACTIVE = "active"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class FeeMode(str, Enum):
    """How a processing fee is charged on a partial batch"""

    PER_BATCH = "per_batch"
    PER_INSTALLMENT = "per_installment"


class CommitState(str, Enum):
    RECEIVED = "received"
    VALIDATING = "validating"
    CAPTURING = "capturing"
    SETTLING = "settling"
    COMPLETED = "completed"
    REJECTED = "rejected"
    CAPTURE_FAILED = "capture_failed"
    PENDING_APPROVAL = "pending_approval"
    SETTLEMENT_FAILED = "settlement_failed"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATES


TERMINAL_STATES = frozenset({
    CommitState.COMPLETED,
    CommitState.REJECTED,
    CommitState.CAPTURE_FAILED,
    CommitState.PENDING_APPROVAL,
    CommitState.SETTLEMENT_FAILED,
})


class PaymentStatus(str, Enum):
    """Customer-facing status of an early payment"""

    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    PENDING_APPROVAL = "pending_approval"

    @classmethod
    def for_state(cls, state: CommitState) -> "PaymentStatus":
        if state == CommitState.COMPLETED:
            return cls.COMPLETED
        if state == CommitState.PENDING_APPROVAL:
            return cls.PENDING_APPROVAL
        if state in (CommitState.REJECTED, CommitState.CAPTURE_FAILED, CommitState.SETTLEMENT_FAILED):
            return cls.FAILED
        return cls.PROCESSING


@dataclass
class Installment:
    """Single scheduled payment within a transaction"""

    installment_id: str
    transaction_id: str
    due_date: date
    amount_cents: int
    status: InstallmentStatus = InstallmentStatus.SCHEDULED

    @property
    def is_open(self) -> bool:
        return self.status in OPEN_INSTALLMENT_STATUSES


@dataclass
class Transaction:
    """BNPL purchase split into installments"""

    transaction_id: str
    merchant_id: str
    total_cents: int
    installments: List[Installment] = field(default_factory=list)
    status: TransactionStatus = TransactionStatus.ACTIVE

    @property
    def open_installments(self) -> List[Installment]:
        """Open installments in due-date order"""
        return sorted(
            (inst for inst in self.installments if inst.is_open),
            key=lambda inst: (inst.due_date, inst.installment_id),
        )

    @property
    def outstanding_cents(self) -> int:
        return sum(inst.amount_cents for inst in self.open_installments)


_TIME_RANGE = re.compile(r"^(\d+)(?:-(\d+)|(\+))days$")


@dataclass(frozen=True)
class DiscountTier:
    """
    Discount rule keyed on days paid before the due date.

    The window is half-open: [window_start_days, window_end_days).
    window_end_days=None means the window has no upper bound.
    """

    window_start_days: int
    window_end_days: Optional[int]
    discount_rate: Decimal
    minimum_amount_cents: int = 0
    maximum_discount_cents: Optional[int] = None
    description: str = ""

    @classmethod
    def from_time_range(
        cls,
        time_range: str,
        discount_rate: Decimal | str,
        minimum_amount_cents: int = 0,
        maximum_discount_cents: Optional[int] = None,
        description: str = "",
    ) -> "DiscountTier":
        """
        Build a tier from a platform label.

        Example:
            "0-7days"  → [0, 8)
            "31+days"  → [31, ∞)
        """
        match = _TIME_RANGE.match(time_range.strip())
        if not match:
            raise ValueError(f"Unrecognised tier time range: {time_range!r}")
        start = int(match.group(1))
        end = None if match.group(3) else int(match.group(2)) + 1
        return cls(
            window_start_days=start,
            window_end_days=end,
            discount_rate=Decimal(str(discount_rate)),
            minimum_amount_cents=minimum_amount_cents,
            maximum_discount_cents=maximum_discount_cents,
            description=description,
        )

    @property
    def time_range(self) -> str:
        if self.window_end_days is None:
            return f"{self.window_start_days}+days"
        return f"{self.window_start_days}-{self.window_end_days - 1}days"

    def contains(self, days_early: int) -> bool:
        if days_early < self.window_start_days:
            return False
        return self.window_end_days is None or days_early < self.window_end_days


@dataclass(frozen=True)
class FeeSchedule:
    """Processing fee charged for accelerating a payment"""

    flat_fee_cents: int = 0
    percentage_rate: Decimal = Decimal("0")
    partial_flat_fee_cents: Optional[int] = None
    partial_fee_mode: FeeMode = FeeMode.PER_BATCH

    def fee(self, payment_type: PaymentType, amount_cents: int) -> int:
        if amount_cents <= 0:
            return 0
        flat = self.flat_fee_cents
        if payment_type == PaymentType.PARTIAL and self.partial_flat_fee_cents is not None:
            flat = self.partial_flat_fee_cents
        return flat + apply_rate(amount_cents, self.percentage_rate)


@dataclass(frozen=True)
class EarlyPaymentRestrictions:
    """
    Merchant eligibility rules applied on top of tiers and amount limits.

    excluded_payment_methods holds payment method reference prefixes
    (e.g. "pm_ach"). minimum_days_before_early is the fewest days an
    installment may be before its due date and still be paid early.
    """

    excluded_payment_methods: Tuple[str, ...] = ()
    max_early_payments_per_transaction: Optional[int] = None
    max_early_payments_per_month: Optional[int] = None
    minimum_days_before_early: int = 0
    blackout_dates: Tuple[date, ...] = ()

    @property
    def counts_usage(self) -> bool:
        return self.max_early_payments_per_transaction is not None or self.max_early_payments_per_month is not None


@dataclass(frozen=True)
class EarlyPaymentUsage:
    """Early payments already settled, as counted for restriction limits"""

    transaction_count: int = 0
    merchant_month_count: int = 0


@dataclass(frozen=True)
class MerchantEarlyPaymentConfig:
    """Per-merchant early payment rules, read-only to the engine"""

    merchant_id: str
    discount_tiers: Tuple[DiscountTier, ...]
    fee_schedule: FeeSchedule = field(default_factory=FeeSchedule)
    enabled: bool = True
    allow_partial_payments: bool = True
    require_merchant_approval: bool = False
    minimum_early_payment_cents: int = 0
    maximum_early_payment_cents: Optional[int] = None
    approval_threshold_cents: Optional[int] = None
    restrictions: EarlyPaymentRestrictions = field(default_factory=EarlyPaymentRestrictions)


@dataclass(frozen=True)
class SavingsBreakdown:
    amount_cents: int
    discount_cents: int
    processing_fee_cents: int
    final_cents: int
    net_savings_cents: int


@dataclass(frozen=True)
class InstallmentQuote:
    """Discount eligibility of one installment within an option"""

    installment_id: str
    due_date: date
    amount_cents: int
    discount_tier: Optional[DiscountTier]
    discount_cents: int
    available_until: datetime


@dataclass(frozen=True)
class EarlyPaymentOption:
    """Non-committed early payment quote"""

    option_id: str
    transaction_id: str
    payment_type: PaymentType
    original_cents: int
    discount_tier: Optional[DiscountTier]
    discount_cents: int
    processing_fee_cents: int
    final_cents: int
    net_savings_cents: int
    available_until: datetime
    installment_ids: Tuple[str, ...]
    lines: Tuple[InstallmentQuote, ...] = ()
    fee_mode: FeeMode = FeeMode.PER_BATCH

    @property
    def amount_due_cents(self) -> int:
        """What the customer is charged: discounted amount plus processing fee"""
        return self.final_cents + self.processing_fee_cents

    @property
    def discount_percentage(self) -> Decimal:
        if self.original_cents == 0:
            return Decimal("0")
        return (Decimal(self.discount_cents) * 100 / Decimal(self.original_cents)).quantize(Decimal("0.01"))


@dataclass(frozen=True)
class EarlyPaymentRequest:
    """Customer's chosen early payment intent"""

    transaction_id: str
    payment_type: PaymentType
    amount_cents: int
    payment_method_ref: str
    installment_ids: Tuple[str, ...] = ()
    quoted_final_cents: Optional[int] = None
    quoted_amount_due_cents: Optional[int] = None


@dataclass(frozen=True)
class CaptureReceipt:
    capture_reference: str
    amount_cents: int
    captured_at: datetime


@dataclass
class EarlyPaymentResult:
    """Synchronous response to a calculate or commit call"""

    result_id: str
    transaction_id: str
    payment_type: PaymentType
    status: PaymentStatus
    state: CommitState
    original_cents: int
    discount_cents: int
    processing_fee_cents: int
    final_cents: int
    net_savings_cents: int
    idempotency_key: str
    record_id: Optional[str] = None
    installment_ids: Tuple[str, ...] = ()
    settled_installment_ids: Tuple[str, ...] = ()
    payment_method_ref: str = ""
    failure_reason: Optional[str] = None
    processed_at: Optional[datetime] = None
    replayed: bool = False


@dataclass(frozen=True)
class EarlyPaymentRecord:
    """Append-only audit entry written at every commit state transition"""

    record_id: str
    idempotency_key: str
    transaction_id: str
    payment_type: PaymentType
    state: CommitState
    status: PaymentStatus
    installment_ids: Tuple[str, ...]
    original_cents: int
    discount_cents: int
    processing_fee_cents: int
    final_cents: int
    payment_method_ref: str
    recorded_at: datetime
    discount_tier: Optional[str] = None
    capture_reference: Optional[str] = None
    failure_reason: Optional[str] = None
    detail: Optional[str] = None


@dataclass(frozen=True)
class Scenario:
    """Hypothetical early payment evaluated by the simulator"""

    payment_type: PaymentType
    amount_cents: Optional[int] = None
    installment_ids: Tuple[str, ...] = ()
    payment_date: Optional[datetime] = None


@dataclass(frozen=True)
class ScenarioOutcome:
    scenario: Scenario
    option: Optional[EarlyPaymentOption]
    recommendation_score: float
    failure_reason: Optional[str] = None


@dataclass(frozen=True)
class EarlyPaymentStatistics:
    """Aggregate view of completed early payments"""

    total_early_payments: int
    total_savings_provided_cents: int
    total_processing_fees_cents: int
    average_discount_rate: Decimal
    most_popular_time_range: Optional[str]
    time_range_counts: Dict[str, int] = field(default_factory=dict)
