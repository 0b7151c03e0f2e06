"""Pydantic schemas for API request/response validation"""

from pydantic import BaseModel, Field, model_validator
from datetime import date, datetime
from decimal import Decimal
from typing import Dict, List, Optional

from earlypay.domain.savings import is_beneficial
from earlypay.domain.models import (
    DiscountTier,
    EarlyPaymentOption,
    EarlyPaymentRecord,
    EarlyPaymentResult,
    EarlyPaymentStatistics,
    InstallmentQuote,
    PaymentType,
    ScenarioOutcome,
)


class DiscountTierSchema(BaseModel):
    """Discount tier as shown to customers"""

    time_range: str
    discount_rate: Decimal
    minimum_amount_cents: int
    maximum_discount_cents: Optional[int] = None
    description: str = ""

    @classmethod
    def from_domain(cls, tier: Optional[DiscountTier]) -> Optional["DiscountTierSchema"]:
        if tier is None:
            return None
        return cls(
            time_range=tier.time_range,
            discount_rate=tier.discount_rate,
            minimum_amount_cents=tier.minimum_amount_cents,
            maximum_discount_cents=tier.maximum_discount_cents,
            description=tier.description,
        )


class InstallmentQuoteSchema(BaseModel):
    installment_id: str
    due_date: date
    amount_cents: int
    discount_cents: int
    discount_eligible: bool
    available_until: datetime

    @classmethod
    def from_domain(cls, line: InstallmentQuote) -> "InstallmentQuoteSchema":
        return cls(
            installment_id=line.installment_id,
            due_date=line.due_date,
            amount_cents=line.amount_cents,
            discount_cents=line.discount_cents,
            discount_eligible=line.discount_tier is not None,
            available_until=line.available_until,
        )


class EarlyPaymentOptionSchema(BaseModel):
    """Single early payment quote; the processing fee is always shown with the savings"""

    option_id: str
    transaction_id: str
    payment_type: PaymentType
    original_cents: int
    discount_cents: int
    discount_percentage: Decimal
    processing_fee_cents: int
    final_cents: int
    amount_due_cents: int
    net_savings_cents: int
    available_until: datetime
    installment_ids: List[str]
    beneficial: bool
    discount_tier: Optional[DiscountTierSchema] = None
    lines: List[InstallmentQuoteSchema] = []

    @classmethod
    def from_domain(cls, option: EarlyPaymentOption) -> "EarlyPaymentOptionSchema":
        return cls(
            option_id=option.option_id,
            transaction_id=option.transaction_id,
            payment_type=option.payment_type,
            original_cents=option.original_cents,
            discount_cents=option.discount_cents,
            discount_percentage=option.discount_percentage,
            processing_fee_cents=option.processing_fee_cents,
            final_cents=option.final_cents,
            amount_due_cents=option.amount_due_cents,
            net_savings_cents=option.net_savings_cents,
            available_until=option.available_until,
            installment_ids=list(option.installment_ids),
            beneficial=is_beneficial(option.discount_cents, option.original_cents),
            discount_tier=DiscountTierSchema.from_domain(option.discount_tier),
            lines=[InstallmentQuoteSchema.from_domain(line) for line in option.lines],
        )


class OptionsResponse(BaseModel):
    """Response for GET /v1/transactions/{transaction_id}/early-payment-options"""

    transaction_id: str
    options: List[EarlyPaymentOptionSchema]
    best_option_id: Optional[str] = None


class EarlyPaymentRequestSchema(BaseModel):
    """Request body for POST /v1/early-payments/calculate and /commit"""

    transaction_id: str = Field(..., min_length=1)
    payment_type: PaymentType
    amount_cents: int = Field(..., gt=0, description="Original amount being paid off, in cents")
    payment_method_ref: str = Field(..., min_length=1, description="Tokenized payment method reference")
    installment_ids: List[str] = Field(default_factory=list, description="Selected installments (partial only)")
    quoted_final_cents: Optional[int] = Field(None, ge=0, description="Final amount shown to the customer")
    quoted_amount_due_cents: Optional[int] = Field(
        None, ge=0, description="Amount due (final plus processing fee) shown to the customer"
    )

    @model_validator(mode="after")
    def check_selection(self) -> "EarlyPaymentRequestSchema":
        if self.payment_type == PaymentType.PARTIAL and not self.installment_ids:
            raise ValueError("partial payments must select installments")
        return self


class EarlyPaymentResultSchema(BaseModel):
    result_id: str
    transaction_id: str
    payment_type: PaymentType
    status: str
    original_cents: int
    discount_cents: int
    processing_fee_cents: int
    final_cents: int
    amount_due_cents: int
    net_savings_cents: int
    installment_ids: List[str]
    settled_installment_ids: List[str]
    failure_reason: Optional[str] = None
    processed_at: Optional[datetime] = None
    replayed: bool = False

    @classmethod
    def from_domain(cls, result: EarlyPaymentResult) -> "EarlyPaymentResultSchema":
        return cls(
            result_id=result.result_id,
            transaction_id=result.transaction_id,
            payment_type=result.payment_type,
            status=result.status.value,
            original_cents=result.original_cents,
            discount_cents=result.discount_cents,
            processing_fee_cents=result.processing_fee_cents,
            final_cents=result.final_cents,
            amount_due_cents=result.final_cents + result.processing_fee_cents,
            net_savings_cents=result.net_savings_cents,
            installment_ids=list(result.installment_ids),
            settled_installment_ids=list(result.settled_installment_ids),
            failure_reason=result.failure_reason,
            processed_at=result.processed_at,
            replayed=result.replayed,
        )


class ScenarioSchema(BaseModel):
    payment_type: PaymentType
    amount_cents: Optional[int] = Field(None, gt=0)
    installment_ids: List[str] = Field(default_factory=list)
    payment_date: Optional[datetime] = None


class SimulationRequest(BaseModel):
    """Request body for POST /v1/transactions/{transaction_id}/simulate-early-payment"""

    scenarios: List[ScenarioSchema] = Field(..., min_length=1, max_length=20)


class SimulationItem(BaseModel):
    scenario: ScenarioSchema
    option: Optional[EarlyPaymentOptionSchema] = None
    recommendation_score: float
    failure_reason: Optional[str] = None

    @classmethod
    def from_domain(cls, scenario: ScenarioSchema, outcome: ScenarioOutcome) -> "SimulationItem":
        return cls(
            scenario=scenario,
            option=EarlyPaymentOptionSchema.from_domain(outcome.option) if outcome.option else None,
            recommendation_score=outcome.recommendation_score,
            failure_reason=outcome.failure_reason,
        )


class SimulationResponse(BaseModel):
    transaction_id: str
    simulations: List[SimulationItem]


class AuditRecordSchema(BaseModel):
    """Single audit entry in an early payment history"""

    record_id: str
    state: str
    status: str
    payment_type: PaymentType
    installment_ids: List[str]
    original_cents: int
    discount_cents: int
    final_cents: int
    failure_reason: Optional[str] = None
    recorded_at: datetime

    @classmethod
    def from_domain(cls, record: EarlyPaymentRecord) -> "AuditRecordSchema":
        return cls(
            record_id=record.record_id,
            state=record.state.value,
            status=record.status.value,
            payment_type=record.payment_type,
            installment_ids=list(record.installment_ids),
            original_cents=record.original_cents,
            discount_cents=record.discount_cents,
            final_cents=record.final_cents,
            failure_reason=record.failure_reason,
            recorded_at=record.recorded_at,
        )


class HistoryResponse(BaseModel):
    """Response for GET /v1/early-payments/history"""

    transaction_id: str
    records: List[AuditRecordSchema]


class StatisticsResponse(BaseModel):
    """Response for GET /v1/early-payments/statistics"""

    merchant_id: Optional[str] = None
    total_early_payments: int
    total_savings_provided_cents: int
    total_processing_fees_cents: int
    average_discount_rate: Decimal
    most_popular_time_range: Optional[str] = None
    time_range_counts: Dict[str, int] = {}

    @classmethod
    def from_domain(cls, merchant_id: Optional[str], stats: EarlyPaymentStatistics) -> "StatisticsResponse":
        return cls(
            merchant_id=merchant_id,
            total_early_payments=stats.total_early_payments,
            total_savings_provided_cents=stats.total_savings_provided_cents,
            total_processing_fees_cents=stats.total_processing_fees_cents,
            average_discount_rate=stats.average_discount_rate,
            most_popular_time_range=stats.most_popular_time_range,
            time_range_counts=dict(stats.time_range_counts),
        )
