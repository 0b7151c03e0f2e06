"""SQLAlchemy ORM models for transactions, merchant configuration and the audit trail"""

import uuid
from sqlalchemy import Column, String, BigInteger, Boolean, DateTime, Date, Integer, ForeignKey, Text, JSON
from sqlalchemy.orm import declarative_base, relationship
from sqlalchemy.sql import func

Base = declarative_base()


class BNPLTransaction(Base):
    """Installment purchase owned by the billing subsystem"""

    __tablename__ = "bnpl_transaction"

    id = Column(String(64), primary_key=True, default=lambda: str(uuid.uuid4()))
    merchant_id = Column(Text, nullable=False, index=True)
    total_cents = Column(BigInteger, nullable=False)
    status = Column(Text, nullable=False, default="active")
    # Cross-worker commit claim: holder token and lease expiry
    commit_claim = Column(String(64), nullable=True)
    claim_expires_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    installments = relationship(
        "BNPLInstallment",
        back_populates="transaction",
        cascade="all, delete-orphan",
        order_by="BNPLInstallment.due_date",
    )


class BNPLInstallment(Base):
    """Individual installment within a transaction"""

    __tablename__ = "bnpl_installment"

    id = Column(String(64), primary_key=True, default=lambda: str(uuid.uuid4()))
    transaction_id = Column(String(64), ForeignKey("bnpl_transaction.id", ondelete="CASCADE"), nullable=False, index=True)
    due_date = Column(Date, nullable=False)
    amount_cents = Column(BigInteger, nullable=False)
    status = Column(Text, nullable=False, default="scheduled")
    settlement_key = Column(String(64), nullable=True, index=True)
    settled_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    transaction = relationship("BNPLTransaction", back_populates="installments")


class InstallmentSettlement(Base):
    """One row per idempotency key that settled a set of installments"""

    __tablename__ = "installment_settlement"

    idempotency_key = Column(String(64), primary_key=True)
    transaction_id = Column(String(64), ForeignKey("bnpl_transaction.id", ondelete="CASCADE"), nullable=False)
    installment_ids = Column(JSON, nullable=False)
    discount_cents = Column(BigInteger, nullable=False)
    settled_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())


class MerchantEarlyPaymentSettings(Base):
    """Per-merchant discount tiers, fee schedule and early payment rules"""

    __tablename__ = "merchant_early_payment_config"

    merchant_id = Column(Text, primary_key=True)
    enabled = Column(Boolean, nullable=False, default=True)
    # [{"time_range": "0-7days", "discount_rate": "0.02", "minimum_amount_cents": 5000, ...}]
    discount_tiers = Column(JSON, nullable=False)
    flat_fee_cents = Column(Integer, nullable=False, default=0)
    partial_flat_fee_cents = Column(Integer, nullable=True)
    fee_percentage = Column(Text, nullable=False, default="0")
    partial_fee_mode = Column(Text, nullable=False, default="per_batch")
    allow_partial_payments = Column(Boolean, nullable=False, default=True)
    require_merchant_approval = Column(Boolean, nullable=False, default=False)
    minimum_early_payment_cents = Column(BigInteger, nullable=False, default=0)
    maximum_early_payment_cents = Column(BigInteger, nullable=True)
    approval_threshold_cents = Column(BigInteger, nullable=True)
    # {"excluded_payment_methods": ["pm_ach"], "max_early_payments_per_month": 100, "blackout_dates": ["2026-12-25"], ...}
    restrictions = Column(JSON, nullable=True)
    updated_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now())


class EarlyPaymentAudit(Base):
    """Append-only record of every early payment commit transition"""

    __tablename__ = "early_payment_audit"

    seq = Column(Integer, primary_key=True, autoincrement=True)
    id = Column(String(64), nullable=False, unique=True)
    idempotency_key = Column(String(64), nullable=False, index=True)
    transaction_id = Column(String(64), nullable=False, index=True)
    payment_type = Column(Text, nullable=False)
    state = Column(Text, nullable=False)
    status = Column(Text, nullable=False)
    installment_ids = Column(JSON, nullable=False)
    original_cents = Column(BigInteger, nullable=False)
    discount_cents = Column(BigInteger, nullable=False)
    processing_fee_cents = Column(BigInteger, nullable=False)
    final_cents = Column(BigInteger, nullable=False)
    payment_method_ref = Column(Text, nullable=False)
    discount_tier = Column(Text, nullable=True)
    capture_reference = Column(Text, nullable=True)
    failure_reason = Column(Text, nullable=True)
    detail = Column(Text, nullable=True)
    recorded_at = Column(DateTime(timezone=True), nullable=False)
