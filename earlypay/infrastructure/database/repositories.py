"""Data access layer: SQL implementations of the ledger, merchant config source and audit sink"""

import logging
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal
from typing import List, Optional, Sequence, Tuple

from sqlalchemy import or_
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from earlypay.domain.exceptions import AuditError, ConfigurationError, LedgerError, TransactionNotFoundError
from earlypay.domain.models import (
    CommitState,
    DiscountTier,
    EarlyPaymentRecord,
    EarlyPaymentRestrictions,
    FeeMode,
    FeeSchedule,
    Installment,
    InstallmentStatus,
    MerchantEarlyPaymentConfig,
    PaymentStatus,
    PaymentType,
    Transaction,
    TransactionStatus,
)
from earlypay.domain.schedule import default_discount_tiers, validate_tiers
from earlypay.infrastructure.database.models import (
    BNPLInstallment,
    BNPLTransaction,
    EarlyPaymentAudit,
    InstallmentSettlement,
    MerchantEarlyPaymentSettings,
)
from earlypay.infrastructure.observability.metrics import config_warning_counter

logger = logging.getLogger(__name__)

_OPEN_STATUSES = [InstallmentStatus.SCHEDULED.value, InstallmentStatus.FAILED.value]


class InstallmentLedgerRepository:
    """Repository for transactions and their installments"""

    def __init__(self, db: Session):
        self.db = db

    def create_transaction(self, transaction: Transaction) -> BNPLTransaction:
        """Persist a transaction with its installments"""
        db_transaction = BNPLTransaction(
            id=transaction.transaction_id,
            merchant_id=transaction.merchant_id,
            total_cents=transaction.total_cents,
            status=transaction.status.value,
        )
        self.db.add(db_transaction)
        self.db.flush()

        for inst in transaction.installments:
            self.db.add(
                BNPLInstallment(
                    id=inst.installment_id,
                    transaction_id=db_transaction.id,
                    due_date=inst.due_date,
                    amount_cents=inst.amount_cents,
                    status=inst.status.value,
                )
            )
        self.db.commit()
        return db_transaction

    def get_transaction(self, transaction_id: str) -> Transaction:
        db_transaction = (
            self.db.query(BNPLTransaction)
            .filter(BNPLTransaction.id == transaction_id)
            .first()
        )
        if db_transaction is None:
            raise TransactionNotFoundError(f"Transaction {transaction_id} not found")

        return Transaction(
            transaction_id=db_transaction.id,
            merchant_id=db_transaction.merchant_id,
            total_cents=db_transaction.total_cents,
            status=TransactionStatus(db_transaction.status),
            installments=[
                Installment(
                    installment_id=inst.id,
                    transaction_id=inst.transaction_id,
                    due_date=inst.due_date,
                    amount_cents=inst.amount_cents,
                    status=InstallmentStatus(inst.status),
                )
                for inst in db_transaction.installments
            ],
        )

    def mark_settled(
        self,
        transaction_id: str,
        installment_ids: Sequence[str],
        discount_cents: int,
        idempotency_key: str,
    ) -> None:
        """
        Settle the installment set in one database transaction.

        A key that already settled is a no-op. The conditional update only
        touches open installments, so a row count short of the set means some
        installment was settled underneath us and nothing is written.

        Raises:
            LedgerError: on partial match or database failure
        """
        try:
            if self.db.get(InstallmentSettlement, idempotency_key) is not None:
                return

            now = datetime.now(timezone.utc)
            updated = (
                self.db.query(BNPLInstallment)
                .filter(
                    BNPLInstallment.transaction_id == transaction_id,
                    BNPLInstallment.id.in_(list(installment_ids)),
                    BNPLInstallment.status.in_(_OPEN_STATUSES),
                )
                .update(
                    {
                        BNPLInstallment.status: InstallmentStatus.COMPLETED.value,
                        BNPLInstallment.settlement_key: idempotency_key,
                        BNPLInstallment.settled_at: now,
                    },
                    synchronize_session=False,
                )
            )
            if updated != len(installment_ids):
                self.db.rollback()
                raise LedgerError(
                    f"Expected to settle {len(installment_ids)} installments of {transaction_id}, matched {updated}"
                )

            self.db.add(
                InstallmentSettlement(
                    idempotency_key=idempotency_key,
                    transaction_id=transaction_id,
                    installment_ids=list(installment_ids),
                    discount_cents=discount_cents,
                    settled_at=now,
                )
            )

            remaining = (
                self.db.query(BNPLInstallment)
                .filter(
                    BNPLInstallment.transaction_id == transaction_id,
                    BNPLInstallment.status != InstallmentStatus.COMPLETED.value,
                )
                .count()
            )
            if remaining == 0:
                self.db.query(BNPLTransaction).filter(BNPLTransaction.id == transaction_id).update(
                    {BNPLTransaction.status: TransactionStatus.COMPLETED.value},
                    synchronize_session=False,
                )

            self.db.commit()
            self.db.expire_all()
        except SQLAlchemyError as e:
            self.db.rollback()
            raise LedgerError(f"Settlement write failed: {e}") from e

    def claim(self, transaction_id: str, holder: str, ttl_seconds: float) -> bool:
        """
        Take the commit claim with a conditional update.

        Only one writer can move the claim off an empty, expired or own
        lease, so two workers racing on one transaction see exactly one
        winner.

        Raises:
            TransactionNotFoundError: unknown transaction
            LedgerError: database failure
        """
        now = datetime.now(timezone.utc)
        try:
            updated = (
                self.db.query(BNPLTransaction)
                .filter(
                    BNPLTransaction.id == transaction_id,
                    or_(
                        BNPLTransaction.commit_claim.is_(None),
                        BNPLTransaction.commit_claim == holder,
                        BNPLTransaction.claim_expires_at < now,
                    ),
                )
                .update(
                    {
                        BNPLTransaction.commit_claim: holder,
                        BNPLTransaction.claim_expires_at: now + timedelta(seconds=ttl_seconds),
                    },
                    synchronize_session=False,
                )
            )
            self.db.commit()
            if updated == 0 and self.db.get(BNPLTransaction, transaction_id) is None:
                raise TransactionNotFoundError(f"Transaction {transaction_id} not found")
        except SQLAlchemyError as e:
            self.db.rollback()
            raise LedgerError(f"Transaction claim failed: {e}") from e
        return updated == 1

    def release(self, transaction_id: str, holder: str) -> None:
        try:
            self.db.query(BNPLTransaction).filter(
                BNPLTransaction.id == transaction_id,
                BNPLTransaction.commit_claim == holder,
            ).update(
                {BNPLTransaction.commit_claim: None, BNPLTransaction.claim_expires_at: None},
                synchronize_session=False,
            )
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            raise LedgerError(f"Transaction claim release failed: {e}") from e

    def count_settlements(
        self,
        transaction_id: Optional[str] = None,
        merchant_id: Optional[str] = None,
        since: Optional[datetime] = None,
    ) -> int:
        """Settled early payments, one per idempotency key"""
        query = self.db.query(InstallmentSettlement)
        if transaction_id is not None:
            query = query.filter(InstallmentSettlement.transaction_id == transaction_id)
        if merchant_id is not None:
            query = query.join(BNPLTransaction, BNPLTransaction.id == InstallmentSettlement.transaction_id).filter(
                BNPLTransaction.merchant_id == merchant_id
            )
        if since is not None:
            query = query.filter(InstallmentSettlement.settled_at >= since)
        try:
            return query.count()
        except SQLAlchemyError as e:
            raise LedgerError(f"Settlement count failed: {e}") from e


class MerchantConfigRepository:
    """Repository for merchant early payment configuration"""

    def __init__(self, db: Session):
        self.db = db

    def save_config(self, config: MerchantEarlyPaymentConfig) -> MerchantEarlyPaymentSettings:
        db_config = MerchantEarlyPaymentSettings(
            merchant_id=config.merchant_id,
            enabled=config.enabled,
            discount_tiers=[
                {
                    "time_range": tier.time_range,
                    "discount_rate": str(tier.discount_rate),
                    "minimum_amount_cents": tier.minimum_amount_cents,
                    "maximum_discount_cents": tier.maximum_discount_cents,
                    "description": tier.description,
                }
                for tier in config.discount_tiers
            ],
            flat_fee_cents=config.fee_schedule.flat_fee_cents,
            partial_flat_fee_cents=config.fee_schedule.partial_flat_fee_cents,
            fee_percentage=str(config.fee_schedule.percentage_rate),
            partial_fee_mode=config.fee_schedule.partial_fee_mode.value,
            allow_partial_payments=config.allow_partial_payments,
            require_merchant_approval=config.require_merchant_approval,
            minimum_early_payment_cents=config.minimum_early_payment_cents,
            maximum_early_payment_cents=config.maximum_early_payment_cents,
            approval_threshold_cents=config.approval_threshold_cents,
            restrictions=_restrictions_to_json(config.restrictions),
        )
        db_config = self.db.merge(db_config)
        self.db.commit()
        return db_config

    def get_config(self, merchant_id: str) -> MerchantEarlyPaymentConfig:
        """
        Load a merchant's configuration.

        A merchant row without custom tiers gets the platform default tier set.

        Raises:
            ConfigurationError: no configuration row, or a row that cannot be parsed
        """
        db_config = self.db.get(MerchantEarlyPaymentSettings, merchant_id)
        if db_config is None:
            raise ConfigurationError(f"No early payment configuration for merchant {merchant_id}")

        try:
            tiers = tuple(
                DiscountTier.from_time_range(
                    raw["time_range"],
                    raw["discount_rate"],
                    raw.get("minimum_amount_cents", 0),
                    raw.get("maximum_discount_cents"),
                    raw.get("description", ""),
                )
                for raw in db_config.discount_tiers
            ) or default_discount_tiers()
            fee_schedule = FeeSchedule(
                flat_fee_cents=db_config.flat_fee_cents,
                percentage_rate=Decimal(db_config.fee_percentage),
                partial_flat_fee_cents=db_config.partial_flat_fee_cents,
                partial_fee_mode=FeeMode(db_config.partial_fee_mode),
            )
            restrictions = _restrictions_from_json(db_config.restrictions or {})
        except (KeyError, ValueError, ArithmeticError) as e:
            raise ConfigurationError(f"Invalid early payment configuration for merchant {merchant_id}: {e}") from e

        # Misconfigured tiers degrade to a warning; service is never denied over them
        problems = validate_tiers(tiers)
        if problems:
            config_warning_counter.labels(kind="invalid_tiers").inc()
            logger.warning(
                "Merchant discount tiers failed validation",
                extra={"merchant_id": merchant_id, "problems": problems},
            )

        return MerchantEarlyPaymentConfig(
            merchant_id=merchant_id,
            discount_tiers=tiers,
            fee_schedule=fee_schedule,
            enabled=db_config.enabled,
            allow_partial_payments=db_config.allow_partial_payments,
            require_merchant_approval=db_config.require_merchant_approval,
            minimum_early_payment_cents=db_config.minimum_early_payment_cents,
            maximum_early_payment_cents=db_config.maximum_early_payment_cents,
            approval_threshold_cents=db_config.approval_threshold_cents,
            restrictions=restrictions,
        )

    def get_discount_tiers(self, merchant_id: str) -> Tuple[DiscountTier, ...]:
        return self.get_config(merchant_id).discount_tiers

    def get_fee_schedule(self, merchant_id: str) -> FeeSchedule:
        return self.get_config(merchant_id).fee_schedule

    def allows_partial_payments(self, merchant_id: str) -> bool:
        return self.get_config(merchant_id).allow_partial_payments

    def requires_approval(self, merchant_id: str) -> bool:
        return self.get_config(merchant_id).require_merchant_approval


class AuditRepository:
    """Append-only repository for early payment audit records"""

    def __init__(self, db: Session):
        self.db = db

    def append(self, record: EarlyPaymentRecord) -> None:
        try:
            self.db.add(
                EarlyPaymentAudit(
                    id=record.record_id,
                    idempotency_key=record.idempotency_key,
                    transaction_id=record.transaction_id,
                    payment_type=record.payment_type.value,
                    state=record.state.value,
                    status=record.status.value,
                    installment_ids=list(record.installment_ids),
                    original_cents=record.original_cents,
                    discount_cents=record.discount_cents,
                    processing_fee_cents=record.processing_fee_cents,
                    final_cents=record.final_cents,
                    payment_method_ref=record.payment_method_ref,
                    discount_tier=record.discount_tier,
                    capture_reference=record.capture_reference,
                    failure_reason=record.failure_reason,
                    detail=record.detail,
                    recorded_at=record.recorded_at,
                )
            )
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            raise AuditError(f"Audit append failed: {e}") from e

    def find_completed(self, idempotency_key: str) -> Optional[EarlyPaymentRecord]:
        try:
            row = (
                self.db.query(EarlyPaymentAudit)
                .filter(
                    EarlyPaymentAudit.idempotency_key == idempotency_key,
                    EarlyPaymentAudit.state == CommitState.COMPLETED.value,
                )
                .first()
            )
        except SQLAlchemyError as e:
            raise AuditError(f"Audit lookup failed: {e}") from e
        return _to_record(row) if row is not None else None

    def get_records_by_transaction(self, transaction_id: str, limit: int = 50) -> List[EarlyPaymentRecord]:
        """Fetch the audit trail for a transaction, oldest first"""
        rows = (
            self.db.query(EarlyPaymentAudit)
            .filter(EarlyPaymentAudit.transaction_id == transaction_id)
            .order_by(EarlyPaymentAudit.seq.asc())
            .limit(limit)
            .all()
        )
        return [_to_record(row) for row in rows]

    def get_completed_records(self, merchant_id: Optional[str] = None) -> List[EarlyPaymentRecord]:
        """Completed commit records, optionally for one merchant's transactions"""
        query = self.db.query(EarlyPaymentAudit).filter(EarlyPaymentAudit.state == CommitState.COMPLETED.value)
        if merchant_id is not None:
            query = query.join(BNPLTransaction, BNPLTransaction.id == EarlyPaymentAudit.transaction_id).filter(
                BNPLTransaction.merchant_id == merchant_id
            )
        try:
            rows = query.order_by(EarlyPaymentAudit.seq.asc()).all()
        except SQLAlchemyError as e:
            raise AuditError(f"Audit lookup failed: {e}") from e
        return [_to_record(row) for row in rows]


def _restrictions_to_json(restrictions: EarlyPaymentRestrictions) -> dict:
    return {
        "excluded_payment_methods": list(restrictions.excluded_payment_methods),
        "max_early_payments_per_transaction": restrictions.max_early_payments_per_transaction,
        "max_early_payments_per_month": restrictions.max_early_payments_per_month,
        "minimum_days_before_early": restrictions.minimum_days_before_early,
        "blackout_dates": [day.isoformat() for day in restrictions.blackout_dates],
    }


def _restrictions_from_json(raw: dict) -> EarlyPaymentRestrictions:
    return EarlyPaymentRestrictions(
        excluded_payment_methods=tuple(raw.get("excluded_payment_methods") or ()),
        max_early_payments_per_transaction=raw.get("max_early_payments_per_transaction"),
        max_early_payments_per_month=raw.get("max_early_payments_per_month"),
        minimum_days_before_early=raw.get("minimum_days_before_early") or 0,
        blackout_dates=tuple(date.fromisoformat(day) for day in raw.get("blackout_dates") or ()),
    )


def _to_record(row: EarlyPaymentAudit) -> EarlyPaymentRecord:
    return EarlyPaymentRecord(
        record_id=row.id,
        idempotency_key=row.idempotency_key,
        transaction_id=row.transaction_id,
        payment_type=PaymentType(row.payment_type),
        state=CommitState(row.state),
        status=PaymentStatus(row.status),
        installment_ids=tuple(row.installment_ids),
        original_cents=row.original_cents,
        discount_cents=row.discount_cents,
        processing_fee_cents=row.processing_fee_cents,
        final_cents=row.final_cents,
        payment_method_ref=row.payment_method_ref,
        recorded_at=row.recorded_at,
        discount_tier=row.discount_tier,
        capture_reference=row.capture_reference,
        failure_reason=row.failure_reason,
        detail=row.detail,
    )
