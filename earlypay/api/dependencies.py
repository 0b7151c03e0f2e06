"""Dependency injection for FastAPI endpoints"""

from fastapi import Depends, Request
from sqlalchemy.orm import Session

from earlypay.domain.service import EarlyPaymentService
from earlypay.domain.settlement import SettlementCommitter
from earlypay.infrastructure.clients.ledger import LedgerClient
from earlypay.infrastructure.clients.payment_gateway import PaymentGatewayClient
from earlypay.infrastructure.database.repositories import (
    AuditRepository,
    InstallmentLedgerRepository,
    MerchantConfigRepository,
)
from earlypay.infrastructure.database.session import get_db


def get_request_id(request: Request) -> str:
    """Extract request ID from request state"""
    return getattr(request.state, "request_id", "unknown")


def get_payment_gateway() -> PaymentGatewayClient:
    """Provide payment gateway client instance"""
    return PaymentGatewayClient()


def get_ledger_client() -> LedgerClient:
    """Provide Ledger webhook client instance"""
    return LedgerClient()


def get_audit_repository(db: Session = Depends(get_db)) -> AuditRepository:
    return AuditRepository(db)


def get_early_payment_service(
    request: Request,
    db: Session = Depends(get_db),
    gateway: PaymentGatewayClient = Depends(get_payment_gateway),
) -> EarlyPaymentService:
    """
    Wire the service for one request.

    Transaction locks and the merchant config cache live on app.state so
    every request shares them.
    """
    ledger = InstallmentLedgerRepository(db)
    config_source = MerchantConfigRepository(db)
    committer = SettlementCommitter(
        ledger=ledger,
        gateway=gateway,
        config_source=config_source,
        audit=AuditRepository(db),
        locks=request.app.state.transaction_locks,
    )
    return EarlyPaymentService(
        ledger=ledger,
        config_source=config_source,
        committer=committer,
        config_cache=request.app.state.config_cache,
    )
