"""POST /v1/early-payments/calculate and /commit, GET /v1/early-payments/history and /statistics"""

import logging
from typing import Optional
from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Query, Request

from earlypay.api.v1.schemas import (
    AuditRecordSchema,
    EarlyPaymentRequestSchema,
    EarlyPaymentResultSchema,
    HistoryResponse,
    StatisticsResponse,
)
from earlypay.api.dependencies import (
    get_audit_repository,
    get_early_payment_service,
    get_ledger_client,
    get_request_id,
)
from earlypay.domain import statistics
from earlypay.domain.exceptions import REASON_TEMPORARILY_UNAVAILABLE, AuditError
from earlypay.domain.models import EarlyPaymentRequest, PaymentStatus
from earlypay.domain.service import EarlyPaymentService
from earlypay.infrastructure.clients.ledger import LedgerClient
from earlypay.infrastructure.database.repositories import AuditRepository

router = APIRouter()


def _to_request(body: EarlyPaymentRequestSchema) -> EarlyPaymentRequest:
    return EarlyPaymentRequest(
        transaction_id=body.transaction_id,
        payment_type=body.payment_type,
        amount_cents=body.amount_cents,
        payment_method_ref=body.payment_method_ref,
        installment_ids=tuple(body.installment_ids),
        quoted_final_cents=body.quoted_final_cents,
        quoted_amount_due_cents=body.quoted_amount_due_cents,
    )


@router.post("/early-payments/calculate", response_model=EarlyPaymentResultSchema)
def calculate_early_payment(
    request_body: EarlyPaymentRequestSchema,
    service: EarlyPaymentService = Depends(get_early_payment_service),
):
    """Quote an early payment request without charging or settling anything"""
    result = service.calculate(_to_request(request_body))
    return EarlyPaymentResultSchema.from_domain(result)


@router.post("/early-payments/commit", response_model=EarlyPaymentResultSchema)
async def commit_early_payment(
    request_body: EarlyPaymentRequestSchema,
    background_tasks: BackgroundTasks,
    request: Request,
    service: EarlyPaymentService = Depends(get_early_payment_service),
    ledger_client: LedgerClient = Depends(get_ledger_client),
):
    """
    Commit an early payment exactly once.

    Flow:
    1. Re-validate the request against current installment data
    2. Capture the discounted amount with the payment gateway
    3. Settle the targeted installments
    4. Notify the ledger in the background (skipped for replays)

    Failures come back as status "failed" with a stable failure_reason.
    """
    request_id = get_request_id(request)

    try:
        result = await service.commit(_to_request(request_body), request_id=request_id)
    except Exception as e:
        logging.error(f"Unexpected commit error: {e}", extra={"request_id": request_id})
        raise HTTPException(status_code=500, detail=REASON_TEMPORARILY_UNAVAILABLE)

    if result.status == PaymentStatus.COMPLETED and not result.replayed:
        background_tasks.add_task(ledger_client.send_settlement_event, result)

    return EarlyPaymentResultSchema.from_domain(result)


@router.get("/early-payments/history", response_model=HistoryResponse)
def get_early_payment_history(
    transaction_id: str = Query(..., description="Transaction identifier"),
    audit: AuditRepository = Depends(get_audit_repository),
):
    """
    Retrieve the early payment audit trail for a transaction.

    Returns:
        Every recorded commit state transition, oldest first
    """
    records = audit.get_records_by_transaction(transaction_id, limit=100)
    return HistoryResponse(
        transaction_id=transaction_id,
        records=[AuditRecordSchema.from_domain(record) for record in records],
    )


@router.get("/early-payments/statistics", response_model=StatisticsResponse)
def get_early_payment_statistics(
    request: Request,
    merchant_id: Optional[str] = Query(None, description="Restrict to one merchant's transactions"),
    audit: AuditRepository = Depends(get_audit_repository),
):
    """
    Summarize completed early payments from the audit trail.

    Returns:
        Payment count, savings provided, fees collected, average discount
        rate and the most popular discount time range
    """
    try:
        records = audit.get_completed_records(merchant_id=merchant_id)
    except AuditError as e:
        logging.error(f"Statistics lookup failed: {e}", extra={"request_id": get_request_id(request)})
        raise HTTPException(status_code=503, detail=e.reason)
    return StatisticsResponse.from_domain(merchant_id, statistics.summarize(records))
