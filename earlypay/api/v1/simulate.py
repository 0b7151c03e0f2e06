"""POST /v1/transactions/{transaction_id}/simulate-early-payment - what-if scenarios"""

from datetime import datetime, timezone
from fastapi import APIRouter, Depends, HTTPException

from earlypay.api.v1.schemas import SimulationItem, SimulationRequest, SimulationResponse
from earlypay.api.dependencies import get_early_payment_service
from earlypay.domain.exceptions import ConfigurationError, TransactionNotFoundError
from earlypay.domain.models import Scenario
from earlypay.domain.service import EarlyPaymentService

router = APIRouter()


def _as_utc(moment: datetime | None) -> datetime | None:
    """Naive timestamps from clients are taken as UTC"""
    if moment is None or moment.tzinfo is not None:
        return moment
    return moment.replace(tzinfo=timezone.utc)


@router.post("/transactions/{transaction_id}/simulate-early-payment", response_model=SimulationResponse)
def simulate_early_payment(
    transaction_id: str,
    request_body: SimulationRequest,
    service: EarlyPaymentService = Depends(get_early_payment_service),
):
    """Score hypothetical early payments without committing any of them"""
    scenarios = [
        Scenario(
            payment_type=item.payment_type,
            amount_cents=item.amount_cents,
            installment_ids=tuple(item.installment_ids),
            payment_date=_as_utc(item.payment_date),
        )
        for item in request_body.scenarios
    ]

    try:
        outcomes = service.simulate(transaction_id, scenarios)
    except TransactionNotFoundError:
        raise HTTPException(status_code=404, detail="Transaction not found")
    except ConfigurationError as e:
        raise HTTPException(status_code=503, detail=e.reason)

    return SimulationResponse(
        transaction_id=transaction_id,
        simulations=[
            SimulationItem.from_domain(item, outcome)
            for item, outcome in zip(request_body.scenarios, outcomes)
        ],
    )
