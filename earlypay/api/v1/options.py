"""GET /v1/transactions/{transaction_id}/early-payment-options - ranked early payment quotes"""

import logging
from fastapi import APIRouter, Depends, HTTPException, Request

from earlypay.api.v1.schemas import EarlyPaymentOptionSchema, OptionsResponse
from earlypay.api.dependencies import get_early_payment_service, get_request_id
from earlypay.domain.exceptions import ConfigurationError, TransactionNotFoundError
from earlypay.domain.service import EarlyPaymentService

router = APIRouter()


@router.get("/transactions/{transaction_id}/early-payment-options", response_model=OptionsResponse)
def get_early_payment_options(
    transaction_id: str,
    request: Request,
    service: EarlyPaymentService = Depends(get_early_payment_service),
):
    """
    List early payment options for a transaction, best first.

    Returns:
        Full and partial options ranked by net savings; empty when no
        discount tier currently applies
    """
    request_id = get_request_id(request)

    try:
        options = service.generate_options(transaction_id)
    except TransactionNotFoundError:
        raise HTTPException(status_code=404, detail="Transaction not found")
    except ConfigurationError as e:
        logging.error(f"Configuration error: {e}", extra={"request_id": request_id})
        raise HTTPException(status_code=503, detail=e.reason)

    return OptionsResponse(
        transaction_id=transaction_id,
        options=[EarlyPaymentOptionSchema.from_domain(opt) for opt in options],
        best_option_id=options[0].option_id if options else None,
    )
