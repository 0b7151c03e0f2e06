"""Ledger webhook client announcing completed early payments, with exponential backoff"""

import httpx
import asyncio
from typing import Any, Dict
from earlypay.config import settings
from earlypay.domain.models import EarlyPaymentResult
from earlypay.infrastructure.observability.metrics import webhook_latency_histogram, webhook_failure_counter


def settlement_event(result: EarlyPaymentResult) -> Dict[str, Any]:
    """Webhook payload for a completed early payment"""
    return {
        "event": "EARLY_PAYMENT_SETTLED",
        "transaction_id": result.transaction_id,
        "record_id": result.record_id,
        "idempotency_key": result.idempotency_key,
        "payment_type": result.payment_type.value,
        "installment_ids": list(result.settled_installment_ids),
        "original_cents": result.original_cents,
        "discount_cents": result.discount_cents,
        "processing_fee_cents": result.processing_fee_cents,
        "final_cents": result.final_cents,
    }


class LedgerClient:
    """Client for sending settlement events to the ledger service"""

    def __init__(self, webhook_url: str | None = None, transport: httpx.AsyncBaseTransport | None = None):
        self.webhook_url = webhook_url or settings.ledger_webhook_url
        self.transport = transport
        self.max_retries = settings.webhook_max_retries
        self.backoff_base = settings.webhook_backoff_base

    async def send_settlement_event(self, result: EarlyPaymentResult) -> None:
        """
        Notify the ledger that installments were settled early.

        Retry strategy:
        - Exponential backoff: base * 2^(attempt-1)
        - Retries on 5xx errors and network failures
        - The idempotency key travels in the payload so the ledger can dedupe
        """
        payload = settlement_event(result)
        attempt = 0
        async with httpx.AsyncClient(transport=self.transport) as client:
            while attempt < self.max_retries:
                try:
                    with webhook_latency_histogram.time():
                        response = await client.post(
                            self.webhook_url,
                            json=payload,
                            timeout=settings.http_timeout_seconds,
                        )
                        response.raise_for_status()
                        return

                except (httpx.HTTPStatusError, httpx.RequestError):
                    attempt += 1
                    webhook_failure_counter.inc()

                    if attempt >= self.max_retries:
                        raise

                    await asyncio.sleep(self.backoff_base * (2 ** (attempt - 1)))
