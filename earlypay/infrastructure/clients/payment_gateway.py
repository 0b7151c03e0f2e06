"""Payment gateway HTTP client for capturing early payments"""

import httpx
from datetime import datetime
from earlypay.domain.models import CaptureReceipt
from earlypay.domain.exceptions import CaptureError
from earlypay.config import settings

_RETRYABLE_STATUS = {408, 409, 429, 500, 502, 503, 504}


class PaymentGatewayClient:
    """Client for the external card payment capture API"""

    supports_cancellation = True

    def __init__(
        self,
        base_url: str | None = None,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.base_url = base_url or settings.payment_gateway_base
        self.timeout = timeout or settings.http_timeout_seconds
        self.transport = transport

    async def capture(self, idempotency_key: str, payment_method_ref: str, amount_cents: int) -> CaptureReceipt:
        """
        Capture `amount_cents` from a stored payment method.

        The gateway deduplicates on the Idempotency-Key header, so a retried
        capture with the same key never charges twice.

        Raises:
            CaptureError: on decline (not retryable), or on timeout, network
                failure and 5xx/429 responses (retryable, with Retry-After hint)
        """
        async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
            try:
                response = await client.post(
                    f"{self.base_url}/captures",
                    json={"payment_method_ref": payment_method_ref, "amount_cents": amount_cents},
                    headers={"Idempotency-Key": idempotency_key},
                )
                response.raise_for_status()
                data = response.json()

                return CaptureReceipt(
                    capture_reference=data["capture_id"],
                    amount_cents=data["amount_cents"],
                    captured_at=datetime.fromisoformat(data["captured_at"]),
                )

            except httpx.TimeoutException as e:
                raise CaptureError(f"Payment gateway timeout after {self.timeout}s", retryable=True) from e
            except httpx.HTTPStatusError as e:
                status = e.response.status_code
                raise CaptureError(
                    f"Payment gateway error: {status}",
                    retryable=status in _RETRYABLE_STATUS,
                    retry_after_seconds=_retry_after(e.response),
                ) from e
            except httpx.RequestError as e:
                raise CaptureError(f"Payment gateway unreachable: {e}", retryable=True) from e
            except (KeyError, ValueError, TypeError) as e:
                raise CaptureError(f"Invalid capture response from gateway: {e}") from e

    async def cancel(self, idempotency_key: str) -> None:
        """Void a capture that has not completed yet"""
        async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
            try:
                response = await client.post(f"{self.base_url}/captures/{idempotency_key}/cancel")
                response.raise_for_status()
            except httpx.HTTPError as e:
                raise CaptureError(f"Payment gateway cancel failed: {e}") from e


def _retry_after(response: httpx.Response) -> float | None:
    value = response.headers.get("Retry-After")
    try:
        return float(value) if value is not None else None
    except ValueError:
        return None
