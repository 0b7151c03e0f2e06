"""Domain-specific exceptions"""

# Stable, customer-facing failure reasons. Internal detail never leaves the service.
REASON_QUOTE_EXPIRED = "quote expired"
REASON_PAYMENT_DECLINED = "payment declined"
REASON_SELECTION_INVALID = "selection invalid"
REASON_TEMPORARILY_UNAVAILABLE = "temporarily unavailable"
REASON_NOT_ELIGIBLE = "not eligible"


class DomainException(Exception):
    """Base exception for domain layer"""

    reason = REASON_TEMPORARILY_UNAVAILABLE


class ConfigurationError(DomainException):
    """Merchant early payment configuration is missing or inconsistent"""

    pass


class TransactionNotFoundError(DomainException):
    """Ledger has no transaction with the requested id"""

    reason = REASON_SELECTION_INVALID


class ValidationError(DomainException):
    """Request is malformed or stale and must be rejected before any side effect"""

    def __init__(self, message: str, reason: str = REASON_SELECTION_INVALID):
        super().__init__(message)
        self.reason = reason


class SelectionError(ValidationError):
    """Installment selection is empty, unknown, foreign or already settled"""

    pass


class RestrictionError(ValidationError):
    """Merchant restrictions forbid this early payment right now"""

    def __init__(self, message: str):
        super().__init__(message, REASON_NOT_ELIGIBLE)


class CaptureError(DomainException):
    """Payment gateway declined or failed to capture the charge"""

    reason = REASON_PAYMENT_DECLINED

    def __init__(self, message: str, retryable: bool = False, retry_after_seconds: float | None = None):
        super().__init__(message)
        self.retryable = retryable
        self.retry_after_seconds = retry_after_seconds


class CaptureTimeoutError(CaptureError):
    """Payment gateway did not answer within the capture timeout"""

    reason = REASON_TEMPORARILY_UNAVAILABLE


class LedgerError(DomainException):
    """Installment ledger rejected or failed a settlement write"""

    pass


class AuditError(DomainException):
    """Audit sink could not append a record"""

    pass
