from typing import Optional

from fastapi import HTTPException


class CryptoPaymentError(HTTPException):
    """Base for user-facing crypto payment failures; `code` is stable for clients."""

    status_code = 400
    code = "crypto_payment_error"

    def __init__(self, detail: str, status_code: Optional[int] = None):
        super().__init__(status_code=status_code or self.status_code, detail=detail)


class InvalidPaymentRequest(CryptoPaymentError):
    code = "invalid"


class PaymentNotFound(CryptoPaymentError):
    status_code = 404
    code = "not_found"


class PaymentForbidden(CryptoPaymentError):
    status_code = 403
    code = "forbidden"


class PaymentExpired(CryptoPaymentError):
    code = "expired"


class DuplicateTransactionHash(CryptoPaymentError):
    status_code = 409
    code = "duplicate_transaction_hash"


class VerificationFailed(CryptoPaymentError):
    code = "verification_failed"

    def __init__(self, reason: str, retryable: bool = False):
        # Retryable failures leave the payment open for resubmission.
        super().__init__(reason, status_code=409 if retryable else 400)
        self.reason = reason
        self.retryable = retryable


class InsufficientAmount(CryptoPaymentError):
    code = "insufficient_amount"

    def __init__(self, usd_value: float, minimum: float):
        super().__init__(
            f"Insufficient amount. Sent ~${usd_value:.2f}; "
            f"minimum 1 credit requires ${minimum:.2f}."
        )
        self.usd_value = usd_value
        self.minimum = minimum


class RateUnavailable(CryptoPaymentError):
    status_code = 424
    code = "rate_unavailable"


class UpstreamUnavailable(CryptoPaymentError):
    status_code = 502
    code = "upstream_unavailable"

    def __init__(self, detail: str = "Blockchain or pricing service is unavailable. Please try again shortly."):
        super().__init__(detail)


class CryptoPaymentNotConfigured(CryptoPaymentError):
    status_code = 500
    code = "not_configured"

    def __init__(self, detail: str = "Crypto payment is not configured. Please contact support."):
        super().__init__(detail)
