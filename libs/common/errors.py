"""Domain error taxonomy.

Every error carries a machine-readable ``code`` and a human ``message``.
``http_status`` is only a hint for the service surface; the engine itself
never builds HTTP responses.
"""

from typing import Optional


class CoreError(Exception):
    """Base exception for engine errors."""

    code = "CORE_ERROR"
    http_status = 500
    retryable = False

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[dict] = None,
    ):
        self.message = message
        if code:
            self.code = code
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> dict:
        payload = {"code": self.code, "detail": self.message}
        if self.details:
            payload["details"] = self.details
        return payload


class ValidationError(CoreError):
    code = "VALIDATION_FAILED"
    http_status = 400


class InvalidCouponError(ValidationError):
    code = "INVALID_COUPON"


class NotFoundError(CoreError):
    code = "NOT_FOUND"
    http_status = 404


class ProductNotFoundError(NotFoundError):
    code = "PRODUCT_NOT_FOUND"


class UnknownReferenceError(NotFoundError):
    code = "UNKNOWN_REFERENCE"


class ConflictError(CoreError):
    code = "CONFLICT"
    http_status = 409


class WithdrawalInProgressError(ConflictError):
    code = "WITHDRAWAL_IN_PROGRESS"


class InsufficientBalanceError(CoreError):
    code = "INSUFFICIENT_BALANCE"
    http_status = 400


class NoPaymentOptionError(CoreError):
    code = "NO_PAYMENT_OPTION"
    http_status = 400


class UnauthorizedError(CoreError):
    code = "UNAUTHORIZED"
    http_status = 403


class IntegrationError(CoreError):
    """A gateway or shipping provider call failed.

    ``retryable`` is True for timeouts and transport failures, False when
    the provider answered and rejected the request.
    """

    code = "INTEGRATION_FAILED"
    http_status = 502

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        retryable: bool = False,
        status_code: Optional[int] = None,
        response_data: Optional[dict] = None,
    ):
        super().__init__(message, code=code)
        self.retryable = retryable
        self.status_code = status_code
        self.response_data = response_data or {}
        if retryable:
            self.http_status = 503
