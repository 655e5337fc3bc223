"""Error taxonomy shared by every layer of the payment gateway.

Every failure that leaves the core is a PaymentGatewayError carrying one of
the ErrorCode values below. Provider adapters catch their vendor's exception
types and re-raise them through this class, so callers never see a raw
``stripe.StripeError`` or ``httpx.HTTPError``.
"""

from enum import Enum
from typing import Any


class ErrorCode(str, Enum):
    """Error codes returned in the response envelope."""

    VALIDATION_ERROR = "VALIDATION_ERROR"
    UNAUTHORIZED = "UNAUTHORIZED"
    NOT_FOUND = "NOT_FOUND"
    MISSING_CONFIG = "MISSING_CONFIG"
    PROVIDER_NOT_FOUND = "PROVIDER_NOT_FOUND"
    UNKNOWN_PROVIDER = "UNKNOWN_PROVIDER"
    METHOD_NOT_SUPPORTED = "METHOD_NOT_SUPPORTED"
    SESSION_ALREADY_PROCESSED = "SESSION_ALREADY_PROCESSED"
    SESSION_EXPIRED = "SESSION_EXPIRED"
    INVALID_SIGNATURE = "INVALID_SIGNATURE"
    TOKENIZATION_FAILED = "TOKENIZATION_FAILED"
    SESSION_CREATION_FAILED = "SESSION_CREATION_FAILED"
    TOKENIZATION_COMPLETION_FAILED = "TOKENIZATION_COMPLETION_FAILED"
    PAYMENT_FAILED = "PAYMENT_FAILED"
    REFUND_FAILED = "REFUND_FAILED"
    STATUS_CHECK_FAILED = "STATUS_CHECK_FAILED"
    INTERNAL_ERROR = "INTERNAL_ERROR"


DEFAULT_HTTP_STATUS: dict[ErrorCode, int] = {
    ErrorCode.VALIDATION_ERROR: 400,
    ErrorCode.UNAUTHORIZED: 403,
    ErrorCode.NOT_FOUND: 404,
    ErrorCode.MISSING_CONFIG: 400,
    ErrorCode.PROVIDER_NOT_FOUND: 400,
    ErrorCode.UNKNOWN_PROVIDER: 400,
    ErrorCode.METHOD_NOT_SUPPORTED: 400,
    ErrorCode.SESSION_ALREADY_PROCESSED: 409,
    ErrorCode.SESSION_EXPIRED: 410,
    ErrorCode.INVALID_SIGNATURE: 401,
}


class PaymentGatewayError(Exception):
    """
    Base exception for every error raised by the gateway core.

    Attributes:
        code: Taxonomy code (see ErrorCode)
        message: Human-readable message, safe to return to callers
        http_status: HTTP status used when rendering the error envelope
        details: Optional structured context (missing fields, vendor codes)
    """

    def __init__(
        self,
        message: str,
        code: ErrorCode = ErrorCode.INTERNAL_ERROR,
        http_status: int | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code = ErrorCode(code)
        self.http_status = http_status or DEFAULT_HTTP_STATUS.get(self.code, 500)
        self.details = details

    def to_dict(self) -> dict[str, Any]:
        """Render the error part of the response envelope."""
        body: dict[str, Any] = {"code": self.code.value, "message": self.message}
        if self.details:
            body["details"] = self.details
        return body

    @classmethod
    def from_exception(
        cls,
        exc: BaseException,
        code: ErrorCode = ErrorCode.INTERNAL_ERROR,
    ) -> "PaymentGatewayError":
        """Return exc unchanged if it is already a gateway error, else wrap it."""
        if isinstance(exc, PaymentGatewayError):
            return exc
        if code == ErrorCode.INTERNAL_ERROR:
            message = "An unexpected error occurred"
        else:
            message = str(exc) or code.value
        return cls(
            message,
            code=code,
            details={"error_type": type(exc).__name__},
        )

    def __repr__(self) -> str:
        return f"{type(self).__name__}(code={self.code.value!r}, message={self.message!r})"


class ValidationFailed(PaymentGatewayError):
    """Raised when caller input is missing or malformed."""

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        super().__init__(message, ErrorCode.VALIDATION_ERROR, details=details)


class NotFound(PaymentGatewayError):
    """Raised when a card, session or payment does not exist."""

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        super().__init__(message, ErrorCode.NOT_FOUND, details=details)


class Forbidden(PaymentGatewayError):
    """Raised when the caller does not own the resource it references."""

    def __init__(self, message: str = "Unauthorized", details: dict[str, Any] | None = None) -> None:
        super().__init__(message, ErrorCode.UNAUTHORIZED, details=details)


class MissingConfig(PaymentGatewayError):
    """Raised when a processor cannot be initialized for lack of credentials."""

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        super().__init__(message, ErrorCode.MISSING_CONFIG, details=details)


class MethodNotSupported(PaymentGatewayError):
    """Raised when a processor does not implement the requested capability."""

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        super().__init__(message, ErrorCode.METHOD_NOT_SUPPORTED, details=details)
