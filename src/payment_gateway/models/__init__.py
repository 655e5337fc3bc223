"""Domain models for the payment gateway."""

from payment_gateway.models.exceptions import (
    ErrorCode,
    Forbidden,
    MethodNotSupported,
    MissingConfig,
    NotFound,
    PaymentGatewayError,
    ValidationFailed,
)
from payment_gateway.models.payments import (
    Payment,
    PaymentResult,
    PaymentStatus,
    PaymentStatusUpdate,
    RefundResult,
)
from payment_gateway.models.provider import ProviderConfig, ProviderName, TokenizationMethod
from payment_gateway.models.tokenization import (
    CardBrand,
    CardToken,
    CardType,
    PaymentCard,
    RedirectSession,
    SessionStatus,
    TokenizationResult,
    TokenizationSession,
)

__all__ = [
    "CardBrand",
    "CardToken",
    "CardType",
    "ErrorCode",
    "Forbidden",
    "MethodNotSupported",
    "MissingConfig",
    "NotFound",
    "Payment",
    "PaymentCard",
    "PaymentGatewayError",
    "PaymentResult",
    "PaymentStatus",
    "PaymentStatusUpdate",
    "ProviderConfig",
    "ProviderName",
    "RedirectSession",
    "RefundResult",
    "SessionStatus",
    "TokenizationMethod",
    "TokenizationResult",
    "TokenizationSession",
    "ValidationFailed",
]
