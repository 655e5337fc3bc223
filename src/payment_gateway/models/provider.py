"""Processor identity and configuration models."""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from payment_gateway.models.exceptions import ErrorCode, PaymentGatewayError


class ProviderName(str, Enum):
    """Supported payment processors."""

    STRIPE = "stripe"
    TRANSBANK = "transbank"
    MERCADOPAGO = "mercadopago"

    @classmethod
    def parse(cls, value: "str | ProviderName") -> "ProviderName":
        """
        Parse a processor name coming from a caller.

        Raises:
            PaymentGatewayError: UNKNOWN_PROVIDER if the name is not supported
        """
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            raise PaymentGatewayError(
                f"Unknown payment provider: {value}",
                code=ErrorCode.UNKNOWN_PROVIDER,
                details={"provider": value, "supported": [p.value for p in cls]},
            ) from None


class TokenizationMethod(str, Enum):
    """How a processor captures card data."""

    DIRECT = "direct"
    REDIRECT = "redirect"


@dataclass(frozen=True)
class ProviderConfig:
    """
    Immutable configuration for one processor.

    Loaded once per process from Settings. ``credentials`` holds the vendor
    secrets the adapter needs; ``options`` holds non-secret tuning values
    (timeouts, session TTL, return URLs).
    """

    provider: ProviderName
    method: TokenizationMethod = TokenizationMethod.DIRECT
    credentials: dict[str, str] = field(default_factory=dict)
    enabled: bool = True
    options: dict[str, Any] = field(default_factory=dict)

    # Set by the credential resolver
    test_mode: bool = False
    source: str = "config"

    def supplied_credentials(self, keys: tuple[str, ...] | None = None) -> dict[str, str]:
        """Return the non-empty credentials, optionally restricted to keys."""
        return {
            key: value
            for key, value in self.credentials.items()
            if value and (keys is None or key in keys)
        }
