"""Base interface for payment providers."""

from abc import ABC, abstractmethod
from collections.abc import Mapping
from datetime import timedelta
from decimal import Decimal
from typing import Any, ClassVar

from payment_gateway.models import (
    CardToken,
    ErrorCode,
    MethodNotSupported,
    Payment,
    PaymentGatewayError,
    PaymentResult,
    PaymentStatus,
    PaymentStatusUpdate,
    ProviderConfig,
    ProviderName,
    RedirectSession,
    RefundResult,
    TokenizationMethod,
    TokenizationResult,
    TokenizationSession,
)
from payment_gateway.models.exceptions import DEFAULT_HTTP_STATUS
from payment_gateway.models.requests import DirectTokenizationRequest, RedirectTokenizationRequest


class PaymentProvider(ABC):
    """
    Abstract base class for payment provider integrations.

    Every processor (Stripe, Transbank, MercadoPago) implements this
    interface so the orchestrator and executor never branch on vendor.
    Providers are pure translators: they talk to the vendor and return
    normalized results, and never write to the document store.

    Subclasses declare:
        name: Processor identity
        supported_methods: Tokenization flows the processor offers
        required_credentials: Credential keys needed to initialize
        test_profile: Public sandbox credentials, or None
        default_session_ttl: Redirect session lifetime when not configured
    """

    name: ClassVar[ProviderName]
    supported_methods: ClassVar[frozenset[TokenizationMethod]] = frozenset()
    required_credentials: ClassVar[tuple[str, ...]] = ()
    test_profile: ClassVar[Mapping[str, str] | None] = None
    default_session_ttl: ClassVar[timedelta] = timedelta(hours=24)

    def __init__(self) -> None:
        self.config: ProviderConfig | None = None

    @classmethod
    def detect_test_mode(cls, credentials: Mapping[str, str]) -> bool:
        """Whether the given credentials point at the vendor's sandbox."""
        return False

    @property
    def is_initialized(self) -> bool:
        return self.config is not None

    @property
    def is_test_mode(self) -> bool:
        return bool(self.config and self.config.test_mode)

    @property
    def session_ttl(self) -> timedelta:
        minutes = self.option("session_ttl_minutes")
        return timedelta(minutes=int(minutes)) if minutes else self.default_session_ttl

    def option(self, key: str, default: Any = None) -> Any:
        if self.config is None:
            return default
        return self.config.options.get(key, default)

    def credential(self, key: str, default: str = "") -> str:
        if self.config is None:
            return default
        return self.config.credentials.get(key) or default

    def initialize(self, config: ProviderConfig) -> None:
        """
        Bind the provider to resolved credentials.

        Idempotent: calling it again with an equal config keeps the current
        state untouched.
        """
        if self.config == config:
            return
        self._configure(config)
        self.config = config

    @abstractmethod
    def _configure(self, config: ProviderConfig) -> None:
        """Set up vendor clients for config."""

    def _require_initialized(self) -> None:
        if self.config is None:
            raise PaymentGatewayError(
                f"{self.name.value} provider is not initialized",
                code=ErrorCode.MISSING_CONFIG,
            )

    def supports(self, method: TokenizationMethod) -> bool:
        return method in self.supported_methods

    async def tokenize_direct(self, request: DirectTokenizationRequest) -> TokenizationResult:
        """
        Exchange raw card data for a vendor token.

        Returns:
            TokenizationResult holding an unsaved PaymentCard

        Raises:
            PaymentGatewayError: TOKENIZATION_FAILED on vendor failure,
                METHOD_NOT_SUPPORTED when the processor is redirect-only
        """
        raise MethodNotSupported(
            f"{self.name.value} does not support direct tokenization",
            details={"provider": self.name.value, "method": TokenizationMethod.DIRECT.value},
        )

    async def create_tokenization_session(
        self, request: RedirectTokenizationRequest
    ) -> RedirectSession:
        """Start a vendor-hosted card registration and return where to send the user."""
        raise MethodNotSupported(
            f"{self.name.value} does not support redirect tokenization",
            details={"provider": self.name.value, "method": TokenizationMethod.REDIRECT.value},
        )

    async def complete_tokenization(
        self, session: TokenizationSession, callback_data: Mapping[str, Any]
    ) -> TokenizationResult:
        """
        Finish a redirect registration from the vendor's callback data.

        Raises:
            PaymentGatewayError: SESSION_EXPIRED when the vendor reports the
                registration window closed, TOKENIZATION_COMPLETION_FAILED otherwise
        """
        raise MethodNotSupported(
            f"{self.name.value} does not support redirect tokenization",
            details={"provider": self.name.value, "method": TokenizationMethod.REDIRECT.value},
        )

    @abstractmethod
    async def process_payment(self, payment: Payment, token: CardToken) -> PaymentResult:
        """
        Charge a stored card.

        Declines come back as a PaymentResult with status FAILED. Vendor
        outages, timeouts and rejected requests raise PAYMENT_FAILED.
        """

    @abstractmethod
    def verify_webhook(
        self, payload: bytes, signature: str | None, request_id: str | None = None
    ) -> bool:
        """Check a webhook's authenticity. Never raises."""

    @abstractmethod
    async def handle_webhook(self, event: Mapping[str, Any]) -> PaymentStatusUpdate | None:
        """Translate a verified webhook event; None when it carries no payment status."""

    @abstractmethod
    async def refund_payment(self, payment: Payment, amount: Decimal | None = None) -> RefundResult:
        """Refund amount (or the whole payment when None)."""

    @abstractmethod
    async def get_payment_status(self, vendor_payment_id: str) -> Payment:
        """Fetch a payment snapshot from the vendor with a normalized status."""

    @classmethod
    @abstractmethod
    def map_status(cls, vendor_status: str | None) -> PaymentStatus:
        """Total mapping from the vendor's vocabulary; unknown values map to PENDING."""

    async def aclose(self) -> None:
        """Release network clients held by the provider."""


def vendor_error(
    code: ErrorCode,
    message: str,
    status_code: int | None = None,
    details: dict[str, Any] | None = None,
) -> PaymentGatewayError:
    """
    Build the gateway error for a vendor failure.

    Codes with a fixed status (SESSION_EXPIRED) keep it. Otherwise vendor
    4xx responses are the caller's fault and give a 400 (402 for declines);
    everything else is a 500.
    """
    if code in DEFAULT_HTTP_STATUS:
        http_status = DEFAULT_HTTP_STATUS[code]
    elif status_code == 402:
        http_status = 402
    elif status_code is not None and 400 <= status_code < 500:
        http_status = 400
    else:
        http_status = 500
    return PaymentGatewayError(message, code=code, http_status=http_status, details=details)


def response_field(body: Mapping[str, Any], key: str, code: ErrorCode, vendor: str) -> Any:
    """Read a field the vendor always sends on success; its absence is a vendor failure."""
    value = body.get(key)
    if value is None or value == "":
        raise vendor_error(
            code,
            f"{vendor} response is missing {key}",
            details={"field": key},
        )
    return value
