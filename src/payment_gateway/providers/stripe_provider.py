"""
Stripe payment provider.

Direct tokenization creates a PaymentMethod from raw card data and attaches
it to a Stripe Customer tagged with our user id. Redirect tokenization uses
a Checkout Session in ``setup`` mode. Charges are off-session
PaymentIntents confirmed immediately against the saved PaymentMethod.

Reference:
- https://docs.stripe.com/api/payment_methods
- https://docs.stripe.com/payments/save-and-reuse
- https://docs.stripe.com/api/payment_intents
"""

from collections.abc import Mapping
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any

import stripe
import structlog

from payment_gateway.domain.cards import to_card_brand
from payment_gateway.domain.money import from_minor_units, to_minor_units
from payment_gateway.models import (
    CardToken,
    CardType,
    ErrorCode,
    Payment,
    PaymentCard,
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
from payment_gateway.models.common import utc_now
from payment_gateway.models.requests import DirectTokenizationRequest, RedirectTokenizationRequest
from payment_gateway.providers.base import PaymentProvider, vendor_error

logger = structlog.get_logger(__name__)

STRIPE_STATUS_MAP: dict[str, PaymentStatus] = {
    "succeeded": PaymentStatus.COMPLETED,
    "processing": PaymentStatus.PROCESSING,
    "requires_payment_method": PaymentStatus.PENDING,
    "requires_confirmation": PaymentStatus.PENDING,
    "requires_action": PaymentStatus.PENDING,
    "requires_capture": PaymentStatus.PENDING,
    "canceled": PaymentStatus.CANCELLED,
    "payment_failed": PaymentStatus.FAILED,
}

# Webhook event type -> status the payment moves to
STRIPE_EVENT_STATUS: dict[str, PaymentStatus] = {
    "payment_intent.succeeded": PaymentStatus.COMPLETED,
    "payment_intent.processing": PaymentStatus.PROCESSING,
    "payment_intent.payment_failed": PaymentStatus.FAILED,
    "payment_intent.canceled": PaymentStatus.CANCELLED,
    "charge.refunded": PaymentStatus.REFUNDED,
}


def _decline_code(e: stripe.CardError) -> str | None:
    # Extract decline_code from error object (it may not always be present)
    error = getattr(e, "error", None)
    if error is not None and getattr(error, "decline_code", None):
        return error.decline_code
    if e.json_body and "error" in e.json_body:
        return e.json_body["error"].get("decline_code")
    return None


def _declined_intent_id(e: stripe.CardError) -> str | None:
    error = (e.json_body or {}).get("error") or {}
    return (error.get("payment_intent") or {}).get("id")


class StripeProvider(PaymentProvider):
    """Stripe implementation of the provider contract."""

    name = ProviderName.STRIPE
    supported_methods = frozenset({TokenizationMethod.DIRECT, TokenizationMethod.REDIRECT})
    required_credentials = ("secret_key",)

    def __init__(self) -> None:
        super().__init__()
        self.api_key = ""
        self.webhook_secret = ""

    @classmethod
    def detect_test_mode(cls, credentials: Mapping[str, str]) -> bool:
        return credentials.get("secret_key", "").startswith(("sk_test_", "rk_test_"))

    def _configure(self, config: ProviderConfig) -> None:
        self.api_key = config.credentials["secret_key"]
        self.webhook_secret = config.credentials.get("webhook_secret", "")
        stripe.max_network_retries = 0  # Retries are the caller's decision

        # Stripe's Python library configures timeouts on its default HTTP
        # client rather than per call, so the key is passed per request and
        # the client is left as shipped.
        logger.info("stripe_provider_initialized", test_mode=config.test_mode)

    @classmethod
    def map_status(cls, vendor_status: str | None) -> PaymentStatus:
        return STRIPE_STATUS_MAP.get(vendor_status or "", PaymentStatus.PENDING)

    def _find_or_create_customer(self, user_id: str) -> Any:
        customers = stripe.Customer.search(
            query=f"metadata['user_id']:'{user_id}'",
            api_key=self.api_key,
        )
        if customers.data:
            return customers.data[0]
        return stripe.Customer.create(metadata={"user_id": user_id}, api_key=self.api_key)

    def _card_from_payment_method(
        self,
        payment_method: Any,
        user_id: str,
        customer_id: str | None,
        holder_name: str = "",
        alias: str | None = None,
    ) -> PaymentCard:
        card = payment_method.card
        billing_name = getattr(payment_method.billing_details, "name", None)
        return PaymentCard(
            user_id=user_id,
            provider=self.name,
            payment_token=payment_method.id,
            card_last_four=card.last4,
            card_brand=to_card_brand(card.brand),
            card_type=CardType.DEBIT if card.funding == "debit" else CardType.CREDIT,
            expiration_month=card.exp_month,
            expiration_year=card.exp_year,
            card_holder_name=holder_name or billing_name or "",
            alias=alias,
            # Saved Stripe payment methods do not expire and need no CVC later
            token_expires_at=None,
            requires_cvv_for_payments=False,
            vendor_customer_id=customer_id,
        )

    async def tokenize_direct(self, request: DirectTokenizationRequest) -> TokenizationResult:
        self._require_initialized()
        logger.info("stripe_tokenization_starting", user_id=request.user_id)

        try:
            payment_method = stripe.PaymentMethod.create(
                type="card",
                card={
                    "number": request.card_number,
                    "exp_month": request.card_exp_month,
                    "exp_year": request.card_exp_year,
                    "cvc": request.card_cvv,
                },
                billing_details={"name": request.card_holder_name},
                api_key=self.api_key,
            )
            customer = self._find_or_create_customer(request.user_id)
            stripe.PaymentMethod.attach(payment_method.id, customer=customer.id, api_key=self.api_key)

            if request.set_as_default:
                stripe.Customer.modify(
                    customer.id,
                    invoice_settings={"default_payment_method": payment_method.id},
                    api_key=self.api_key,
                )

        except stripe.CardError as e:
            logger.info("stripe_tokenization_declined", code=e.code, decline_code=_decline_code(e))
            raise vendor_error(
                ErrorCode.TOKENIZATION_FAILED,
                f"Stripe tokenization failed: {e.user_message or e}",
                status_code=402,
                details={"vendor_code": e.code, "decline_code": _decline_code(e)},
            ) from e

        except stripe.StripeError as e:
            logger.error("stripe_tokenization_error", error_type=type(e).__name__, error=str(e))
            raise vendor_error(
                ErrorCode.TOKENIZATION_FAILED,
                f"Stripe tokenization failed: {e.user_message or e}",
                status_code=e.http_status,
                details={"vendor_code": e.code},
            ) from e

        card = self._card_from_payment_method(
            payment_method,
            request.user_id,
            customer.id,
            holder_name=request.card_holder_name,
            alias=request.alias,
        )
        logger.info("stripe_tokenization_success", user_id=request.user_id, card_last4=card.card_last_four)
        return TokenizationResult(card=card)

    async def create_tokenization_session(
        self, request: RedirectTokenizationRequest
    ) -> RedirectSession:
        self._require_initialized()
        separator = "&" if "?" in request.return_url else "?"

        try:
            customer = self._find_or_create_customer(request.user_id)
            checkout = stripe.checkout.Session.create(
                mode="setup",
                customer=customer.id,
                payment_method_types=["card"],
                success_url=f"{request.return_url}{separator}session_id={{CHECKOUT_SESSION_ID}}&success=true",
                cancel_url=f"{request.return_url}{separator}session_id={{CHECKOUT_SESSION_ID}}&success=false",
                metadata={
                    "user_id": request.user_id,
                    "set_as_default": str(request.set_as_default).lower(),
                },
                api_key=self.api_key,
            )
        except stripe.StripeError as e:
            logger.error("stripe_session_creation_error", error_type=type(e).__name__, error=str(e))
            raise vendor_error(
                ErrorCode.SESSION_CREATION_FAILED,
                f"Stripe session creation failed: {e.user_message or e}",
                status_code=e.http_status,
            ) from e

        return RedirectSession(
            session_id=checkout.id,
            redirect_url=checkout.url or "",
            expires_at=utc_now() + self.session_ttl,
            vendor_data={"customer_id": customer.id},
        )

    async def complete_tokenization(
        self, session: TokenizationSession, callback_data: Mapping[str, Any]
    ) -> TokenizationResult:
        self._require_initialized()

        try:
            checkout = stripe.checkout.Session.retrieve(session.session_id, api_key=self.api_key)
            if checkout.status == "expired":
                raise vendor_error(
                    ErrorCode.SESSION_EXPIRED,
                    "Stripe checkout session expired",
                    status_code=410,
                )
            if not checkout.setup_intent:
                raise vendor_error(
                    ErrorCode.TOKENIZATION_COMPLETION_FAILED,
                    "Setup intent not found",
                    status_code=400,
                )

            setup_intent = stripe.SetupIntent.retrieve(checkout.setup_intent, api_key=self.api_key)
            if not setup_intent.payment_method:
                raise vendor_error(
                    ErrorCode.TOKENIZATION_COMPLETION_FAILED,
                    "Payment method not found",
                    status_code=400,
                )

            payment_method = stripe.PaymentMethod.retrieve(
                setup_intent.payment_method, api_key=self.api_key
            )

        except stripe.StripeError as e:
            logger.error("stripe_completion_error", error_type=type(e).__name__, error=str(e))
            raise vendor_error(
                ErrorCode.TOKENIZATION_COMPLETION_FAILED,
                f"Stripe tokenization completion failed: {e.user_message or e}",
                status_code=e.http_status,
            ) from e

        card = self._card_from_payment_method(
            payment_method,
            session.user_id,
            checkout.customer or session.vendor_data.get("customer_id"),
        )
        return TokenizationResult(card=card)

    async def process_payment(self, payment: Payment, token: CardToken) -> PaymentResult:
        self._require_initialized()
        amount = to_minor_units(payment.amount, payment.currency)

        logger.info(
            "stripe_payment_starting",
            payment_id=payment.payment_id,
            amount=amount,
            currency=payment.currency,
        )

        intent_params: dict[str, Any] = {
            "amount": amount,
            "currency": payment.currency.lower(),
            "payment_method": token.token_id,
            "confirm": True,
            "off_session": True,
            "description": payment.description,
            "metadata": {
                "payment_id": payment.payment_id,
                "user_id": payment.user_id,
                "professional_id": payment.professional_id,
                "service_request_id": payment.service_request_id or "",
            },
        }
        if token.vendor_customer_id:
            intent_params["customer"] = token.vendor_customer_id

        try:
            payment_intent = stripe.PaymentIntent.create(
                **intent_params,
                api_key=self.api_key,
                idempotency_key=f"payment-{payment.payment_id}",
            )

        except stripe.CardError as e:
            # Card declined - a normal business outcome, not an outage
            decline_code = _decline_code(e)
            logger.info(
                "stripe_card_declined",
                payment_id=payment.payment_id,
                error_code=e.code,
                decline_code=decline_code,
            )
            return PaymentResult(
                payment_id=payment.payment_id,
                status=PaymentStatus.FAILED,
                amount=payment.amount,
                currency=payment.currency,
                provider_payment_id=_declined_intent_id(e),
                decline_code=decline_code or e.code or "card_declined",
                decline_reason=e.user_message or "Card was declined",
            )

        except stripe.StripeError as e:
            logger.warning(
                "stripe_api_error",
                payment_id=payment.payment_id,
                error_type=type(e).__name__,
                error=str(e),
            )
            raise vendor_error(
                ErrorCode.PAYMENT_FAILED,
                f"Stripe payment processing failed: {e.user_message or e}",
                status_code=e.http_status,
                details={"vendor_code": e.code},
            ) from e

        status = self.map_status(payment_intent.status)
        logger.info(
            "stripe_payment_finished",
            payment_id=payment.payment_id,
            payment_intent_id=payment_intent.id,
            vendor_status=payment_intent.status,
            status=status.value,
        )
        return PaymentResult(
            payment_id=payment.payment_id,
            status=status,
            amount=payment.amount,
            currency=payment.currency,
            provider_payment_id=payment_intent.id,
            vendor_status=payment_intent.status,
        )

    def verify_webhook(
        self, payload: bytes, signature: str | None, request_id: str | None = None
    ) -> bool:
        if not self.webhook_secret or not signature:
            logger.warning("stripe_webhook_unverifiable", has_secret=bool(self.webhook_secret))
            return False
        try:
            stripe.Webhook.construct_event(payload, signature, self.webhook_secret)
        except (ValueError, stripe.SignatureVerificationError) as e:
            logger.warning("stripe_webhook_verification_failed", error=str(e))
            return False
        return True

    async def handle_webhook(self, event: Mapping[str, Any]) -> PaymentStatusUpdate | None:
        event_type = event.get("type", "")
        status = STRIPE_EVENT_STATUS.get(event_type)
        if status is None:
            logger.info("stripe_webhook_ignored", event_type=event_type)
            return None

        obj = event.get("data", {}).get("object", {})
        metadata = obj.get("metadata") or {}
        if event_type == "charge.refunded":
            transaction_id = obj.get("payment_intent")
            if obj.get("amount_refunded", 0) < obj.get("amount", 0):
                # Partial refunds leave the payment completed
                status = PaymentStatus.COMPLETED
        else:
            transaction_id = obj.get("id")

        return PaymentStatusUpdate(
            status=status,
            payment_id=metadata.get("payment_id"),
            transaction_id=transaction_id,
            vendor_status=obj.get("status"),
            event_type=event_type,
        )

    async def refund_payment(self, payment: Payment, amount: Decimal | None = None) -> RefundResult:
        self._require_initialized()
        params: dict[str, Any] = {"payment_intent": payment.transaction_id}
        if amount is not None:
            params["amount"] = to_minor_units(amount, payment.currency)

        try:
            refund = stripe.Refund.create(**params, api_key=self.api_key)
        except stripe.StripeError as e:
            logger.error("stripe_refund_error", payment_id=payment.payment_id, error=str(e))
            raise vendor_error(
                ErrorCode.REFUND_FAILED,
                f"Stripe refund failed: {e.user_message or e}",
                status_code=e.http_status,
            ) from e

        return RefundResult(
            refund_id=refund.id,
            amount=from_minor_units(refund.amount, payment.currency),
            vendor_status=refund.status,
        )

    async def get_payment_status(self, vendor_payment_id: str) -> Payment:
        self._require_initialized()
        try:
            intent = stripe.PaymentIntent.retrieve(vendor_payment_id, api_key=self.api_key)
        except stripe.StripeError as e:
            raise vendor_error(
                ErrorCode.STATUS_CHECK_FAILED,
                f"Failed to get Stripe payment status: {e.user_message or e}",
                status_code=e.http_status,
            ) from e

        metadata = intent.metadata or {}
        currency = intent.currency.upper()
        return Payment(
            payment_id=metadata.get("payment_id", ""),
            user_id=metadata.get("user_id", ""),
            professional_id=metadata.get("professional_id", ""),
            service_request_id=metadata.get("service_request_id") or None,
            amount=from_minor_units(intent.amount, currency),
            currency=currency,
            provider=self.name,
            status=self.map_status(intent.status),
            transaction_id=intent.id,
            created_at=datetime.fromtimestamp(intent.created, tz=timezone.utc),
        )
