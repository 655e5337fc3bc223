"""
MercadoPago payment provider.

Direct tokenization turns card data into a card token and saves it on a
MercadoPago customer. Redirect tokenization goes through a Checkout Pro
preference; the card is read back from the resulting payment. MercadoPago
needs the CVV again for every charge on a saved card, so cards from this
provider are stored with ``requires_cvv_for_payments=True``.

Reference:
- https://www.mercadopago.com/developers/en/reference
- https://www.mercadopago.com/developers/en/docs/your-integrations/notifications/webhooks
"""

import json
from collections.abc import Mapping
from datetime import timedelta
from decimal import Decimal
from typing import Any

import structlog

from payment_gateway.clients.vendor_client import VendorAPIClient, VendorAPIError
from payment_gateway.domain.cards import to_card_brand
from payment_gateway.domain.signatures import parse_signature_header, verify_signature
from payment_gateway.models import (
    CardBrand,
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
from payment_gateway.models.common import load_datetime, utc_now
from payment_gateway.models.requests import DirectTokenizationRequest, RedirectTokenizationRequest
from payment_gateway.providers.base import PaymentProvider, response_field, vendor_error

logger = structlog.get_logger(__name__)

MERCADOPAGO_STATUS_MAP: dict[str, PaymentStatus] = {
    "approved": PaymentStatus.COMPLETED,
    "pending": PaymentStatus.PROCESSING,
    "in_process": PaymentStatus.PROCESSING,
    "in_mediation": PaymentStatus.PROCESSING,
    "authorized": PaymentStatus.PENDING,
    "rejected": PaymentStatus.FAILED,
    "cancelled": PaymentStatus.CANCELLED,
    "refunded": PaymentStatus.REFUNDED,
    "charged_back": PaymentStatus.REFUNDED,
}

# MercadoPago's payment_method_id for each brand
PAYMENT_METHOD_IDS = {
    CardBrand.VISA: "visa",
    CardBrand.MASTERCARD: "master",
    CardBrand.AMEX: "amex",
}

SAVED_CARD_LIFETIME = timedelta(days=180)


def _card_type(payment_type_id: str | None) -> CardType:
    return CardType.DEBIT if (payment_type_id or "").lower() == "debit_card" else CardType.CREDIT


def _customer_email(user_id: str) -> str:
    return f"user_{user_id}@example.com"


class MercadoPagoProvider(PaymentProvider):
    """MercadoPago implementation of the provider contract."""

    name = ProviderName.MERCADOPAGO
    supported_methods = frozenset({TokenizationMethod.DIRECT, TokenizationMethod.REDIRECT})
    required_credentials = ("access_token",)

    def __init__(self) -> None:
        super().__init__()
        self.client: VendorAPIClient | None = None
        self.webhook_secret = ""
        self.sandbox = True

    @classmethod
    def detect_test_mode(cls, credentials: Mapping[str, str]) -> bool:
        return (
            credentials.get("access_token", "").startswith("TEST-")
            or credentials.get("environment", "sandbox") != "production"
        )

    def _configure(self, config: ProviderConfig) -> None:
        self.webhook_secret = config.credentials.get("webhook_secret") or ""
        self.sandbox = config.credentials.get("environment", "sandbox") != "production"
        self.client = VendorAPIClient(
            vendor=self.name.value,
            base_url=config.options.get("api_base_url", "https://api.mercadopago.com"),
            headers={"Authorization": f"Bearer {config.credentials['access_token']}"},
            timeout_seconds=float(config.options.get("timeout_seconds", 10)),
        )
        logger.info("mercadopago_provider_initialized", sandbox=self.sandbox, test_mode=config.test_mode)

    @classmethod
    def map_status(cls, vendor_status: str | None) -> PaymentStatus:
        return MERCADOPAGO_STATUS_MAP.get((vendor_status or "").lower(), PaymentStatus.PENDING)

    async def _find_or_create_customer(self, user_id: str, holder_name: str) -> dict[str, Any]:
        email = _customer_email(user_id)
        found = await self.client.get("/v1/customers/search", params={"email": email})
        results = found.get("results") or []
        if results:
            return results[0]

        first_name, _, last_name = holder_name.partition(" ")
        return await self.client.post(
            "/v1/customers",
            json={
                "email": email,
                "first_name": first_name,
                "last_name": last_name,
                "description": f"Customer for user {user_id}",
            },
        )

    async def tokenize_direct(self, request: DirectTokenizationRequest) -> TokenizationResult:
        self._require_initialized()
        logger.info("mercadopago_tokenization_starting", user_id=request.user_id)

        try:
            card_token = await self.client.post(
                "/v1/card_tokens",
                json={
                    "card_number": request.card_number,
                    "expiration_month": request.card_exp_month,
                    "expiration_year": request.card_exp_year,
                    "security_code": request.card_cvv,
                    "cardholder": {"name": request.card_holder_name},
                },
            )
            card_token_id = response_field(card_token, "id", ErrorCode.TOKENIZATION_FAILED, "MercadoPago")
            customer = await self._find_or_create_customer(request.user_id, request.card_holder_name)
            customer_id = response_field(customer, "id", ErrorCode.TOKENIZATION_FAILED, "MercadoPago")
            saved_card = await self.client.post(
                f"/v1/customers/{customer_id}/cards",
                json={"token": card_token_id},
            )
            saved_card_id = response_field(saved_card, "id", ErrorCode.TOKENIZATION_FAILED, "MercadoPago")
        except VendorAPIError as e:
            raise vendor_error(
                ErrorCode.TOKENIZATION_FAILED,
                f"MercadoPago tokenization failed: {e.message}",
                status_code=e.status_code,
            ) from e

        payment_method = saved_card.get("payment_method") or card_token.get("payment_method") or {}
        card = PaymentCard(
            user_id=request.user_id,
            provider=self.name,
            payment_token=str(saved_card_id),
            card_last_four=saved_card.get("last_four_digits") or card_token.get("last_four_digits") or request.card_number[-4:],
            card_brand=to_card_brand(payment_method.get("id")),
            card_type=_card_type(payment_method.get("payment_type_id")),
            expiration_month=request.card_exp_month,
            expiration_year=request.card_exp_year,
            card_holder_name=request.card_holder_name,
            alias=request.alias,
            token_expires_at=utc_now() + SAVED_CARD_LIFETIME,
            requires_cvv_for_payments=True,
            vendor_customer_id=str(customer_id),
        )
        logger.info("mercadopago_tokenization_success", user_id=request.user_id, card_last4=card.card_last_four)
        return TokenizationResult(card=card)

    async def create_tokenization_session(
        self, request: RedirectTokenizationRequest
    ) -> RedirectSession:
        self._require_initialized()
        separator = "&" if "?" in request.return_url else "?"
        expires_at = utc_now() + self.session_ttl

        try:
            preference = await self.client.post(
                "/checkout/preferences",
                json={
                    "items": [
                        {
                            "title": "Card Registration",
                            "description": "Register payment card",
                            "quantity": 1,
                            "currency_id": request.metadata.get("currency", "CLP"),
                            "unit_price": 0,
                        }
                    ],
                    "payer": {"email": request.metadata.get("email") or _customer_email(request.user_id)},
                    "back_urls": {
                        "success": f"{request.return_url}{separator}status=success",
                        "failure": f"{request.return_url}{separator}status=failure",
                        "pending": f"{request.return_url}{separator}status=pending",
                    },
                    "auto_return": "approved",
                    "external_reference": request.user_id,
                    "expires": True,
                    "expiration_date_to": expires_at.isoformat(),
                    "metadata": {
                        "user_id": request.user_id,
                        "set_as_default": str(request.set_as_default).lower(),
                    },
                },
            )
        except VendorAPIError as e:
            raise vendor_error(
                ErrorCode.SESSION_CREATION_FAILED,
                f"MercadoPago session creation failed: {e.message}",
                status_code=e.status_code,
            ) from e

        preference_id = str(response_field(preference, "id", ErrorCode.SESSION_CREATION_FAILED, "MercadoPago"))
        redirect_url = preference.get("sandbox_init_point") if self.sandbox else preference.get("init_point")
        return RedirectSession(
            session_id=preference_id,
            redirect_url=redirect_url or preference.get("init_point", ""),
            expires_at=expires_at,
            vendor_data={"preference_id": preference_id},
        )

    async def complete_tokenization(
        self, session: TokenizationSession, callback_data: Mapping[str, Any]
    ) -> TokenizationResult:
        self._require_initialized()

        if callback_data.get("status") == "failure":
            raise vendor_error(
                ErrorCode.TOKENIZATION_COMPLETION_FAILED,
                "MercadoPago checkout was not approved",
                status_code=400,
            )

        payment_id = callback_data.get("payment_id") or callback_data.get("collection_id")
        if not payment_id:
            raise vendor_error(
                ErrorCode.TOKENIZATION_COMPLETION_FAILED,
                "Payment ID not found in callback",
                status_code=400,
            )

        try:
            mp_payment = await self.client.get(f"/v1/payments/{payment_id}")
        except VendorAPIError as e:
            raise vendor_error(
                ErrorCode.TOKENIZATION_COMPLETION_FAILED,
                f"MercadoPago tokenization completion failed: {e.message}",
                status_code=e.status_code,
            ) from e

        if self.map_status(mp_payment.get("status")) in (PaymentStatus.FAILED, PaymentStatus.CANCELLED):
            raise vendor_error(
                ErrorCode.TOKENIZATION_COMPLETION_FAILED,
                f"MercadoPago payment {payment_id} was {mp_payment.get('status')}",
                status_code=400,
            )

        # Only a card saved during checkout can be charged again; the payment id cannot
        card_info = mp_payment.get("card") or {}
        if not card_info.get("id") or not card_info.get("expiration_month") or not card_info.get("expiration_year"):
            logger.warning(
                "mercadopago_checkout_without_saved_card",
                payment_id=str(payment_id),
                payment_type_id=mp_payment.get("payment_type_id"),
            )
            raise vendor_error(
                ErrorCode.TOKENIZATION_COMPLETION_FAILED,
                f"MercadoPago payment {payment_id} did not save a card",
                status_code=400,
                details={"payment_id": str(payment_id)},
            )

        payer = mp_payment.get("payer") or {}
        card = PaymentCard(
            user_id=session.user_id,
            provider=self.name,
            payment_token=str(card_info["id"]),
            card_last_four=card_info.get("last_four_digits") or "",
            card_brand=to_card_brand(mp_payment.get("payment_method_id")),
            card_type=_card_type(mp_payment.get("payment_type_id")),
            expiration_month=int(card_info["expiration_month"]),
            expiration_year=int(card_info["expiration_year"]),
            card_holder_name=(card_info.get("cardholder") or {}).get("name", ""),
            token_expires_at=utc_now() + SAVED_CARD_LIFETIME,
            requires_cvv_for_payments=True,
            vendor_customer_id=str(payer["id"]) if payer.get("id") else None,
        )
        return TokenizationResult(card=card)

    async def process_payment(self, payment: Payment, token: CardToken) -> PaymentResult:
        self._require_initialized()
        logger.info(
            "mercadopago_payment_starting",
            payment_id=payment.payment_id,
            amount=str(payment.amount),
            currency=payment.currency,
        )

        card_token_body: dict[str, Any] = {"card_id": token.token_id}
        if token.security_code:
            card_token_body["security_code"] = token.security_code

        if token.vendor_customer_id:
            payer = {"type": "customer", "id": token.vendor_customer_id}
        else:
            payer = {"email": _customer_email(payment.user_id)}

        try:
            card_token = await self.client.post("/v1/card_tokens", json=card_token_body)
            mp_payment = await self.client.post(
                "/v1/payments",
                json={
                    "transaction_amount": float(payment.amount),
                    "token": response_field(card_token, "id", ErrorCode.PAYMENT_FAILED, "MercadoPago"),
                    "description": payment.description,
                    "installments": 1,
                    "payment_method_id": PAYMENT_METHOD_IDS.get(token.card_brand, token.card_brand.value),
                    "payer": payer,
                    "external_reference": payment.payment_id,
                    "metadata": {
                        "payment_id": payment.payment_id,
                        "user_id": payment.user_id,
                        "professional_id": payment.professional_id,
                    },
                },
                headers={"X-Idempotency-Key": payment.payment_id},
            )
        except VendorAPIError as e:
            raise vendor_error(
                ErrorCode.PAYMENT_FAILED,
                f"MercadoPago payment processing failed: {e.message}",
                status_code=e.status_code,
            ) from e

        mp_payment_id = str(response_field(mp_payment, "id", ErrorCode.PAYMENT_FAILED, "MercadoPago"))
        status = self.map_status(mp_payment.get("status"))
        logger.info(
            "mercadopago_payment_finished",
            payment_id=payment.payment_id,
            mercadopago_payment_id=mp_payment_id,
            vendor_status=mp_payment.get("status"),
            status=status.value,
        )
        return PaymentResult(
            payment_id=payment.payment_id,
            status=status,
            amount=payment.amount,
            currency=payment.currency,
            provider_payment_id=mp_payment_id,
            vendor_status=mp_payment.get("status"),
            decline_code=mp_payment.get("status_detail") if status == PaymentStatus.FAILED else None,
        )

    def verify_webhook(
        self, payload: bytes, signature: str | None, request_id: str | None = None
    ) -> bool:
        if not payload:
            return False
        if not self.webhook_secret:
            # Without a configured secret only the payload shape can be checked
            logger.warning("mercadopago_webhook_unverified", has_secret=False, request_id=request_id)
            return True
        if not signature:
            return False

        parts = parse_signature_header(signature)
        ts, v1 = parts.get("ts"), parts.get("v1")
        if not ts or not v1:
            return False

        try:
            data_id = (json.loads(payload).get("data") or {}).get("id")
        except (ValueError, AttributeError):
            return False

        manifest = ""
        if data_id:
            manifest += f"id:{str(data_id).lower()};"
        if request_id:
            manifest += f"request-id:{request_id};"
        manifest += f"ts:{ts};"

        valid = verify_signature(manifest, v1, self.webhook_secret)
        if not valid:
            logger.warning("mercadopago_webhook_verification_failed", request_id=request_id)
        return valid

    async def handle_webhook(self, event: Mapping[str, Any]) -> PaymentStatusUpdate | None:
        event_type = event.get("type") or event.get("topic")
        if event_type != "payment":
            logger.info("mercadopago_webhook_ignored", event_type=event_type)
            return None

        vendor_payment_id = str((event.get("data") or {}).get("id") or "")
        if not vendor_payment_id:
            return None

        snapshot = await self.get_payment_status(vendor_payment_id)
        return PaymentStatusUpdate(
            status=snapshot.status,
            payment_id=snapshot.payment_id or None,
            transaction_id=vendor_payment_id,
            event_type=event.get("action") or event_type,
        )

    async def refund_payment(self, payment: Payment, amount: Decimal | None = None) -> RefundResult:
        self._require_initialized()
        body = {"amount": float(amount)} if amount is not None else {}

        try:
            refund = await self.client.post(
                f"/v1/payments/{payment.transaction_id}/refunds",
                json=body,
                headers={"X-Idempotency-Key": f"refund-{payment.payment_id}-{payment.refunded_amount}"},
            )
        except VendorAPIError as e:
            raise vendor_error(
                ErrorCode.REFUND_FAILED,
                f"MercadoPago refund failed: {e.message}",
                status_code=e.status_code,
            ) from e

        return RefundResult(
            refund_id=str(refund.get("id", "")),
            amount=Decimal(str(refund.get("amount", amount if amount is not None else payment.refundable_amount))),
            vendor_status=refund.get("status"),
        )

    async def get_payment_status(self, vendor_payment_id: str) -> Payment:
        self._require_initialized()
        try:
            mp_payment = await self.client.get(f"/v1/payments/{vendor_payment_id}")
        except VendorAPIError as e:
            raise vendor_error(
                ErrorCode.STATUS_CHECK_FAILED,
                f"Failed to get MercadoPago payment status: {e.message}",
                status_code=e.status_code,
            ) from e

        metadata = mp_payment.get("metadata") or {}
        return Payment(
            payment_id=mp_payment.get("external_reference") or "",
            user_id=metadata.get("user_id", ""),
            professional_id=metadata.get("professional_id", ""),
            amount=Decimal(str(mp_payment.get("transaction_amount", 0))),
            currency=mp_payment.get("currency_id") or "CLP",
            provider=self.name,
            status=self.map_status(mp_payment.get("status")),
            transaction_id=str(vendor_payment_id),
            created_at=load_datetime(mp_payment.get("date_created")),
        )

    async def aclose(self) -> None:
        if self.client is not None:
            await self.client.close()
