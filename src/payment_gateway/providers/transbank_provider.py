"""
Transbank Oneclick Mall payment provider.

Oneclick only registers cards through Webpay's hosted inscription page, so
this provider is redirect-only. A finished inscription yields a
``tbk_user`` that, together with the inscription username, authorizes
later charges without user interaction.

The provider talks to the Oneclick REST API (v1.2) directly.

Reference:
- https://www.transbankdevelopers.cl/referencia/oneclick
"""

from collections.abc import Mapping
from datetime import timedelta
from decimal import ROUND_HALF_UP, Decimal
from typing import Any

import structlog

from payment_gateway.clients.vendor_client import VendorAPIClient, VendorAPIError
from payment_gateway.domain.cards import to_card_brand
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
from payment_gateway.models.requests import RedirectTokenizationRequest
from payment_gateway.providers.base import PaymentProvider, response_field, vendor_error

logger = structlog.get_logger(__name__)

TRANSBANK_BASE_URLS = {
    "integration": "https://webpay3gint.transbank.cl",
    "production": "https://webpay3g.transbank.cl",
}
ONECLICK_API = "/rswebpaytransaction/api/oneclick/v1.2"

# Public integration credentials published by Transbank for Oneclick Mall
TRANSBANK_TEST_PROFILE = {
    "commerce_code": "597055555541",
    "child_commerce_code": "597055555542",
    "api_key": "579B532A7440BB0C9079DED94D31EA1615BACEB56610332264630D42D0A36B1C",
    "environment": "integration",
}

TRANSBANK_STATUS_MAP: dict[str, PaymentStatus] = {
    "AUTHORIZED": PaymentStatus.COMPLETED,
    "FAILED": PaymentStatus.FAILED,
    "NULLIFIED": PaymentStatus.CANCELLED,
    "REVERSED": PaymentStatus.REFUNDED,
}

# Inscription finished after Webpay's own timeout
INSCRIPTION_TIMEOUT_CODE = -96

# Transbank buy orders are limited to 26 characters
BUY_ORDER_MAX_LENGTH = 26

# Oneclick does not disclose expiry dates; inscriptions are renewed yearly
INSCRIPTION_LIFETIME = timedelta(days=365)
UNKNOWN_EXPIRY = (12, 2099)


def buy_order_for(payment_id: str) -> str:
    return payment_id[:BUY_ORDER_MAX_LENGTH]


def child_buy_order_for(payment_id: str) -> str:
    return f"C{payment_id}"[:BUY_ORDER_MAX_LENGTH]


def _clp(amount: Decimal) -> int:
    return int(Decimal(amount).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


class TransbankProvider(PaymentProvider):
    """Transbank Oneclick Mall implementation of the provider contract."""

    name = ProviderName.TRANSBANK
    supported_methods = frozenset({TokenizationMethod.REDIRECT})
    required_credentials = ("commerce_code", "api_key")
    test_profile = TRANSBANK_TEST_PROFILE
    default_session_ttl = timedelta(minutes=30)

    def __init__(self) -> None:
        super().__init__()
        self.client: VendorAPIClient | None = None
        self.commerce_code = ""
        self.child_commerce_code = ""

    @classmethod
    def detect_test_mode(cls, credentials: Mapping[str, str]) -> bool:
        return credentials.get("environment", "integration") != "production"

    def _configure(self, config: ProviderConfig) -> None:
        credentials = config.credentials
        environment = credentials.get("environment") or "integration"
        self.commerce_code = credentials["commerce_code"]
        self.child_commerce_code = credentials.get("child_commerce_code") or self.commerce_code
        self.client = VendorAPIClient(
            vendor=self.name.value,
            base_url=TRANSBANK_BASE_URLS.get(environment, TRANSBANK_BASE_URLS["integration"]),
            headers={
                "Tbk-Api-Key-Id": self.commerce_code,
                "Tbk-Api-Key-Secret": credentials["api_key"],
            },
            timeout_seconds=float(config.options.get("timeout_seconds", 10)),
        )
        logger.info(
            "transbank_provider_initialized",
            environment=environment,
            test_mode=config.test_mode,
            source=config.source,
        )

    @classmethod
    def map_status(cls, vendor_status: str | None) -> PaymentStatus:
        return TRANSBANK_STATUS_MAP.get((vendor_status or "").upper(), PaymentStatus.PENDING)

    async def create_tokenization_session(
        self, request: RedirectTokenizationRequest
    ) -> RedirectSession:
        self._require_initialized()
        username = f"user_{request.user_id}_{int(utc_now().timestamp() * 1000)}"
        email = request.metadata.get("email") or f"{username}@example.com"

        try:
            response = await self.client.post(
                f"{ONECLICK_API}/inscriptions",
                json={"username": username, "email": email, "response_url": request.return_url},
            )
        except VendorAPIError as e:
            raise vendor_error(
                ErrorCode.SESSION_CREATION_FAILED,
                f"Transbank session creation failed: {e.message}",
                status_code=e.status_code,
            ) from e

        token = response_field(response, "token", ErrorCode.SESSION_CREATION_FAILED, "Transbank")
        url_webpay = response_field(response, "url_webpay", ErrorCode.SESSION_CREATION_FAILED, "Transbank")
        logger.info("transbank_inscription_started", user_id=request.user_id, username=username)
        return RedirectSession(
            session_id=f"tbk_{token}",
            redirect_url=f"{url_webpay}?TBK_TOKEN={token}",
            expires_at=utc_now() + self.session_ttl,
            vendor_data={"token": token, "username": username, "email": email},
        )

    async def complete_tokenization(
        self, session: TokenizationSession, callback_data: Mapping[str, Any]
    ) -> TokenizationResult:
        self._require_initialized()

        # Webpay posts TBK_ORDEN_COMPRA without TBK_TOKEN when the user aborts
        if "TBK_ORDEN_COMPRA" in callback_data and "TBK_TOKEN" not in callback_data:
            raise vendor_error(
                ErrorCode.TOKENIZATION_COMPLETION_FAILED,
                "Transbank inscription was cancelled by the user",
                status_code=400,
            )

        token = callback_data.get("TBK_TOKEN") or session.vendor_data.get("token")
        if not token:
            raise vendor_error(
                ErrorCode.TOKENIZATION_COMPLETION_FAILED,
                "Transbank inscription token missing",
                status_code=400,
            )

        try:
            response = await self.client.put(f"{ONECLICK_API}/inscriptions/{token}")
        except VendorAPIError as e:
            raise vendor_error(
                ErrorCode.TOKENIZATION_COMPLETION_FAILED,
                f"Transbank tokenization completion failed: {e.message}",
                status_code=e.status_code,
            ) from e

        response_code = response.get("response_code")
        if response_code == INSCRIPTION_TIMEOUT_CODE:
            raise vendor_error(
                ErrorCode.SESSION_EXPIRED,
                "Transbank inscription timed out",
                status_code=410,
                details={"response_code": response_code},
            )
        if response_code != 0:
            raise vendor_error(
                ErrorCode.TOKENIZATION_COMPLETION_FAILED,
                f"Transbank inscription failed: {response_code}",
                status_code=400,
                details={"response_code": response_code},
            )

        tbk_user = response_field(response, "tbk_user", ErrorCode.TOKENIZATION_COMPLETION_FAILED, "Transbank")
        card_number = response.get("card_number") or ""
        exp_month, exp_year = UNKNOWN_EXPIRY
        card = PaymentCard(
            user_id=session.user_id,
            provider=self.name,
            payment_token=tbk_user,
            card_last_four=card_number[-4:] if card_number else "****",
            card_brand=to_card_brand(response.get("card_type")),
            # Oneclick does not distinguish credit from debit
            card_type=CardType.CREDIT,
            expiration_month=exp_month,
            expiration_year=exp_year,
            card_holder_name=session.vendor_data.get("email", ""),
            token_expires_at=utc_now() + INSCRIPTION_LIFETIME,
            requires_cvv_for_payments=False,
            vendor_customer_id=session.vendor_data.get("username"),
        )
        logger.info(
            "transbank_inscription_finished",
            user_id=session.user_id,
            authorization_code=response.get("authorization_code"),
        )
        return TokenizationResult(card=card)

    async def process_payment(self, payment: Payment, token: CardToken) -> PaymentResult:
        self._require_initialized()
        if not token.vendor_customer_id:
            raise vendor_error(
                ErrorCode.PAYMENT_FAILED,
                "Transbank card has no inscription username",
                status_code=400,
            )

        buy_order = buy_order_for(payment.payment_id)
        logger.info(
            "transbank_payment_starting",
            payment_id=payment.payment_id,
            buy_order=buy_order,
            amount=_clp(payment.amount),
        )

        try:
            response = await self.client.post(
                f"{ONECLICK_API}/transactions",
                json={
                    "username": token.vendor_customer_id,
                    "tbk_user": token.token_id,
                    "buy_order": buy_order,
                    "details": [
                        {
                            "commerce_code": self.child_commerce_code,
                            "buy_order": child_buy_order_for(payment.payment_id),
                            "amount": _clp(payment.amount),
                            "installments_number": 1,
                        }
                    ],
                },
            )
        except VendorAPIError as e:
            raise vendor_error(
                ErrorCode.PAYMENT_FAILED,
                f"Transbank payment processing failed: {e.message}",
                status_code=e.status_code,
            ) from e

        details = response.get("details") or []
        if not details:
            raise vendor_error(ErrorCode.PAYMENT_FAILED, "No payment details in response")

        detail = details[0]
        response_code = detail.get("response_code")
        if response_code == 0:
            status = self.map_status(detail.get("status"))
        else:
            status = PaymentStatus.FAILED

        logger.info(
            "transbank_payment_finished",
            payment_id=payment.payment_id,
            response_code=response_code,
            vendor_status=detail.get("status"),
            status=status.value,
        )
        return PaymentResult(
            payment_id=payment.payment_id,
            status=status,
            amount=payment.amount,
            currency=payment.currency,
            provider_payment_id=response.get("buy_order", buy_order),
            vendor_status=detail.get("status"),
            authorization_code=detail.get("authorization_code"),
            decline_code=None if status != PaymentStatus.FAILED else f"response_code_{response_code}",
        )

    def verify_webhook(
        self, payload: bytes, signature: str | None, request_id: str | None = None
    ) -> bool:
        # Transbank does not sign callbacks; origin is enforced by IP allow-listing upstream
        return bool(payload)

    async def handle_webhook(self, event: Mapping[str, Any]) -> PaymentStatusUpdate | None:
        buy_order = event.get("buy_order")
        details = event.get("details") or []
        vendor_status = event.get("status") or (details[0].get("status") if details else None)
        if not buy_order or not vendor_status:
            logger.info("transbank_webhook_ignored", keys=sorted(event.keys()))
            return None

        return PaymentStatusUpdate(
            status=self.map_status(vendor_status),
            transaction_id=buy_order,
            vendor_status=vendor_status,
            event_type="transaction_status",
        )

    async def refund_payment(self, payment: Payment, amount: Decimal | None = None) -> RefundResult:
        self._require_initialized()
        buy_order = payment.transaction_id or buy_order_for(payment.payment_id)
        refund_amount = amount if amount is not None else payment.refundable_amount

        try:
            response = await self.client.post(
                f"{ONECLICK_API}/transactions/{buy_order}/refunds",
                json={
                    "commerce_code": self.child_commerce_code,
                    "detail_buy_order": child_buy_order_for(payment.payment_id),
                    "amount": _clp(refund_amount),
                },
            )
        except VendorAPIError as e:
            raise vendor_error(
                ErrorCode.REFUND_FAILED,
                f"Transbank refund failed: {e.message}",
                status_code=e.status_code,
            ) from e

        response_code = response.get("response_code", 0)
        if response_code != 0:
            raise vendor_error(
                ErrorCode.REFUND_FAILED,
                f"Refund failed with code: {response_code}",
                status_code=400,
                details={"response_code": response_code},
            )

        return RefundResult(
            refund_id=response.get("authorization_code") or buy_order,
            amount=Decimal(str(response.get("nullified_amount", refund_amount))),
            vendor_status=response.get("type"),
        )

    async def get_payment_status(self, vendor_payment_id: str) -> Payment:
        self._require_initialized()
        try:
            response = await self.client.get(f"{ONECLICK_API}/transactions/{vendor_payment_id}")
        except VendorAPIError as e:
            raise vendor_error(
                ErrorCode.STATUS_CHECK_FAILED,
                f"Failed to get Transbank payment status: {e.message}",
                status_code=e.status_code,
            ) from e

        detail = (response.get("details") or [{}])[0]
        return Payment(
            payment_id=response.get("buy_order", vendor_payment_id),
            user_id="",
            professional_id="",
            amount=Decimal(str(detail.get("amount", 0))),
            currency="CLP",
            provider=self.name,
            status=self.map_status(detail.get("status")),
            transaction_id=vendor_payment_id,
        )

    async def aclose(self) -> None:
        if self.client is not None:
            await self.client.close()
