"""Shared fixtures for all tests.

Provides an in-memory document store, repositories with a fixed clock, and
FakeProvider: a scriptable provider used wherever a test exercises the
orchestration layer rather than a vendor translation.
"""

from collections.abc import Mapping
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Any

import pytest

from payment_gateway.domain.cards import detect_card_brand, to_card_brand
from payment_gateway.infrastructure.document_store import InMemoryDocumentStore
from payment_gateway.infrastructure.repository import (
    CardRepository,
    PaymentRepository,
    SessionRepository,
)
from payment_gateway.models import (
    CardBrand,
    CardToken,
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
from payment_gateway.models.requests import DirectTokenizationRequest, RedirectTokenizationRequest
from payment_gateway.providers.base import PaymentProvider
from payment_gateway.providers.registry import ProviderRegistry
from payment_gateway.services.payments import PaymentExecutor
from payment_gateway.services.tokenization import TokenizationOrchestrator
from payment_gateway.services.webhooks import WebhookRouter

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


class FixedClock:
    """Clock that only moves when a test moves it."""

    def __init__(self, now: datetime = NOW):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: Any) -> None:
        self.now += timedelta(**kwargs)


class FakeProvider(PaymentProvider):
    """
    Scriptable provider.

    Tests set the ``next_*`` attributes to choose what the next call
    returns or raises; every call is recorded in ``calls``.
    """

    name = ProviderName.STRIPE
    supported_methods = frozenset({TokenizationMethod.DIRECT, TokenizationMethod.REDIRECT})
    required_credentials = ("secret_key",)

    def __init__(self) -> None:
        super().__init__()
        self.calls: list[tuple[str, Any]] = []
        self.configure_count = 0
        self.next_payment_status = PaymentStatus.COMPLETED
        self.next_payment_error: Exception | None = None
        self.next_completion_error: Exception | None = None
        self.next_refund_error: Exception | None = None
        self.next_webhook_update: PaymentStatusUpdate | None = None
        self.next_vendor_status = PaymentStatus.COMPLETED
        self.webhook_valid = True
        self.requires_cvv = False

    @classmethod
    def detect_test_mode(cls, credentials: Mapping[str, str]) -> bool:
        return credentials.get("secret_key", "").startswith("sk_test_")

    def _configure(self, config: ProviderConfig) -> None:
        self.configure_count += 1

    @classmethod
    def map_status(cls, vendor_status: str | None) -> PaymentStatus:
        try:
            return PaymentStatus(vendor_status)
        except ValueError:
            return PaymentStatus.PENDING

    def _card(self, user_id: str, last_four: str, brand: CardBrand, **fields: Any) -> PaymentCard:
        return PaymentCard(
            user_id=user_id,
            provider=self.name,
            payment_token=f"tok_{self.name.value}_{len(self.calls)}",
            card_last_four=last_four,
            card_brand=brand,
            expiration_month=fields.pop("expiration_month", 12),
            expiration_year=fields.pop("expiration_year", 2030),
            requires_cvv_for_payments=self.requires_cvv,
            vendor_customer_id=f"cus_{user_id}",
            **fields,
        )

    async def tokenize_direct(self, request: DirectTokenizationRequest) -> TokenizationResult:
        self._require_initialized()
        self.calls.append(("tokenize_direct", request))
        card = self._card(
            request.user_id,
            request.card_number[-4:],
            to_card_brand(detect_card_brand(request.card_number)),
            expiration_month=request.card_exp_month,
            expiration_year=request.card_exp_year,
            card_holder_name=request.card_holder_name,
            alias=request.alias,
        )
        return TokenizationResult(card=card)

    async def create_tokenization_session(self, request: RedirectTokenizationRequest) -> RedirectSession:
        self.calls.append(("create_tokenization_session", request))
        session_id = f"sess_{len(self.calls)}"
        return RedirectSession(
            session_id=session_id,
            redirect_url=f"https://vendor.example/pay?token={session_id}",
            expires_at=NOW + self.session_ttl,
            vendor_data={"token": session_id},
        )

    async def complete_tokenization(
        self, session: TokenizationSession, callback_data: Mapping[str, Any]
    ) -> TokenizationResult:
        self.calls.append(("complete_tokenization", session.session_id))
        if self.next_completion_error is not None:
            raise self.next_completion_error
        return TokenizationResult(card=self._card(session.user_id, "6623", CardBrand.VISA))

    async def process_payment(self, payment: Payment, token: CardToken) -> PaymentResult:
        self.calls.append(("process_payment", token))
        if self.next_payment_error is not None:
            raise self.next_payment_error
        return PaymentResult(
            payment_id=payment.payment_id,
            status=self.next_payment_status,
            amount=payment.amount,
            currency=payment.currency,
            provider_payment_id=f"txn_{payment.payment_id}",
            vendor_status=self.next_payment_status.value,
        )

    def verify_webhook(self, payload: bytes, signature: str | None, request_id: str | None = None) -> bool:
        self.calls.append(("verify_webhook", signature))
        return self.webhook_valid

    async def handle_webhook(self, event: Mapping[str, Any]) -> PaymentStatusUpdate | None:
        self.calls.append(("handle_webhook", dict(event)))
        return self.next_webhook_update

    async def refund_payment(self, payment: Payment, amount: Decimal | None = None) -> RefundResult:
        self.calls.append(("refund_payment", amount))
        if self.next_refund_error is not None:
            raise self.next_refund_error
        return RefundResult(refund_id=f"re_{payment.payment_id}", amount=amount or payment.refundable_amount)

    async def get_payment_status(self, vendor_payment_id: str) -> Payment:
        self.calls.append(("get_payment_status", vendor_payment_id))
        return Payment(
            payment_id="",
            user_id="",
            professional_id="",
            amount=Decimal("0"),
            currency="USD",
            provider=self.name,
            status=self.next_vendor_status,
            transaction_id=vendor_payment_id,
        )


class FakeRedirectProvider(FakeProvider):
    """Redirect-only processor with a public test profile, shaped like Transbank."""

    name = ProviderName.TRANSBANK
    supported_methods = frozenset({TokenizationMethod.REDIRECT})
    required_credentials = ("commerce_code", "api_key")
    test_profile = {"commerce_code": "597000000001", "api_key": "public-test-key"}
    default_session_ttl = timedelta(minutes=30)

    async def tokenize_direct(self, request: DirectTokenizationRequest) -> TokenizationResult:
        return await PaymentProvider.tokenize_direct(self, request)


FAKE_ADAPTERS = {
    ProviderName.STRIPE: FakeProvider,
    ProviderName.TRANSBANK: FakeRedirectProvider,
}


@pytest.fixture
def clock() -> FixedClock:
    return FixedClock()


@pytest.fixture
def store() -> InMemoryDocumentStore:
    return InMemoryDocumentStore()


@pytest.fixture
def cards(store, clock) -> CardRepository:
    return CardRepository(store, clock)


@pytest.fixture
def sessions(store, clock) -> SessionRepository:
    return SessionRepository(store, clock)


@pytest.fixture
def payments(store, clock) -> PaymentRepository:
    return PaymentRepository(store, clock)


@pytest.fixture
def registry() -> ProviderRegistry:
    """Registry over fake adapters: Stripe configured, Transbank on its test profile."""
    return ProviderRegistry(
        [ProviderConfig(provider=ProviderName.STRIPE, credentials={"secret_key": "sk_test_fake"})],
        adapters=FAKE_ADAPTERS,
    )


@pytest.fixture
def fake_stripe(registry) -> FakeProvider:
    return registry.get(ProviderName.STRIPE)


@pytest.fixture
def fake_transbank(registry) -> FakeRedirectProvider:
    return registry.get(ProviderName.TRANSBANK)


@pytest.fixture
def orchestrator(registry, cards, sessions, clock) -> TokenizationOrchestrator:
    return TokenizationOrchestrator(registry, cards, sessions, clock)


@pytest.fixture
def executor(registry, payments, cards, sessions, clock) -> PaymentExecutor:
    return PaymentExecutor(registry, payments, cards, sessions, clock)


@pytest.fixture
def webhook_router(registry, payments, clock) -> WebhookRouter:
    return WebhookRouter(registry, payments, clock)


@pytest.fixture
def direct_request() -> DirectTokenizationRequest:
    return DirectTokenizationRequest(
        user_id="user_1",
        provider="stripe",
        card_number="4242 4242 4242 4242",
        card_exp_month=12,
        card_exp_year=2030,
        card_cvv="123",
        card_holder_name="Ada Lovelace",
    )


def make_card(user_id: str = "user_1", provider: ProviderName = ProviderName.STRIPE, **fields: Any) -> PaymentCard:
    defaults: dict[str, Any] = {
        "payment_token": f"tok_{user_id}_{provider.value}",
        "card_last_four": "4242",
        "card_brand": CardBrand.VISA,
        "expiration_month": 12,
        "expiration_year": 2030,
        "card_holder_name": "Ada Lovelace",
        "vendor_customer_id": f"cus_{user_id}",
    }
    defaults.update(fields)
    return PaymentCard(user_id=user_id, provider=provider, **defaults)


def make_payment(payment_id: str = "pay_1", **fields: Any) -> Payment:
    defaults: dict[str, Any] = {
        "user_id": "user_1",
        "professional_id": "pro_1",
        "amount": Decimal("100.00"),
        "currency": "USD",
        "provider": ProviderName.STRIPE,
        "status": PaymentStatus.COMPLETED,
        "transaction_id": f"txn_{payment_id}",
    }
    defaults.update(fields)
    return Payment(payment_id=payment_id, **defaults)
