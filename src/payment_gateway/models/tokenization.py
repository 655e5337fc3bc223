"""Card and tokenization-session domain models."""

from dataclasses import asdict, dataclass, field, replace
from datetime import datetime
from enum import Enum
from typing import Any

from payment_gateway.models.common import dump_datetime, load_datetime, utc_now
from payment_gateway.models.provider import ProviderName


class CardBrand(str, Enum):
    """Card brand as exposed to callers."""

    VISA = "visa"
    MASTERCARD = "mastercard"
    AMEX = "amex"
    OTHER = "other"


class CardType(str, Enum):
    CREDIT = "credit"
    DEBIT = "debit"


class SessionStatus(str, Enum):
    """Lifecycle of a redirect tokenization session."""

    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"
    EXPIRED = "expired"


@dataclass
class PaymentCard:
    """
    A card registered with a processor.

    Only a masked view of the card is kept; ``payment_token`` is the
    processor's opaque reference used to charge the card later.
    ``vendor_customer_id`` is the processor-side customer the token is bound
    to (Stripe customer, Transbank inscription username, MercadoPago
    customer), when the processor has one.
    """

    user_id: str
    provider: ProviderName
    payment_token: str
    card_last_four: str
    card_brand: CardBrand
    expiration_month: int
    expiration_year: int
    card_holder_name: str = ""
    card_type: CardType = CardType.CREDIT
    alias: str | None = None
    is_default: bool = False
    token_expires_at: datetime | None = None
    requires_cvv_for_payments: bool = False
    vendor_customer_id: str | None = None
    card_id: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    def to_document(self) -> dict[str, Any]:
        doc = asdict(self)
        doc["provider"] = self.provider.value
        doc["card_brand"] = self.card_brand.value
        doc["card_type"] = self.card_type.value
        for key in ("token_expires_at", "created_at", "updated_at"):
            doc[key] = dump_datetime(doc[key])
        return doc

    @classmethod
    def from_document(cls, doc: dict[str, Any]) -> "PaymentCard":
        data = dict(doc)
        data["provider"] = ProviderName(data["provider"])
        data["card_brand"] = CardBrand(data.get("card_brand", CardBrand.OTHER.value))
        data["card_type"] = CardType(data.get("card_type", CardType.CREDIT.value))
        for key in ("token_expires_at", "created_at", "updated_at"):
            data[key] = load_datetime(data.get(key))
        known = cls.__dataclass_fields__.keys()
        return cls(**{key: value for key, value in data.items() if key in known})


@dataclass(frozen=True)
class CardToken:
    """
    Transient view of a stored card handed to a processor for a charge.

    Never persisted. ``security_code`` is only set for processors that
    require the CVV on every payment.
    """

    card_id: str | None
    user_id: str
    provider: ProviderName
    token_id: str
    card_last_four: str
    card_brand: CardBrand
    vendor_customer_id: str | None = None
    security_code: str | None = None

    @classmethod
    def from_card(cls, card: PaymentCard, security_code: str | None = None) -> "CardToken":
        return cls(
            card_id=card.card_id,
            user_id=card.user_id,
            provider=card.provider,
            token_id=card.payment_token,
            card_last_four=card.card_last_four,
            card_brand=card.card_brand,
            vendor_customer_id=card.vendor_customer_id,
            security_code=security_code,
        )

    def __repr__(self) -> str:
        return (
            f"CardToken(card_id={self.card_id!r}, provider={self.provider.value!r}, "
            f"card_last_four={self.card_last_four!r})"
        )


@dataclass
class TokenizationResult:
    """
    Outcome of a direct or redirect tokenization.

    Processors return it holding an unsaved card draft; the orchestrator
    returns it again once the card has been stored.
    """

    card: PaymentCard

    def to_response(self) -> dict[str, Any]:
        card = self.card
        return {
            "token_id": card.payment_token,
            "card_id": card.card_id,
            "card_last4": card.card_last_four,
            "card_brand": card.card_brand.value,
            "card_type": card.card_type.value,
            "card_exp_month": card.expiration_month,
            "card_exp_year": card.expiration_year,
            "is_default": card.is_default,
        }


@dataclass(frozen=True)
class RedirectSession:
    """Phase-one answer from a processor's redirect flow."""

    session_id: str
    redirect_url: str
    expires_at: datetime
    vendor_data: dict[str, Any] = field(default_factory=dict)


@dataclass
class TokenizationSession:
    """
    Persisted state of a two-phase redirect tokenization.

    Written once as ``pending`` and once more when it reaches a terminal
    status; it is never reused.
    """

    session_id: str
    user_id: str
    provider: ProviderName
    redirect_url: str
    return_url: str
    expires_at: datetime
    status: SessionStatus = SessionStatus.PENDING
    set_as_default: bool = False
    token_id: str | None = None
    card_id: str | None = None
    error_message: str | None = None
    vendor_data: dict[str, Any] = field(default_factory=dict)
    metadata: dict[str, Any] = field(default_factory=dict)
    created_at: datetime | None = None
    completed_at: datetime | None = None

    @property
    def is_pending(self) -> bool:
        return self.status == SessionStatus.PENDING

    def is_expired(self, now: datetime | None = None) -> bool:
        return (now or utc_now()) >= self.expires_at

    def with_status(self, status: SessionStatus, **changes: Any) -> "TokenizationSession":
        return replace(self, status=status, **changes)

    def to_document(self) -> dict[str, Any]:
        doc = asdict(self)
        doc["provider"] = self.provider.value
        doc["status"] = self.status.value
        for key in ("expires_at", "created_at", "completed_at"):
            doc[key] = dump_datetime(doc[key])
        return doc

    @classmethod
    def from_document(cls, doc: dict[str, Any]) -> "TokenizationSession":
        data = dict(doc)
        data["provider"] = ProviderName(data["provider"])
        data["status"] = SessionStatus(data["status"])
        for key in ("expires_at", "created_at", "completed_at"):
            data[key] = load_datetime(data.get(key))
        known = cls.__dataclass_fields__.keys()
        return cls(**{key: value for key, value in data.items() if key in known})
