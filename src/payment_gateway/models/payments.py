"""Payment domain models."""

from dataclasses import asdict, dataclass
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any

from payment_gateway.models.common import dump_datetime, load_datetime
from payment_gateway.models.provider import ProviderName


class PaymentStatus(str, Enum):
    """Shared payment status taxonomy every processor status maps onto."""

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"
    REFUNDED = "refunded"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES = frozenset(
    {
        PaymentStatus.COMPLETED,
        PaymentStatus.FAILED,
        PaymentStatus.CANCELLED,
        PaymentStatus.REFUNDED,
    }
)


@dataclass
class Payment:
    """
    A payment attempt.

    Written in ``processing`` before the processor is called, then updated
    with the normalized outcome, so every attempt leaves an auditable record.
    """

    payment_id: str
    user_id: str
    professional_id: str
    amount: Decimal
    currency: str
    provider: ProviderName
    status: PaymentStatus = PaymentStatus.PENDING
    description: str = ""
    service_request_id: str | None = None
    transaction_id: str | None = None
    card_id: str | None = None
    error_message: str | None = None
    refunded_amount: Decimal = Decimal("0")
    metadata: dict[str, Any] | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None
    completed_at: datetime | None = None

    def __post_init__(self) -> None:
        self.amount = Decimal(str(self.amount))
        self.refunded_amount = Decimal(str(self.refunded_amount))
        if self.amount < 0:
            raise ValueError("amount cannot be negative")
        self.currency = self.currency.upper()

    @property
    def refundable_amount(self) -> Decimal:
        return self.amount - self.refunded_amount

    def is_party(self, user_id: str) -> bool:
        """True if user_id is the payer or the payee."""
        return user_id in (self.user_id, self.professional_id)

    def to_document(self) -> dict[str, Any]:
        doc = asdict(self)
        doc["provider"] = self.provider.value
        doc["status"] = self.status.value
        doc["amount"] = str(self.amount)
        doc["refunded_amount"] = str(self.refunded_amount)
        for key in ("created_at", "updated_at", "completed_at"):
            doc[key] = dump_datetime(doc[key])
        return doc

    @classmethod
    def from_document(cls, doc: dict[str, Any]) -> "Payment":
        data = dict(doc)
        data["provider"] = ProviderName(data["provider"])
        data["status"] = PaymentStatus(data["status"])
        data["amount"] = Decimal(str(data["amount"]))
        data["refunded_amount"] = Decimal(str(data.get("refunded_amount") or "0"))
        for key in ("created_at", "updated_at", "completed_at"):
            data[key] = load_datetime(data.get(key))
        known = cls.__dataclass_fields__.keys()
        return cls(**{key: value for key, value in data.items() if key in known})

    def to_response(self) -> dict[str, Any]:
        return {
            "payment_id": self.payment_id,
            "user_id": self.user_id,
            "professional_id": self.professional_id,
            "service_request_id": self.service_request_id,
            "amount": str(self.amount),
            "currency": self.currency,
            "provider": self.provider.value,
            "status": self.status.value,
            "description": self.description,
            "transaction_id": self.transaction_id,
            "refunded_amount": str(self.refunded_amount),
            "error_message": self.error_message,
            "created_at": dump_datetime(self.created_at),
            "updated_at": dump_datetime(self.updated_at),
            "completed_at": dump_datetime(self.completed_at),
        }


@dataclass
class PaymentResult:
    """
    Normalized answer from a processor charge.

    A declined charge is returned with ``status=FAILED`` and a
    ``decline_code``; infrastructure failures raise instead.
    """

    payment_id: str
    status: PaymentStatus
    amount: Decimal
    currency: str
    provider_payment_id: str | None = None
    vendor_status: str | None = None
    authorization_code: str | None = None
    decline_code: str | None = None
    decline_reason: str | None = None

    def __post_init__(self) -> None:
        if self.status == PaymentStatus.FAILED and not self.decline_code:
            self.decline_code = "declined"

    def to_response(self) -> dict[str, Any]:
        return {
            "payment_id": self.payment_id,
            "status": self.status.value,
            "amount": str(self.amount),
            "currency": self.currency,
            "provider_payment_id": self.provider_payment_id,
        }


@dataclass(frozen=True)
class PaymentStatusUpdate:
    """Status change reported by a processor webhook."""

    status: PaymentStatus
    payment_id: str | None = None
    transaction_id: str | None = None
    vendor_status: str | None = None
    event_type: str | None = None


@dataclass(frozen=True)
class RefundResult:
    refund_id: str
    amount: Decimal
    vendor_status: str | None = None
