"""Request models accepted by the tokenization and payment services.

These are closed pydantic models: unknown fields are rejected and every
field is validated before a service sees it. The HTTP layer uses them as
request bodies directly.
"""

from decimal import Decimal
from typing import Any, Optional

from pydantic import BaseModel, Field, field_validator, model_validator


class GatewayRequest(BaseModel):
    class Config:
        extra = "forbid"
        str_strip_whitespace = True


class DirectTokenizationRequest(GatewayRequest):
    """Raw card data for processors that tokenize server-side."""

    user_id: str = Field(..., min_length=1, description="Card owner")
    provider: str = Field(..., min_length=1, description="Processor name")
    card_number: str = Field(..., description="Primary account number")
    card_exp_month: int = Field(..., description="Expiration month (1-12)")
    card_exp_year: int = Field(..., description="Expiration year (YY or YYYY)")
    card_cvv: str = Field(..., description="Card security code")
    card_holder_name: str = Field(..., description="Name printed on the card")
    set_as_default: bool = Field(False, description="Make this the user's default card")
    alias: Optional[str] = Field(None, max_length=64, description="Caller-chosen card label")

    @field_validator("card_number")
    @classmethod
    def strip_separators(cls, value: str) -> str:
        return value.replace(" ", "").replace("-", "")

    def __repr__(self) -> str:
        return (
            f"DirectTokenizationRequest(user_id={self.user_id!r}, "
            f"provider={self.provider!r}, card_last4={self.card_number[-4:]!r})"
        )

    __str__ = __repr__

    class Config:
        extra = "forbid"
        str_strip_whitespace = True
        json_schema_extra = {
            "example": {
                "user_id": "user_123",
                "provider": "stripe",
                "card_number": "4242424242424242",
                "card_exp_month": 12,
                "card_exp_year": 2030,
                "card_cvv": "123",
                "card_holder_name": "Ada Lovelace",
                "set_as_default": True,
            }
        }


class RedirectTokenizationRequest(GatewayRequest):
    """Starts a vendor-hosted card registration."""

    user_id: str = Field(..., min_length=1)
    provider: str = Field(..., min_length=1)
    return_url: str = Field(..., min_length=1, description="Where the vendor sends the user back")
    set_as_default: bool = False
    metadata: dict[str, Any] = Field(default_factory=dict)

    @field_validator("return_url")
    @classmethod
    def require_http_url(cls, value: str) -> str:
        if not value.startswith(("http://", "https://")):
            raise ValueError("return_url must be an http(s) URL")
        return value


class CompleteTokenizationRequest(GatewayRequest):
    """Callback data that finishes a redirect tokenization."""

    session_id: str = Field(..., min_length=1)
    user_id: str = Field(..., min_length=1)
    provider: str = Field(..., min_length=1)
    callback_data: dict[str, Any] = Field(default_factory=dict)


class ProcessPaymentRequest(GatewayRequest):
    """
    Charge a stored card.

    Exactly one of ``token_id`` (card id or processor token) and
    ``session_id`` (a completed redirect session) identifies the card.
    """

    user_id: str = Field(..., min_length=1, description="Payer")
    professional_id: str = Field(..., min_length=1, description="Payee")
    service_request_id: str = Field(..., min_length=1)
    amount: Decimal = Field(..., gt=0)
    currency: str = Field(..., min_length=3, max_length=3)
    provider: str = Field(..., min_length=1)
    description: str = ""
    token_id: Optional[str] = None
    session_id: Optional[str] = None
    payment_id: Optional[str] = Field(None, description="Caller-supplied id, generated when absent")
    card_cvv: Optional[str] = Field(None, description="Only for processors that require it per payment")
    metadata: dict[str, Any] = Field(default_factory=dict)

    @field_validator("currency")
    @classmethod
    def normalize_currency(cls, value: str) -> str:
        if not value.isalpha():
            raise ValueError("currency must be a 3-letter ISO code")
        return value.upper()

    @model_validator(mode="after")
    def exactly_one_card_reference(self) -> "ProcessPaymentRequest":
        if bool(self.token_id) == bool(self.session_id):
            raise ValueError("exactly one of token_id or session_id is required")
        return self

    class Config:
        extra = "forbid"
        str_strip_whitespace = True
        json_schema_extra = {
            "example": {
                "user_id": "user_123",
                "professional_id": "pro_456",
                "service_request_id": "sr_789",
                "amount": "10000",
                "currency": "CLP",
                "provider": "transbank",
                "description": "Plumbing visit",
                "token_id": "card_abc",
            }
        }


class RefundRequest(GatewayRequest):
    payment_id: str = Field(..., min_length=1)
    user_id: str = Field(..., min_length=1)
    amount: Optional[Decimal] = Field(None, gt=0, description="Defaults to the remaining amount")
