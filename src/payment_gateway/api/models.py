"""Pydantic models for the JSON envelope and path-scoped request bodies."""

from decimal import Decimal
from typing import Any, Optional

from pydantic import BaseModel, Field


class ErrorBody(BaseModel):
    code: str = Field(..., description="Error taxonomy code")
    message: str = Field(..., description="Human-readable message")
    details: Optional[dict[str, Any]] = Field(None, description="Structured context")


class ApiResponse(BaseModel):
    """Envelope returned by every business endpoint."""

    success: bool
    data: Optional[Any] = None
    error: Optional[ErrorBody] = None

    class Config:
        json_schema_extra = {
            "example": {
                "success": False,
                "error": {
                    "code": "SESSION_ALREADY_PROCESSED",
                    "message": "Session already processed",
                    "details": {"session_id": "tbk_01ABC", "status": "completed"},
                },
            }
        }


class CompleteSessionBody(BaseModel):
    """Body of POST /v1/tokenization/sessions/{session_id}/complete."""

    user_id: str = Field(..., min_length=1)
    provider: str = Field(..., min_length=1)
    callback_data: dict[str, Any] = Field(default_factory=dict, description="Query or form data from the vendor redirect")

    class Config:
        extra = "forbid"
        json_schema_extra = {
            "example": {
                "user_id": "user_123",
                "provider": "transbank",
                "callback_data": {"TBK_TOKEN": "01ab23cd45ef"},
            }
        }


class RefundBody(BaseModel):
    """Body of POST /v1/payments/{payment_id}/refund."""

    user_id: str = Field(..., min_length=1, description="Payer or payee requesting the refund")
    amount: Optional[Decimal] = Field(None, gt=0, description="Defaults to the remaining amount")

    class Config:
        extra = "forbid"
