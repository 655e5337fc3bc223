"""Payment endpoints."""

from fastapi import APIRouter, Query

from payment_gateway.api.dependencies import GatewayDep
from payment_gateway.api.models import ApiResponse, RefundBody
from payment_gateway.models.requests import ProcessPaymentRequest, RefundRequest

router = APIRouter(prefix="/v1/payments", tags=["payments"])


@router.post("", response_model=ApiResponse, response_model_exclude_none=True)
async def process_payment(request: ProcessPaymentRequest, gateway: GatewayDep) -> ApiResponse:
    """
    Charge a stored card.

    Declines are answered with HTTP 402 and a PAYMENT_FAILED error; the
    payment record is kept as ``failed``.
    """
    result = await gateway.payments.process_payment(request)
    return ApiResponse(success=True, data=result.to_response())


@router.post("/{payment_id}/refund", response_model=ApiResponse, response_model_exclude_none=True)
async def refund_payment(payment_id: str, body: RefundBody, gateway: GatewayDep) -> ApiResponse:
    request = RefundRequest(payment_id=payment_id, user_id=body.user_id, amount=body.amount)
    refund = await gateway.payments.refund_payment(request)
    return ApiResponse(success=True, data=refund)


@router.get("/{payment_id}", response_model=ApiResponse, response_model_exclude_none=True)
async def get_payment(
    payment_id: str,
    gateway: GatewayDep,
    user_id: str = Query(..., min_length=1, description="Payer or payee"),
) -> ApiResponse:
    payment = await gateway.payments.get_payment(payment_id, user_id)
    return ApiResponse(success=True, data=payment.to_response())


@router.post("/{payment_id}/sync", response_model=ApiResponse, response_model_exclude_none=True)
async def sync_payment(payment_id: str, gateway: GatewayDep) -> ApiResponse:
    """Refresh a payment's status from its processor."""
    payment = await gateway.payments.sync_payment_status(payment_id)
    return ApiResponse(success=True, data=payment.to_response())
