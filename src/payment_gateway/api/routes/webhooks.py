"""Processor webhook endpoint."""

from fastapi import APIRouter, Request

from payment_gateway.api.dependencies import GatewayDep

router = APIRouter(tags=["webhooks"])

# Header carrying the signature, per processor
SIGNATURE_HEADERS = ("stripe-signature", "x-signature")


@router.post("/webhook/{provider}")
async def receive_webhook(provider: str, request: Request, gateway: GatewayDep) -> dict:
    """
    Receive a processor webhook.

    The raw body is passed through untouched; signature verification needs
    the exact bytes the processor signed.
    """
    payload = await request.body()
    signature = next((request.headers[h] for h in SIGNATURE_HEADERS if h in request.headers), None)
    return await gateway.webhooks.dispatch(
        provider,
        payload,
        signature,
        request_id=request.headers.get("x-request-id"),
    )
