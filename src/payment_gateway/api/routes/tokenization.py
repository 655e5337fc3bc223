"""Card tokenization endpoints."""

import structlog
from fastapi import APIRouter

from payment_gateway.api.dependencies import GatewayDep
from payment_gateway.api.models import ApiResponse, CompleteSessionBody
from payment_gateway.models.requests import (
    CompleteTokenizationRequest,
    DirectTokenizationRequest,
    RedirectTokenizationRequest,
)

logger = structlog.get_logger()

router = APIRouter(tags=["tokenization"])


@router.post("/v1/tokenization/direct", response_model=ApiResponse, response_model_exclude_none=True)
async def tokenize_direct(request: DirectTokenizationRequest, gateway: GatewayDep) -> ApiResponse:
    """Tokenize raw card data with a direct-capable processor."""
    result = await gateway.tokenization.tokenize_direct(request)
    return ApiResponse(success=True, data=result.to_response())


@router.post("/v1/tokenization/sessions", response_model=ApiResponse, response_model_exclude_none=True)
async def create_session(request: RedirectTokenizationRequest, gateway: GatewayDep) -> ApiResponse:
    """Start a redirect tokenization and return the vendor URL."""
    session = await gateway.tokenization.create_session(request)
    return ApiResponse(success=True, data=session)


@router.post(
    "/v1/tokenization/sessions/{session_id}/complete",
    response_model=ApiResponse,
    response_model_exclude_none=True,
)
async def complete_session(session_id: str, body: CompleteSessionBody, gateway: GatewayDep) -> ApiResponse:
    """Finish a redirect tokenization from the vendor's callback data."""
    request = CompleteTokenizationRequest(session_id=session_id, **body.model_dump())
    result = await gateway.tokenization.complete_session(request)
    return ApiResponse(success=True, data=result.to_response())


@router.get("/v1/users/{user_id}/cards", response_model=ApiResponse, response_model_exclude_none=True)
async def list_cards(user_id: str, gateway: GatewayDep) -> ApiResponse:
    """Stored cards of a user, default card first."""
    cards = await gateway.tokenization.list_cards(user_id)
    return ApiResponse(success=True, data=cards)
