"""Provider discovery endpoint."""

from fastapi import APIRouter

from payment_gateway.api.dependencies import GatewayDep
from payment_gateway.api.models import ApiResponse

router = APIRouter(tags=["providers"])


@router.get("/v1/providers", response_model=ApiResponse, response_model_exclude_none=True)
async def list_providers(gateway: GatewayDep) -> ApiResponse:
    return ApiResponse(success=True, data=gateway.registry.describe())
