"""FastAPI application entry point for the payment gateway."""

from contextlib import asynccontextmanager
from typing import AsyncIterator

import structlog
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from payment_gateway.api.models import ApiResponse, ErrorBody
from payment_gateway.api.routes import payments, providers, tokenization, webhooks
from payment_gateway.config import Settings, settings as default_settings
from payment_gateway.gateway import Gateway, build_gateway, create_store
from payment_gateway.logging_config import configure_logging
from payment_gateway.models.exceptions import ErrorCode, PaymentGatewayError

logger = structlog.get_logger()


def error_response(error: PaymentGatewayError) -> JSONResponse:
    body = ApiResponse(success=False, error=ErrorBody(**error.to_dict()))
    return JSONResponse(status_code=error.http_status, content=body.model_dump(exclude_none=True))


async def handle_gateway_error(request: Request, exc: PaymentGatewayError) -> JSONResponse:
    logger.info(
        "request_failed",
        path=request.url.path,
        error_code=exc.code.value,
        http_status=exc.http_status,
    )
    return error_response(exc)


async def handle_validation_error(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = [
        {"loc": list(error.get("loc", ())), "msg": error.get("msg", ""), "type": error.get("type", "")}
        for error in exc.errors()
    ]
    return error_response(
        PaymentGatewayError("Invalid request", code=ErrorCode.VALIDATION_ERROR, details={"errors": errors})
    )


def create_app(settings: Settings | None = None, gateway: Gateway | None = None) -> FastAPI:
    """
    Build the FastAPI application.

    Args:
        settings: Configuration, defaults to the process-wide settings
        gateway: Pre-built gateway; when omitted one is built at startup
            and closed at shutdown
    """
    settings = settings or default_settings
    configure_logging(settings.log_level, settings.log_format_json, settings.service_name)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        """Application lifespan manager: build the gateway, close it on shutdown."""
        logger.info("starting_payment_gateway", environment=settings.environment)

        owned = getattr(app.state, "gateway", None) is None
        if owned:
            try:
                store = await create_store(settings)
            except Exception as e:
                logger.error("failed_to_initialize_store", error=str(e))
                raise
            app.state.gateway = build_gateway(settings, store)

        logger.info("payment_gateway_started")

        yield

        logger.info("shutting_down_payment_gateway")
        if owned:
            await app.state.gateway.close()
            app.state.gateway = None
        logger.info("payment_gateway_shutdown_complete")

    app = FastAPI(
        title="Payment Gateway",
        description="Card tokenization and payments across Stripe, Transbank and MercadoPago",
        version="0.1.0",
        debug=settings.debug,
        lifespan=lifespan,
    )
    app.state.gateway = gateway

    app.add_exception_handler(PaymentGatewayError, handle_gateway_error)
    app.add_exception_handler(RequestValidationError, handle_validation_error)

    @app.middleware("http")
    async def unhandled_errors(request: Request, call_next):
        try:
            return await call_next(request)
        except Exception as e:
            logger.exception("unhandled_request_error", path=request.url.path, error=str(e))
            return error_response(PaymentGatewayError.from_exception(e))

    app.include_router(tokenization.router)
    app.include_router(payments.router)
    app.include_router(webhooks.router)
    app.include_router(providers.router)

    @app.get("/health")
    async def health_check() -> dict[str, str]:
        """Health check endpoint."""
        return {
            "status": "healthy",
            "service": settings.service_name,
            "environment": settings.environment,
        }

    return app


app = create_app()
