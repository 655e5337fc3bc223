"""Routes processor webhooks to their adapter and applies the reported status."""

import json
from typing import Any

import structlog

from payment_gateway.infrastructure.repository import Clock, PaymentRepository
from payment_gateway.models import (
    ErrorCode,
    Payment,
    PaymentGatewayError,
    PaymentStatusUpdate,
    ProviderName,
    ValidationFailed,
)
from payment_gateway.models.common import dump_datetime, utc_now
from payment_gateway.providers.registry import ProviderRegistry
from payment_gateway.services.payments import transition_allowed

logger = structlog.get_logger(__name__)


class WebhookRouter:
    """
    Dispatches raw webhook deliveries.

    Verification happens before the body is parsed. Events for payments
    this gateway does not know about are acknowledged and ignored, so the
    processor stops redelivering them.
    """

    def __init__(self, registry: ProviderRegistry, payments: PaymentRepository, clock: Clock = utc_now):
        self.registry = registry
        self.payments = payments
        self.clock = clock

    async def dispatch(
        self,
        provider: str,
        payload: bytes,
        signature: str | None,
        request_id: str | None = None,
    ) -> dict[str, Any]:
        """
        Verify, translate and apply one webhook delivery.

        Raises:
            PaymentGatewayError: registry errors, INVALID_SIGNATURE (401),
                VALIDATION_ERROR for a body that is not a JSON object
        """
        adapter = self.registry.get(provider)
        provider_name = adapter.name

        if not adapter.verify_webhook(payload, signature, request_id):
            logger.warning("webhook_signature_invalid", provider=provider_name.value, request_id=request_id)
            raise PaymentGatewayError(
                "Invalid webhook signature",
                code=ErrorCode.INVALID_SIGNATURE,
                details={"provider": provider_name.value},
            )

        try:
            event = json.loads(payload)
        except ValueError as e:
            raise ValidationFailed("Webhook body is not valid JSON", details={"provider": provider_name.value}) from e
        if not isinstance(event, dict):
            raise ValidationFailed("Webhook body must be a JSON object", details={"provider": provider_name.value})

        logger.info(
            "webhook_received",
            provider=provider_name.value,
            event_type=event.get("type") or event.get("topic"),
            request_id=request_id,
        )

        update = await adapter.handle_webhook(event)
        if update is not None:
            await self.apply(provider_name, update)

        return {
            "received": True,
            "provider": provider_name.value,
            "timestamp": dump_datetime(self.clock()),
        }

    async def apply(self, provider: ProviderName, update: PaymentStatusUpdate) -> Payment | None:
        """Write a status update to the matching payment; None if no payment matches."""
        payment = await self._find_payment(provider, update)
        if payment is None:
            logger.info(
                "webhook_payment_not_found",
                provider=provider.value,
                payment_id=update.payment_id,
                transaction_id=update.transaction_id,
            )
            return None

        if payment.status == update.status or not transition_allowed(payment.status, update.status):
            logger.info(
                "webhook_status_unchanged",
                payment_id=payment.payment_id,
                status=payment.status.value,
                reported_status=update.status.value,
            )
            return payment

        fields: dict[str, Any] = {}
        if update.transaction_id and not payment.transaction_id:
            fields["transaction_id"] = update.transaction_id
        if update.status.is_terminal and payment.completed_at is None:
            fields["completed_at"] = self.clock()

        await self.payments.update_status(payment.payment_id, update.status, **fields)
        logger.info(
            "webhook_status_applied",
            payment_id=payment.payment_id,
            previous_status=payment.status.value,
            status=update.status.value,
            event_type=update.event_type,
        )
        return await self.payments.get(payment.payment_id)

    async def _find_payment(self, provider: ProviderName, update: PaymentStatusUpdate) -> Payment | None:
        if update.payment_id:
            payment = await self.payments.get(update.payment_id)
            if payment is not None:
                return payment
        if update.transaction_id:
            return await self.payments.find_by_transaction_id(provider, update.transaction_id)
        return None
