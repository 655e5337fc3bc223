"""
Payment execution.

A Payment record is written in ``processing`` before any processor call,
so every attempt is auditable: it ends in a terminal or normalized status,
or in ``failed`` with an error message when anything goes wrong.
"""

from typing import Any

import structlog

from payment_gateway.domain.identifiers import generate_id
from payment_gateway.infrastructure.repository import (
    CardRepository,
    Clock,
    PaymentRepository,
    SessionRepository,
)
from payment_gateway.models import (
    CardToken,
    ErrorCode,
    Forbidden,
    NotFound,
    Payment,
    PaymentCard,
    PaymentGatewayError,
    PaymentResult,
    PaymentStatus,
    ProviderName,
    SessionStatus,
    ValidationFailed,
)
from payment_gateway.models.common import utc_now
from payment_gateway.models.requests import ProcessPaymentRequest, RefundRequest
from payment_gateway.providers.registry import ProviderRegistry

logger = structlog.get_logger(__name__)


def transition_allowed(current: PaymentStatus, new: PaymentStatus) -> bool:
    """
    Whether a reported status may replace the stored one.

    A refunded payment stays refunded: processors keep reporting the
    original charge as succeeded after a refund.
    """
    return current != PaymentStatus.REFUNDED or new == PaymentStatus.REFUNDED


class PaymentExecutor:
    """Charges stored cards and manages the resulting payment records."""

    def __init__(
        self,
        registry: ProviderRegistry,
        payments: PaymentRepository,
        cards: CardRepository,
        sessions: SessionRepository,
        clock: Clock = utc_now,
    ):
        self.registry = registry
        self.payments = payments
        self.cards = cards
        self.sessions = sessions
        self.clock = clock

    async def process_payment(self, request: ProcessPaymentRequest) -> PaymentResult:
        """
        Charge the card referenced by token_id or session_id.

        Workflow:
        1. Write the Payment in ``processing``
        2. Resolve the card (by card id, then by processor token, or via a
           completed redirect session)
        3. Check ownership and processor
        4. Call the processor
        5. Write the normalized outcome

        Raises:
            PaymentGatewayError: PAYMENT_FAILED (402) for declines; the
                wrapped error for anything else. The payment record is
                marked ``failed`` in both cases.
        """
        provider_name = ProviderName.parse(request.provider)
        payment_id = request.payment_id or generate_id("pay")

        existing = await self.payments.get(payment_id)
        if existing is not None and existing.status != PaymentStatus.FAILED:
            raise ValidationFailed(
                "Payment already exists",
                details={"payment_id": payment_id, "status": existing.status.value},
            )

        payment = Payment(
            payment_id=payment_id,
            user_id=request.user_id,
            professional_id=request.professional_id,
            service_request_id=request.service_request_id,
            amount=request.amount,
            currency=request.currency,
            provider=provider_name,
            status=PaymentStatus.PROCESSING,
            description=request.description,
            metadata=dict(request.metadata) or None,
        )
        await self.payments.create(payment)

        logger.info(
            "payment_processing_started",
            payment_id=payment_id,
            user_id=request.user_id,
            provider=provider_name.value,
            amount=str(request.amount),
            currency=request.currency,
        )

        card: PaymentCard | None = None
        try:
            card = await self._resolve_card(request)
            self._check_card(card, request, provider_name)
            payment.card_id = card.card_id

            provider = self.registry.get(provider_name)
            result = await provider.process_payment(
                payment, CardToken.from_card(card, security_code=request.card_cvv)
            )
        except Exception as e:
            error = PaymentGatewayError.from_exception(e)
            await self._record_failure(payment_id, error.message, card_id=card.card_id if card else None)
            logger.error(
                "payment_processing_error",
                payment_id=payment_id,
                error_code=error.code.value,
                error=error.message,
            )
            if error is e:
                raise
            raise error from e

        if result.status == PaymentStatus.FAILED:
            reason = result.decline_reason or f"Payment declined ({result.decline_code})"
            await self._record_failure(
                payment_id,
                reason,
                card_id=card.card_id,
                transaction_id=result.provider_payment_id,
            )
            logger.info(
                "payment_declined",
                payment_id=payment_id,
                decline_code=result.decline_code,
            )
            raise PaymentGatewayError(
                reason,
                code=ErrorCode.PAYMENT_FAILED,
                http_status=402,
                details={"payment_id": payment_id, "decline_code": result.decline_code},
            )

        fields: dict[str, Any] = {
            "transaction_id": result.provider_payment_id,
            "card_id": card.card_id,
        }
        if result.status.is_terminal:
            fields["completed_at"] = self.clock()
        await self.payments.update_status(payment_id, result.status, **fields)

        logger.info(
            "payment_processing_completed",
            payment_id=payment_id,
            status=result.status.value,
            transaction_id=result.provider_payment_id,
        )
        return result

    async def refund_payment(self, request: RefundRequest) -> dict[str, Any]:
        """
        Refund a completed payment in full or in part.

        Only the payer or the payee may refund. Partial refunds accumulate
        in ``refunded_amount``; the payment becomes ``refunded`` once the
        whole amount is returned.
        """
        payment = await self._get_for_party(request.payment_id, request.user_id)

        if payment.status != PaymentStatus.COMPLETED:
            raise ValidationFailed(
                "Only completed payments can be refunded",
                details={"payment_id": payment.payment_id, "status": payment.status.value},
            )

        amount = request.amount if request.amount is not None else payment.refundable_amount
        if amount > payment.refundable_amount:
            raise ValidationFailed(
                "Refund amount exceeds the refundable amount",
                details={
                    "payment_id": payment.payment_id,
                    "amount": str(amount),
                    "refundable_amount": str(payment.refundable_amount),
                },
            )

        provider = self.registry.get(payment.provider)
        refund = await provider.refund_payment(payment, amount)

        refunded_amount = payment.refunded_amount + amount
        status = PaymentStatus.REFUNDED if refunded_amount >= payment.amount else PaymentStatus.COMPLETED
        await self.payments.update_status(payment.payment_id, status, refunded_amount=refunded_amount)

        logger.info(
            "payment_refunded",
            payment_id=payment.payment_id,
            refund_id=refund.refund_id,
            amount=str(amount),
            refunded_amount=str(refunded_amount),
            status=status.value,
        )
        return {
            "payment_id": payment.payment_id,
            "refund_id": refund.refund_id,
            "status": status.value,
            "refunded_amount": str(refunded_amount),
            "message": "Payment refunded" if status == PaymentStatus.REFUNDED else "Partial refund processed",
        }

    async def sync_payment_status(self, payment_id: str) -> Payment:
        """Refresh a payment's status from its processor."""
        payment = await self.payments.get(payment_id)
        if payment is None:
            raise NotFound("Payment not found", details={"payment_id": payment_id})
        if not payment.transaction_id:
            raise ValidationFailed(
                "Payment has no processor transaction to sync",
                details={"payment_id": payment_id},
            )

        provider = self.registry.get(payment.provider)
        snapshot = await provider.get_payment_status(payment.transaction_id)

        if snapshot.status != payment.status and transition_allowed(payment.status, snapshot.status):
            fields: dict[str, Any] = {}
            if snapshot.status.is_terminal and payment.completed_at is None:
                fields["completed_at"] = self.clock()
            await self.payments.update_status(payment_id, snapshot.status, **fields)
            logger.info(
                "payment_status_synced",
                payment_id=payment_id,
                previous_status=payment.status.value,
                status=snapshot.status.value,
            )

        return await self.payments.get(payment_id)

    async def get_payment(self, payment_id: str, requester_id: str) -> Payment:
        return await self._get_for_party(payment_id, requester_id)

    async def _get_for_party(self, payment_id: str, requester_id: str) -> Payment:
        payment = await self.payments.get(payment_id)
        if payment is None:
            raise NotFound("Payment not found", details={"payment_id": payment_id})
        if not payment.is_party(requester_id):
            raise Forbidden("Unauthorized", details={"payment_id": payment_id})
        return payment

    async def _resolve_card(self, request: ProcessPaymentRequest) -> PaymentCard:
        if request.session_id:
            session = await self.sessions.get(request.session_id)
            if session is None:
                raise NotFound("Session not found", details={"session_id": request.session_id})
            if session.user_id != request.user_id:
                raise Forbidden("Unauthorized", details={"session_id": request.session_id})
            if session.status != SessionStatus.COMPLETED:
                raise ValidationFailed(
                    "Session is not completed",
                    details={"session_id": session.session_id, "status": session.status.value},
                )
            card = await self.cards.get(session.card_id) if session.card_id else None
            if card is None and session.token_id:
                card = await self.cards.find_by_payment_token(request.user_id, session.token_id)
        else:
            card = await self.cards.get(request.token_id)
            if card is None:
                card = await self.cards.find_by_payment_token(request.user_id, request.token_id)

        if card is None:
            raise NotFound("Card not found", details={"token_id": request.token_id or request.session_id})
        return card

    @staticmethod
    def _check_card(card: PaymentCard, request: ProcessPaymentRequest, provider_name: ProviderName) -> None:
        if card.user_id != request.user_id:
            logger.warning("payment_card_owner_mismatch", card_id=card.card_id, user_id=request.user_id)
            raise Forbidden("Unauthorized", details={"card_id": card.card_id})
        if card.provider != provider_name:
            raise ValidationFailed(
                "Card was registered with a different provider",
                details={"card_provider": card.provider.value, "provider": provider_name.value},
            )
        if card.requires_cvv_for_payments and not request.card_cvv:
            raise ValidationFailed(
                "card_cvv is required for this card",
                details={"card_id": card.card_id, "provider": card.provider.value},
            )

    async def _record_failure(self, payment_id: str, error_message: str, **fields: Any) -> None:
        fields = {key: value for key, value in fields.items() if value is not None}
        try:
            await self.payments.update_status(
                payment_id,
                PaymentStatus.FAILED,
                error_message=error_message,
                completed_at=self.clock(),
                **fields,
            )
        except Exception as e:
            # The caller re-raises the original error; this one is only logged
            logger.error("payment_failure_not_recorded", payment_id=payment_id, error=str(e))
