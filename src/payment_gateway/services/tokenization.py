"""
Card tokenization workflows.

Two protocols sit behind one orchestrator:

- Direct: card data is validated, exchanged for a vendor token and the
  card is stored in a single call. No session is created.
- Redirect: phase one creates a vendor session and persists it as
  ``pending``; phase two finishes it from the vendor's callback data,
  stores the card and moves the session to a terminal status exactly once.
"""

from typing import Any

import structlog

from payment_gateway.domain.cards import expand_year, validate_card_input
from payment_gateway.infrastructure.repository import CardRepository, Clock, SessionRepository
from payment_gateway.models import (
    ErrorCode,
    Forbidden,
    NotFound,
    PaymentCard,
    PaymentGatewayError,
    ProviderName,
    SessionStatus,
    TokenizationResult,
    TokenizationSession,
    ValidationFailed,
)
from payment_gateway.models.common import dump_datetime, utc_now
from payment_gateway.models.requests import (
    CompleteTokenizationRequest,
    DirectTokenizationRequest,
    RedirectTokenizationRequest,
)
from payment_gateway.providers.registry import ProviderRegistry

logger = structlog.get_logger(__name__)


class TokenizationOrchestrator:
    """Runs direct and redirect card registration against the registry's adapters."""

    def __init__(
        self,
        registry: ProviderRegistry,
        cards: CardRepository,
        sessions: SessionRepository,
        clock: Clock = utc_now,
    ):
        self.registry = registry
        self.cards = cards
        self.sessions = sessions
        self.clock = clock

    async def tokenize_direct(self, request: DirectTokenizationRequest) -> TokenizationResult:
        """
        Tokenize raw card data and store the card.

        Raises:
            ValidationFailed: If the card data is malformed or expired
            PaymentGatewayError: Registry errors, METHOD_NOT_SUPPORTED for
                redirect-only processors, TOKENIZATION_FAILED on vendor failure
        """
        validate_card_input(request, today=self.clock().date())
        request = request.model_copy(update={"card_exp_year": expand_year(request.card_exp_year)})
        provider = self.registry.get(request.provider)

        logger.info(
            "direct_tokenization_started",
            user_id=request.user_id,
            provider=provider.name.value,
        )

        result = await provider.tokenize_direct(request)
        card = await self._store_card(result.card, request.set_as_default)

        logger.info(
            "direct_tokenization_completed",
            user_id=request.user_id,
            provider=provider.name.value,
            card_id=card.card_id,
        )
        return TokenizationResult(card=card)

    async def create_session(self, request: RedirectTokenizationRequest) -> dict[str, Any]:
        """
        Phase one of a redirect tokenization.

        Returns:
            dict with session_id, redirect_url and expires_at
        """
        provider = self.registry.get(request.provider)
        redirect = await provider.create_tokenization_session(request)

        session = TokenizationSession(
            session_id=redirect.session_id,
            user_id=request.user_id,
            provider=provider.name,
            redirect_url=redirect.redirect_url,
            return_url=request.return_url,
            expires_at=redirect.expires_at,
            set_as_default=request.set_as_default,
            vendor_data=dict(redirect.vendor_data),
            metadata=dict(request.metadata),
            created_at=self.clock(),
        )
        await self.sessions.create(session)

        return {
            "session_id": session.session_id,
            "redirect_url": session.redirect_url,
            "expires_at": dump_datetime(session.expires_at),
        }

    async def complete_session(self, request: CompleteTokenizationRequest) -> TokenizationResult:
        """
        Phase two of a redirect tokenization.

        Checks run in order: the session exists, belongs to the caller, was
        created with the same processor, and is still pending. Completion is
        attempted even past ``expires_at``; if the vendor honors it the
        session completes and the late completion is logged.

        Raises:
            NotFound: Unknown session
            Forbidden: Session belongs to another user
            ValidationFailed: Processor does not match the session's
            PaymentGatewayError: SESSION_ALREADY_PROCESSED if not pending,
                or the adapter's error after the session was marked
                ``failed``/``expired``
        """
        session = await self.sessions.get(request.session_id)
        if session is None:
            raise NotFound("Session not found", details={"session_id": request.session_id})

        if session.user_id != request.user_id:
            logger.warning(
                "tokenization_session_owner_mismatch",
                session_id=session.session_id,
                user_id=request.user_id,
            )
            raise Forbidden("Unauthorized", details={"session_id": session.session_id})

        provider_name = ProviderName.parse(request.provider)
        if provider_name != session.provider:
            raise ValidationFailed(
                "Provider does not match session",
                details={"session_provider": session.provider.value, "provider": provider_name.value},
            )

        if not session.is_pending:
            raise PaymentGatewayError(
                "Session already processed",
                code=ErrorCode.SESSION_ALREADY_PROCESSED,
                details={"session_id": session.session_id, "status": session.status.value},
            )

        locally_expired = session.is_expired(self.clock())
        provider = self.registry.get(provider_name)

        try:
            result = await provider.complete_tokenization(session, request.callback_data)
        except PaymentGatewayError as e:
            status = SessionStatus.EXPIRED if e.code == ErrorCode.SESSION_EXPIRED else SessionStatus.FAILED
            await self.sessions.finish(session.session_id, status, error_message=e.message)
            logger.warning(
                "tokenization_session_failed",
                session_id=session.session_id,
                status=status.value,
                error_code=e.code.value,
            )
            raise
        except Exception as e:
            await self.sessions.finish(session.session_id, SessionStatus.FAILED, error_message=str(e))
            logger.error("tokenization_session_error", session_id=session.session_id, error=str(e))
            raise PaymentGatewayError.from_exception(e, ErrorCode.TOKENIZATION_COMPLETION_FAILED) from e

        try:
            card = await self._store_card(result.card, session.set_as_default)
        except Exception as e:
            # The vendor already registered the card; the session must still leave pending
            await self.sessions.finish(session.session_id, SessionStatus.FAILED, error_message=str(e))
            logger.error(
                "tokenization_card_store_failed",
                session_id=session.session_id,
                error_type=type(e).__name__,
                error=str(e),
            )
            raise PaymentGatewayError.from_exception(e, ErrorCode.TOKENIZATION_COMPLETION_FAILED) from e

        await self.sessions.finish(
            session.session_id,
            SessionStatus.COMPLETED,
            token_id=card.payment_token,
            card_id=card.card_id,
        )

        if locally_expired:
            logger.warning(
                "tokenization_session_completed_after_expiry",
                session_id=session.session_id,
                expires_at=dump_datetime(session.expires_at),
                locally_expired=True,
            )

        return TokenizationResult(card=card)

    async def list_cards(self, user_id: str) -> list[dict[str, Any]]:
        """Safe card views of a user, default first."""
        cards = await self.cards.list_for_user(user_id)
        return [
            {**TokenizationResult(card=card).to_response(), "alias": card.alias, "provider": card.provider.value}
            for card in cards
        ]

    async def _store_card(self, card: PaymentCard, set_as_default: bool) -> PaymentCard:
        # The first card of a user is always the default
        card.is_default = set_as_default or not await self.cards.has_cards(card.user_id)
        return await self.cards.save_card(card)
