"""Repository layer over the document store.

Each repository converts between domain dataclasses and documents for one
collection. Timestamps are stamped here, not by callers.
"""

from collections.abc import Callable
from datetime import datetime
from typing import Any

import structlog

from payment_gateway.infrastructure.document_store import DocumentStore
from payment_gateway.models.common import dump_datetime, utc_now
from payment_gateway.models.exceptions import ErrorCode, PaymentGatewayError
from payment_gateway.models.payments import Payment, PaymentStatus
from payment_gateway.models.provider import ProviderName
from payment_gateway.models.tokenization import PaymentCard, SessionStatus, TokenizationSession

logger = structlog.get_logger(__name__)

CARDS_COLLECTION = "payment_cards"
SESSIONS_COLLECTION = "tokenization_sessions"
PAYMENTS_COLLECTION = "payments"

Clock = Callable[[], datetime]


class CardRepository:
    """Stored cards and the one-default-card-per-user rule."""

    def __init__(self, store: DocumentStore, clock: Clock = utc_now):
        self.store = store
        self.clock = clock

    async def get(self, card_id: str) -> PaymentCard | None:
        doc = await self.store.get(CARDS_COLLECTION, card_id)
        return PaymentCard.from_document(doc) if doc else None

    async def find_by_payment_token(self, user_id: str, payment_token: str) -> PaymentCard | None:
        docs = await self.store.query(
            CARDS_COLLECTION,
            {"user_id": user_id, "payment_token": payment_token},
            limit=1,
        )
        return PaymentCard.from_document(docs[0]) if docs else None

    async def list_for_user(self, user_id: str) -> list[PaymentCard]:
        """Cards of a user, default first, then newest first."""
        docs = await self.store.query(CARDS_COLLECTION, {"user_id": user_id})
        cards = [PaymentCard.from_document(doc) for doc in docs]
        cards.sort(key=lambda card: card.created_at.timestamp() if card.created_at else 0, reverse=True)
        cards.sort(key=lambda card: not card.is_default)
        return cards

    async def has_cards(self, user_id: str) -> bool:
        return bool(await self.store.query(CARDS_COLLECTION, {"user_id": user_id}, limit=1))

    async def save_card(self, card: PaymentCard) -> PaymentCard:
        """
        Persist a new card and apply the default-card rule.

        When the card is marked default, every other default card of the
        user is unset afterwards. The two writes are not atomic: a reader
        in between can briefly see two defaults, and two concurrent saves
        can each unset the other. Both writes are idempotent, so repeating
        the save converges.
        """
        now = self.clock()
        card.card_id = card.card_id or self.store.new_id(CARDS_COLLECTION)
        card.created_at = card.created_at or now
        card.updated_at = now

        await self.store.set(CARDS_COLLECTION, card.card_id, card.to_document())
        logger.info(
            "card_saved",
            card_id=card.card_id,
            user_id=card.user_id,
            provider=card.provider.value,
            is_default=card.is_default,
        )

        if card.is_default:
            await self.unset_other_defaults(card.user_id, card.card_id)
        return card

    async def unset_other_defaults(self, user_id: str, keep_card_id: str) -> int:
        """Clear is_default on every card of the user except keep_card_id."""
        docs = await self.store.query(CARDS_COLLECTION, {"user_id": user_id, "is_default": True})
        now = dump_datetime(self.clock())
        updates = {
            doc["card_id"]: {"is_default": False, "updated_at": now}
            for doc in docs
            if doc["card_id"] != keep_card_id
        }
        if updates:
            await self.store.batch_update(CARDS_COLLECTION, updates)
            logger.info("default_cards_unset", user_id=user_id, count=len(updates))
        return len(updates)


class SessionRepository:
    """Redirect tokenization sessions."""

    def __init__(self, store: DocumentStore, clock: Clock = utc_now):
        self.store = store
        self.clock = clock

    async def create(self, session: TokenizationSession) -> TokenizationSession:
        session.created_at = session.created_at or self.clock()
        await self.store.set(SESSIONS_COLLECTION, session.session_id, session.to_document())
        logger.info(
            "tokenization_session_created",
            session_id=session.session_id,
            user_id=session.user_id,
            provider=session.provider.value,
            expires_at=dump_datetime(session.expires_at),
        )
        return session

    async def get(self, session_id: str) -> TokenizationSession | None:
        doc = await self.store.get(SESSIONS_COLLECTION, session_id)
        return TokenizationSession.from_document(doc) if doc else None

    async def finish(
        self,
        session_id: str,
        status: SessionStatus,
        **fields: Any,
    ) -> None:
        """
        Move a pending session to a terminal status.

        Raises:
            PaymentGatewayError: SESSION_ALREADY_PROCESSED if the stored
                session already left ``pending``
        """
        if status == SessionStatus.PENDING:
            raise ValueError("finish() requires a terminal status")

        current = await self.get(session_id)
        if current is not None and not current.is_pending:
            raise PaymentGatewayError(
                "Session already processed",
                code=ErrorCode.SESSION_ALREADY_PROCESSED,
                details={"session_id": session_id, "status": current.status.value},
            )

        update = {"status": status.value, "completed_at": dump_datetime(self.clock())}
        update.update(fields)
        await self.store.update(SESSIONS_COLLECTION, session_id, update)
        logger.info("tokenization_session_finished", session_id=session_id, status=status.value)


class PaymentRepository:
    """Payment records."""

    def __init__(self, store: DocumentStore, clock: Clock = utc_now):
        self.store = store
        self.clock = clock

    async def create(self, payment: Payment) -> Payment:
        now = self.clock()
        payment.created_at = payment.created_at or now
        payment.updated_at = now
        await self.store.set(PAYMENTS_COLLECTION, payment.payment_id, payment.to_document())
        return payment

    async def get(self, payment_id: str) -> Payment | None:
        doc = await self.store.get(PAYMENTS_COLLECTION, payment_id)
        return Payment.from_document(doc) if doc else None

    async def find_by_transaction_id(
        self, provider: ProviderName, transaction_id: str
    ) -> Payment | None:
        docs = await self.store.query(
            PAYMENTS_COLLECTION,
            {"provider": provider.value, "transaction_id": transaction_id},
            limit=1,
        )
        return Payment.from_document(docs[0]) if docs else None

    async def update_status(self, payment_id: str, status: PaymentStatus, **fields: Any) -> None:
        update: dict[str, Any] = {"status": status.value, "updated_at": dump_datetime(self.clock())}
        for key, value in fields.items():
            if isinstance(value, datetime):
                value = dump_datetime(value)
            elif key == "refunded_amount":
                value = str(value)
            update[key] = value
        await self.store.update(PAYMENTS_COLLECTION, payment_id, update)
        logger.info("payment_status_updated", payment_id=payment_id, status=status.value)
