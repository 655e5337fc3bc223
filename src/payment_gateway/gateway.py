"""Wiring of the store, registry and services for one process."""

from dataclasses import dataclass

import structlog

from payment_gateway.config import Settings
from payment_gateway.infrastructure.document_store import DocumentStore, InMemoryDocumentStore
from payment_gateway.infrastructure.postgres_store import PostgresDocumentStore
from payment_gateway.infrastructure.repository import (
    CardRepository,
    Clock,
    PaymentRepository,
    SessionRepository,
)
from payment_gateway.models.common import utc_now
from payment_gateway.providers.registry import ProviderRegistry
from payment_gateway.services.payments import PaymentExecutor
from payment_gateway.services.tokenization import TokenizationOrchestrator
from payment_gateway.services.webhooks import WebhookRouter

logger = structlog.get_logger(__name__)


@dataclass
class Gateway:
    """Everything a request handler needs, owned by the entry point."""

    store: DocumentStore
    registry: ProviderRegistry
    tokenization: TokenizationOrchestrator
    payments: PaymentExecutor
    webhooks: WebhookRouter

    async def close(self) -> None:
        await self.registry.aclose()
        await self.store.close()
        logger.info("gateway_closed")


async def create_store(settings: Settings) -> DocumentStore:
    if settings.store_backend == "postgres":
        store = await PostgresDocumentStore.connect(
            settings.database_url,
            min_size=settings.database_pool_min_size,
            max_size=settings.database_pool_max_size,
            application_name=settings.service_name,
        )
        await store.create_schema()
        return store
    return InMemoryDocumentStore()


def build_gateway(
    settings: Settings,
    store: DocumentStore,
    registry: ProviderRegistry | None = None,
    clock: Clock = utc_now,
) -> Gateway:
    """
    Assemble a Gateway.

    Args:
        settings: Source of provider configuration when no registry is given
        store: Document store shared by all repositories
        registry: Pre-built registry (tests inject fakes here)
        clock: Time source for timestamps and expiry checks
    """
    registry = registry or ProviderRegistry(settings.provider_configs())
    cards = CardRepository(store, clock)
    sessions = SessionRepository(store, clock)
    payments = PaymentRepository(store, clock)

    logger.info(
        "gateway_built",
        store_backend=type(store).__name__,
        providers=[p.value for p in registry.list_providers()],
    )
    return Gateway(
        store=store,
        registry=registry,
        tokenization=TokenizationOrchestrator(registry, cards, sessions, clock),
        payments=PaymentExecutor(registry, payments, cards, sessions, clock),
        webhooks=WebhookRouter(registry, payments, clock),
    )
