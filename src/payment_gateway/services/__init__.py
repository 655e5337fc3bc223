"""Tokenization, payment and webhook workflows."""

from payment_gateway.services.payments import PaymentExecutor
from payment_gateway.services.tokenization import TokenizationOrchestrator
from payment_gateway.services.webhooks import WebhookRouter

__all__ = ["PaymentExecutor", "TokenizationOrchestrator", "WebhookRouter"]
