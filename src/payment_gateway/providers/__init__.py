"""
Payment processor integrations.

- base.PaymentProvider: Contract every processor implements
- stripe_provider.StripeProvider: Stripe (direct and Checkout setup sessions)
- transbank_provider.TransbankProvider: Transbank Oneclick Mall (redirect only)
- mercadopago_provider.MercadoPagoProvider: MercadoPago (direct and Checkout Pro)
- registry.ProviderRegistry: Name -> initialized adapter, with credential resolution
"""

from payment_gateway.providers.base import PaymentProvider
from payment_gateway.providers.credentials import CredentialResolver
from payment_gateway.providers.mercadopago_provider import MercadoPagoProvider
from payment_gateway.providers.registry import ADAPTER_CLASSES, ProviderRegistry
from payment_gateway.providers.stripe_provider import StripeProvider
from payment_gateway.providers.transbank_provider import TransbankProvider

__all__ = [
    "ADAPTER_CLASSES",
    "CredentialResolver",
    "MercadoPagoProvider",
    "PaymentProvider",
    "ProviderRegistry",
    "StripeProvider",
    "TransbankProvider",
]
