"""
Provider registry.

Owns the mapping from processor name to configuration and to the live,
initialized adapter. Adapters are built lazily on first use, so a
processor with missing credentials only fails when something asks for it.
"""

from collections.abc import Iterable, Mapping
from typing import Any

import structlog

from payment_gateway.models import (
    ErrorCode,
    PaymentGatewayError,
    ProviderConfig,
    ProviderName,
)
from payment_gateway.providers.base import PaymentProvider
from payment_gateway.providers.credentials import CredentialResolver
from payment_gateway.providers.mercadopago_provider import MercadoPagoProvider
from payment_gateway.providers.stripe_provider import StripeProvider
from payment_gateway.providers.transbank_provider import TransbankProvider

logger = structlog.get_logger(__name__)

ADAPTER_CLASSES: dict[ProviderName, type[PaymentProvider]] = {
    ProviderName.STRIPE: StripeProvider,
    ProviderName.TRANSBANK: TransbankProvider,
    ProviderName.MERCADOPAGO: MercadoPagoProvider,
}


class ProviderRegistry:
    """
    Resolves which adapter instance serves a processor name.

    Two maps are kept: name -> ProviderConfig, filled eagerly from
    configuration, and name -> adapter, filled on first ``get``. Failed
    constructions are not cached, so fixing configuration and calling
    ``get`` again is enough to recover.

    Construction is not locked. Two coroutines racing on the first ``get``
    may both build an adapter; the last one wins the cache and both are
    equally valid.
    """

    def __init__(
        self,
        configs: Iterable[ProviderConfig] = (),
        resolver: CredentialResolver | None = None,
        adapters: Mapping[ProviderName, type[PaymentProvider]] | None = None,
    ):
        self.adapters: dict[ProviderName, type[PaymentProvider]] = dict(adapters or ADAPTER_CLASSES)
        self.resolver = resolver or CredentialResolver(self.adapters)
        self.configs: dict[ProviderName, ProviderConfig] = {c.provider: c for c in configs}
        self.instances: dict[ProviderName, PaymentProvider] = {}

    def get(self, name: str | ProviderName) -> PaymentProvider:
        """
        Return the initialized adapter for a processor.

        Raises:
            PaymentGatewayError: UNKNOWN_PROVIDER for an unsupported name,
                PROVIDER_NOT_FOUND when the processor is disabled,
                MISSING_CONFIG when credentials cannot be resolved
        """
        provider_name = ProviderName.parse(name)

        cached = self.instances.get(provider_name)
        if cached is not None:
            return cached

        config = self.configs.get(provider_name)
        if config is not None and not config.enabled:
            raise PaymentGatewayError(
                f"Payment provider {provider_name.value} is disabled",
                code=ErrorCode.PROVIDER_NOT_FOUND,
                details={"provider": provider_name.value},
            )

        adapter_class = self.adapters.get(provider_name)
        if adapter_class is None:
            raise PaymentGatewayError(
                f"No adapter registered for {provider_name.value}",
                code=ErrorCode.PROVIDER_NOT_FOUND,
                details={"provider": provider_name.value},
            )

        resolved = self.resolver.resolve(provider_name, config)
        provider = adapter_class()
        provider.initialize(resolved)
        self.instances[provider_name] = provider

        logger.info(
            "provider_created",
            provider=provider_name.value,
            provider_class=adapter_class.__name__,
            test_mode=resolved.test_mode,
            credential_source=resolved.source,
        )
        return provider

    def is_available(self, name: str | ProviderName) -> bool:
        """
        Whether ``get`` is expected to succeed, without constructing anything.

        True if an instance is cached, or if the credential resolver would
        accept the configuration (every required credential set, or none set
        and a test profile published). Always False for a disabled processor
        or an unknown name.
        """
        try:
            provider_name = ProviderName.parse(name)
        except PaymentGatewayError:
            return False

        config = self.configs.get(provider_name)
        if config is not None and not config.enabled:
            return False
        if provider_name in self.instances:
            return True
        return self.resolver.can_resolve(provider_name, config)

    def describe(self) -> list[dict[str, Any]]:
        """Provider discovery list for the API."""
        providers = []
        for provider_name in self.list_providers():
            config = self.configs.get(provider_name)
            adapter_class = self.adapters[provider_name]
            instance = self.instances.get(provider_name)

            if instance is not None:
                test_mode = instance.is_test_mode
            elif config is not None and config.supplied_credentials(adapter_class.required_credentials):
                test_mode = adapter_class.detect_test_mode(config.supplied_credentials())
            else:
                test_mode = adapter_class.test_profile is not None

            providers.append(
                {
                    "provider": provider_name.value,
                    "method": (config.method if config else sorted(adapter_class.supported_methods)[0]).value,
                    "supported_methods": sorted(m.value for m in adapter_class.supported_methods),
                    "enabled": config.enabled if config else True,
                    "is_test_mode": test_mode,
                    "available": self.is_available(provider_name),
                }
            )
        return providers

    def register(self, name: ProviderName, adapter_class: type[PaymentProvider]) -> None:
        """Register (or replace) the adapter class serving a processor."""
        if not issubclass(adapter_class, PaymentProvider):
            raise TypeError(f"{adapter_class.__name__} must inherit from PaymentProvider")

        self.adapters[name] = adapter_class
        self.instances.pop(name, None)
        logger.info("provider_registered", provider=name.value, provider_class=adapter_class.__name__)

    def list_providers(self) -> list[ProviderName]:
        return sorted(self.adapters, key=lambda p: p.value)

    def reset(self) -> None:
        """Drop cached adapters; the next ``get`` rebuilds them."""
        self.instances.clear()

    async def aclose(self) -> None:
        for provider in self.instances.values():
            await provider.aclose()
        self.instances.clear()
