"""
Credential resolution for payment providers.

Three tiers, in order:

1. A config that carries every required credential is used as given.
2. A config that carries none of them falls back to the processor's public
   test profile, when the processor publishes one.
3. Anything else is a MISSING_CONFIG error naming the missing keys.

A partially filled config is never topped up from a test profile; mixing
production and sandbox values would charge against the wrong account.
"""

from collections.abc import Mapping
from dataclasses import replace

import structlog

from payment_gateway.models import MissingConfig, ProviderConfig, ProviderName
from payment_gateway.providers.base import PaymentProvider

logger = structlog.get_logger(__name__)


class CredentialResolver:
    """Turns a configured ProviderConfig into one an adapter can initialize with."""

    def __init__(self, adapters: Mapping[ProviderName, type[PaymentProvider]]):
        self.adapters = adapters

    def resolve(self, name: ProviderName, config: ProviderConfig | None) -> ProviderConfig:
        """
        Resolve the credentials a provider will run with.

        Args:
            name: Processor to resolve for
            config: Configured values, or None if the processor has no config

        Returns:
            ProviderConfig with ``test_mode`` and ``source`` filled in

        Raises:
            MissingConfig: If required credentials are missing and no test
                profile can stand in for them
        """
        adapter = self.adapters[name]
        config = config or ProviderConfig(provider=name)
        supplied, missing = self._split(adapter, config)

        if not missing:
            return replace(
                config,
                test_mode=adapter.detect_test_mode(config.supplied_credentials()),
                source="config",
            )

        if not supplied and adapter.test_profile is not None:
            logger.warning(
                "provider_using_test_profile",
                provider=name.value,
                missing=missing,
            )
            return replace(
                config,
                credentials=dict(adapter.test_profile),
                test_mode=True,
                source="test_profile",
            )

        logger.error("provider_credentials_missing", provider=name.value, missing=missing)
        raise MissingConfig(
            f"Missing required {name.value} credentials: {', '.join(missing)}",
            details={"provider": name.value, "missing": missing},
        )

    def can_resolve(self, name: ProviderName, config: ProviderConfig | None) -> bool:
        """Whether ``resolve`` would succeed, without logging or raising."""
        adapter = self.adapters.get(name)
        if adapter is None:
            return False
        supplied, missing = self._split(adapter, config or ProviderConfig(provider=name))
        return not missing or (not supplied and adapter.test_profile is not None)

    @staticmethod
    def _split(adapter: type[PaymentProvider], config: ProviderConfig) -> tuple[dict[str, str], list[str]]:
        # Only required keys count; extra keys such as "environment" are always filled in
        supplied = config.supplied_credentials(adapter.required_credentials)
        missing = [key for key in adapter.required_credentials if key not in supplied]
        return supplied, missing
