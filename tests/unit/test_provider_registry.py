"""Unit tests for credential resolution and the provider registry."""

import pytest

from payment_gateway.config import Settings
from payment_gateway.models import (
    ErrorCode,
    MissingConfig,
    PaymentGatewayError,
    ProviderConfig,
    ProviderName,
    TokenizationMethod,
)
from payment_gateway.providers import (
    ADAPTER_CLASSES,
    CredentialResolver,
    MercadoPagoProvider,
    PaymentProvider,
    ProviderRegistry,
    StripeProvider,
    TransbankProvider,
)
from payment_gateway.providers.transbank_provider import TRANSBANK_TEST_PROFILE

from conftest import FAKE_ADAPTERS, FakeProvider


@pytest.fixture
def resolver() -> CredentialResolver:
    return CredentialResolver(ADAPTER_CLASSES)


class TestCredentialResolver:
    """Three tiers: explicit config, test profile, MISSING_CONFIG."""

    def test_explicit_credentials_are_used_verbatim(self, resolver):
        config = ProviderConfig(provider=ProviderName.STRIPE, credentials={"secret_key": "sk_live_abc"})

        resolved = resolver.resolve(ProviderName.STRIPE, config)

        assert resolved.credentials == {"secret_key": "sk_live_abc"}
        assert resolved.source == "config"
        assert resolved.test_mode is False

    def test_test_mode_is_derived_from_credentials(self, resolver):
        stripe_config = ProviderConfig(provider=ProviderName.STRIPE, credentials={"secret_key": "sk_test_abc"})
        mp_config = ProviderConfig(
            provider=ProviderName.MERCADOPAGO,
            credentials={"access_token": "TEST-123", "environment": "production"},
        )

        assert resolver.resolve(ProviderName.STRIPE, stripe_config).test_mode is True
        assert resolver.resolve(ProviderName.MERCADOPAGO, mp_config).test_mode is True

    def test_transbank_without_credentials_uses_test_profile(self, resolver):
        resolved = resolver.resolve(ProviderName.TRANSBANK, None)

        assert resolved.credentials == TRANSBANK_TEST_PROFILE
        assert resolved.test_mode is True
        assert resolved.source == "test_profile"

    def test_partial_transbank_config_is_not_completed_from_profile(self, resolver):
        config = ProviderConfig(
            provider=ProviderName.TRANSBANK,
            credentials={"commerce_code": "597012345678", "api_key": "", "environment": "production"},
        )

        with pytest.raises(MissingConfig) as exc_info:
            resolver.resolve(ProviderName.TRANSBANK, config)

        assert exc_info.value.details == {"provider": "transbank", "missing": ["api_key"]}

    def test_stripe_without_credentials_is_missing_config(self, resolver):
        with pytest.raises(MissingConfig) as exc_info:
            resolver.resolve(ProviderName.STRIPE, ProviderConfig(provider=ProviderName.STRIPE))

        assert exc_info.value.code == ErrorCode.MISSING_CONFIG
        assert exc_info.value.details["missing"] == ["secret_key"]


class TestProviderRegistryGet:
    def test_get_initializes_and_caches(self, registry):
        first = registry.get("stripe")
        second = registry.get(ProviderName.STRIPE)

        assert first is second
        assert isinstance(first, FakeProvider)
        assert first.is_initialized
        assert first.configure_count == 1

    def test_get_uses_test_profile_when_unconfigured(self, registry):
        provider = registry.get("transbank")

        assert provider.is_test_mode
        assert provider.config.source == "test_profile"

    def test_unknown_provider(self, registry):
        with pytest.raises(PaymentGatewayError) as exc_info:
            registry.get("paypal")

        assert exc_info.value.code == ErrorCode.UNKNOWN_PROVIDER

    def test_disabled_provider(self):
        registry = ProviderRegistry(
            [ProviderConfig(provider=ProviderName.STRIPE, credentials={"secret_key": "sk_test_x"}, enabled=False)],
            adapters=FAKE_ADAPTERS,
        )

        with pytest.raises(PaymentGatewayError) as exc_info:
            registry.get("stripe")

        assert exc_info.value.code == ErrorCode.PROVIDER_NOT_FOUND
        assert not registry.is_available("stripe")

    def test_failures_are_not_cached(self):
        registry = ProviderRegistry([], adapters=FAKE_ADAPTERS)

        with pytest.raises(MissingConfig):
            registry.get("stripe")
        assert ProviderName.STRIPE not in registry.instances

        registry.configs[ProviderName.STRIPE] = ProviderConfig(
            provider=ProviderName.STRIPE, credentials={"secret_key": "sk_test_later"}
        )
        assert registry.get("stripe").is_test_mode

    def test_reset_drops_cached_instances(self, registry):
        first = registry.get("stripe")
        registry.reset()

        assert registry.get("stripe") is not first

    def test_initialize_is_idempotent(self, registry):
        provider = registry.get("stripe")
        provider.initialize(provider.config)

        assert provider.configure_count == 1

    def test_real_adapters_are_selected_by_name(self):
        registry = ProviderRegistry(
            [
                ProviderConfig(provider=ProviderName.STRIPE, credentials={"secret_key": "sk_test_x"}),
                ProviderConfig(provider=ProviderName.MERCADOPAGO, credentials={"access_token": "TEST-x"}),
            ]
        )

        assert isinstance(registry.get("stripe"), StripeProvider)
        assert isinstance(registry.get("transbank"), TransbankProvider)
        assert isinstance(registry.get("mercadopago"), MercadoPagoProvider)


class TestProviderRegistryAvailability:
    def test_is_available_never_constructs(self):
        registry = ProviderRegistry(
            [ProviderConfig(provider=ProviderName.STRIPE, credentials={"secret_key": "sk_test_x"})],
            adapters=FAKE_ADAPTERS,
        )

        assert registry.is_available("stripe")
        assert registry.is_available("transbank")  # test profile
        assert not registry.is_available("paypal")
        assert registry.instances == {}

    def test_unconfigured_provider_without_profile_is_unavailable(self):
        registry = ProviderRegistry([], adapters=FAKE_ADAPTERS)

        assert not registry.is_available("stripe")

    def test_settings_defaults_without_secrets(self, monkeypatch):
        for var in (
            "STRIPE__SECRET_KEY",
            "MERCADOPAGO__ACCESS_TOKEN",
            "TRANSBANK__COMMERCE_CODE",
            "TRANSBANK__API_KEY",
        ):
            monkeypatch.delenv(var, raising=False)
        registry = ProviderRegistry(Settings(_env_file=None).provider_configs())
        described = {entry["provider"]: entry for entry in registry.describe()}

        # "environment" is always set for MercadoPago but is not a credential
        assert not registry.is_available("mercadopago")
        assert described["mercadopago"]["available"] is False
        with pytest.raises(MissingConfig):
            registry.get("mercadopago")

        assert not registry.is_available("stripe")
        assert registry.is_available("transbank")
        assert described["transbank"]["is_test_mode"] is True
        assert registry.get("transbank").config.source == "test_profile"

    def test_partial_config_is_unavailable(self):
        registry = ProviderRegistry(
            [ProviderConfig(provider=ProviderName.TRANSBANK, credentials={"commerce_code": "597012345678"})]
        )

        assert not registry.is_available("transbank")
        with pytest.raises(MissingConfig):
            registry.get("transbank")

    def test_describe_lists_every_adapter(self, registry):
        described = {entry["provider"]: entry for entry in registry.describe()}

        assert set(described) == {"stripe", "transbank"}
        assert described["stripe"]["is_test_mode"] is True
        assert described["stripe"]["available"] is True
        assert described["transbank"]["method"] == TokenizationMethod.REDIRECT.value
        assert described["transbank"]["supported_methods"] == ["redirect"]


class TestProviderRegistration:
    def test_register_replaces_adapter(self, registry):
        class OtherFake(FakeProvider):
            pass

        registry.get("stripe")
        registry.register(ProviderName.STRIPE, OtherFake)

        assert isinstance(registry.get("stripe"), OtherFake)

    def test_register_rejects_non_providers(self, registry):
        class NotAProvider:
            pass

        with pytest.raises(TypeError, match="must inherit from PaymentProvider"):
            registry.register(ProviderName.STRIPE, NotAProvider)

    def test_list_providers_is_sorted(self):
        assert ProviderRegistry().list_providers() == [
            ProviderName.MERCADOPAGO,
            ProviderName.STRIPE,
            ProviderName.TRANSBANK,
        ]

    def test_adapter_classes_implement_the_contract(self):
        for adapter_class in ADAPTER_CLASSES.values():
            assert issubclass(adapter_class, PaymentProvider)
