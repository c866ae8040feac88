"""
Shared test fixtures for keycloak-oidc tests.

Provides provider configuration, signing keys, and fake collaborators for
the credential cache.
"""

from collections.abc import Iterator

import pytest

from helpers import (
    FakeFetcher,
    FakeScheduler,
    discovery_document,
    generate_ec_key_pair,
    hmac_jwk,
)
from keycloak_oidc.cache import ProviderRegistry
from keycloak_oidc.client import KeycloakClient
from keycloak_oidc.config import ProviderConfig, RefreshConfig, RetryConfig, TelemetryConfig


@pytest.fixture
def provider_config() -> ProviderConfig:
    """Provide a provider configuration with retries and telemetry off."""
    return ProviderConfig(
        site="https://keycloak.example.com",
        realm="test-realm",
        client_id="test-client",
        client_secret="test-secret",
        retry=RetryConfig(max_retries=0),
        refresh=RefreshConfig(call_timeout=5.0),
        telemetry=TelemetryConfig(enabled=False),
    )


@pytest.fixture
def ec_key():
    """Provide an EC private key and its public JWK."""
    return generate_ec_key_pair("ec-key-1")


@pytest.fixture
def hmac_secret() -> bytes:
    return b"0123456789abcdef0123456789abcdef"


@pytest.fixture
def cache_headers() -> dict[str, str]:
    return {"cache-control": "max-age=3600", "age": "10"}


@pytest.fixture
def fake_fetcher(ec_key, cache_headers) -> FakeFetcher:
    """Provide a fetcher serving one discovery document and one EC key."""
    _, jwk_dict = ec_key
    return FakeFetcher([(discovery_document(), {"keys": [jwk_dict]}, cache_headers)])


@pytest.fixture
def hmac_fetcher(hmac_secret) -> FakeFetcher:
    """Provide a fetcher serving a bare HMAC JWK with no caching headers."""
    return FakeFetcher([(discovery_document(), hmac_jwk(hmac_secret), {})])


@pytest.fixture
def scheduler() -> FakeScheduler:
    return FakeScheduler()


@pytest.fixture
def keycloak_client(provider_config, fake_fetcher, scheduler) -> Iterator[KeycloakClient]:
    """Provide a started client backed by the fake fetcher."""
    registry = ProviderRegistry(
        provider_config,
        fetcher_factory=lambda config: fake_fetcher,
        scheduler=scheduler,
    )
    client = KeycloakClient(registry)
    client.start()
    yield client
    client.stop()
