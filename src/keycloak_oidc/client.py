"""Keycloak client: the synchronous entry point for request-time callers."""

from __future__ import annotations

from collections.abc import Callable, Mapping
from typing import Any

from .cache import DEFAULT_PROVIDER, ProviderRegistry, Scheduler
from .config import ProviderConfig
from .errors import ProviderNotFoundError
from .fetcher import DocumentFetcher
from .keys import KeySet
from .models import TokenResponse
from .telemetry import configure_telemetry, get_logger
from .verifier import FailureReason, Failed, VerificationResult, verify_with_key_set


class KeycloakClient:
    """Verifies tokens against the cached provider credentials.

    The cache behind it is an implementation detail: callers only see
    ``verify`` and friends, which read the current snapshot of the provider
    slot and block while a refresh of that slot is running.
    """

    def __init__(
        self,
        registry: ProviderRegistry,
        *,
        provider: str = DEFAULT_PROVIDER,
    ) -> None:
        self.registry = registry
        self.provider = provider

    @classmethod
    def from_config(
        cls,
        configs: ProviderConfig | Mapping[str, ProviderConfig],
        *,
        provider: str = DEFAULT_PROVIDER,
        fetcher_factory: Callable[[ProviderConfig], DocumentFetcher] = DocumentFetcher,
        scheduler: Scheduler | None = None,
    ) -> KeycloakClient:
        """Build a client and its registry; call ``start()`` before use."""
        if isinstance(configs, ProviderConfig):
            configure_telemetry(configs.telemetry)
        registry = ProviderRegistry(
            configs,
            fetcher_factory=fetcher_factory,
            scheduler=scheduler,
        )
        return cls(registry, provider=provider)

    def __enter__(self) -> KeycloakClient:
        self.start()
        return self

    def __exit__(self, *args: Any) -> None:
        self.stop()

    def start(self) -> None:
        self.registry.start()

    def stop(self) -> None:
        self.registry.stop()

    def verify(self, token: Any, provider: str | None = None) -> VerificationResult:
        """Verify ``token`` and return ``Verified(claims)`` or ``Failed``."""
        try:
            key_set = self.registry.get_key_set(provider or self.provider)
        except ProviderNotFoundError:
            return Failed(FailureReason.UNKNOWN_PROVIDER)
        return verify_with_key_set(key_set, token)

    def get_key_set(self, provider: str | None = None) -> KeySet:
        return self.registry.get_key_set(provider or self.provider)

    def get_discovery_document(self, provider: str | None = None) -> Mapping[str, Any]:
        return self.registry.get_discovery_document(provider or self.provider)

    def get_config(self, provider: str | None = None) -> ProviderConfig:
        return self.registry.get_config(provider or self.provider)

    def refresh_token(self, refresh_token: str, provider: str | None = None) -> TokenResponse:
        """Exchange a refresh token at the provider's token endpoint."""
        name = provider or self.provider
        get_logger(provider=name).debug("refreshing access token")
        return self.registry.fetcher(name).refresh_token(
            refresh_token, self.registry.get_config(name)
        )

    def userinfo(self, access_token: str, provider: str | None = None) -> dict[str, Any]:
        name = provider or self.provider
        return self.registry.fetcher(name).userinfo(
            access_token, self.registry.get_config(name)
        )

    def authorize_url(self, redirect_uri: str, provider: str | None = None, **params: str) -> str:
        return self.get_config(provider).authorize_url(redirect_uri, **params)

    def logout_url(self, provider: str | None = None, **params: str) -> str:
        return self.get_config(provider).logout_url(**params)

    def account_url(self, provider: str | None = None) -> str:
        return self.get_config(provider).account_url
