"""OpenID Connect relying-party helper for Keycloak."""

from .cache import DEFAULT_PROVIDER, CredentialCache, ProviderRegistry, ProviderStatus
from .client import KeycloakClient
from .config import ProviderConfig, RefreshConfig, RetryConfig, TelemetryConfig
from .errors import (
    DiscoveryDocumentError,
    FetchError,
    KeycloakError,
    NetworkError,
    ParseError,
    ProviderNotFoundError,
    ProviderUnavailableError,
    TokenRefreshError,
)
from .fetcher import DocumentFetcher
from .keys import KeySet, MultipleKeys, SingleKey, parse_key_set
from .models import CredentialSnapshot, TokenResponse, normalize_discovery_document
from .refresh import RefreshFailed, RefreshStage, RefreshSucceeded, update_documents
from .ttl import next_refresh_delay, remaining_lifetime
from .verifier import Failed, FailureReason, VerificationResult, Verified, verify_with_key_set

__all__ = [
    "DEFAULT_PROVIDER",
    "CredentialCache",
    "CredentialSnapshot",
    "DiscoveryDocumentError",
    "DocumentFetcher",
    "Failed",
    "FailureReason",
    "FetchError",
    "KeySet",
    "KeycloakClient",
    "KeycloakError",
    "MultipleKeys",
    "NetworkError",
    "ParseError",
    "ProviderConfig",
    "ProviderNotFoundError",
    "ProviderRegistry",
    "ProviderStatus",
    "ProviderUnavailableError",
    "RefreshConfig",
    "RefreshFailed",
    "RefreshStage",
    "RefreshSucceeded",
    "RetryConfig",
    "SingleKey",
    "TelemetryConfig",
    "TokenRefreshError",
    "TokenResponse",
    "VerificationResult",
    "Verified",
    "next_refresh_delay",
    "normalize_discovery_document",
    "parse_key_set",
    "remaining_lifetime",
    "update_documents",
    "verify_with_key_set",
]

__version__ = "0.1.0"
