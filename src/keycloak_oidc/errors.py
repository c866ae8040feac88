"""Error classes for keycloak-oidc.

Structured error hierarchy with error codes for the refresh pipeline and the
provider registry. Token verification never raises: bad tokens are reported
as ``Failed`` values (see :mod:`keycloak_oidc.verifier`).
"""

from __future__ import annotations

from enum import StrEnum
from typing import Any


class ErrorCode(StrEnum):
    """Standardized error codes."""

    # Token errors (1xxx)
    TOKEN_REFRESH_FAILED = "AUTH_1003"

    # Validation errors (2xxx)
    INVALID_CONFIG = "VAL_2002"
    INVALID_DISCOVERY_DOCUMENT = "VAL_2005"
    PARSE_ERROR = "VAL_2006"

    # Network errors (3xxx)
    NETWORK_ERROR = "NET_3001"
    TIMEOUT_ERROR = "NET_3002"

    # Rate limiting (4xxx)
    RATE_LIMITED = "RATE_4001"

    # Server errors (5xxx)
    SERVER_ERROR = "SRV_5001"

    # Provider errors (8xxx)
    PROVIDER_NOT_FOUND = "PRV_8001"
    PROVIDER_UNAVAILABLE = "PRV_8002"


class KeycloakError(Exception):
    """Base error with structured error information."""

    def __init__(
        self,
        message: str,
        code: ErrorCode | str,
        *,
        status_code: int | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code = code.value if isinstance(code, ErrorCode) else code
        self.status_code = status_code
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        """Convert error to dictionary for logging/serialization."""
        return {
            "error": self.message,
            "code": self.code,
            "status_code": self.status_code,
            "details": self.details,
        }

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(code={self.code!r}, message={self.message!r})"


class FetchError(KeycloakError):
    """Transport-level failure fetching a provider document."""

    def __init__(
        self,
        message: str = "Network request failed",
        code: ErrorCode = ErrorCode.NETWORK_ERROR,
        *,
        status_code: int | None = None,
        cause: Exception | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        merged = dict(details or {})
        if cause is not None:
            merged["cause"] = str(cause)
        super().__init__(message, code, status_code=status_code, details=merged)
        self.__cause__ = cause


class NetworkError(FetchError):
    """Network request failed."""

    def __init__(
        self,
        message: str = "Network request failed",
        *,
        cause: Exception | None = None,
    ) -> None:
        super().__init__(message, ErrorCode.NETWORK_ERROR, cause=cause)


class TimeoutError(FetchError):
    """Request timed out."""

    def __init__(
        self,
        message: str = "Request timed out",
        *,
        cause: Exception | None = None,
    ) -> None:
        super().__init__(message, ErrorCode.TIMEOUT_ERROR, status_code=408, cause=cause)


class RateLimitError(FetchError):
    """Rate limit exceeded."""

    def __init__(
        self,
        message: str = "Rate limit exceeded",
        *,
        retry_after: int | None = None,
    ) -> None:
        super().__init__(
            message,
            ErrorCode.RATE_LIMITED,
            status_code=429,
            details={"retry_after": retry_after} if retry_after else None,
        )
        self.retry_after = retry_after


class ServerError(FetchError):
    """Provider answered with an unusable status."""

    def __init__(
        self,
        message: str = "Server error",
        *,
        status_code: int = 500,
    ) -> None:
        super().__init__(message, ErrorCode.SERVER_ERROR, status_code=status_code)


class ParseError(KeycloakError):
    """Response body is not the expected JSON or JWK set shape."""

    def __init__(
        self,
        message: str,
        *,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message, ErrorCode.PARSE_ERROR, details=details)


class DiscoveryDocumentError(KeycloakError):
    """Discovery document lacks a field that OpenID Connect marks REQUIRED."""

    def __init__(self, message: str, *, field: str | None = None) -> None:
        super().__init__(
            message,
            ErrorCode.INVALID_DISCOVERY_DOCUMENT,
            details={"field": field} if field else None,
        )


class InvalidConfigError(KeycloakError):
    """Invalid provider configuration."""

    def __init__(
        self,
        message: str,
        *,
        field: str | None = None,
    ) -> None:
        super().__init__(
            message,
            ErrorCode.INVALID_CONFIG,
            details={"field": field} if field else None,
        )


class TokenRefreshError(KeycloakError):
    """Failed to exchange a refresh token."""

    def __init__(
        self,
        message: str = "Failed to refresh token",
        *,
        status_code: int | None = 401,
    ) -> None:
        super().__init__(
            message,
            ErrorCode.TOKEN_REFRESH_FAILED,
            status_code=status_code,
        )


class ProviderNotFoundError(KeycloakError):
    """No provider slot is registered under the requested name."""

    def __init__(self, provider: str) -> None:
        super().__init__(
            f"Unknown provider: {provider}",
            ErrorCode.PROVIDER_NOT_FOUND,
            details={"provider": provider},
        )
        self.provider = provider


class ProviderUnavailableError(KeycloakError):
    """Provider slot could not load its initial credentials or has stopped."""

    def __init__(
        self,
        provider: str,
        message: str | None = None,
        *,
        stage: str | None = None,
    ) -> None:
        details: dict[str, Any] = {"provider": provider}
        if stage:
            details["stage"] = stage
        super().__init__(
            message or f"Provider {provider} is unavailable",
            ErrorCode.PROVIDER_UNAVAILABLE,
            status_code=503,
            details=details,
        )
        self.provider = provider
        self.stage = stage
