"""Configuration for keycloak-oidc.

Uses Pydantic v2 for validation with sensible defaults. A ``ProviderConfig``
describes one Keycloak realm and derives every endpoint the package talks to.
"""

from __future__ import annotations

from typing import Annotated, Any, Self
from urllib.parse import urlencode

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    HttpUrl,
    SecretStr,
    field_validator,
)


class RetryConfig(BaseModel):
    """Retry configuration with exponential backoff."""

    model_config = ConfigDict(frozen=True)

    max_retries: Annotated[int, Field(ge=0, le=10)] = 3
    initial_delay: Annotated[float, Field(gt=0, le=60)] = 1.0
    max_delay: Annotated[float, Field(gt=0, le=300)] = 30.0
    exponential_base: Annotated[float, Field(ge=1.5, le=3.0)] = 2.0
    jitter: Annotated[float, Field(ge=0, le=1.0)] = 0.1

    def get_delay(self, attempt: int) -> float:
        """Calculate delay for given attempt with exponential backoff."""
        import random

        delay = min(
            self.initial_delay * (self.exponential_base**attempt),
            self.max_delay,
        )
        # Add jitter to prevent thundering herd
        jitter_range = delay * self.jitter
        return delay + random.uniform(-jitter_range, jitter_range)  # noqa: S311


class TelemetryConfig(BaseModel):
    """OpenTelemetry and structlog configuration."""

    model_config = ConfigDict(frozen=True)

    enabled: bool = True
    service_name: str = "keycloak-oidc"
    log_level: str = "INFO"


class RefreshConfig(BaseModel):
    """Background refresh schedule for discovery document and JWKS."""

    model_config = ConfigDict(frozen=True)

    default_refresh_seconds: Annotated[int, Field(gt=0)] = 3600  # 1 hour
    failure_retry_seconds: Annotated[int, Field(gt=0)] = 60
    call_timeout: Annotated[float, Field(gt=0)] = 30.0

    def failure_delay(self, consecutive_failures: int) -> float:
        """Backoff after ``consecutive_failures`` failed refreshes, capped at the default."""
        exponent = max(consecutive_failures - 1, 0)
        return float(
            min(
                self.failure_retry_seconds * (2**exponent),
                self.default_refresh_seconds,
            )
        )


class ProviderConfig(BaseModel):
    """Static configuration of one Keycloak realm."""

    model_config = ConfigDict(frozen=True, validate_default=True)

    # Required
    site: HttpUrl
    realm: str = Field(..., min_length=1)
    client_id: str = Field(..., min_length=1)

    # Authentication
    client_secret: SecretStr | None = None
    scopes: list[str] = Field(default_factory=lambda: ["openid"])

    # Keycloak < 17 serves everything below /auth
    base_path: str = "/auth"

    # HTTP settings
    timeout: Annotated[float, Field(gt=0, le=300)] = 30.0
    connect_timeout: Annotated[float, Field(gt=0, le=60)] = 10.0

    # Sub-configurations
    retry: RetryConfig = Field(default_factory=RetryConfig)
    refresh: RefreshConfig = Field(default_factory=RefreshConfig)
    telemetry: TelemetryConfig = Field(default_factory=TelemetryConfig)

    @field_validator("base_path")
    @classmethod
    def normalize_base_path(cls, v: str) -> str:
        """Keep base_path either empty or slash-prefixed without trailing slash."""
        v = v.strip().rstrip("/")
        if v and not v.startswith("/"):
            v = f"/{v}"
        return v

    @property
    def base_url_str(self) -> str:
        """Site URL plus base path, without trailing slash."""
        return f"{str(self.site).rstrip('/')}{self.base_path}"

    @property
    def realm_url(self) -> str:
        return f"{self.base_url_str}/realms/{self.realm}"

    @property
    def issuer(self) -> str:
        return self.realm_url

    @property
    def discovery_url(self) -> str:
        return f"{self.realm_url}/.well-known/openid-configuration"

    @property
    def jwks_uri(self) -> str:
        return f"{self.realm_url}/protocol/openid-connect/certs"

    @property
    def token_endpoint(self) -> str:
        return f"{self.realm_url}/protocol/openid-connect/token"

    @property
    def authorization_endpoint(self) -> str:
        return f"{self.realm_url}/protocol/openid-connect/auth"

    @property
    def userinfo_endpoint(self) -> str:
        return f"{self.realm_url}/protocol/openid-connect/userinfo"

    @property
    def account_url(self) -> str:
        return f"{self.realm_url}/account"

    @property
    def scope_string(self) -> str | None:
        """Get scopes as space-separated string."""
        return " ".join(self.scopes) if self.scopes else None

    def logout_url(self, **params: str) -> str:
        """Build the realm logout URL, with query parameters when given."""
        url = f"{self.realm_url}/protocol/openid-connect/logout"
        if params:
            url = f"{url}?{urlencode(params)}"
        return url

    def authorize_url(self, redirect_uri: str, **params: str) -> str:
        """Build the authorization-code redirect URL for this client."""
        query: dict[str, str] = {
            "response_type": "code",
            "client_id": self.client_id,
            "redirect_uri": redirect_uri,
        }
        if self.scope_string:
            query["scope"] = self.scope_string
        query.update(params)
        return f"{self.authorization_endpoint}?{urlencode(query)}"

    def with_overrides(self, **kwargs: Any) -> Self:
        """Create new config with overridden values."""
        data = self.model_dump()
        data.update(kwargs)
        return self.__class__(**data)

    @classmethod
    def from_env(cls, prefix: str = "KEYCLOAK_") -> Self:
        """Create config from environment variables."""
        import os

        def get_env(key: str, default: Any = None) -> Any:
            return os.environ.get(f"{prefix}{key}", default)

        required: dict[str, str] = {}
        for key in ("SITE", "REALM", "CLIENT_ID"):
            value = get_env(key)
            if not value:
                msg = f"{prefix}{key} environment variable is required"
                raise ValueError(msg)
            required[key.lower()] = value

        scopes_str = get_env("SCOPES", "openid")
        return cls(
            **required,
            client_secret=get_env("CLIENT_SECRET"),
            scopes=scopes_str.split(),
            base_path=get_env("BASE_PATH", "/auth"),
            timeout=float(get_env("TIMEOUT", "30.0")),
        )
