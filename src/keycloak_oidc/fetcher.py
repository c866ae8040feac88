"""Document fetcher: the HTTP boundary towards the identity provider.

Issues the discovery, JWKS, token-refresh and userinfo calls and returns
parsed bodies. Timeouts, retry and circuit breaking live here; callers only
see parsed payloads or a ``FetchError``/``ParseError``.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

import httpx
from pydantic import ValidationError as PydanticValidationError

from .errors import FetchError, ParseError, ServerError, TokenRefreshError
from .http import CircuitBreaker, create_http_client, request_with_retry
from .models import TokenResponse

if TYPE_CHECKING:
    from .config import ProviderConfig


class DocumentFetcher:
    """Fetches provider documents over a shared ``httpx.Client``."""

    def __init__(
        self,
        config: ProviderConfig,
        *,
        http_client: httpx.Client | None = None,
        circuit_breaker: CircuitBreaker | None = None,
    ) -> None:
        self.config = config
        self._http = http_client or create_http_client(config)
        self._owns_client = http_client is None
        self._circuit_breaker = circuit_breaker or CircuitBreaker()

    def __enter__(self) -> DocumentFetcher:
        return self

    def __exit__(self, *args: Any) -> None:
        self.close()

    def close(self) -> None:
        """Close the HTTP client if this fetcher created it."""
        if self._owns_client:
            self._http.close()

    def _get(self, url: str, config: ProviderConfig, **kwargs: Any) -> httpx.Response:
        response = request_with_retry(
            self._http,
            "GET",
            url,
            config.retry,
            circuit_breaker=self._circuit_breaker,
            **kwargs,
        )
        if response.status_code != 200:
            raise ServerError(
                f"GET {url} returned {response.status_code}",
                status_code=response.status_code,
            )
        return response

    @staticmethod
    def _json(response: httpx.Response) -> dict[str, Any]:
        try:
            body = response.json()
        except ValueError as e:
            raise ParseError(
                "response body is not JSON",
                details={"url": str(response.request.url)},
            ) from e
        if not isinstance(body, dict):
            raise ParseError(
                "response body is not a JSON object",
                details={"url": str(response.request.url)},
            )
        return body

    def fetch_discovery(self, config: ProviderConfig | None = None) -> dict[str, Any]:
        """Fetch the realm's OpenID Connect discovery document."""
        config = config or self.config
        return self._json(self._get(config.discovery_url, config))

    def fetch_jwks(
        self, config: ProviderConfig | None = None
    ) -> tuple[dict[str, Any], httpx.Headers]:
        """Fetch the realm's JWKS together with the response headers."""
        config = config or self.config
        response = self._get(config.jwks_uri, config)
        return self._json(response), response.headers

    def userinfo(
        self, access_token: str, config: ProviderConfig | None = None
    ) -> dict[str, Any]:
        """Fetch the profile of the user owning ``access_token``."""
        config = config or self.config
        response = self._get(
            config.userinfo_endpoint,
            config,
            headers={"Authorization": f"Bearer {access_token}"},
        )
        return self._json(response)

    def refresh_token(
        self, refresh_token: str, config: ProviderConfig | None = None
    ) -> TokenResponse:
        """Exchange ``refresh_token`` for a new token pair.

        Raises:
            TokenRefreshError: If the provider rejects the refresh token or
                the exchange cannot be completed.
        """
        config = config or self.config
        if not refresh_token:
            raise TokenRefreshError("No refresh token available")

        data: dict[str, str] = {
            "grant_type": "refresh_token",
            "refresh_token": refresh_token,
            "client_id": config.client_id,
        }
        if config.client_secret:
            data["client_secret"] = config.client_secret.get_secret_value()

        try:
            response = request_with_retry(
                self._http,
                "POST",
                config.token_endpoint,
                config.retry,
                circuit_breaker=self._circuit_breaker,
                data=data,
            )
        except FetchError as e:
            raise TokenRefreshError(
                f"Token refresh failed: {e.message}", status_code=e.status_code
            ) from e

        if response.status_code != 200:
            description = None
            try:
                body = response.json()
                if isinstance(body, dict):
                    description = body.get("error_description") or body.get("error")
            except ValueError:
                pass
            raise TokenRefreshError(
                description or f"Token refresh failed with status {response.status_code}",
                status_code=response.status_code,
            )

        try:
            return TokenResponse.model_validate(self._json(response))
        except (ParseError, PydanticValidationError) as e:
            raise TokenRefreshError(f"Invalid token response: {e}") from e
