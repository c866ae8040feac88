"""Unit tests for DocumentFetcher."""

from urllib.parse import parse_qs

import httpx
import pytest

from helpers import discovery_document
from keycloak_oidc.errors import ParseError, ServerError, TokenRefreshError
from keycloak_oidc.fetcher import DocumentFetcher

REALM_URL = "https://keycloak.example.com/auth/realms/test-realm"


def make_fetcher(config, handler) -> DocumentFetcher:
    return DocumentFetcher(config, http_client=httpx.Client(transport=httpx.MockTransport(handler)))


class TestFetchDocuments:
    """Tests for the discovery and JWKS requests."""

    def test_fetch_discovery(self, provider_config) -> None:
        """Should GET the well-known discovery document."""
        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(str(request.url))
            return httpx.Response(200, json=discovery_document())

        document = make_fetcher(provider_config, handler).fetch_discovery()

        assert seen == [f"{REALM_URL}/.well-known/openid-configuration"]
        assert document["issuer"] == REALM_URL

    def test_fetch_jwks_returns_headers(self, provider_config, ec_key) -> None:
        """Should return the JWKS body with its response headers."""
        _, jwk_dict = ec_key

        def handler(request: httpx.Request) -> httpx.Response:
            assert request.url.path == "/auth/realms/test-realm/protocol/openid-connect/certs"
            return httpx.Response(
                200,
                json={"keys": [jwk_dict]},
                headers={"Cache-Control": "public, max-age=300", "Age": "5"},
            )

        body, headers = make_fetcher(provider_config, handler).fetch_jwks()

        assert body == {"keys": [jwk_dict]}
        assert headers["cache-control"] == "public, max-age=300"
        assert headers["age"] == "5"

    def test_explicit_config_wins(self, provider_config) -> None:
        """An explicit config should override the fetcher's own."""
        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request.url.path)
            return httpx.Response(200, json=discovery_document())

        other = provider_config.with_overrides(realm="other", base_path="")
        make_fetcher(provider_config, handler).fetch_discovery(other)

        assert seen == ["/realms/other/.well-known/openid-configuration"]

    @pytest.mark.parametrize("status", [301, 404])
    def test_non_200_raises_server_error(self, provider_config, status) -> None:
        """Non-200 responses should raise ServerError."""
        fetcher = make_fetcher(provider_config, lambda request: httpx.Response(status))

        with pytest.raises(ServerError) as exc_info:
            fetcher.fetch_discovery()

        assert exc_info.value.status_code == status

    def test_5xx_raises_after_retries(self, provider_config) -> None:
        """Server errors should raise once retries run out."""
        fetcher = make_fetcher(provider_config, lambda request: httpx.Response(503))

        with pytest.raises(ServerError) as exc_info:
            fetcher.fetch_jwks()

        assert exc_info.value.status_code == 503

    def test_invalid_json(self, provider_config) -> None:
        """A non-JSON body should raise ParseError."""
        fetcher = make_fetcher(provider_config, lambda request: httpx.Response(200, text="<html>"))

        with pytest.raises(ParseError):
            fetcher.fetch_discovery()

    def test_json_array_is_not_a_document(self, provider_config) -> None:
        """A JSON array should not be accepted as a document."""
        fetcher = make_fetcher(provider_config, lambda request: httpx.Response(200, json=[1, 2]))

        with pytest.raises(ParseError) as exc_info:
            fetcher.fetch_jwks()

        assert exc_info.value.message == "response body is not a JSON object"


class TestRefreshToken:
    """Tests for the refresh token grant."""

    def test_posts_form_and_parses_tokens(self, provider_config) -> None:
        """Should POST the refresh grant as a form and parse tokens."""
        forms = []

        def handler(request: httpx.Request) -> httpx.Response:
            assert request.method == "POST"
            assert str(request.url) == f"{REALM_URL}/protocol/openid-connect/token"
            forms.append(parse_qs(request.content.decode()))
            return httpx.Response(
                200,
                json={
                    "access_token": "new-access",
                    "token_type": "Bearer",
                    "expires_in": 300,
                    "refresh_token": "new-refresh",
                    "not-before-policy": 0,
                },
            )

        tokens = make_fetcher(provider_config, handler).refresh_token("old-refresh")

        assert tokens.access_token == "new-access"
        assert tokens.refresh_token == "new-refresh"
        assert tokens.expires_in == 300
        assert forms == [
            {
                "grant_type": ["refresh_token"],
                "refresh_token": ["old-refresh"],
                "client_id": ["test-client"],
                "client_secret": ["test-secret"],
            }
        ]

    def test_public_client_sends_no_secret(self, provider_config) -> None:
        """A public client should not send a client secret."""
        forms = []

        def handler(request: httpx.Request) -> httpx.Response:
            forms.append(parse_qs(request.content.decode()))
            return httpx.Response(200, json={"access_token": "a"})

        config = provider_config.with_overrides(client_secret=None)
        make_fetcher(config, handler).refresh_token("r")

        assert "client_secret" not in forms[0]

    def test_empty_refresh_token(self, provider_config) -> None:
        """An empty refresh token should fail without a request."""
        fetcher = make_fetcher(provider_config, lambda request: httpx.Response(500))

        with pytest.raises(TokenRefreshError, match="No refresh token"):
            fetcher.refresh_token("")

    def test_rejected_grant(self, provider_config) -> None:
        """Keycloak's error_description should be surfaced."""
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(
                400,
                json={"error": "invalid_grant", "error_description": "Token is not active"},
            )

        with pytest.raises(TokenRefreshError) as exc_info:
            make_fetcher(provider_config, handler).refresh_token("expired")

        assert exc_info.value.message == "Token is not active"
        assert exc_info.value.status_code == 400

    def test_server_failure(self, provider_config) -> None:
        """A failing token endpoint should raise TokenRefreshError."""
        fetcher = make_fetcher(provider_config, lambda request: httpx.Response(502))

        with pytest.raises(TokenRefreshError) as exc_info:
            fetcher.refresh_token("r")

        assert exc_info.value.status_code == 502

    def test_response_without_access_token(self, provider_config) -> None:
        """A response missing access_token should be rejected."""
        fetcher = make_fetcher(provider_config, lambda request: httpx.Response(200, json={"token_type": "Bearer"}))

        with pytest.raises(TokenRefreshError, match="Invalid token response"):
            fetcher.refresh_token("r")


class TestUserinfo:
    """Tests for the userinfo request."""

    def test_sends_bearer_token(self, provider_config) -> None:
        """Should send the access token as a bearer header."""
        def handler(request: httpx.Request) -> httpx.Response:
            assert request.headers["Authorization"] == "Bearer access-1"
            assert request.url.path.endswith("/protocol/openid-connect/userinfo")
            return httpx.Response(200, json={"sub": "user-123", "email": "user@example.com"})

        profile = make_fetcher(provider_config, handler).userinfo("access-1")

        assert profile == {"sub": "user-123", "email": "user@example.com"}


class TestClientOwnership:
    """Tests for closing the HTTP client."""

    def test_injected_client_stays_open(self, provider_config) -> None:
        """An injected client should not be closed."""
        client = httpx.Client(transport=httpx.MockTransport(lambda request: httpx.Response(200)))

        with DocumentFetcher(provider_config, http_client=client):
            pass

        assert client.is_closed is False

    def test_own_client_is_closed(self, provider_config) -> None:
        """A client the fetcher created should be closed."""
        fetcher = DocumentFetcher(provider_config)

        fetcher.close()

        assert fetcher._http.is_closed is True
