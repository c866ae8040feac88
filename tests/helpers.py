"""Shared helpers for keycloak-oidc tests.

Key generation, token signing, and fakes for the fetcher and the scheduler.
"""

from __future__ import annotations

import base64
import hashlib
import hmac
import json
import threading
from collections.abc import Callable
from typing import Any

import jwt
from cryptography.hazmat.primitives.asymmetric import ec, rsa
from jwt import PyJWK

from keycloak_oidc.errors import NetworkError, TokenRefreshError
from keycloak_oidc.models import TokenResponse


def b64url(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).rstrip(b"=").decode("ascii")


def generate_ec_key_pair(kid: str = "ec-key-1") -> tuple[ec.EllipticCurvePrivateKey, dict[str, Any]]:
    """Generate EC P-256 key pair and its public JWK."""
    private_key = ec.generate_private_key(ec.SECP256R1())
    numbers = private_key.public_key().public_numbers()
    jwk_dict = {
        "kty": "EC",
        "crv": "P-256",
        "x": b64url(numbers.x.to_bytes(32, byteorder="big")),
        "y": b64url(numbers.y.to_bytes(32, byteorder="big")),
        "kid": kid,
        "use": "sig",
        "alg": "ES256",
    }
    return private_key, jwk_dict


def generate_rsa_key_pair(kid: str = "rsa-key-1") -> tuple[rsa.RSAPrivateKey, dict[str, Any]]:
    """Generate RSA key pair and its public JWK."""
    private_key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
    numbers = private_key.public_key().public_numbers()

    def int_to_b64url(n: int) -> str:
        return b64url(n.to_bytes((n.bit_length() + 7) // 8, byteorder="big"))

    jwk_dict = {
        "kty": "RSA",
        "n": int_to_b64url(numbers.n),
        "e": int_to_b64url(numbers.e),
        "kid": kid,
        "use": "sig",
        "alg": "RS256",
    }
    return private_key, jwk_dict


def hmac_jwk(secret: bytes, kid: str = "hmac-key-1") -> dict[str, Any]:
    return {"kty": "oct", "k": b64url(secret), "kid": kid, "alg": "HS256"}


def to_pyjwk(jwk_dict: dict[str, Any]) -> PyJWK:
    return PyJWK(jwk_dict)


def sign(claims: dict[str, Any], key: Any, algorithm: str, kid: str | None = None) -> str:
    headers = {"kid": kid} if kid else None
    return jwt.encode(claims, key, algorithm=algorithm, headers=headers)


def unsigned_token(header: dict[str, Any], payload: bytes, signature: bytes = b"sig") -> str:
    """Assemble a compact JWS without a real signature."""
    return ".".join(
        [b64url(json.dumps(header).encode()), b64url(payload), b64url(signature)]
    )


def hmac_forged_token(header: dict[str, Any], claims: dict[str, Any], secret: bytes) -> str:
    """HS256 token keyed with arbitrary bytes, e.g. a public key PEM."""
    signing_input = f"{b64url(json.dumps(header).encode())}.{b64url(json.dumps(claims).encode())}"
    signature = hmac.new(secret, signing_input.encode(), hashlib.sha256).digest()
    return f"{signing_input}.{b64url(signature)}"


def discovery_document(version: int = 1, **overrides: Any) -> dict[str, Any]:
    document: dict[str, Any] = {
        "issuer": "https://keycloak.example.com/auth/realms/test-realm",
        "jwks_uri": "https://keycloak.example.com/auth/realms/test-realm/protocol/openid-connect/certs",
        "claims_supported": ["sub", "iss", "aud", "email"],
        "response_types_supported": ["code", "token id_token", "id_token code"],
        "x-version": version,
    }
    document.update(overrides)
    return document


class FakeTimer:
    def __init__(self, delay: float, callback: Callable[[], None]) -> None:
        self.delay = delay
        self.callback = callback
        self.cancelled = False

    def cancel(self) -> None:
        self.cancelled = True


class FakeScheduler:
    """Records scheduled refreshes; tests fire them by hand."""

    def __init__(self) -> None:
        self.timers: list[FakeTimer] = []

    def call_later(self, delay: float, callback: Callable[[], None]) -> FakeTimer:
        timer = FakeTimer(delay, callback)
        self.timers.append(timer)
        return timer

    @property
    def delays(self) -> list[float]:
        return [timer.delay for timer in self.timers]

    @property
    def pending(self) -> list[FakeTimer]:
        return [timer for timer in self.timers if not timer.cancelled]

    def fire(self) -> None:
        """Run the most recently armed timer."""
        self.timers[-1].callback()


class FakeFetcher:
    """In-memory document fetcher.

    ``responses`` is a list of ``(discovery, jwks, headers)`` tuples consumed
    one per refresh; the last entry repeats. An entry may be an exception
    instance, raised from ``fetch_discovery``.
    """

    def __init__(self, responses: list[Any]) -> None:
        self.responses = list(responses)
        self.calls = 0
        self._current: Any = None
        self.block: threading.Event | None = None
        self.entered = threading.Event()
        self.tokens: dict[str, TokenResponse] = {}
        self.refresh_requests: list[str | None] = []
        self.closed = False

    def _next(self) -> Any:
        index = min(self.calls, len(self.responses) - 1)
        self.calls += 1
        return self.responses[index]

    def fetch_discovery(self, config: Any = None) -> dict[str, Any]:
        self._current = self._next()
        if isinstance(self._current, Exception):
            raise self._current
        return self._current[0]

    def fetch_jwks(self, config: Any = None) -> tuple[dict[str, Any], dict[str, str]]:
        if self.block is not None:
            self.entered.set()
            self.block.wait(5)
        _, jwks, headers = self._current
        return jwks, headers

    def refresh_token(self, refresh_token: str | None, config: Any = None) -> TokenResponse:
        self.refresh_requests.append(refresh_token)
        if refresh_token not in self.tokens:
            raise TokenRefreshError("invalid_grant")
        return self.tokens[refresh_token]

    def userinfo(self, access_token: str, config: Any = None) -> dict[str, Any]:
        return {"sub": "user-123", "token": access_token}

    def close(self) -> None:
        self.closed = True


def network_failure() -> NetworkError:
    return NetworkError("connection refused")
