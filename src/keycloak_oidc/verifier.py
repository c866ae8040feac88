"""JWT verification against a provider key set.

Bad tokens are routine traffic, so every outcome is returned as a value:
``Verified`` carrying the claims or ``Failed`` carrying a ``FailureReason``.
Verification is restricted to exactly the algorithm the token declares in its
protected header, per key, never to a caller-chosen list.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from enum import StrEnum
from typing import Any

import jwt
from jwt import PyJWK, PyJWS

from .keys import KeySet, MultipleKeys, SingleKey
from .telemetry import get_logger

_jws = PyJWS()


class FailureReason(StrEnum):
    """Why a token was rejected."""

    MALFORMED_TOKEN = "malformed_token"
    MISSING_ALGORITHM = "missing_algorithm"
    VERIFICATION_FAILED = "verification_failed"
    CLAIMS_NOT_JSON = "claims_not_json"
    UNKNOWN_PROVIDER = "unknown_provider"


_MESSAGES = {
    FailureReason.MALFORMED_TOKEN: "invalid token format",
    FailureReason.MISSING_ALGORITHM: "no `alg` found in token",
    FailureReason.VERIFICATION_FAILED: "verification failed",
    FailureReason.CLAIMS_NOT_JSON: "claims did not contain a JSON payload",
    FailureReason.UNKNOWN_PROVIDER: "unknown provider",
}


@dataclass(frozen=True)
class Verified:
    """Signature checked and payload decoded."""

    claims: dict[str, Any]

    @property
    def ok(self) -> bool:
        return True


@dataclass(frozen=True)
class Failed:
    """Token rejected."""

    reason: FailureReason
    message: str = ""

    def __post_init__(self) -> None:
        if not self.message:
            object.__setattr__(self, "message", _MESSAGES[self.reason])

    @property
    def ok(self) -> bool:
        return False


VerificationResult = Verified | Failed


def peek_algorithm(token: Any) -> str | Failed:
    """Read ``alg`` from the protected header without checking the signature."""
    if not isinstance(token, str) or token.count(".") != 2:
        return Failed(FailureReason.MALFORMED_TOKEN)

    try:
        header = jwt.get_unverified_header(token)
    except (jwt.PyJWTError, ValueError):
        return Failed(FailureReason.MALFORMED_TOKEN)

    alg = header.get("alg")
    if not isinstance(alg, str) or not alg:
        return Failed(FailureReason.MISSING_ALGORITHM)
    return alg


def _verify_strict(key: PyJWK, alg: str, token: str) -> bytes | None:
    try:
        payload = _jws.decode(token, key=key.key, algorithms=[alg])
    except (jwt.PyJWTError, TypeError, ValueError):
        # TypeError/ValueError: the key type cannot be prepared for ``alg``
        return None
    return payload


def _verify_any(key_set: KeySet, alg: str, token: str) -> bytes | None:
    match key_set:
        case SingleKey(key=key):
            return _verify_strict(key, alg, token)
        case MultipleKeys(keys=keys):
            for key in keys:
                payload = _verify_strict(key, alg, token)
                if payload is not None:
                    return payload
            return None
    raise TypeError(f"unsupported key set: {type(key_set).__name__}")


def verify_with_key_set(key_set: KeySet, token: Any) -> VerificationResult:
    """Verify ``token`` against ``key_set`` and return its claims.

    With a ``SingleKey`` the token must verify under that key; with
    ``MultipleKeys`` the first key that verifies wins, which covers the
    rollover window where old and new keys are both published.
    """
    logger = get_logger()

    alg = peek_algorithm(token)
    if isinstance(alg, Failed):
        logger.debug("token rejected", reason=alg.reason.value)
        return alg

    payload = _verify_any(key_set, alg, token)
    if payload is None:
        logger.debug("token rejected", reason=FailureReason.VERIFICATION_FAILED.value, alg=alg)
        return Failed(FailureReason.VERIFICATION_FAILED)

    try:
        claims = json.loads(payload)
    except ValueError:
        claims = None
    if not isinstance(claims, dict):
        logger.debug("token rejected", reason=FailureReason.CLAIMS_NOT_JSON.value, alg=alg)
        return Failed(FailureReason.CLAIMS_NOT_JSON)

    return Verified(claims)
