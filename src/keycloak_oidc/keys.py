"""Provider signing keys.

A provider publishes either a single JWK or a JWK set. The two shapes are kept
apart as ``SingleKey`` and ``MultipleKeys`` so the verifier can dispatch on
them explicitly.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

import jwt
from jwt import PyJWK, PyJWKSet

from .errors import ParseError


@dataclass(frozen=True)
class SingleKey:
    """A lone signing key."""

    key: PyJWK

    def __iter__(self):
        yield self.key

    def __len__(self) -> int:
        return 1


@dataclass(frozen=True)
class MultipleKeys:
    """Several signing keys, tried in published order."""

    keys: tuple[PyJWK, ...]

    def __iter__(self):
        return iter(self.keys)

    def __len__(self) -> int:
        return len(self.keys)


KeySet = SingleKey | MultipleKeys


def parse_key_set(body: Any) -> KeySet:
    """Build a ``KeySet`` from a JWKS response body.

    A body carrying ``keys`` is a set (even with one member); any other
    mapping is read as one bare JWK.

    Raises:
        ParseError: If the body is not a usable JWK or JWK set.
    """
    if not isinstance(body, Mapping):
        raise ParseError("certificates bad format", details={"type": type(body).__name__})

    try:
        if "keys" in body:
            if not isinstance(body["keys"], list):
                raise ParseError("certificates bad format: keys is not a list")
            jwk_set = PyJWKSet.from_dict(dict(body))
            return MultipleKeys(tuple(jwk_set.keys))
        return SingleKey(PyJWK(dict(body)))
    except (jwt.PyJWTError, AttributeError, KeyError, TypeError, ValueError) as e:
        raise ParseError(f"certificates bad format: {e}") from e


def describe_key_set(key_set: KeySet) -> list[dict[str, str | None]]:
    """Key ids and algorithms, safe for logging."""
    return [
        {"kid": key.key_id, "alg": key.algorithm_name}
        for key in key_set
    ]
