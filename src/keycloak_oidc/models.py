"""Data models for keycloak-oidc.

Pydantic v2 frozen models for wire payloads, frozen dataclasses for the
in-memory credential snapshot.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import UTC, datetime
from types import MappingProxyType
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from .errors import DiscoveryDocumentError
from .keys import KeySet


class TokenResponse(BaseModel):
    """OAuth 2.0 token response from the token endpoint."""

    model_config = ConfigDict(frozen=True, extra="ignore")

    access_token: str = Field(..., min_length=1)
    token_type: str = Field(default="Bearer")
    expires_in: int | None = Field(default=None, ge=0)
    refresh_token: str | None = None
    refresh_expires_in: int | None = None
    scope: str | None = None
    id_token: str | None = None


@dataclass(frozen=True)
class CredentialSnapshot:
    """Discovery document, key set and freshness from one successful refresh."""

    discovery_document: Mapping[str, Any]
    key_set: KeySet
    remaining_lifetime: int | None
    fetched_at: datetime = field(default_factory=lambda: datetime.now(UTC))


def _freeze(value: Any) -> Any:
    if isinstance(value, Mapping):
        return MappingProxyType({key: _freeze(item) for key, item in value.items()})
    if isinstance(value, (list, tuple)):
        return tuple(_freeze(item) for item in value)
    return value


def _string_list(document: Mapping[str, Any], field_name: str) -> list[str]:
    value = document.get(field_name)
    if not isinstance(value, (list, tuple)) or not all(isinstance(entry, str) for entry in value):
        raise DiscoveryDocumentError(
            f"{field_name} must be a list of strings",
            field=field_name,
        )
    return list(value)


def normalize_discovery_document(document: Mapping[str, Any]) -> Mapping[str, Any]:
    """Canonicalize the discovery document for deterministic comparison.

    ``claims_supported`` is RECOMMENDED by OpenID Connect Discovery, so a
    missing value becomes an empty sequence. ``response_types_supported`` is
    REQUIRED and its absence raises ``DiscoveryDocumentError``; so does either
    field holding anything but a list of strings.

    The result is read-only all the way down: mappings become
    ``MappingProxyType`` and lists become tuples.
    """
    claims_supported: list[str] = []
    if document.get("claims_supported") is not None:
        claims_supported = _string_list(document, "claims_supported")

    if document.get("response_types_supported") is None:
        raise DiscoveryDocumentError(
            "discovery document is missing response_types_supported",
            field="response_types_supported",
        )
    response_types = _string_list(document, "response_types_supported")

    normalized = dict(document)
    normalized["claims_supported"] = sorted(claims_supported)
    normalized["response_types_supported"] = [
        " ".join(sorted(entry.split())) for entry in response_types
    ]
    return _freeze(normalized)
