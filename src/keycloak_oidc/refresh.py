"""Refresh orchestration: one attempt at building a ``CredentialSnapshot``."""

from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum
from typing import TYPE_CHECKING, Any, Protocol

from .errors import DiscoveryDocumentError, FetchError, ParseError
from .keys import parse_key_set
from .models import CredentialSnapshot, normalize_discovery_document
from .ttl import remaining_lifetime

if TYPE_CHECKING:
    from collections.abc import Mapping

    from .config import ProviderConfig


class RefreshStage(StrEnum):
    """Step of a refresh attempt that failed."""

    FETCH_DISCOVERY = "fetch-discovery"
    FETCH_JWKS = "fetch-jwks"
    PARSE_KEY_SET = "parse-key-set"
    NORMALIZE_DISCOVERY = "normalize-discovery"


class Fetcher(Protocol):
    """What the orchestrator needs from a document fetcher."""

    def fetch_discovery(self, config: ProviderConfig) -> dict[str, Any]: ...

    def fetch_jwks(self, config: ProviderConfig) -> tuple[dict[str, Any], Mapping[str, str]]: ...


@dataclass(frozen=True)
class RefreshSucceeded:
    snapshot: CredentialSnapshot

    @property
    def ok(self) -> bool:
        return True


@dataclass(frozen=True)
class RefreshFailed:
    stage: RefreshStage
    reason: str
    error: Exception | None = None

    @property
    def ok(self) -> bool:
        return False


RefreshResult = RefreshSucceeded | RefreshFailed


def update_documents(fetcher: Fetcher, config: ProviderConfig) -> RefreshResult:
    """Fetch discovery document and JWKS and assemble a snapshot.

    The JWKS response, not the discovery document, governs freshness.
    Fetch and parse failures come back as ``RefreshFailed`` tagged with the
    stage that failed; nothing is raised for them.
    """
    try:
        discovery = fetcher.fetch_discovery(config)
    except (FetchError, ParseError) as e:
        return RefreshFailed(RefreshStage.FETCH_DISCOVERY, e.message, e)

    try:
        certs, headers = fetcher.fetch_jwks(config)
    except (FetchError, ParseError) as e:
        return RefreshFailed(RefreshStage.FETCH_JWKS, e.message, e)

    lifetime = remaining_lifetime(headers)

    try:
        key_set = parse_key_set(certs)
    except ParseError as e:
        return RefreshFailed(RefreshStage.PARSE_KEY_SET, e.message, e)

    try:
        document = normalize_discovery_document(discovery)
    except DiscoveryDocumentError as e:
        return RefreshFailed(RefreshStage.NORMALIZE_DISCOVERY, e.message, e)

    return RefreshSucceeded(
        CredentialSnapshot(
            discovery_document=document,
            key_set=key_set,
            remaining_lifetime=lifetime,
        )
    )
