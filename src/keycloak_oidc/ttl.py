"""Remaining-lifetime calculation from HTTP caching headers."""

from __future__ import annotations

import re
from collections.abc import Mapping

_MAX_AGE = re.compile(r"max-age=(\d+)", re.ASCII)


def _lookup(headers: Mapping[str, str], name: str) -> str | None:
    # httpx.Headers is already case-insensitive; plain dicts are not.
    value = headers.get(name)
    if value is not None:
        return value
    for key, candidate in headers.items():
        if key.lower() == name:
            return candidate
    return None


def remaining_lifetime(headers: Mapping[str, str]) -> int | None:
    """Seconds a fetched document stays fresh, or ``None`` when unknown.

    The result is ``max-age`` from ``Cache-Control`` minus the ``Age`` header.
    It can be zero or negative for a stale response; callers treat that as
    "refresh now". Either header missing or non-numeric gives ``None``.
    """
    cache_control = _lookup(headers, "cache-control") or ""
    match = _MAX_AGE.search(cache_control)
    if match is None:
        return None

    age = _lookup(headers, "age")
    if age is None:
        return None
    age = age.strip()
    if not (age.isascii() and age.isdigit()):
        return None

    return int(match.group(1)) - int(age)


def next_refresh_delay(lifetime: int | None, default: float = 3600) -> float:
    """Seconds until the next refresh for a document with ``lifetime`` left."""
    if lifetime is None:
        return float(default)
    if lifetime <= 0:
        return 0.0
    return float(lifetime)
