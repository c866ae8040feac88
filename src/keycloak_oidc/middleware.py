"""Framework middleware for keycloak-oidc.

Bearer-token verification for Flask and FastAPI, and session verification
with silent token refresh for Flask. Rejected tokens get a 401 with body
``{"error": <message>}``; a provider that cannot answer gets its error status
(503 for an unavailable provider) with the same body shape.
"""

# No ``from __future__ import annotations``: FastAPI evaluates the dependency
# signature at runtime, and ``Request`` is only imported inside the factory.

import re
import time
from collections.abc import Callable, Iterable
from functools import wraps
from typing import Any

from .client import KeycloakClient
from .errors import KeycloakError
from .telemetry import get_logger
from .verifier import Failed

ERROR_CONTENT_TYPE = "application/vnd.api+json"

_BEARER = re.compile(r"^Bearer:?\s+(.+)", re.IGNORECASE)


def fetch_token(values: Iterable[str] | str | None) -> str | None:
    """Return the token of the first ``Bearer <token>`` header value.

    >>> fetch_token([])
    >>> fetch_token(["abc123"])
    >>> fetch_token(["Bearer abc123"])
    'abc123'
    """
    if values is None:
        return None
    if isinstance(values, str):
        values = [values]
    for value in values:
        match = _BEARER.match(value.strip())
        if match:
            return match.group(1).strip()
    return None


def _is_expired(claims: dict[str, Any], now: float) -> bool | None:
    """``None`` when ``exp`` is missing or not a number."""
    exp = claims.get("exp")
    if isinstance(exp, bool) or not isinstance(exp, (int, float)):
        return None
    return now > exp


def _flask_error_response(message: str, status: int) -> Any:
    from flask import Response, json

    return Response(
        json.dumps({"error": message}),
        status=status,
        content_type=ERROR_CONTENT_TYPE,
    )


def create_flask_token_auth(client: KeycloakClient) -> Callable[..., Any]:
    """Create Flask decorator verifying the ``Authorization`` bearer token.

    Verified claims are stored on ``flask.g.claims``.

    Raises:
        ImportError: If Flask not installed.
    """
    try:
        from flask import g, request
    except ImportError as e:
        msg = "Flask not installed. Install with: pip install keycloak-oidc[flask]"
        raise ImportError(msg) from e

    def require_token(f: Callable[..., Any]) -> Callable[..., Any]:
        """Decorator to require a verified bearer token."""

        @wraps(f)
        def decorated(*args: Any, **kwargs: Any) -> Any:
            token = fetch_token(request.headers.getlist("Authorization"))

            try:
                result = client.verify(token)
            except KeycloakError as e:
                return _flask_error_response(e.message, e.status_code or 500)

            if isinstance(result, Failed):
                return _flask_error_response(result.message, 401)

            g.claims = result.claims
            return f(*args, **kwargs)

        return decorated

    return require_token


def create_flask_session_auth(
    client: KeycloakClient,
    *,
    redirect_to: str = "/",
    clock: Callable[[], float] = time.time,
) -> Callable[..., Any]:
    """Create Flask decorator verifying the tokens kept in ``flask.session``.

    An unexpired access token passes. An expired but otherwise valid one is
    exchanged with the session's refresh token and the new pair is stored.
    A rejected token or a failed exchange clears both tokens and redirects to
    ``redirect_to``. When the provider itself cannot answer, the session is
    left alone and the error status is returned.

    Raises:
        ImportError: If Flask not installed.
    """
    try:
        from flask import g, redirect, session
    except ImportError as e:
        msg = "Flask not installed. Install with: pip install keycloak-oidc[flask]"
        raise ImportError(msg) from e

    logger = get_logger()

    def clear_and_redirect() -> Any:
        session.pop("access_token", None)
        session.pop("refresh_token", None)
        return redirect(redirect_to, code=302)

    def verify_session(f: Callable[..., Any]) -> Callable[..., Any]:
        """Decorator to require a verified session."""

        @wraps(f)
        def decorated(*args: Any, **kwargs: Any) -> Any:
            try:
                result = client.verify(session.get("access_token"))
            except KeycloakError as e:
                logger.warning("session verification unavailable", error=e.message)
                return _flask_error_response(e.message, e.status_code or 500)
            if isinstance(result, Failed):
                return clear_and_redirect()

            expired = _is_expired(result.claims, clock())
            if expired is None:
                return clear_and_redirect()

            if expired:
                try:
                    tokens = client.refresh_token(session.get("refresh_token"))
                except KeycloakError as e:
                    logger.info("session refresh failed", error=e.message)
                    return clear_and_redirect()
                session["access_token"] = tokens.access_token
                session["refresh_token"] = tokens.refresh_token

            g.claims = result.claims
            return f(*args, **kwargs)

        return decorated

    return verify_session


def create_fastapi_token_auth(client: KeycloakClient) -> Any:
    """Create FastAPI dependency verifying the bearer token.

    Register the error handler with ``add_fastapi_error_handler(app)`` so
    rejections render as ``{"error": <message>}``.

    Raises:
        ImportError: If FastAPI not installed.
    """
    try:
        from fastapi import Request
    except ImportError as e:
        msg = "FastAPI not installed. Install with: pip install keycloak-oidc[fastapi]"
        raise ImportError(msg) from e

    def get_claims(request: Request) -> dict[str, Any]:
        """Dependency returning the verified claims of the request."""
        token = fetch_token(request.headers.getlist("authorization"))
        result = client.verify(token)
        if isinstance(result, Failed):
            raise UnauthorizedError(result.message)
        request.state.claims = result.claims
        return result.claims

    return get_claims


class UnauthorizedError(Exception):
    """Raised by the FastAPI dependency when a token is rejected."""

    def __init__(self, message: str, status_code: int = 401) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code


def add_fastapi_error_handler(app: Any) -> None:
    """Render ``UnauthorizedError`` and ``KeycloakError`` as JSON error bodies."""
    try:
        from fastapi.responses import JSONResponse
    except ImportError as e:
        msg = "FastAPI not installed. Install with: pip install keycloak-oidc[fastapi]"
        raise ImportError(msg) from e

    async def handle_unauthorized(request: Any, exc: UnauthorizedError) -> JSONResponse:
        return JSONResponse(
            {"error": exc.message},
            status_code=exc.status_code,
            media_type=ERROR_CONTENT_TYPE,
            headers={"WWW-Authenticate": "Bearer"},
        )

    async def handle_keycloak_error(request: Any, exc: KeycloakError) -> JSONResponse:
        return JSONResponse(
            {"error": exc.message},
            status_code=exc.status_code or 500,
            media_type=ERROR_CONTENT_TYPE,
        )

    app.add_exception_handler(UnauthorizedError, handle_unauthorized)
    app.add_exception_handler(KeycloakError, handle_keycloak_error)
