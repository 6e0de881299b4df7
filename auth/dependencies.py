"""
auth/dependencies.py -- FastAPI Depends() helpers for session authentication.

The bearer token is read in priority order:
  1. "token" cookie -- set by signin/signup.
  2. Authorization: Bearer <token> header -- non-browser clients.

get_session_tx() resolves the token into a SessionTransaction before the
route body runs, and keeps the transaction open for the whole request: the
deadline renewal commits only if the route finishes without raising.

Routes must depend on it with scope="function". The transaction then ends
when the route returns, before the response is sent, so a failed commit
reaches the client as a 500 instead of being lost after a 2xx went out.

Layer rule: no imports from api/ or core/.
  auth/dependencies.py may import from fastapi (for Request) because this
  module is part of the FastAPI dependency injection system.
"""

from __future__ import annotations

from collections.abc import Iterator

from fastapi import Request

from auth.errors import SessionExpired
from auth.service import AuthService
from auth.tokens import COOKIE_NAME
from auth.transaction import SessionTransaction


def get_auth_service(request: Request) -> AuthService:
    return request.app.state.auth_service


def extract_token(request: Request) -> str | None:
    """Return the bearer token from the cookie or Authorization header, if any."""
    token: str | None = request.cookies.get(COOKIE_NAME)
    if not token:
        auth_header = request.headers.get("Authorization", "")
        if auth_header.startswith("Bearer "):
            token = auth_header[7:].strip()
    return token or None


def get_session_tx(request: Request) -> Iterator[SessionTransaction]:
    """Require a live session. Yields a SessionTransaction for the request.

    A missing token is reported as SessionExpired, the same as a forged or
    expired one. Use as a FastAPI dependency:
        @router.get("/protected")
        def route(tx: SessionTransaction = Depends(get_session_tx, scope="function")): ...
    """
    token = extract_token(request)
    if token is None:
        raise SessionExpired()
    with get_auth_service(request).begin(token) as tx:
        yield tx
