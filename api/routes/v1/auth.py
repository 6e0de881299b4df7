"""
api/routes/v1/auth.py -- Signin, signup and signout REST endpoints.

Routes:
  POST /api/v1/signin    -- password signin; sets session cookie
  POST /api/v1/signup    -- invite-token signup; sets session cookie
  POST /api/v1/signout   -- deletes the current session; clears cookie

Security:
  signin and signup are rate-limited per IP (SIGNIN_RATE_LIMIT).
  Wrong username and wrong password return the same invalid_password error.
  Cache-Control: no-store on every response that carries a token.
  Failures are raised as auth.errors types; api/main.py renders them.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request, Response
from fastapi.responses import JSONResponse

from api.limiter import limiter
from api.models import SigninRequest, SigninResponse, SignupRequest
from auth.dependencies import get_auth_service, get_session_tx
from auth.models import Session
from auth.tokens import clear_auth_cookie, set_auth_cookie
from auth.transaction import SessionTransaction
from core.config import get_settings

# Auth policy:
# - POST /api/v1/signin:   public -- creates the session
# - POST /api/v1/signup:   public -- gated by the invite token instead
# - POST /api/v1/signout:  requires a live session (get_session_tx)
router = APIRouter()


def _signin_rate_limit() -> str:
    return get_settings().signin_rate_limit


def _user_agent(request: Request) -> str:
    return request.headers.get("User-Agent", "")


def _session_response(session: Session, status_code: int) -> JSONResponse:
    """Build the signin/signup response: session body plus the token cookie."""
    settings = get_settings()
    resp = JSONResponse(
        status_code=status_code,
        content=SigninResponse.from_new_session(session).model_dump(),
    )
    set_auth_cookie(resp, session.auth_token, settings.token_lifespan_seconds, secure=settings.secure_cookies)
    resp.headers["Cache-Control"] = "no-store"
    return resp


# ---------------------------------------------------------------------------
# Public endpoints
# ---------------------------------------------------------------------------


@limiter.limit(_signin_rate_limit)  # must be ABOVE @router to preserve FastAPI introspection
@router.post("/signin", response_model=SigninResponse)
def signin(request: Request, body: SigninRequest) -> JSONResponse:
    """Authenticate with username and password; set the session cookie."""
    session = get_auth_service(request).signin(body.username, body.password, _user_agent(request))
    return _session_response(session, 200)


@limiter.limit(_signin_rate_limit)
@router.post("/signup", response_model=SigninResponse, status_code=201)
def signup(request: Request, body: SignupRequest) -> JSONResponse:
    """Create an account with an invite token and sign it in."""
    session = get_auth_service(request).signup(body.username, body.password, body.token, _user_agent(request))
    return _session_response(session, 201)


# ---------------------------------------------------------------------------
# Authenticated endpoints
# ---------------------------------------------------------------------------


@router.post("/signout", status_code=204)
def signout(tx: SessionTransaction = Depends(get_session_tx, scope="function")) -> Response:
    """Delete the current session and clear the cookie."""
    tx.signout()
    resp = Response(status_code=204)
    clear_auth_cookie(resp)
    return resp
