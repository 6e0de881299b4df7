"""
api/routes/v1/sessions.py -- Self-service session and invite endpoints.

Routes:
  GET    /api/v1/sessions        -- list the caller's sessions ("your devices")
  GET    /api/v1/sessions/me     -- the session making this request
  DELETE /api/v1/sessions/{id}   -- delete one of the caller's own sessions
  POST   /api/v1/invites         -- mint an invite token (TRUSTED and above)

Every route resolves the token through get_session_tx, which renews the
session's deadline in the same transaction as the route's own work.

IDOR guard: DELETE /sessions/{id} passes the caller's username to the store;
another user's session id is reported exactly like an unknown id (401
session_not_found), never as 403.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Response

from api.models import InviteCreate, InviteResponse, SessionResponse
from auth.dependencies import get_session_tx
from auth.transaction import SessionTransaction

router = APIRouter()


@router.get("/sessions", response_model=list[SessionResponse])
def list_sessions(tx: SessionTransaction = Depends(get_session_tx, scope="function")) -> list[SessionResponse]:
    """List every session of the current user. Token values are never returned."""
    current_id = tx.session.id
    return [SessionResponse.from_session(s, current_id) for s in tx.sessions()]


@router.get("/sessions/me", response_model=SessionResponse)
def current_session(tx: SessionTransaction = Depends(get_session_tx, scope="function")) -> SessionResponse:
    """Return the session making this request, with its renewed deadline."""
    session = tx.session
    return SessionResponse.from_session(session, session.id)


@router.delete("/sessions/{session_id}", status_code=204)
def delete_session(session_id: int, tx: SessionTransaction = Depends(get_session_tx, scope="function")) -> Response:
    """Sign out one of the caller's devices by session id."""
    tx.delete_session_id(session_id)
    return Response(status_code=204)


@router.post("/invites", response_model=InviteResponse, status_code=201)
def create_invite(
    body: InviteCreate,
    tx: SessionTransaction = Depends(get_session_tx, scope="function"),
) -> InviteResponse:
    """Mint an invite token. The raw token is shown ONCE."""
    invite = tx.create_invite(remaining=body.remaining, ttl=body.ttl_seconds)
    return InviteResponse.from_invite(invite)
