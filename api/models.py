"""
API request and response models for boardkeep REST endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from the dataclasses in auth/models.py, which
own the internal domain representation. Route handlers map between the two.

Separation of concerns: auth/ models = domain truth; api/ models = API contract.
"""

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from auth.models import InviteToken, Session

# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------


class SigninRequest(BaseModel):
    """Request body for POST /api/v1/signin.

    No whitespace stripping: bcrypt compares the exact bytes typed at signup.
    """

    username: str = Field(min_length=1, max_length=64)
    password: str = Field(min_length=1, max_length=255)


class SignupRequest(BaseModel):
    """Request body for POST /api/v1/signup."""

    username: str = Field(min_length=1, max_length=64)
    password: str = Field(min_length=1, max_length=255)
    token: str = Field(min_length=1, max_length=64, description="Invite token.")


class InviteCreate(BaseModel):
    """Request body for POST /api/v1/invites."""

    remaining: int = Field(default=1, ge=1, le=1000, description="Number of signups the token allows.")
    ttl_seconds: Optional[int] = Field(default=None, ge=1, description="Omit for a token that never expires.")


# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------


class SessionResponse(BaseModel):
    """One session as shown in the "your devices" view.

    The bearer token is never part of this model. deadline is nanoseconds
    since the Unix epoch.
    """

    model_config = ConfigDict(frozen=True)

    id: int
    username: str
    deadline: int
    user_agent: str
    current: bool = False

    @classmethod
    def from_session(cls, session: Session, current_id: Optional[int] = None) -> "SessionResponse":
        return cls(
            id=session.id,
            username=session.username,
            deadline=session.deadline,
            user_agent=session.user_agent,
            current=session.id == current_id,
        )


class SigninResponse(SessionResponse):
    """Returned by signin and signup only. token is the bearer credential, also set as a cookie."""

    token: str

    @classmethod
    def from_new_session(cls, session: Session) -> "SigninResponse":
        return cls(
            id=session.id,
            username=session.username,
            deadline=session.deadline,
            user_agent=session.user_agent,
            current=True,
            token=session.auth_token,
        )


class InviteResponse(BaseModel):
    """Returned once, at creation. The raw token is not retrievable later."""

    model_config = ConfigDict(frozen=True)

    token: str
    remaining: int
    deadline: int

    @classmethod
    def from_invite(cls, invite: InviteToken) -> "InviteResponse":
        return cls(token=invite.token, remaining=invite.remaining, deadline=invite.deadline)


class ErrorDetail(BaseModel):
    """Machine-readable error payload."""

    model_config = ConfigDict(frozen=True)

    code: str
    message: str
    detail: Optional[str] = None


class ErrorResponse(BaseModel):
    """Top-level error envelope returned on 4xx/5xx responses."""

    model_config = ConfigDict(frozen=True)

    error: ErrorDetail


class HealthResponse(BaseModel):
    """Response for GET /api/v1/health."""

    model_config = ConfigDict(frozen=True)

    status: str = "ok"
    version: str
