"""
auth/transaction.py -- Request-bound handle carrying a validated, renewed session.

A SessionTransaction only exists inside AuthService.begin(): by the time a
caller holds one, the bearer token has been resolved and its deadline renewed
on the same connection. Every method here runs on that connection, so the
renewal and the caller's own changes commit or roll back together.

The resolved session is an explicit value on this object, never hidden state
on the connection.
"""

from __future__ import annotations

import logging
from dataclasses import replace

from sqlalchemy.engine import Connection

from auth.errors import PermissionDenied, SessionNotFound
from auth.models import NS_PER_SECOND, InviteToken, Permission, Session, User
from auth.store import AuthStore
from auth.tokens import generate_token

logger = logging.getLogger("boardkeep.auth")


class SessionTransaction:
    def __init__(self, store: AuthStore, conn: Connection, session: Session) -> None:
        self.store = store
        self.conn = conn
        self._session = session

    @property
    def session(self) -> Session:
        """A copy of the current session; mutating it changes nothing."""
        return replace(self._session)

    def user(self) -> User:
        """Return the account that owns the current session, passhash blanked.

        The foreign key cascades user deletion to sessions, so a resolved
        session always has a user row in the same transaction.
        """
        user = self.store.get_user(self.conn, self._session.username)
        if user is None:
            raise SessionNotFound()
        return replace(user, passhash="")

    def sessions(self) -> list[Session]:
        """List every session of the current user, this one included."""
        return self.store.list_sessions(self.conn, self._session.username)

    def delete_session_id(self, session_id: int) -> None:
        """Delete one of the current user's own sessions by id.

        Someone else's session id gets SessionNotFound, the same as an id that
        does not exist.
        """
        if not self.store.delete_session_id(self.conn, session_id, self._session.username):
            raise SessionNotFound()
        logger.info("Session %d of %r deleted", session_id, self._session.username)

    def signout(self) -> None:
        """Delete the current session. A second signout raises SessionNotFound."""
        if not self.store.delete_session_by_token(self.conn, self._session.auth_token):
            raise SessionNotFound()
        logger.info("Signout: %r (session %d)", self._session.username, self._session.id)

    def create_invite(self, remaining: int = 1, ttl: int | None = None) -> InviteToken:
        """Mint an invite token owned by the current user. Requires TRUSTED or above."""
        if self.user().permission < Permission.TRUSTED:
            raise PermissionDenied()
        invite = mint_invite(self.store, self.conn, self._session.username, remaining, ttl)
        logger.info("Invite token created by %r (%d use(s))", self._session.username, remaining)
        return invite


def mint_invite(store: AuthStore, conn: Connection, creator: str, remaining: int, ttl: int | None) -> InviteToken:
    """Generate and store an invite token. ttl is in seconds; None never expires."""
    if remaining < 1:
        raise ValueError("An invite token needs at least one use.")
    invite = InviteToken(
        token=generate_token(),
        creator=creator,
        remaining=remaining,
        deadline=store.now() + ttl * NS_PER_SECOND if ttl else 0,
    )
    store.insert_invite(conn, invite)
    return invite
