"""
auth/service.py -- Signin, signup and request-scoped session resolution.

AuthService composes the store, the token generator, the id generator and
bcrypt into the operations that create or resolve sessions. Each public method
owns exactly one transaction: either everything it wrote is committed, or
nothing is.

  signin   -- password check + new session (+ sweep)
  signup   -- invite consumption + new user + new session (+ sweep)
  begin    -- resolve and renew a bearer token, hand out a SessionTransaction

Layer rule: no imports from api/ or core/. Settings values are passed in by
the caller (api/main.py builds the service from core.config).
"""

from __future__ import annotations

import logging
from collections.abc import Iterator
from contextlib import contextmanager

from auth.errors import InvalidPassword, InvalidToken, UsernameTaken
from auth.ids import SnowflakeGenerator
from auth.models import NS_PER_SECOND, InviteToken, Permission, Session, User
from auth.store import AuthStore
from auth.tokens import (
    burn_password_check,
    generate_token,
    hash_password,
    validate_password,
    validate_username,
    verify_password,
)
from auth.transaction import SessionTransaction, mint_invite

logger = logging.getLogger("boardkeep.auth")


class AuthService:
    """Authentication flows over an AuthStore.

    TTLs are given in seconds and kept in nanoseconds, the unit of the
    deadline column.

    Usage:
        service = AuthService(AuthStore(), token_lifespan=3600, renew_ttl=3600)
        session = service.signin("alice", "correct horse", "Mozilla/5.0")
        with service.begin(session.auth_token) as tx:
            tx.sessions()
    """

    def __init__(
        self,
        store: AuthStore,
        token_lifespan: int,
        renew_ttl: int,
        node_id: int = 0,
        min_password_length: int = 8,
    ) -> None:
        self.store = store
        self.token_lifespan = token_lifespan * NS_PER_SECOND
        self.renew_ttl = renew_ttl * NS_PER_SECOND
        self.min_password_length = min_password_length
        self._ids = SnowflakeGenerator(node_id)

    # ------------------------------------------------------------------
    # Session construction
    # ------------------------------------------------------------------

    def new_session(self, username: str, user_agent: str) -> Session:
        """Build (but do not store) a fresh session expiring after token_lifespan."""
        return Session(
            id=self._ids.generate(),
            username=username,
            auth_token=generate_token(),
            deadline=self.store.now() + self.token_lifespan,
            user_agent=user_agent,
        )

    # ------------------------------------------------------------------
    # Unauthenticated flows
    # ------------------------------------------------------------------

    def signin(self, username: str, password: str, user_agent: str) -> Session:
        """Create a new session for a username/password pair.

        An unknown username and a wrong password both raise InvalidPassword,
        and both pay for one bcrypt verification.
        """
        with self.store.transaction() as conn:
            passhash = self.store.get_passhash(conn, username)
            if passhash is None:
                burn_password_check(password)
                logger.info("Signin failed for %r", username)
                raise InvalidPassword()
            if not verify_password(password, passhash):
                logger.info("Signin failed for %r", username)
                raise InvalidPassword()

            session = self.new_session(username, user_agent)
            self.store.insert_session(conn, session)

        logger.info("Signin: %r (session %d)", username, session.id)
        return session

    def signup(self, username: str, password: str, invite_token: str, user_agent: str) -> Session:
        """Create an account from an invite token and sign it in.

        The invite use, the user row and the session row commit together. If
        any step fails the invite keeps its use and no user is created.
        """
        validate_username(username)
        validate_password(password, self.min_password_length)
        passhash = hash_password(password)

        try:
            with self.store.transaction() as conn:
                self.store.consume_invite(conn, invite_token)
                self.store.insert_user(conn, User(username=username, passhash=passhash))

                session = self.new_session(username, user_agent)
                self.store.insert_session(conn, session)
        except (InvalidToken, UsernameTaken) as exc:
            logger.info("Signup rejected for %r: %s", username, exc.code)
            raise

        logger.info("Signup: %r (session %d)", username, session.id)
        return session

    # ------------------------------------------------------------------
    # Authenticated entry point
    # ------------------------------------------------------------------

    @contextmanager
    def begin(self, token: str) -> Iterator[SessionTransaction]:
        """Resolve token inside a new transaction and yield its SessionTransaction.

        The session's deadline is renewed once, as part of the same
        transaction as whatever the caller does with it; the renewal commits
        or rolls back together with the caller's work.
        """
        with self.store.transaction() as conn:
            session = self.store.query_session(conn, token, self.renew_ttl)
            yield SessionTransaction(self.store, conn, session)

    # ------------------------------------------------------------------
    # Maintenance
    # ------------------------------------------------------------------

    def sweep(self) -> int:
        """Delete expired sessions in a standalone transaction. Returns rows removed."""
        with self.store.transaction() as conn:
            return self.store.sweep_sessions(conn)

    def ensure_owner(self, username: str, password: str) -> bool:
        """Create the OWNER account if it does not exist yet.

        Returns True if the account was created. An existing account is left
        untouched, including its password.
        """
        validate_username(username)
        validate_password(password, self.min_password_length)
        with self.store.transaction() as conn:
            if self.store.get_user(conn, username) is not None:
                return False
            self.store.insert_user(
                conn,
                User(username=username, passhash=hash_password(password), permission=Permission.OWNER),
            )
        logger.info("Created owner account %r", username)
        return True

    def create_invite(self, creator: str, remaining: int = 1, ttl: int | None = None) -> InviteToken:
        """Mint an invite token outside any user session (CLI use).

        ttl is in seconds; None means the token never expires.
        """
        with self.store.transaction() as conn:
            return mint_invite(self.store, conn, creator, remaining, ttl)

