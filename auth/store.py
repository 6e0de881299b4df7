"""
auth/store.py -- SQLAlchemy Core persistence layer for sessions, users and invites.

Pattern: Repository + Data Mapper. AuthStore is the repository; _row_to_session
/ _row_to_user / _row_to_invite are the mappers. Service and route code never
touches SQL directly.

Transactions:
  Every query method takes an open Connection as its first argument and never
  commits. The caller opens the transaction with AuthStore.transaction() and
  decides when it ends, so session renewal, invite consumption, user creation
  and session insertion can share one atomic unit.

  SQLite: pysqlite's own transaction handling only starts a transaction at
  the first DML statement, which would let a SELECT run outside the
  transaction it belongs to. It is disabled on connect, and every SQLAlchemy
  transaction starts with BEGIN IMMEDIATE instead, so read-then-write
  sequences (renewal, invite consumption) are serialized between writers.
  Other backends get SELECT ... FOR UPDATE on the rows that are read and then
  written; SQLite ignores with_for_update().

Security:
  All queries use bound parameters. No f-strings in SQL.
  auth tokens are never logged, and never appear in exception messages.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from pathlib import Path

from sqlalchemy import (
    BigInteger,
    Column,
    ForeignKey,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    create_engine,
    event,
    func,
    select,
)
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from auth.errors import InvalidToken, SessionExpired, StoreError, UsernameTaken
from auth.models import InviteToken, Permission, Session, User

logger = logging.getLogger("boardkeep.auth")

_DEFAULT_DB_URL = f"sqlite:///{Path(__file__).resolve().parent.parent / 'boardkeep.db'}"

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

metadata = MetaData()

_users = Table(
    "users",
    metadata,
    Column("username", String(64), primary_key=True),
    Column("passhash", Text, nullable=False),
    Column("permission", Integer, nullable=False, server_default=str(int(Permission.NORMAL))),
    Column("created_at", BigInteger, nullable=False),  # ns epoch
)

_sessions = Table(
    "sessions",
    metadata,
    # Snowflake id from auth.ids -- never autoincrement.
    Column("id", BigInteger, primary_key=True, autoincrement=False),
    Column(
        "username",
        String(64),
        ForeignKey("users.username", ondelete="CASCADE"),
        nullable=False,
        index=True,
    ),
    Column("authtoken", String(64), nullable=False, unique=True),
    Column("deadline", BigInteger, nullable=False, index=True),  # ns epoch
    Column("useragent", Text, nullable=False, server_default=""),
)

_tokens = Table(
    "tokens",
    metadata,
    Column("token", String(64), primary_key=True),
    Column("creator", String(64), nullable=False),
    Column("remaining", Integer, nullable=False),
    Column("deadline", BigInteger, nullable=False, server_default="0"),  # 0 = never
)


# ---------------------------------------------------------------------------
# SQLite connection setup
# ---------------------------------------------------------------------------


def _on_sqlite_connect(dbapi_conn, connection_record) -> None:
    """Per-connection SQLite setup.

    isolation_level=None hands transaction control to the "begin" listener.
    WAL lets readers proceed while a writer holds the lock. foreign_keys is
    off by default in SQLite and must be enabled on every connection.
    """
    dbapi_conn.isolation_level = None
    cursor = dbapi_conn.cursor()
    cursor.execute("PRAGMA journal_mode=WAL")
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def _on_sqlite_begin(conn: Connection) -> None:
    conn.exec_driver_sql("BEGIN IMMEDIATE")


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class AuthStore:
    """Repository for Session, User and InviteToken entities.

    Usage:
        store = AuthStore()
        with store.transaction() as conn:
            store.insert_user(conn, User(username="alice", passhash=hash_password("secret")))
            store.insert_session(conn, session)
        store.close()

    clock returns the current time as integer nanoseconds since the epoch.
    Tests inject a controllable clock; everything else uses time.time_ns.
    """

    def __init__(self, db_url: str = _DEFAULT_DB_URL, clock: Callable[[], int] = time.time_ns) -> None:
        self.now = clock
        connect_args: dict = {}
        if db_url.startswith("sqlite"):
            # Requests are served from a threadpool. timeout is how long
            # BEGIN IMMEDIATE waits for a competing writer.
            connect_args["check_same_thread"] = False
            connect_args["timeout"] = 15
        self.engine: Engine = create_engine(db_url, connect_args=connect_args)
        if db_url.startswith("sqlite"):
            event.listen(self.engine, "connect", _on_sqlite_connect)
            event.listen(self.engine, "begin", _on_sqlite_begin)
        metadata.create_all(self.engine)

    @contextmanager
    def transaction(self) -> Iterator[Connection]:
        """Yield a connection inside a transaction.

        Commits when the block exits cleanly. Any exception rolls the whole
        transaction back and propagates unchanged; driver errors raised while
        beginning or committing are wrapped in StoreError.
        """
        try:
            conn = self.engine.connect()
            trans = conn.begin()
        except SQLAlchemyError as exc:
            raise StoreError("Failed to begin transaction") from exc
        try:
            yield conn
            try:
                trans.commit()
            except SQLAlchemyError as exc:
                raise StoreError("Failed to commit transaction") from exc
        except BaseException:
            if trans.is_active:
                trans.rollback()
            raise
        finally:
            conn.close()

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------

    def insert_session(self, conn: Connection, session: Session) -> None:
        """Persist a new session, then sweep expired ones in the same transaction.

        The unique constraints on id and authtoken make a collision fail the
        insert instead of overwriting an existing session.
        """
        try:
            conn.execute(
                _sessions.insert().values(
                    id=session.id,
                    username=session.username,
                    authtoken=session.auth_token,
                    deadline=session.deadline,
                    useragent=session.user_agent,
                )
            )
        except SQLAlchemyError as exc:
            raise StoreError("Failed to save session") from exc

        self.sweep_sessions(conn)

    def sweep_sessions(self, conn: Connection, now: int | None = None) -> int:
        """Delete every session whose deadline has passed. Returns rows removed.

        A failure here aborts the caller's transaction along with it.
        """
        if now is None:
            now = self.now()
        try:
            result = conn.execute(_sessions.delete().where(_sessions.c.deadline < now))
        except SQLAlchemyError as exc:
            raise StoreError("Failed to clean up expired sessions") from exc
        if result.rowcount:
            logger.info("Swept %d expired session(s)", result.rowcount)
        return result.rowcount

    def query_session(self, conn: Connection, token: str, renew_ttl: int) -> Session:
        """Resolve a bearer token into a live session and slide its deadline.

        renew_ttl is in nanoseconds. An unknown token raises SessionExpired,
        exactly like an expired one, so a forged token cannot be told apart
        from a stale one. Expired rows are left for the sweeper.
        """
        try:
            row = conn.execute(
                _sessions.select().where(_sessions.c.authtoken == token).with_for_update()
            ).fetchone()
        except SQLAlchemyError as exc:
            raise StoreError("Failed to scan session") from exc

        if row is None:
            raise SessionExpired()

        session = _row_to_session(row)
        now = self.now()
        if session.expired(now):
            raise SessionExpired()

        session.deadline = now + renew_ttl
        try:
            conn.execute(
                _sessions.update().where(_sessions.c.authtoken == session.auth_token).values(deadline=session.deadline)
            )
        except SQLAlchemyError as exc:
            raise StoreError("Failed to renew token") from exc
        logger.debug("Renewed session %d of %r", session.id, session.username)
        return session

    def list_sessions(self, conn: Connection, username: str) -> list[Session]:
        """Return every stored session of a user, oldest id first."""
        try:
            rows = conn.execute(
                _sessions.select().where(_sessions.c.username == username).order_by(_sessions.c.id)
            ).fetchall()
        except SQLAlchemyError as exc:
            raise StoreError("Failed to query for sessions") from exc
        return [_row_to_session(r) for r in rows]

    def delete_session_by_token(self, conn: Connection, token: str) -> bool:
        """Delete the session holding this token. Returns True if a row was removed."""
        try:
            result = conn.execute(_sessions.delete().where(_sessions.c.authtoken == token))
        except SQLAlchemyError as exc:
            raise StoreError("Failed to delete token") from exc
        return result.rowcount > 0

    def delete_session_id(self, conn: Connection, session_id: int, username: str) -> bool:
        """Delete a session by id, only if it belongs to username.

        Both conditions are in the WHERE clause, so a session owned by another
        user is indistinguishable from a missing one.
        """
        try:
            result = conn.execute(
                _sessions.delete().where((_sessions.c.id == session_id) & (_sessions.c.username == username))
            )
        except SQLAlchemyError as exc:
            raise StoreError("Failed to delete token with ID") from exc
        return result.rowcount > 0

    def count_sessions(self, conn: Connection) -> int:
        """Return the number of stored session rows, expired ones included."""
        try:
            return conn.execute(select(func.count()).select_from(_sessions)).scalar() or 0
        except SQLAlchemyError as exc:
            raise StoreError("Failed to count sessions") from exc

    # ------------------------------------------------------------------
    # Users
    # ------------------------------------------------------------------

    def insert_user(self, conn: Connection, user: User) -> None:
        """Insert a new user. A duplicate username raises UsernameTaken."""
        user.created_at = user.created_at or self.now()
        try:
            conn.execute(
                _users.insert().values(
                    username=user.username,
                    passhash=user.passhash,
                    permission=int(user.permission),
                    created_at=user.created_at,
                )
            )
        except IntegrityError as exc:
            raise UsernameTaken() from exc
        except SQLAlchemyError as exc:
            raise StoreError("Failed to save user") from exc

    def get_user(self, conn: Connection, username: str) -> User | None:
        """Look up a user by exact username (case-sensitive). Returns None if not found."""
        try:
            row = conn.execute(_users.select().where(_users.c.username == username)).fetchone()
        except SQLAlchemyError as exc:
            raise StoreError("Failed to scan for user") from exc
        return _row_to_user(row) if row is not None else None

    def get_passhash(self, conn: Connection, username: str) -> str | None:
        try:
            return conn.execute(select(_users.c.passhash).where(_users.c.username == username)).scalar()
        except SQLAlchemyError as exc:
            raise StoreError("Failed to scan for password") from exc

    # ------------------------------------------------------------------
    # Invite tokens
    # ------------------------------------------------------------------

    def insert_invite(self, conn: Connection, invite: InviteToken) -> None:
        try:
            conn.execute(
                _tokens.insert().values(
                    token=invite.token,
                    creator=invite.creator,
                    remaining=invite.remaining,
                    deadline=invite.deadline,
                )
            )
        except SQLAlchemyError as exc:
            raise StoreError("Failed to save invite token") from exc

    def get_invite(self, conn: Connection, token: str) -> InviteToken | None:
        try:
            row = conn.execute(_tokens.select().where(_tokens.c.token == token)).fetchone()
        except SQLAlchemyError as exc:
            raise StoreError("Failed to scan invite token") from exc
        return _row_to_invite(row) if row is not None else None

    def consume_invite(self, conn: Connection, token: str) -> None:
        """Spend one use of an invite token.

        Raises InvalidToken if the token is unknown, exhausted or expired.
        A token whose last use is spent is deleted. Both statements run in the
        caller's transaction, so a rollback restores the use.
        """
        now = self.now()
        try:
            result = conn.execute(
                _tokens.update()
                .where(
                    (_tokens.c.token == token)
                    & (_tokens.c.remaining > 0)
                    & ((_tokens.c.deadline == 0) | (_tokens.c.deadline >= now))
                )
                .values(remaining=_tokens.c.remaining - 1)
            )
            if result.rowcount == 0:
                raise InvalidToken()
            conn.execute(_tokens.delete().where((_tokens.c.token == token) & (_tokens.c.remaining <= 0)))
        except SQLAlchemyError as exc:
            raise StoreError("Failed to use invite token") from exc

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_session(row) -> Session:
    return Session(
        id=row.id,
        username=row.username,
        auth_token=row.authtoken,
        deadline=row.deadline,
        user_agent=row.useragent,
    )


def _row_to_user(row) -> User:
    return User(
        username=row.username,
        passhash=row.passhash,
        permission=Permission(row.permission),
        created_at=row.created_at,
    )


def _row_to_invite(row) -> InviteToken:
    return InviteToken(
        token=row.token,
        creator=row.creator,
        remaining=row.remaining,
        deadline=row.deadline,
    )
