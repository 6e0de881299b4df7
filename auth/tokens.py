"""
auth/tokens.py -- Bearer token generation, password hashing and cookie helpers.

Security design decisions:
  Tokens: secrets.token_urlsafe(32) reads 32 bytes (256 bits) from the OS
       CSPRNG and encodes them as unpadded URL-safe base64, usable verbatim as
       a cookie value and a unique-key column. If the entropy source fails the
       error is raised as RandomnessUnavailable -- never a fallback to random.

  Passwords: bcrypt directly (no passlib wrapper). The _DUMMY_HASH constant
       enables timing equalization in signin so response time does not reveal
       whether a username exists.

  Cookie: the session token is written once at signin/signup as an httpOnly
       cookie. It is never returned by any other endpoint.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

import logging
import re
import secrets

import bcrypt

from auth.errors import InvalidUsername, PasswordTooLong, PasswordTooShort, RandomnessUnavailable

logger = logging.getLogger("boardkeep.auth")

COOKIE_NAME = "token"

# 32 bytes -> 256 bits of entropy.
TOKEN_BYTES = 32

_USERNAME_RE = re.compile(r"^[A-Za-z0-9._-]{1,64}$")

# bcrypt ignores everything past 72 bytes.
_BCRYPT_MAX_BYTES = 72


# ---------------------------------------------------------------------------
# Token generator
# ---------------------------------------------------------------------------


def generate_token() -> str:
    """Return a new 256-bit URL-safe token (43 characters, no padding)."""
    try:
        return secrets.token_urlsafe(TOKEN_BYTES)
    except (OSError, NotImplementedError) as exc:
        logger.critical("OS entropy source unavailable: %s", exc)
        raise RandomnessUnavailable() from exc


# ---------------------------------------------------------------------------
# Password hashing
# ---------------------------------------------------------------------------


def hash_password(plain: str) -> str:
    """Return a salted bcrypt hash of the given plaintext password."""
    return bcrypt.hashpw(plain.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")


def verify_password(plain: str, hashed: str) -> bool:
    """Return True if the plaintext password matches the bcrypt hash.

    bcrypt.checkpw compares in constant time. Malformed hashes count as a
    mismatch rather than an error.

    Input over 72 bytes can never match: hash_password only ever sees
    passwords that passed validate_password. It is still checked against the
    hash, cut to 72 bytes, so a long password costs one full bcrypt round
    like any other and the result is discarded.
    """
    data = plain.encode("utf-8")
    try:
        if len(data) > _BCRYPT_MAX_BYTES:
            bcrypt.checkpw(data[:_BCRYPT_MAX_BYTES], hashed.encode("utf-8"))
            return False
        return bcrypt.checkpw(data, hashed.encode("utf-8"))
    except ValueError:
        return False


# Timing equalization dummy hash. Computed once at module load so the first
# signin attempt is not measurably slower than subsequent ones.
_DUMMY_HASH: str = hash_password("boardkeep_timing_dummy")


def burn_password_check(plain: str) -> None:
    """Run a bcrypt verification against the dummy hash and discard the result.

    Called when the username does not exist, so unknown-user and
    wrong-password failures cost the same for passwords of any length.
    """
    verify_password(plain, _DUMMY_HASH)


# ---------------------------------------------------------------------------
# Credential validation
# ---------------------------------------------------------------------------


def validate_username(username: str) -> None:
    if not _USERNAME_RE.match(username):
        raise InvalidUsername()


def validate_password(password: str, min_length: int) -> None:
    if len(password) < min_length:
        raise PasswordTooShort(f"Password must be at least {min_length} characters.")
    if len(password.encode("utf-8")) > _BCRYPT_MAX_BYTES:
        raise PasswordTooLong()


# ---------------------------------------------------------------------------
# Cookie helpers
# ---------------------------------------------------------------------------


def set_auth_cookie(response, token: str, max_age: int, secure: bool = False) -> None:
    """Write the session token as an httpOnly cookie on the response.

    httponly=True: JS cannot read the cookie (XSS mitigation).
    samesite="lax": not sent on cross-site POST -- CSRF mitigation.
    secure: only sent over HTTPS when SECURE_COOKIES=true (set in production).
    max_age: the session's initial TTL. The server-side deadline slides on
        use, so the browser may drop the cookie before the session expires;
        it never keeps a cookie for a session the server already forgot.
    """
    response.set_cookie(
        COOKIE_NAME,
        value=token,
        httponly=True,
        samesite="lax",
        secure=secure,
        max_age=max_age,
    )


def clear_auth_cookie(response) -> None:
    response.delete_cookie(COOKIE_NAME)
