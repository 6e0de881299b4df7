"""
auth/errors.py -- Typed failures raised by the session and account core.

Every error carries a suggested HTTP status and a stable machine-readable code.
The API layer turns any AuthError into the shared ErrorResponse envelope, so
routes never need to translate them one by one.

Anti-enumeration rules live in which error is raised, not in the API layer:
  - An unknown token and an expired token are both SessionExpired.
  - An unknown username and a wrong password are both InvalidPassword.
  - Deleting another user's session is SessionNotFound, never a 403.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations


class AuthError(Exception):
    """Base class for all session/account failures.

    Messages of 4xx subclasses are safe to show to the client. 5xx subclasses
    may wrap driver errors, so their message is logged but not returned.
    """

    status_code: int = 500
    code: str = "auth_error"
    message: str = "Authentication error."

    def __init__(self, message: str | None = None) -> None:
        super().__init__(message or self.message)


class SessionExpired(AuthError):
    status_code = 410
    code = "session_expired"
    message = "Session expired."


class SessionNotFound(AuthError):
    status_code = 401
    code = "session_not_found"
    message = "Session not found."


class InvalidPassword(AuthError):
    status_code = 401
    code = "invalid_password"
    message = "Invalid username or password."


class InvalidToken(AuthError):
    """The invite token is unknown, exhausted or expired."""

    status_code = 401
    code = "invalid_token"
    message = "Invalid invite token."


class UsernameTaken(AuthError):
    status_code = 409
    code = "username_taken"
    message = "Username is already taken."


class InvalidUsername(AuthError):
    status_code = 400
    code = "invalid_username"
    message = "Username must be 1-64 characters of letters, digits, '.', '_' or '-'."


class PasswordTooShort(AuthError):
    status_code = 400
    code = "password_too_short"
    message = "Password is too short."


class PermissionDenied(AuthError):
    status_code = 403
    code = "permission_denied"
    message = "Insufficient permission."


class RandomnessUnavailable(AuthError):
    """The OS entropy source failed. Fatal to the calling operation."""

    status_code = 500
    code = "randomness_unavailable"
    message = "Failed to generate randomness."


class StoreError(AuthError):
    """A database failure, wrapped with what the store was trying to do."""

    status_code = 500
    code = "store_error"
    message = "Database error."


class PasswordTooLong(AuthError):
    """bcrypt only uses the first 72 bytes; longer passwords are rejected."""

    status_code = 400
    code = "password_too_long"
    message = "Password must be at most 72 bytes."
