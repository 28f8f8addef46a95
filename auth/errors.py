"""
auth/errors.py -- Exception taxonomy for the auth core.

Three families, handled at different layers:

  UserFacingError -- expected outcomes of a flow (bad credentials, duplicate
      username, ...). Each subclass carries a stable code, a fixed message and
      an HTTP status. The API layer turns them into the standard error
      envelope. Messages never say which check failed when that would help
      credential guessing.

  Credential errors (MismatchError, MalformedHashError, HashingError) -- raised
      by the credential hasher. Flows collapse the first two into
      InvalidCredentialsError; HashingError is infrastructure and propagates.

  MissingContextError -- programming-contract violation (the session
      middleware or a store was not wired). Never caught.

Layer rule: stdlib only.
"""

from __future__ import annotations


class AuthError(Exception):
    """Base class for every error raised by the auth package."""


# ---------------------------------------------------------------------------
# User-facing
# ---------------------------------------------------------------------------


class UserFacingError(AuthError):
    code: str = "auth_error"
    message: str = "Authentication failed."
    status_code: int = 400

    def __init__(self, message: str | None = None) -> None:
        if message is not None:
            self.message = message
        super().__init__(self.message)


class InvalidCredentialsError(UserFacingError):
    code = "bad_credentials"
    message = "Invalid username or password."
    status_code = 401


class PasswordMismatchError(UserFacingError):
    code = "password_mismatch"
    message = "Passwords did not match."
    status_code = 400


class DuplicateUsernameError(UserFacingError):
    code = "conflict"
    message = "A user with that username already exists."
    status_code = 409


class AuthenticationRequiredError(UserFacingError):
    code = "unauthorized"
    message = "Authentication required."
    status_code = 401


class PermissionDeniedError(UserFacingError):
    code = "forbidden"
    message = "You do not have permission to perform this action."
    status_code = 403


# ---------------------------------------------------------------------------
# Credential hasher
# ---------------------------------------------------------------------------


class CredentialError(AuthError):
    """A stored hash did not accept the candidate password."""


class MismatchError(CredentialError):
    pass


class MalformedHashError(CredentialError):
    """The stored hash string could not be parsed (data corruption)."""


class HashingError(AuthError):
    """Producing a hash failed. The result must never be stored."""


# ---------------------------------------------------------------------------
# Wiring
# ---------------------------------------------------------------------------


class MissingContextError(RuntimeError):
    """A request reached auth code without the state the middleware provides."""
