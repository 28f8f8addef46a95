"""
auth/flows.py -- Login, signup and logout.

Each flow takes every collaborator as an argument (the request's AuthSession,
the UserStore, the CredentialHasher, the signup policy) and returns a
FlowResult naming where the client should be sent next. Nothing is pulled
from global or request context here; the route layer does the wiring.

Atomicity: every check that can fail runs before the session is touched, and
the session only becomes authenticated after the user row exists. A flow
that raises leaves the AuthSession exactly as it found it.

Security:
  login() returns the same InvalidCredentialsError for an unknown username,
  a wrong password and a corrupt stored hash. For unknown usernames it still
  runs a full Argon2 verification against a dummy hash so response time does
  not reveal whether the account exists.

  The signup gate is an injected SignupPolicy. The deployment default is an
  allow-list taken from Settings; a refused signup is redirected, not
  reported as an error, and never reaches the hasher or the users table.

Layer rule: no imports from api/.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass
from typing import Protocol

from auth.errors import CredentialError, InvalidCredentialsError, PasswordMismatchError
from auth.models import User
from auth.passwords import CredentialHasher
from auth.session import AuthSession
from auth.store import UserStore
from core.config import Settings

logger = logging.getLogger("gatehouse.auth")


@dataclass(frozen=True)
class FlowResult:
    redirect_to: str
    user: User | None = None


# ---------------------------------------------------------------------------
# Signup policies
# ---------------------------------------------------------------------------


class SignupPolicy(Protocol):
    def __call__(self, username: str) -> bool: ...


class OpenSignupPolicy:
    """Anyone may register."""

    def __call__(self, username: str) -> bool:
        return True


class ClosedSignupPolicy:
    """Nobody may register."""

    def __call__(self, username: str) -> bool:
        return False


class AllowListSignupPolicy:
    """Only the listed usernames may register (exact, case-sensitive match)."""

    def __init__(self, usernames: Iterable[str]) -> None:
        self.usernames = frozenset(usernames)

    def __call__(self, username: str) -> bool:
        return username in self.usernames


def signup_policy_from_settings(settings: Settings) -> SignupPolicy:
    if not settings.self_registration_enabled:
        return ClosedSignupPolicy()
    if settings.signup_allowed_usernames:
        return AllowListSignupPolicy(settings.signup_allowed_usernames)
    return OpenSignupPolicy()


# ---------------------------------------------------------------------------
# Flows
# ---------------------------------------------------------------------------


def _establish(auth: AuthSession, user: User, remember: bool) -> None:
    auth.login_user(user.id)
    auth.set_store(True)
    auth.remember_user(remember)


def login(
    auth: AuthSession,
    users: UserStore,
    hasher: CredentialHasher,
    username: str,
    password: str,
    remember: bool = False,
    *,
    home: str = "/",
) -> FlowResult:
    """Check credentials and authenticate the session.

    Raises InvalidCredentialsError without touching the session on any
    credential failure.
    """
    user = users.get_by_username(username)
    if user is None:
        try:
            hasher.verify(hasher.dummy_hash, password)
        except CredentialError:
            pass
        logger.info("Login failed for username=%r", username)
        raise InvalidCredentialsError()

    try:
        hasher.verify(user.credential_hash, password)
    except CredentialError as exc:
        logger.info("Login failed for username=%r (%s)", username, type(exc).__name__)
        raise InvalidCredentialsError() from None

    if hasher.needs_rehash(user.credential_hash):
        users.update_credential_hash(user.id, hasher.hash(password))
        logger.info("Upgraded password hash parameters for user id=%s", user.id)

    _establish(auth, user, remember)
    logger.info("Login succeeded for user id=%s", user.id)
    return FlowResult(redirect_to=home, user=user)


def signup(
    auth: AuthSession,
    users: UserStore,
    hasher: CredentialHasher,
    policy: SignupPolicy,
    username: str,
    display_name: str,
    password: str,
    password_confirmation: str,
    remember: bool = False,
    *,
    home: str = "/",
    rejected_redirect: str = "/nedry",
) -> FlowResult:
    """Register a new account and log it in.

    Raises PasswordMismatchError before anything else if the two passwords
    differ, and DuplicateUsernameError if the username is taken. A username
    refused by policy yields a redirect to rejected_redirect instead.
    """
    if password != password_confirmation:
        raise PasswordMismatchError()

    if not policy(username):
        logger.info("Signup refused by policy for username=%r", username)
        return FlowResult(redirect_to=rejected_redirect)

    credential_hash = hasher.hash(password)
    user_id = users.insert(username, display_name, credential_hash)
    user = users.get_by_id(user_id)
    if user is None:
        raise RuntimeError(f"User id={user_id} vanished right after insert")

    _establish(auth, user, remember)
    logger.info("Signup succeeded for user id=%s", user.id)
    return FlowResult(redirect_to=home, user=user)


def logout(auth: AuthSession, *, home: str = "/") -> FlowResult:
    """End the authenticated session. Always succeeds."""
    user_id = auth.user_id
    auth.logout_user()
    auth.set_store(False)
    if user_id is not None:
        logger.info("Logout for user id=%s", user_id)
    return FlowResult(redirect_to=home)
