"""
auth/session.py -- Request-scoped authentication state.

AuthSession wraps one SessionRecord for the duration of a request and is the
only thing flows and route handlers talk to. It is a two-state machine:

  Anonymous         record.user_id is None
  Authenticated(id) record.user_id is set and the user still exists

Mutations only touch the in-memory record and mark it dirty. Nothing reaches
the SessionStore until commit(), which the session middleware calls after
the route handler returns. A flow that raises before mutating therefore
leaves no trace.

The loaded User is cached for the rest of the request. An anonymous session
caches None without a lookup. A session whose user id no longer resolves is
demoted to anonymous (fail-closed) rather than raising.

Layer rule: no imports from api/.
"""

from __future__ import annotations

import logging
import time
from typing import Any

from auth.cookies import CookieDirective
from auth.errors import AuthenticationRequiredError, PermissionDeniedError
from auth.models import SessionRecord, User
from auth.permissions import DEFAULT_EVALUATOR, PermissionEvaluator
from auth.session_store import SessionStore, new_session_id
from auth.store import UserStore

logger = logging.getLogger("gatehouse.auth")


class AuthSession:
    """Authentication state bound to one session record.

    Usage (normally done by the session middleware):
        auth = AuthSession.open(session_store, user_store, session_id)
        auth.login_user(user.id)
        directive = auth.commit()
    """

    def __init__(
        self,
        record: SessionRecord,
        session_store: SessionStore,
        user_store: UserStore,
        evaluator: PermissionEvaluator = DEFAULT_EVALUATOR,
        *,
        is_new: bool = False,
    ) -> None:
        self.record = record
        self.session_store = session_store
        self.user_store = user_store
        self.evaluator = evaluator
        self.is_new = is_new
        self._dirty = False
        self._user: User | None = None
        self._user_loaded = False
        self._retired_ids: list[str] = []
        # Whether a durable row exists for the current session id.
        self._row_exists = record.store and not is_new

    @classmethod
    def open(
        cls,
        session_store: SessionStore,
        user_store: UserStore,
        session_id: str | None,
        evaluator: PermissionEvaluator = DEFAULT_EVALUATOR,
    ) -> "AuthSession":
        """Resume session_id, or start a fresh anonymous session if it is unknown or expired."""
        record = session_store.load(session_id) if session_id else None
        if record is None:
            return cls(session_store.create(), session_store, user_store, evaluator, is_new=True)
        return cls(record, session_store, user_store, evaluator)

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    @property
    def session_id(self) -> str:
        return self.record.session_id

    @property
    def user_id(self) -> int | None:
        return self.record.user_id

    @property
    def is_authenticated(self) -> bool:
        return self.current_user() is not None

    @property
    def is_anonymous(self) -> bool:
        return not self.is_authenticated

    @property
    def remembered(self) -> bool:
        return self.record.remember

    @property
    def stored(self) -> bool:
        return self.record.store

    @property
    def dirty(self) -> bool:
        return self._dirty

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def login_user(self, user_id: int) -> None:
        """Authenticate this session as user_id.

        Credentials must already have been checked by the caller. Logging in
        as the user already attached is a no-op. Any other change rotates the
        session id so an id issued before login is useless afterwards.
        """
        if self.record.user_id == user_id:
            return
        self._rotate()
        self._set("user_id", user_id)
        self._user = None
        self._user_loaded = False

    def logout_user(self) -> None:
        """Drop the authenticated user. Non-remembered sessions also stop being stored."""
        self._set("user_id", None)
        self._user = None
        self._user_loaded = True
        if not self.record.remember:
            self._set("store", False)

    def remember_user(self, remember: bool) -> None:
        self._set("remember", bool(remember))

    def set_store(self, store: bool) -> None:
        self._set("store", bool(store))

    # ------------------------------------------------------------------
    # Identity and permissions
    # ------------------------------------------------------------------

    def current_user(self) -> User | None:
        """Return the authenticated User, loading it at most once per request."""
        if not self._user_loaded:
            self._user_loaded = True
            user_id = self.record.user_id
            if user_id is not None:
                self._user = self.user_store.get_by_id(user_id)
                if self._user is None:
                    logger.warning("Session references missing user id=%s; treating as anonymous", user_id)
                    self._set("user_id", None)
        return self._user

    def has_permission(self, token: str) -> bool:
        """True if the current user holds token. Always False when anonymous."""
        user = self.current_user()
        if user is None:
            return False
        return self.evaluator.has(user, token)

    def require_permission(self, token: str) -> User:
        """Return the current user if they hold token, else raise.

        Raises AuthenticationRequiredError for anonymous sessions and
        PermissionDeniedError for authenticated users lacking the token.
        """
        user = self.current_user()
        if user is None:
            raise AuthenticationRequiredError()
        if not self.evaluator.has(user, token):
            raise PermissionDeniedError()
        return user

    # ------------------------------------------------------------------
    # Free-form attributes
    # ------------------------------------------------------------------

    def get(self, key: str, default: Any = None) -> Any:
        return self.record.data.get(key, default)

    def set(self, key: str, value: Any) -> None:
        if key not in self.record.data or self.record.data[key] != value:
            self.record.data[key] = value
            self._dirty = True

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def commit(self) -> CookieDirective | None:
        """Write the session back if anything changed or it is close to expiry.

        Returns the cookie the response must carry, or None when the client's
        current cookie is still right.
        """
        lifetime = self.session_store.remember_ttl if self.record.remember else self.session_store.ttl
        renew = not self.is_new and self.record.expires_at - time.time() < lifetime / 2
        if not (self._dirty or renew):
            return None
        for old_id in self._retired_ids:
            self.session_store.destroy(old_id)
        self._retired_ids.clear()
        self.session_store.save(self.record, was_stored=self._row_exists)
        self._row_exists = self.record.store
        self._dirty = False
        self.is_new = False
        max_age = self.session_store.remember_ttl if self.record.remember else None
        return CookieDirective(session_id=self.record.session_id, max_age=max_age)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _set(self, attr: str, value: Any) -> None:
        if getattr(self.record, attr) != value:
            setattr(self.record, attr, value)
            self._dirty = True

    def _rotate(self) -> None:
        if not self.is_new:
            self._retired_ids.append(self.record.session_id)
        self.record.session_id = new_session_id()
        self._row_exists = False
        self._dirty = True
