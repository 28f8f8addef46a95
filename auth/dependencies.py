"""
auth/dependencies.py -- FastAPI Depends() helpers for authentication.

The session middleware in api/main.py opens one AuthSession per request and
parks it on request.state.auth. Everything here reads from that slot or from
app.state; a missing slot means the app was wired wrong and raises
MissingContextError instead of quietly treating the request as anonymous.

try_get_current_user() is the soft variant (returns None when anonymous).
get_current_user() raises HTTP 401 when anonymous.
require_permission(token) builds a dependency that raises 401/403.

Layer rule: auth/dependencies.py may import from fastapi because it is part
of the FastAPI dependency injection system. No imports from api/.
"""

from __future__ import annotations

from collections.abc import Callable

from fastapi import HTTPException, Request

from auth.errors import MissingContextError
from auth.flows import SignupPolicy
from auth.models import User
from auth.passwords import CredentialHasher
from auth.session import AuthSession
from auth.store import UserStore


def get_auth_session(request: Request) -> AuthSession:
    auth = getattr(request.state, "auth", None)
    if auth is None:
        raise MissingContextError("Auth session missing. Is the session middleware installed?")
    return auth


def _app_state(request: Request, name: str):
    value = getattr(request.app.state, name, None)
    if value is None:
        raise MissingContextError(f"app.state.{name} missing. Did the lifespan run?")
    return value


def get_user_store(request: Request) -> UserStore:
    return _app_state(request, "user_store")


def get_hasher(request: Request) -> CredentialHasher:
    return _app_state(request, "hasher")


def get_signup_policy(request: Request) -> SignupPolicy:
    return _app_state(request, "signup_policy")


def try_get_current_user(request: Request) -> User | None:
    """Return the authenticated User, or None. Never raises for anonymous requests."""
    return get_auth_session(request).current_user()


def get_current_user(request: Request) -> User:
    """Require authentication. Raises HTTP 401 if the request is not authenticated.

    Use as a FastAPI dependency:
        @router.get("/protected")
        def route(user: User = Depends(get_current_user)): ...
    """
    user = try_get_current_user(request)
    if user is None:
        raise HTTPException(
            status_code=401,
            detail={"code": "unauthorized", "message": "Authentication required."},
        )
    return user


def require_permission(token: str) -> Callable[[Request], User]:
    """Build a dependency that admits only users holding token.

    Use as a FastAPI dependency:
        @router.delete("/todos/{id}")
        def route(user: User = Depends(require_permission("todos:delete"))): ...
    """

    def _dep(request: Request) -> User:
        auth = get_auth_session(request)
        user = get_current_user(request)
        if not auth.has_permission(token):
            raise HTTPException(
                status_code=403,
                detail={"code": "forbidden", "message": "You do not have permission to perform this action."},
            )
        return user

    return _dep
