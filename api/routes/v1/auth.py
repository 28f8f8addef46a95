"""
api/routes/v1/auth.py -- Authentication and permission REST endpoints.

Routes:
  POST   /api/v1/auth/login                               -- password login; 303 to home
  POST   /api/v1/auth/signup                              -- register + login; 303 to home
  POST   /api/v1/auth/logout                              -- end session; 303 to home
  GET    /api/v1/auth/me                                  -- current user info (requires auth)
  GET    /api/v1/auth/permissions/{token}                 -- does the current session hold token?
  PUT    /api/v1/auth/users/{user_id}/permissions/{token} -- grant (requires users:manage)
  DELETE /api/v1/auth/users/{user_id}/permissions/{token} -- revoke (requires users:manage)

The handlers only translate HTTP to flow calls. Session state changes are
written back and the session cookie is set by the session middleware after
the handler returns. UserFacingError raised by a flow is rendered by the
exception handler in api/main.py.

Security:
  Cache-Control: no-store on login and signup responses.
  Login failures are one generic error for wrong username and wrong password.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import RedirectResponse

from api.models import LoginRequest, MeResponse, PermissionChangeResponse, PermissionCheckResponse, SignupRequest
from auth import flows
from auth.dependencies import (
    get_auth_session,
    get_current_user,
    get_hasher,
    get_signup_policy,
    get_user_store,
    require_permission,
)
from auth.models import User
from auth.passwords import CredentialHasher
from auth.permissions import MANAGE_USERS
from auth.session import AuthSession
from auth.store import UserStore
from core.config import get_settings

# Auth policy:
# - POST   /auth/login, /auth/signup:   public -- these establish the session
# - POST   /auth/logout:                public -- idempotent, works on anonymous sessions
# - GET    /auth/permissions/{token}:   public -- anonymous sessions simply get granted=false
# - GET    /auth/me:                    requires auth (get_current_user)
# - PUT/DELETE /auth/users/.../permissions/{token}: requires users:manage
router = APIRouter()


def _redirect(target: str) -> RedirectResponse:
    resp = RedirectResponse(target, status_code=303)
    resp.headers["Cache-Control"] = "no-store"
    return resp


# ---------------------------------------------------------------------------
# Flows
# ---------------------------------------------------------------------------


@router.post("/auth/login", status_code=303)
def login(
    body: LoginRequest,
    auth: AuthSession = Depends(get_auth_session),
    users: UserStore = Depends(get_user_store),
    hasher: CredentialHasher = Depends(get_hasher),
) -> RedirectResponse:
    """Authenticate with username and password, then redirect home."""
    result = flows.login(
        auth,
        users,
        hasher,
        body.username,
        body.password,
        body.remember,
        home=get_settings().home_path,
    )
    return _redirect(result.redirect_to)


@router.post("/auth/signup", status_code=303)
def signup(
    body: SignupRequest,
    auth: AuthSession = Depends(get_auth_session),
    users: UserStore = Depends(get_user_store),
    hasher: CredentialHasher = Depends(get_hasher),
    policy: flows.SignupPolicy = Depends(get_signup_policy),
) -> RedirectResponse:
    """Create an account and log it in, or redirect away if signup is not permitted."""
    settings = get_settings()
    result = flows.signup(
        auth,
        users,
        hasher,
        policy,
        body.username,
        body.display_name,
        body.password,
        body.password_confirmation,
        body.remember,
        home=settings.home_path,
        rejected_redirect=settings.signup_rejected_redirect,
    )
    return _redirect(result.redirect_to)


@router.post("/auth/logout", status_code=303)
def logout(auth: AuthSession = Depends(get_auth_session)) -> RedirectResponse:
    """End the session and redirect home. Succeeds for anonymous sessions too."""
    result = flows.logout(auth, home=get_settings().home_path)
    return _redirect(result.redirect_to)


# ---------------------------------------------------------------------------
# Identity and permission queries
# ---------------------------------------------------------------------------


@router.get("/auth/me", response_model=MeResponse)
def me(current_user: User = Depends(get_current_user)) -> MeResponse:
    """Return identity information for the currently authenticated user."""
    return MeResponse(
        user_id=current_user.id,
        username=current_user.username,
        display_name=current_user.display_name,
        permissions=sorted(current_user.permissions),
    )


@router.get("/auth/permissions/{token}", response_model=PermissionCheckResponse)
def check_permission(token: str, auth: AuthSession = Depends(get_auth_session)) -> PermissionCheckResponse:
    """Report whether the current session holds token. Anonymous sessions get granted=false."""
    return PermissionCheckResponse(token=token, granted=auth.has_permission(token))


# ---------------------------------------------------------------------------
# Permission management (users:manage)
# ---------------------------------------------------------------------------


def _require_target(users: UserStore, user_id: int) -> None:
    if users.get_by_id(user_id) is None:
        raise HTTPException(
            status_code=404,
            detail={"code": "not_found", "message": "User not found."},
        )


@router.put("/auth/users/{user_id}/permissions/{token}", response_model=PermissionChangeResponse)
def grant_permission(
    request: Request,
    user_id: int,
    token: str,
    current_user: User = Depends(require_permission(MANAGE_USERS)),
) -> PermissionChangeResponse:
    """Grant token to a user. changed=false if they already held it."""
    users: UserStore = get_user_store(request)
    _require_target(users, user_id)
    changed = users.grant_permission(user_id, token)
    return PermissionChangeResponse(user_id=user_id, token=token, changed=changed)


@router.delete("/auth/users/{user_id}/permissions/{token}", response_model=PermissionChangeResponse)
def revoke_permission(
    request: Request,
    user_id: int,
    token: str,
    current_user: User = Depends(require_permission(MANAGE_USERS)),
) -> PermissionChangeResponse:
    """Revoke token from a user. changed=false if they did not hold it."""
    users: UserStore = get_user_store(request)
    _require_target(users, user_id)
    changed = users.revoke_permission(user_id, token)
    return PermissionChangeResponse(user_id=user_id, token=token, changed=changed)
