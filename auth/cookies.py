"""
auth/cookies.py -- Signed session-id cookie.

The cookie holds only the session id, signed with SECRET_KEY through
itsdangerous. A tampered or foreign value fails unsign_session_id() and the
request is treated as having no session; the server never looks up an id it
did not issue.

Cookie attributes:
  httponly=True: JS cannot read the cookie (XSS mitigation).
  samesite="lax": not sent on cross-site POSTs (CSRF mitigation).
  secure: only over HTTPS when SECURE_COOKIES=true.
  max_age: set only for remembered sessions. Without it the browser drops the
      cookie when it closes, which is what "not remembered" means.

Layer rule: no imports from api/. Import from core/ is allowed.
"""

from __future__ import annotations

from dataclasses import dataclass

from itsdangerous import BadSignature, Signer

from core.config import get_settings

_SALT = "gatehouse.session.v1"


@dataclass(frozen=True)
class CookieDirective:
    """What the response should do with the session cookie."""

    session_id: str
    max_age: int | None = None


def _signer() -> Signer:
    return Signer(get_settings().secret_key, salt=_SALT)


def sign_session_id(session_id: str) -> str:
    return _signer().sign(session_id).decode("utf-8")


def unsign_session_id(value: str | None) -> str | None:
    """Return the session id inside a cookie value, or None if it is not ours."""
    if not value:
        return None
    try:
        return _signer().unsign(value).decode("utf-8")
    except BadSignature:
        return None


def set_session_cookie(response, directive: CookieDirective) -> None:
    """Write the signed session id cookie on a Starlette/FastAPI response."""
    settings = get_settings()
    response.set_cookie(
        settings.session_cookie_name,
        value=sign_session_id(directive.session_id),
        max_age=directive.max_age,
        httponly=True,
        samesite="lax",
        secure=settings.secure_cookies,
        path="/",
    )
