"""
API request and response models for Gatehouse REST endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from the dataclasses in auth/models.py, which
own the internal domain representation. Route handlers map between the two.
"""

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------


class LoginRequest(BaseModel):
    """Request body for POST /api/v1/auth/login.

    No whitespace stripping: usernames are matched exactly and whitespace is
    part of a password.
    """

    username: str = Field(min_length=1, max_length=255)
    password: str = Field(min_length=1, max_length=1024)
    remember: bool = False


class SignupRequest(BaseModel):
    """Request body for POST /api/v1/auth/signup.

    password_confirmation is compared by the signup flow, not here, so a
    mismatch gets the flow's error code rather than a 422.
    """

    username: str = Field(min_length=1, max_length=255)
    display_name: str = Field(min_length=1, max_length=255)
    password: str = Field(min_length=1, max_length=1024)
    password_confirmation: str = Field(max_length=1024)
    remember: bool = False


# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------


class MeResponse(BaseModel):
    """Response for GET /api/v1/auth/me."""

    model_config = ConfigDict(frozen=True)

    user_id: int
    username: str
    display_name: str
    permissions: list[str]


class PermissionCheckResponse(BaseModel):
    """Response for GET /api/v1/auth/permissions/{token}."""

    model_config = ConfigDict(frozen=True)

    token: str
    granted: bool


class PermissionChangeResponse(BaseModel):
    """Response for PUT/DELETE /api/v1/auth/users/{user_id}/permissions/{token}."""

    model_config = ConfigDict(frozen=True)

    user_id: int
    token: str
    changed: bool


class ErrorDetail(BaseModel):
    """Machine-readable error payload."""

    model_config = ConfigDict(frozen=True)

    code: str
    message: str
    detail: Optional[str] = None


class ErrorResponse(BaseModel):
    """Top-level error envelope returned on 4xx/5xx responses."""

    model_config = ConfigDict(frozen=True)

    error: ErrorDetail


class HealthResponse(BaseModel):
    """Response for GET /api/v1/health."""

    model_config = ConfigDict(frozen=True)

    status: str = "healthy"
    version: str
    components: dict[str, str] = Field(default_factory=dict)
