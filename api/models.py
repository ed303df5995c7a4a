"""
API request and response models for the CRM auth REST endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from the dataclasses in auth/models.py and
licensing/models.py, which own the internal domain representation. Route
handlers map between the two -- and that mapping is where password hashes
and token hashes are left behind.
"""

from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field

from auth.models import Session, User
from licensing.models import License

# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------


class SignUpRequest(BaseModel):
    """Request body for POST /api/auth/signup.

    Length policy for password is checked by the route so the message can
    quote the configured minimum.
    """

    email: str = Field(min_length=1, max_length=255)
    password: str = Field(min_length=1, max_length=255)
    metadata: Optional[dict[str, Any]] = None


class SignInRequest(BaseModel):
    """Request body for POST /api/auth/signin."""

    email: str = Field(min_length=1, max_length=255)
    password: str = Field(min_length=1, max_length=255)


class UserUpdate(BaseModel):
    """Request body for PATCH /api/auth/user. All fields optional.

    extra="forbid" turns unknown keys (e.g. is_active, app_metadata) into a
    400 instead of silently ignoring them.
    """

    model_config = ConfigDict(extra="forbid")

    email: Optional[str] = Field(default=None, max_length=255)
    password: Optional[str] = Field(default=None, max_length=255)
    first_name: Optional[str] = Field(default=None, max_length=100)
    last_name: Optional[str] = Field(default=None, max_length=100)
    user_metadata: Optional[dict[str, Any]] = None


class PasswordResetRequest(BaseModel):
    """Request body for POST /api/auth/reset-password."""

    email: str = Field(min_length=1, max_length=255)


class PasswordResetConfirm(BaseModel):
    """Request body for POST /api/auth/reset-password/confirm."""

    token: str = Field(min_length=1, max_length=255)
    password: str = Field(min_length=1, max_length=255)


class LicenseCreate(BaseModel):
    """Request body for POST /api/license.

    expires_at omitted or null means "now + LICENSE_TRIAL_DAYS".
    """

    user_id: int
    plan: str = Field(default="trial", min_length=1, max_length=50)
    status: str = Field(default="trial", min_length=1, max_length=30)
    expires_at: Optional[datetime] = None


# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------


class UserResponse(BaseModel):
    """Public view of a user. Never carries the password hash."""

    id: int
    email: str
    email_verified: bool
    is_active: bool
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    user_metadata: dict[str, Any] = Field(default_factory=dict)
    app_metadata: dict[str, Any] = Field(default_factory=dict)
    created_at: str = ""
    last_sign_in_at: Optional[str] = None

    @classmethod
    def from_user(cls, user: User) -> "UserResponse":
        return cls(
            id=user.id,
            email=user.email,
            email_verified=user.email_verified,
            is_active=user.is_active,
            first_name=user.first_name,
            last_name=user.last_name,
            user_metadata=user.user_metadata,
            app_metadata=user.app_metadata,
            created_at=user.created_at or "",
            last_sign_in_at=user.last_sign_in_at,
        )


class SessionResponse(BaseModel):
    """A session as returned to its owner, including the bearer token."""

    id: int
    user_id: int
    token: str
    token_type: str = "bearer"
    created_at: str
    expires_at: str
    user_agent: Optional[str] = None
    ip_address: Optional[str] = None
    last_activity_at: Optional[str] = None

    @classmethod
    def from_session(cls, session: Session) -> "SessionResponse":
        return cls(
            id=session.id,
            user_id=session.user_id,
            token=session.token or "",
            created_at=session.created_at or "",
            expires_at=session.expires_at,
            user_agent=session.user_agent,
            ip_address=session.ip_address,
            last_activity_at=session.last_activity_at,
        )


class SignUpResponse(BaseModel):
    user: UserResponse
    message: str


class UserSessionResponse(BaseModel):
    """Response for POST /api/auth/signin and GET /api/auth/session."""

    user: UserResponse
    session: SessionResponse


class UserEnvelope(BaseModel):
    """Response for GET and PATCH /api/auth/user."""

    user: UserResponse


class MessageResponse(BaseModel):
    message: str


class PasswordResetRequestResponse(BaseModel):
    """Generic reset acknowledgement.

    token is populated only when ENVIRONMENT=development; the route excludes
    it from the body otherwise.
    """

    message: str
    token: Optional[str] = None


class LicenseResponse(BaseModel):
    id: int
    user_id: int
    plan: str
    status: str
    expires_at: Optional[str] = None
    created_at: str = ""

    @classmethod
    def from_license(cls, lic: License) -> "LicenseResponse":
        return cls(
            id=lic.id,
            user_id=lic.user_id,
            plan=lic.plan,
            status=lic.status,
            expires_at=lic.expires_at,
            created_at=lic.created_at,
        )


class LicenseEnvelope(BaseModel):
    message: str
    license: LicenseResponse


class AdminUserRow(BaseModel):
    """One row of the admin user listing: a user joined with their license."""

    user_id: int
    email: str
    is_active: bool
    created_at: str
    last_sign_in_at: Optional[str] = None
    license_id: Optional[int] = None
    plan: Optional[str] = None
    status: Optional[str] = None
    expires_at: Optional[str] = None


class AdminUsersResponse(BaseModel):
    users: list[AdminUserRow]


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
    """Response for GET /health."""

    model_config = ConfigDict(frozen=True)

    status: str = "healthy"
    version: str
    components: dict[str, str] = Field(default_factory=dict)
