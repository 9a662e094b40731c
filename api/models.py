"""
API request and response models for AccountFlow REST endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from the dataclasses in auth/models.py, which
own the internal domain representation. Route handlers map between the two.

Secrets never appear in a response model: no password hash, no reset token,
no invite or confirmation token. Tokens leave the system only through the
mailer.
"""

from typing import Annotated, Optional

from pydantic import BaseModel, ConfigDict, Field, StringConstraints

from auth.models import User

# ---------------------------------------------------------------------------
# Shared field constraints
# ---------------------------------------------------------------------------

# Passwords are taken exactly as typed, never stripped. The character cap is a
# coarse request bound; PasswordPolicy owns the length and 72-byte rules.
_Password = Annotated[str, Field(max_length=128)]
_Email = Annotated[str, StringConstraints(strip_whitespace=True, min_length=3, max_length=255)]
_Name = Annotated[str, StringConstraints(strip_whitespace=True, min_length=1, max_length=255)]
_Token = Annotated[str, Field(min_length=1, max_length=64)]


# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------


class SignupRequest(BaseModel):
    """Request body for POST /api/v1/auth/signup."""

    name: _Name
    email: _Email
    password: _Password


class LoginRequest(BaseModel):
    email: _Email
    password: _Password


class UserUpdate(BaseModel):
    """Request body for PATCH /api/v1/auth/me.

    extra="forbid" rejects email, password or any other field with a 422
    before the engine is reached.
    """

    model_config = ConfigDict(extra="forbid")

    name: Optional[_Name] = None


class ChangePasswordRequest(BaseModel):
    old_password: _Password
    new_password: _Password


class TriggerPasswordResetRequest(BaseModel):
    email: _Email


class PasswordResetRequest(BaseModel):
    email: _Email
    password: _Password
    reset_token: _Token


class InviteRequest(BaseModel):
    email: _Email


class SignupByInviteRequest(BaseModel):
    """Request body for POST /api/v1/auth/signup-by-invite."""

    name: _Name
    email: _Email
    password: _Password
    invite_token: _Token


class ConfirmEmailRequest(BaseModel):
    email: _Email
    email_confirm_token: _Token


class ResendConfirmationRequest(BaseModel):
    email: _Email


# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------


class UserResponse(BaseModel):
    """Public view of an account."""

    model_config = ConfigDict(frozen=True)

    id: int
    name: str
    email: str
    email_confirmed: bool
    invite_accepted: bool
    created_at: str
    last_login: Optional[str] = None

    @classmethod
    def from_user(cls, user: User) -> "UserResponse":
        """Build a UserResponse from an auth User, dropping every secret field."""
        return cls(
            id=user.id,
            name=user.name,
            email=user.email,
            email_confirmed=user.email_confirmed,
            invite_accepted=user.invite_accepted,
            created_at=user.created_at or "",
            last_login=user.last_login,
        )


class AuthResponse(BaseModel):
    """Response for signup and login: session token plus the user."""

    model_config = ConfigDict(frozen=True)

    token: str
    token_type: str = "bearer"
    user: UserResponse


class UserEnvelope(BaseModel):
    """Response for signup-by-invite and confirm-email."""

    model_config = ConfigDict(frozen=True)

    user: UserResponse


class IdResponse(BaseModel):
    """Response for change-password, password-reset and invite."""

    model_config = ConfigDict(frozen=True)

    id: int


class OkResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    ok: bool = True


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
