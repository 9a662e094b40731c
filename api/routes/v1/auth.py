"""
api/routes/v1/auth.py -- Account authentication and lifecycle endpoints.

Routes:
  POST  /api/v1/auth/signup                  -- create account; returns token + user
  POST  /api/v1/auth/login                   -- credentials -> token + user
  GET   /api/v1/auth/me                      -- current user (requires auth)
  PATCH /api/v1/auth/me                      -- update own profile (requires auth)
  POST  /api/v1/auth/change-password         -- requires auth
  POST  /api/v1/auth/trigger-password-reset  -- public; always {"ok": true}
  POST  /api/v1/auth/password-reset          -- public; consumes the reset token
  POST  /api/v1/auth/invite                  -- requires auth
  POST  /api/v1/auth/signup-by-invite        -- public; consumes the invite token
  POST  /api/v1/auth/confirm-email           -- public; consumes the confirm token
  POST  /api/v1/auth/resend-confirmation     -- public; always {"ok": true}

Every route maps 1:1 onto an AuthEngine operation. AuthError subclasses
raised by the engine propagate to the handler in api/main.py, which returns
their message verbatim.

Handlers are plain ``def`` functions. Starlette runs them in its
thread pool, so bcrypt work and store I/O never block the event loop.

Security:
  [C1] login and password-reset return the identical "No user found" error
       for every failure cause -- the engine guarantees it, do not add
       route-level branches that tell causes apart.
  [M5] Cache-Control: no-store on responses that carry a session token.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request, Response

from api.models import (
    AuthResponse,
    ChangePasswordRequest,
    ConfirmEmailRequest,
    IdResponse,
    InviteRequest,
    LoginRequest,
    OkResponse,
    PasswordResetRequest,
    ResendConfirmationRequest,
    SignupByInviteRequest,
    SignupRequest,
    TriggerPasswordResetRequest,
    UserEnvelope,
    UserResponse,
    UserUpdate,
)
from auth.dependencies import get_current_user_id
from auth.engine import AuthEngine
from auth.models import AuthPayload

# Auth policy:
# - signup, login, trigger-password-reset, password-reset, signup-by-invite,
#   confirm-email, resend-confirmation: public
# - GET/PATCH /auth/me, change-password, invite: require a Bearer session token
router = APIRouter()


def _engine(request: Request) -> AuthEngine:
    return request.app.state.auth_engine


def _auth_response(payload: AuthPayload, response: Response) -> AuthResponse:
    response.headers["Cache-Control"] = "no-store"  # [M5]
    return AuthResponse(token=payload.token, user=UserResponse.from_user(payload.user))


# ---------------------------------------------------------------------------
# Public endpoints
# ---------------------------------------------------------------------------


@router.post("/auth/signup", response_model=AuthResponse, status_code=201)
def signup(request: Request, response: Response, body: SignupRequest) -> AuthResponse:
    payload = _engine(request).signup(body.name, body.email, body.password)
    return _auth_response(payload, response)


@router.post("/auth/login", response_model=AuthResponse)
def login(request: Request, response: Response, body: LoginRequest) -> AuthResponse:
    """Authenticate with email and password.

    Unknown email and wrong password produce the same 401 "No user found".
    """
    payload = _engine(request).login(body.email, body.password)
    return _auth_response(payload, response)


@router.post("/auth/trigger-password-reset", response_model=OkResponse)
def trigger_password_reset(request: Request, body: TriggerPasswordResetRequest) -> OkResponse:
    """Mail a reset link if the email is registered. The answer never says which."""
    return OkResponse(ok=_engine(request).trigger_password_reset(body.email))


@router.post("/auth/password-reset", response_model=IdResponse)
def password_reset(request: Request, body: PasswordResetRequest) -> IdResponse:
    user = _engine(request).password_reset(body.email, body.password, body.reset_token)
    return IdResponse(id=user.id)


@router.post("/auth/signup-by-invite", response_model=UserEnvelope)
def signup_by_invite(request: Request, body: SignupByInviteRequest) -> UserEnvelope:
    """Complete an invited account. Call /auth/login afterwards for a session token."""
    user = _engine(request).signup_by_invite(body.name, body.email, body.password, body.invite_token)
    return UserEnvelope(user=UserResponse.from_user(user))


@router.post("/auth/confirm-email", response_model=UserEnvelope)
def confirm_email(request: Request, body: ConfirmEmailRequest) -> UserEnvelope:
    user = _engine(request).confirm_email(body.email, body.email_confirm_token)
    return UserEnvelope(user=UserResponse.from_user(user))


@router.post("/auth/resend-confirmation", response_model=OkResponse)
def resend_confirmation(request: Request, body: ResendConfirmationRequest) -> OkResponse:
    return OkResponse(ok=_engine(request).resend_confirmation(body.email))


# ---------------------------------------------------------------------------
# Authenticated endpoints
# ---------------------------------------------------------------------------


@router.get("/auth/me", response_model=UserResponse)
def me(request: Request, user_id: int = Depends(get_current_user_id)) -> UserResponse:
    """Return the account the session token belongs to."""
    return UserResponse.from_user(_engine(request).current_user(user_id))


@router.patch("/auth/me", response_model=UserResponse)
def update_current_user(
    request: Request,
    body: UserUpdate,
    user_id: int = Depends(get_current_user_id),
) -> UserResponse:
    """Update the caller's own profile. Only the name can change here."""
    fields = body.model_dump(exclude_none=True)
    return UserResponse.from_user(_engine(request).update_current_user(user_id, **fields))


@router.post("/auth/change-password", response_model=IdResponse)
def change_password(
    request: Request,
    body: ChangePasswordRequest,
    user_id: int = Depends(get_current_user_id),
) -> IdResponse:
    user = _engine(request).change_password(user_id, body.old_password, body.new_password)
    return IdResponse(id=user.id)


@router.post("/auth/invite", response_model=IdResponse, status_code=201)
def invite_user(
    request: Request,
    body: InviteRequest,
    user_id: int = Depends(get_current_user_id),
) -> IdResponse:
    """Invite someone by email. The invite token is delivered by mail only."""
    invited = _engine(request).invite_user(user_id, body.email)
    return IdResponse(id=invited.id)
