"""
auth/errors.py -- Typed failures raised by the auth flow engine.

Every failure is user-facing: the transport layer surfaces ``message``
verbatim and uses ``status_code`` / ``code`` to build its error envelope.

Anti-enumeration [C1]: NoUserFoundError is shared by login (unknown email,
wrong password) and password reset (unknown email, bad/consumed/expired
token). The message text must stay identical for every cause.
"""

from __future__ import annotations


class AuthError(Exception):
    """Base class for every expected failure the engine raises."""

    code: str = "auth_error"
    status_code: int = 400
    message: str = "Authentication failed."

    def __init__(self, message: str | None = None) -> None:
        if message is not None:
            self.message = message
        super().__init__(self.message)


class WeakPasswordError(AuthError):
    code = "weak_password"
    message = "Password is too short"


class UserExistsError(AuthError):
    code = "user_exists"
    status_code = 409
    message = "User already exists with this email"


class NoUserFoundError(AuthError):
    code = "no_user_found"
    status_code = 401
    message = "No user found"


class InvalidOldPasswordError(AuthError):
    code = "invalid_old_password"
    message = "Invalid old password"


class InvalidInviteTokenError(AuthError):
    code = "invalid_invite_token"
    message = "inviteToken is invalid"


class InvalidEmailConfirmTokenError(AuthError):
    code = "invalid_email_confirm_token"
    message = "emailConfirmToken is invalid"


class UnauthenticatedError(AuthError):
    code = "unauthorized"
    status_code = 401
    message = "Not authorized"


class PasswordTooLongError(WeakPasswordError):
    code = "password_too_long"
    message = "Password is too long"
