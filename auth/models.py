"""
auth/models.py -- Domain dataclasses for authentication entities.

Pattern: Data class (pure data container, zero logic beyond derived state).
Dataclasses own domain shape; the store and the engine do the work.

Secrets (password hash and single-use tokens) are declared with repr=False so
a User accidentally passed to a log call never leaks them.

Layer rule: no imports from api/.
"""

from __future__ import annotations

from dataclasses import dataclass, field


@dataclass
class User:
    """Represents an account in AccountFlow.

    hashed_password is None for invited placeholders until signup_by_invite()
    completes. The three token fields each hold at most one live token:
      reset_token / reset_expires -- set by trigger_password_reset()
      invite_token                -- set by invite_user()
      email_confirm_token         -- set by signup() when confirmation is on
    Consuming a token clears it in the same UPDATE that applies its effect.
    """

    email: str
    id: int | None = None
    name: str = ""
    hashed_password: str | None = field(default=None, repr=False)
    reset_token: str | None = field(default=None, repr=False)
    reset_expires: str | None = None  # ISO 8601 UTC
    invite_token: str | None = field(default=None, repr=False)
    invite_accepted: bool = True
    email_confirm_token: str | None = field(default=None, repr=False)
    email_confirmed: bool = False
    created_at: str | None = None
    last_login: str | None = None

    @property
    def is_pending_invite(self) -> bool:
        return not self.invite_accepted


@dataclass(frozen=True)
class ResetTicket:
    """Result of issuing a password reset token: the token and its expiry."""

    reset_token: str = field(repr=False)
    reset_expires: str


@dataclass(frozen=True)
class AuthPayload:
    """Signed session token plus the user it was issued for."""

    token: str = field(repr=False)
    user: User
