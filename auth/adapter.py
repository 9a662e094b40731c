"""
auth/adapter.py -- Persistence capability consumed by the auth flow engine.

The engine treats the adapter as the sole source of truth and never caches a
User across calls. Any object with these methods works: auth/store.py is the
SQLAlchemy implementation, tests may wrap it to record calls.

Atomicity contract for the consume_* methods: the token check and the write
happen in ONE conditional update keyed on the token value. When two requests
race with the same token exactly one sees the row updated; the other gets
None back and the engine reports the token as invalid.
"""

from __future__ import annotations

from typing import Protocol

from auth.models import ResetTicket, User


class UserAdapter(Protocol):
    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    def find_user_by_email(self, email: str) -> User | None: ...

    def find_user_by_id(self, user_id: int) -> User | None: ...

    def find_user_by_reset_token(self, reset_token: str) -> User | None: ...

    def find_user_by_invite_token(self, invite_token: str) -> User | None: ...

    def find_user_by_email_confirm_token(self, email_confirm_token: str) -> User | None: ...

    # ------------------------------------------------------------------
    # Creation -- the returned User includes any token that was stored
    # ------------------------------------------------------------------
    # Both raise UserExistsError when the email is taken, including when a
    # concurrent request inserted it after the engine's existence check.

    def create_user_by_signup(self, user: User) -> User: ...

    def create_user_by_invite(self, user: User) -> User: ...

    # ------------------------------------------------------------------
    # Plain updates
    # ------------------------------------------------------------------

    def update_user(self, user_id: int, **fields) -> User | None: ...

    def update_user_password(self, user_id: int, hashed_password: str) -> User | None: ...

    def update_user_reset_token(self, user_id: int, reset_token: str, reset_expires: str) -> ResetTicket: ...

    def update_user_invite_token(self, user_id: int, invite_token: str) -> User | None: ...

    def update_user_email_confirm_token(self, user_id: int, email_confirm_token: str) -> User | None: ...

    def update_last_login(self, user_id: int) -> None: ...

    # ------------------------------------------------------------------
    # Token consumption (compare-and-swap on the token value)
    # ------------------------------------------------------------------

    def consume_reset_token(self, user_id: int, reset_token: str, hashed_password: str) -> User | None: ...

    def consume_invite_token(self, user_id: int, invite_token: str, name: str, hashed_password: str) -> User | None: ...

    def consume_email_confirm_token(self, user_id: int, email_confirm_token: str) -> User | None: ...
