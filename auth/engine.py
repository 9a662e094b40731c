"""
auth/engine.py -- Auth flow engine: signup, login, password change/reset,
invites and email confirmation.

Every operation is a function of its arguments plus adapter round-trips. The
engine keeps no per-request state and re-fetches the user before acting, so
operations for different users run concurrently without coordination.

Ordering rules that hold for every flow:
  - every failure is raised before the flow's first write;
  - a single-use token is cleared by the same adapter call that applies its
    effect (consume_*), never by a separate write;
  - tokens are looked up by their own kind only, so a reset token never
    authorizes an invite or a confirmation.

Anti-enumeration [C1]:
  login and password_reset answer "No user found" for an unknown email, a
  wrong password, a wrong/consumed token and an expired token alike. Login
  also burns one bcrypt comparison when no hash is available to compare.

Layer rule: no imports from api/.
"""

from __future__ import annotations

import logging
from urllib.parse import urlencode

from auth.adapter import UserAdapter
from auth.errors import (
    InvalidEmailConfirmTokenError,
    InvalidInviteTokenError,
    InvalidOldPasswordError,
    NoUserFoundError,
    UnauthenticatedError,
    UserExistsError,
)
from auth.mailer import LogMailer, Mailer
from auth.models import AuthPayload, User
from auth.policy import PasswordPolicy
from auth.tokens import (
    burn_password_check,
    create_access_token,
    expiry_after,
    generate_opaque_token,
    hash_password,
    is_expired,
    verify_password,
)
from core.config import get_settings

logger = logging.getLogger("accountflow.auth")

# Profile fields a signed-in user may change about themselves. Email and
# password have their own flows.
_SELF_UPDATABLE_FIELDS: frozenset[str] = frozenset({"name"})


def normalize_email(email: str) -> str:
    return email.strip().lower()


class AuthEngine:
    """Orchestrates the account flows over a UserAdapter.

    Usage:
        engine = AuthEngine(UserStore())
        payload = engine.signup("Roger", "roger@example.com", "testtest2")
        engine.login("roger@example.com", "testtest2").token

    Options left as None fall back to Settings. To replace the length rule
    with custom logic, pass PasswordPolicy(validator=my_predicate).
    """

    def __init__(
        self,
        store: UserAdapter,
        *,
        policy: PasswordPolicy | None = None,
        require_email_confirmation: bool | None = None,
        reset_expire_seconds: int | None = None,
        mailer: Mailer | None = None,
        mail_app_url: str | None = None,
    ) -> None:
        settings = get_settings()
        self.store = store
        self.policy = policy or PasswordPolicy(min_length=settings.min_password_length)
        self.require_email_confirmation = (
            settings.require_email_confirmation if require_email_confirmation is None else require_email_confirmation
        )
        self.reset_expire_seconds = reset_expire_seconds or settings.reset_token_expire_seconds
        self.mailer = mailer or LogMailer()
        self.mail_app_url = (mail_app_url or settings.mail_app_url).rstrip("/")

    # ------------------------------------------------------------------
    # Signup / login
    # ------------------------------------------------------------------

    def signup(self, name: str, email: str, password: str) -> AuthPayload:
        email = normalize_email(email)
        self.policy.validate(password)
        if self.store.find_user_by_email(email) is not None:
            raise UserExistsError()

        confirm_token = generate_opaque_token() if self.require_email_confirmation else None
        user = self.store.create_user_by_signup(
            User(
                email=email,
                name=name,
                hashed_password=hash_password(password),
                email_confirm_token=confirm_token,
                email_confirmed=confirm_token is None,
            )
        )
        logger.info("User %s signed up", user.id)
        if confirm_token is not None:
            self._mail("confirm_email", user, confirm_token, "confirm-email")
        return AuthPayload(token=create_access_token(user.id), user=user)

    def login(self, email: str, password: str) -> AuthPayload:
        """Exchange credentials for a session token.

        Unknown email and wrong password raise the identical NoUserFoundError.
        Invited placeholders have no password yet and fail the same way.
        """
        user = self.store.find_user_by_email(normalize_email(email))
        if user is None or user.hashed_password is None:
            burn_password_check(password)
            raise NoUserFoundError()
        if not verify_password(password, user.hashed_password):
            raise NoUserFoundError()
        self.store.update_last_login(user.id)
        return AuthPayload(token=create_access_token(user.id), user=user)

    # ------------------------------------------------------------------
    # Authenticated caller operations
    # ------------------------------------------------------------------

    def current_user(self, user_id: int | None) -> User:
        """Resolve the caller's id to a fresh User or raise UnauthenticatedError."""
        if user_id is None:
            raise UnauthenticatedError()
        user = self.store.find_user_by_id(user_id)
        if user is None:
            raise UnauthenticatedError()
        return user

    def update_current_user(self, user_id: int | None, **fields) -> User:
        user = self.current_user(user_id)
        forbidden = set(fields) - _SELF_UPDATABLE_FIELDS
        if forbidden:
            raise ValueError(f"Cannot update {sorted(forbidden)!r} through update_current_user")
        if not fields:
            return user
        updated = self.store.update_user(user.id, **fields)
        if updated is None:
            raise UnauthenticatedError()
        return updated

    def change_password(self, user_id: int | None, old_password: str, new_password: str) -> User:
        user = self.current_user(user_id)
        if user.hashed_password is None or not verify_password(old_password, user.hashed_password):
            raise InvalidOldPasswordError()
        self.policy.validate(new_password)
        updated = self.store.update_user_password(user.id, hash_password(new_password))
        if updated is None:
            raise UnauthenticatedError()
        logger.info("User %s changed password", user.id)
        return updated

    def invite_user(self, current_user_id: int | None, email: str) -> User:
        """Create (or refresh) a passwordless placeholder carrying an invite token.

        A pending invitee gets a new token that replaces the old one. An
        account that already accepted its invite or signed up raises
        UserExistsError.
        """
        inviter = self.current_user(current_user_id)
        email = normalize_email(email)
        invite_token = generate_opaque_token()

        existing = self.store.find_user_by_email(email)
        if existing is None:
            invited = self.store.create_user_by_invite(
                User(email=email, invite_token=invite_token, invite_accepted=False)
            )
        elif existing.is_pending_invite:
            invited = self.store.update_user_invite_token(existing.id, invite_token)
        else:
            raise UserExistsError()

        logger.info("User %s invited user %s", inviter.id, invited.id)
        self._mail("invite_user", invited, invite_token, "signup-by-invite", inviter_name=inviter.name)
        return invited

    # ------------------------------------------------------------------
    # Password reset
    # ------------------------------------------------------------------

    def trigger_password_reset(self, email: str) -> bool:
        """Issue a reset token for a known email. Always returns True.

        Invited placeholders have no password to reset; they answer like an
        unknown email and must accept their invite instead.
        """
        user = self.store.find_user_by_email(normalize_email(email))
        if user is None or user.hashed_password is None:
            logger.info("Password reset requested for unknown email")
            return True
        ticket = self.store.update_user_reset_token(
            user.id, generate_opaque_token(), expiry_after(self.reset_expire_seconds)
        )
        logger.info("Password reset token issued for user %s", user.id)
        self._mail("password_reset", user, ticket.reset_token, "reset-password")
        return True

    def password_reset(self, email: str, password: str, reset_token: str) -> User:
        user = self.store.find_user_by_reset_token(reset_token)
        if (
            user is None
            or user.hashed_password is None
            or user.email != normalize_email(email)
            or is_expired(user.reset_expires)
        ):
            raise NoUserFoundError()
        self.policy.validate(password)
        updated = self.store.consume_reset_token(user.id, reset_token, hash_password(password))
        if updated is None:
            raise NoUserFoundError()
        logger.info("User %s reset password", updated.id)
        return updated

    # ------------------------------------------------------------------
    # Invite acceptance and email confirmation
    # ------------------------------------------------------------------

    def signup_by_invite(self, name: str, email: str, password: str, invite_token: str) -> User:
        user = self.store.find_user_by_invite_token(invite_token)
        if user is None or user.email != normalize_email(email):
            raise InvalidInviteTokenError()
        self.policy.validate(password)
        activated = self.store.consume_invite_token(user.id, invite_token, name, hash_password(password))
        if activated is None:
            raise InvalidInviteTokenError()
        logger.info("User %s accepted invite", activated.id)
        return activated

    def confirm_email(self, email: str, email_confirm_token: str) -> User:
        user = self.store.find_user_by_email_confirm_token(email_confirm_token)
        if user is None or user.email != normalize_email(email):
            raise InvalidEmailConfirmTokenError()
        confirmed = self.store.consume_email_confirm_token(user.id, email_confirm_token)
        if confirmed is None:
            raise InvalidEmailConfirmTokenError()
        logger.info("User %s confirmed email", confirmed.id)
        return confirmed

    def resend_confirmation(self, email: str) -> bool:
        """Replace the confirmation token of an unconfirmed account and mail it.

        Unknown and already-confirmed emails succeed silently. Always True.
        """
        user = self.store.find_user_by_email(normalize_email(email))
        if user is None or user.email_confirmed:
            return True
        confirm_token = generate_opaque_token()
        user = self.store.update_user_email_confirm_token(user.id, confirm_token)
        if user is not None:
            self._mail("confirm_email", user, confirm_token, "confirm-email")
        return True

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _mail(self, template: str, user: User, token: str, path: str, **extra) -> None:
        query = urlencode({"email": user.email, "token": token})
        context = {
            "name": user.name,
            "email": user.email,
            "token": token,
            "link": f"{self.mail_app_url}/{path}?{query}",
            **extra,
        }
        self.mailer.send(template, user.email, context)
