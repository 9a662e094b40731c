"""Unit tests for auth/engine.py -- AuthEngine flows over a real UserStore.

Seed (from conftest.py): Jan (id 1) and Kees (id 2, password "testtest2").

Covers:
- signup / login, including the shared "No user found" message
- password policy applied identically at every password-setting entry point
- change password, update current user
- password reset: token shape, single use, expiry, email mismatch
- invite: token shape, single use, re-invite of a pending invitee
- email confirmation: single use, disabled confirmation
- failures happen before any write
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from unittest.mock import patch

import pytest

from auth.engine import AuthEngine
from auth.errors import (
    InvalidEmailConfirmTokenError,
    InvalidInviteTokenError,
    InvalidOldPasswordError,
    NoUserFoundError,
    PasswordTooLongError,
    UnauthenticatedError,
    UserExistsError,
    WeakPasswordError,
)
from auth.policy import PasswordPolicy
from auth.store import UserStore
from auth.tokens import decode_access_token

KEES = "kees@example.com"


class TestSignupAndLogin:
    def test_signup_allocates_new_id_and_login_returns_it(self, engine: AuthEngine) -> None:
        payload = engine.signup("Roger", "roger@example.com", "testtest2")
        assert payload.user.id == 3
        assert payload.user.name == "Roger"
        assert decode_access_token(payload.token)["user_id"] == 3

        login = engine.login("roger@example.com", "testtest2")
        assert login.user.id == 3
        assert "." in login.token

    def test_signup_existing_email(self, engine: AuthEngine, store: UserStore) -> None:
        with pytest.raises(UserExistsError, match="User already exists with this email"):
            engine.signup("Kees", KEES, "testtest2")
        assert store.count_users() == 2

    def test_signup_email_is_normalized(self, engine: AuthEngine) -> None:
        with pytest.raises(UserExistsError):
            engine.signup("Kees", "  KEES@Example.com ", "testtest2")

    def test_signup_weak_password_checked_before_existence(self, engine: AuthEngine) -> None:
        with pytest.raises(WeakPasswordError, match="Password is too short"):
            engine.signup("Kees", KEES, "test")

    def test_signup_password_over_72_bytes(self, engine: AuthEngine, store: UserStore) -> None:
        with pytest.raises(PasswordTooLongError, match="Password is too long"):
            engine.signup("Roger", "roger@example.com", "x" * 80)
        assert store.count_users() == 2

    def test_signup_losing_insert_race_reports_user_exists(self, engine: AuthEngine, store: UserStore) -> None:
        # A concurrent signup inserted Kees after our existence check ran.
        with patch.object(store, "find_user_by_email", side_effect=[None, store.find_user_by_email(KEES)]):
            with pytest.raises(UserExistsError, match="User already exists with this email"):
                engine.signup("Kees", KEES, "testtest2")
        assert store.count_users() == 2

    def test_signup_sends_confirmation(self, engine: AuthEngine, mailer) -> None:
        payload = engine.signup("Roger", "roger@example.com", "testtest2")
        assert payload.user.email_confirmed is False
        assert len(payload.user.email_confirm_token) == 36
        context = mailer.last("confirm_email")
        assert context["token"] == payload.user.email_confirm_token
        assert context["link"].startswith("https://app.example.com/confirm-email?")

    def test_signup_without_confirmation_is_confirmed(self, store: UserStore, mailer) -> None:
        engine = AuthEngine(store, mailer=mailer, require_email_confirmation=False)
        payload = engine.signup("Roger", "roger@example.com", "testtest2")
        assert payload.user.email_confirmed is True
        assert payload.user.email_confirm_token is None
        assert mailer.sent == []

    def test_login_correct(self, engine: AuthEngine, store: UserStore) -> None:
        payload = engine.login(KEES, "testtest2")
        assert payload.user.id == 2
        assert payload.user.name == "Kees"
        assert store.find_user_by_id(2).last_login

    def test_login_unknown_and_wrong_password_are_indistinguishable(self, engine: AuthEngine) -> None:
        with pytest.raises(NoUserFoundError) as unknown:
            engine.login("roger@example.com", "testtest2")
        with pytest.raises(NoUserFoundError) as wrong:
            engine.login(KEES, "testtest1")
        assert str(unknown.value) == str(wrong.value) == "No user found"

    def test_login_pending_invitee_fails(self, engine: AuthEngine) -> None:
        engine.invite_user(2, "roger@example.com")
        with pytest.raises(NoUserFoundError):
            engine.login("roger@example.com", "")


class TestPasswordPolicyEverywhere:
    @pytest.fixture
    def strict_engine(self, store: UserStore, mailer) -> AuthEngine:
        return AuthEngine(store, mailer=mailer, policy=PasswordPolicy(validator=lambda value: len(value) > 400))

    def test_custom_validator_rejects_signup(self, strict_engine: AuthEngine) -> None:
        with pytest.raises(WeakPasswordError, match="Password is too short"):
            strict_engine.signup("Roger", "roger@example.com", "testtest2")

    def test_custom_validator_rejects_change_password(self, strict_engine: AuthEngine) -> None:
        with pytest.raises(WeakPasswordError):
            strict_engine.change_password(2, "testtest2", "testtest3")

    def test_custom_validator_rejects_reset(self, strict_engine: AuthEngine, mailer) -> None:
        strict_engine.trigger_password_reset(KEES)
        token = mailer.last("password_reset")["token"]
        with pytest.raises(WeakPasswordError):
            strict_engine.password_reset(KEES, "testtest4", token)

    def test_custom_validator_rejects_invite_signup(self, strict_engine: AuthEngine) -> None:
        invited = strict_engine.invite_user(2, "roger@example.com")
        with pytest.raises(WeakPasswordError):
            strict_engine.signup_by_invite("Roger", "roger@example.com", "testtest4", invited.invite_token)

    def test_validator_can_raise_its_own_message(self, store: UserStore) -> None:
        def must_have_digit(value: str) -> bool:
            if not any(c.isdigit() for c in value):
                raise WeakPasswordError("Password needs a digit")
            return True

        engine = AuthEngine(store, policy=PasswordPolicy(validator=must_have_digit))
        with pytest.raises(WeakPasswordError, match="Password needs a digit"):
            engine.signup("Roger", "roger@example.com", "abcdefghij")


class TestCurrentUser:
    def test_update_current_user_name(self, engine: AuthEngine) -> None:
        updated = engine.update_current_user(2, name="Voldemort")
        assert (updated.id, updated.name) == (2, "Voldemort")

    def test_update_current_user_rejects_email_and_password(self, engine: AuthEngine, store: UserStore) -> None:
        with pytest.raises(ValueError):
            engine.update_current_user(2, email="evil@example.com")
        with pytest.raises(ValueError):
            engine.update_current_user(2, password="whatever1")
        assert store.find_user_by_id(2).email == KEES

    def test_unauthenticated(self, engine: AuthEngine) -> None:
        with pytest.raises(UnauthenticatedError):
            engine.update_current_user(None, name="Nobody")
        with pytest.raises(UnauthenticatedError):
            engine.current_user(999)
        with pytest.raises(UnauthenticatedError):
            engine.invite_user(None, "roger@example.com")


class TestChangePassword:
    def test_wrong_old_password(self, engine: AuthEngine) -> None:
        with pytest.raises(InvalidOldPasswordError, match="Invalid old password"):
            engine.change_password(2, "testtest3", "testtest4")

    def test_old_password_stops_working(self, engine: AuthEngine) -> None:
        assert engine.change_password(2, "testtest2", "testtest3").id == 2
        assert engine.login(KEES, "testtest3").user.id == 2
        with pytest.raises(NoUserFoundError):
            engine.login(KEES, "testtest2")


class TestPasswordReset:
    def test_reset_end_to_end(self, engine: AuthEngine, mailer) -> None:
        assert engine.trigger_password_reset(KEES) is True
        token = mailer.last("password_reset")["token"]
        assert len(token) == 36

        assert engine.password_reset(KEES, "newpw123", token).id == 2
        assert engine.login(KEES, "newpw123").user.id == 2

        with pytest.raises(NoUserFoundError, match="No user found"):
            engine.password_reset(KEES, "badbadbad", token)

    def test_unknown_email_is_silent_success(self, engine: AuthEngine, store: UserStore, mailer) -> None:
        assert engine.trigger_password_reset("nobody@example.com") is True
        assert mailer.sent == []

    def test_retrigger_invalidates_previous_token(self, engine: AuthEngine, mailer) -> None:
        engine.trigger_password_reset(KEES)
        first = mailer.last("password_reset")["token"]
        engine.trigger_password_reset(KEES)
        second = mailer.last("password_reset")["token"]
        assert first != second
        with pytest.raises(NoUserFoundError):
            engine.password_reset(KEES, "newpw123", first)
        assert engine.password_reset(KEES, "newpw123", second).id == 2

    def test_token_for_other_email_is_rejected(self, engine: AuthEngine, mailer) -> None:
        engine.trigger_password_reset(KEES)
        token = mailer.last("password_reset")["token"]
        with pytest.raises(NoUserFoundError):
            engine.password_reset("jan@example.com", "newpw123", token)

    def test_expired_token_is_rejected(self, engine: AuthEngine, store: UserStore) -> None:
        past = (datetime.now(timezone.utc) - timedelta(minutes=1)).isoformat()
        store.update_user_reset_token(2, "expired-token", past)
        with pytest.raises(NoUserFoundError, match="No user found"):
            engine.password_reset(KEES, "newpw123", "expired-token")
        assert engine.login(KEES, "testtest2").user.id == 2

    def test_weak_password_keeps_token_alive(self, engine: AuthEngine, mailer) -> None:
        engine.trigger_password_reset(KEES)
        token = mailer.last("password_reset")["token"]
        with pytest.raises(WeakPasswordError):
            engine.password_reset(KEES, "short", token)
        assert engine.password_reset(KEES, "longenough", token).id == 2

    def test_lost_race_reports_no_user_found(self, engine: AuthEngine, store: UserStore, mailer) -> None:
        engine.trigger_password_reset(KEES)
        token = mailer.last("password_reset")["token"]
        stale = store.find_user_by_reset_token(token)
        # Another request consumes the token between lookup and write.
        store.consume_reset_token(2, token, "someone-elses-hash")
        with patch.object(store, "find_user_by_reset_token", return_value=stale):
            with pytest.raises(NoUserFoundError):
                engine.password_reset(KEES, "newpw123", token)
        assert store.find_user_by_id(2).hashed_password == "someone-elses-hash"


class TestInvite:
    def test_invite_end_to_end(self, engine: AuthEngine, mailer) -> None:
        invited = engine.invite_user(2, "roger@example.com")
        assert invited.id == 3
        assert len(invited.invite_token) == 36
        assert mailer.last("invite_user")["token"] == invited.invite_token

        user = engine.signup_by_invite("Roger", "roger@example.com", "testtest4", invited.invite_token)
        assert user.id == 3
        assert user.name == "Roger"
        assert user.email_confirmed is True
        assert engine.login("roger@example.com", "testtest4").user.id == 3

        with pytest.raises(InvalidInviteTokenError, match="inviteToken is invalid"):
            engine.signup_by_invite("Roger", "roger@example.com", "testtest4", invited.invite_token)

    def test_reinvite_pending_replaces_token(self, engine: AuthEngine, store: UserStore) -> None:
        first = engine.invite_user(2, "roger@example.com")
        second = engine.invite_user(2, "roger@example.com")
        assert first.id == second.id
        assert first.invite_token != second.invite_token
        assert store.count_users() == 3
        with pytest.raises(InvalidInviteTokenError):
            engine.signup_by_invite("Roger", "roger@example.com", "testtest4", first.invite_token)

    def test_invite_existing_account(self, engine: AuthEngine) -> None:
        with pytest.raises(UserExistsError):
            engine.invite_user(2, "jan@example.com")

    def test_invite_token_for_other_email(self, engine: AuthEngine) -> None:
        invited = engine.invite_user(2, "roger@example.com")
        with pytest.raises(InvalidInviteTokenError):
            engine.signup_by_invite("Mallory", "mallory@example.com", "testtest4", invited.invite_token)

    def test_invite_losing_insert_race_reports_user_exists(self, engine: AuthEngine, store: UserStore) -> None:
        with patch.object(store, "find_user_by_email", side_effect=[None, store.find_user_by_email(KEES)]):
            with pytest.raises(UserExistsError):
                engine.invite_user(1, KEES)

    def test_pending_invitee_cannot_use_password_reset(self, engine: AuthEngine, store: UserStore, mailer) -> None:
        invited = engine.invite_user(2, "roger@example.com")
        assert engine.trigger_password_reset("roger@example.com") is True
        assert [template for template, _to, _ctx in mailer.sent] == ["invite_user"]
        assert store.find_user_by_id(invited.id).reset_token is None

        # A reset token planted on the placeholder still cannot activate it.
        store.update_user_reset_token(invited.id, "planted-token", "2099-01-01T00:00:00+00:00")
        with pytest.raises(NoUserFoundError):
            engine.password_reset("roger@example.com", "ownerpass1", "planted-token")

        user = engine.signup_by_invite("Roger", "roger@example.com", "testtest4", invited.invite_token)
        assert user.invite_accepted is True
        assert engine.login("roger@example.com", "testtest4").user.id == invited.id

    def test_reset_token_does_not_authorize_invite(self, engine: AuthEngine, mailer) -> None:
        engine.trigger_password_reset(KEES)
        token = mailer.last("password_reset")["token"]
        with pytest.raises(InvalidInviteTokenError):
            engine.signup_by_invite("Kees", KEES, "testtest4", token)


class TestConfirmEmail:
    def test_confirm_end_to_end(self, engine: AuthEngine) -> None:
        payload = engine.signup("Roger", "roger@example.com", "testtest4")
        token = payload.user.email_confirm_token

        user = engine.confirm_email("roger@example.com", token)
        assert user.id == 3
        assert user.email_confirmed is True

        with pytest.raises(InvalidEmailConfirmTokenError, match="emailConfirmToken is invalid"):
            engine.confirm_email("roger@example.com", token)

    def test_confirm_wrong_email(self, engine: AuthEngine) -> None:
        payload = engine.signup("Roger", "roger@example.com", "testtest4")
        with pytest.raises(InvalidEmailConfirmTokenError):
            engine.confirm_email(KEES, payload.user.email_confirm_token)

    def test_resend_confirmation_replaces_token(self, engine: AuthEngine, mailer) -> None:
        payload = engine.signup("Roger", "roger@example.com", "testtest4")
        old_token = payload.user.email_confirm_token
        assert engine.resend_confirmation("roger@example.com") is True
        new_token = mailer.last("confirm_email")["token"]
        assert new_token != old_token
        with pytest.raises(InvalidEmailConfirmTokenError):
            engine.confirm_email("roger@example.com", old_token)
        assert engine.confirm_email("roger@example.com", new_token).email_confirmed is True

    def test_resend_confirmation_for_confirmed_account_sends_nothing(self, engine: AuthEngine, mailer) -> None:
        assert engine.resend_confirmation(KEES) is True
        assert engine.resend_confirmation("nobody@example.com") is True
        assert mailer.sent == []
