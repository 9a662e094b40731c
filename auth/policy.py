"""
auth/policy.py -- Password policy.

The default rule is a minimum length. A caller-supplied predicate replaces
the default entirely: the length check is not run, and a falsy result raises
the same WeakPasswordError ("Password is too short") whatever the reason.
A predicate that wants a different message raises its own error, which is
propagated unchanged.

The bcrypt input limit applies under every rule: a password longer than
MAX_PASSWORD_BYTES once UTF-8 encoded raises PasswordTooLongError before the
predicate runs, since bcrypt refuses to hash it.
"""

from __future__ import annotations

from collections.abc import Callable

from auth.errors import PasswordTooLongError, WeakPasswordError

DEFAULT_MIN_LENGTH = 8
MAX_PASSWORD_BYTES = 72

PasswordValidator = Callable[[str], bool]


class PasswordPolicy:
    """Validate candidate passwords for signup, reset, invite signup and change."""

    __slots__ = ("min_length", "validator")

    def __init__(self, min_length: int = DEFAULT_MIN_LENGTH, validator: PasswordValidator | None = None) -> None:
        self.min_length = min_length
        self.validator = validator

    def is_acceptable(self, password: str) -> bool:
        if len(password.encode("utf-8")) > MAX_PASSWORD_BYTES:
            return False
        if self.validator is not None:
            return bool(self.validator(password))
        return len(password) >= self.min_length

    def validate(self, password: str) -> None:
        """Raise WeakPasswordError if the password does not satisfy the policy.

        PasswordTooLongError (a WeakPasswordError) for input bcrypt cannot hash.
        """
        if len(password.encode("utf-8")) > MAX_PASSWORD_BYTES:
            raise PasswordTooLongError()
        if not self.is_acceptable(password):
            raise WeakPasswordError()
