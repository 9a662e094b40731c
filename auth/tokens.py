"""
auth/tokens.py -- Password hashing, JWT session tokens and single-use tokens.

Security design decisions:
  JWT: python-jose with HS256. Tokens are signed with SECRET_KEY and carry
       sub (str user id), user_id and expiry. Verification returns None on any
       failure -- the dependency layer turns that into UnauthenticatedError.
       There is no server-side revocation list; a token is valid until exp.

  Passwords: bcrypt with a per-password salt from bcrypt.gensalt(). The cost
       factor comes from Settings.bcrypt_rounds. The _DUMMY_HASH constant
       enables timing equalization in the login flow so response time does
       not reveal whether an email is registered [C1].

  Opaque tokens (reset / invite / email confirm): str(uuid.uuid4()). 122 bits
       from the OS CSPRNG, always 36 characters in canonical hyphenated form.
       They are stored on the user row and compared on use; consuming one
       clears it.

  SECRET_KEY: sourced from core.config.get_settings(). The Settings class
       validates the key at startup [M6].

Layer rule: no imports from api/. Import from core/ is allowed.
"""

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timedelta, timezone

import bcrypt
from jose import JWTError, jwt

from auth.policy import MAX_PASSWORD_BYTES
from core.config import get_settings

logger = logging.getLogger("accountflow.auth")

# ---------------------------------------------------------------------------
# Config -- read once at module load via the lru_cache singleton [M6]
# ---------------------------------------------------------------------------

_settings = get_settings()

_ALGORITHM = "HS256"

# ---------------------------------------------------------------------------
# Password hashing (bcrypt -- direct usage, no passlib wrapper)
# ---------------------------------------------------------------------------


def hash_password(plain: str) -> str:
    """Return a bcrypt hash of the given plaintext password.

    bcrypt raises ValueError for input over 72 bytes, so callers run
    PasswordPolicy.validate() first; it rejects such passwords with
    PasswordTooLongError.
    """
    salt = bcrypt.gensalt(rounds=_settings.bcrypt_rounds)
    return bcrypt.hashpw(plain.encode("utf-8"), salt).decode("utf-8")


def verify_password(plain: str, hashed: str) -> bool:
    """Return True if the plaintext password matches the bcrypt hash.

    A malformed stored hash is treated as a mismatch. Input over 72 bytes
    cannot match any stored hash and is rejected without calling bcrypt.
    """
    encoded = plain.encode("utf-8")
    if len(encoded) > MAX_PASSWORD_BYTES:
        return False
    try:
        return bcrypt.checkpw(encoded, hashed.encode("utf-8"))
    except ValueError:
        logger.warning("Stored password hash is malformed")
        return False


# Timing equalization dummy hash [C1].
# Computed once at module load so the first login attempt is not measurably
# slower than subsequent ones.
_DUMMY_HASH: str = hash_password("accountflow_timing_dummy")


def burn_password_check(plain: str) -> None:
    """Run one bcrypt comparison against the dummy hash and discard the result.

    Called on every login path that fails before a real comparison (unknown
    email, invited placeholder without a password) [C1].
    """
    verify_password(plain, _DUMMY_HASH)


# ---------------------------------------------------------------------------
# JWT encode / decode
# ---------------------------------------------------------------------------


def create_access_token(user_id: int, expire_seconds: int = 0) -> str:
    """Encode a signed JWT carrying the user identity claim.

    Args:
        user_id:        Numeric user ID allocated by the store.
        expire_seconds: Session duration in seconds. If 0 (default), uses
                        Settings.token_expire_seconds.
    """
    duration = expire_seconds if expire_seconds > 0 else _settings.token_expire_seconds
    expire = datetime.now(timezone.utc) + timedelta(seconds=duration)
    payload = {
        "sub": str(user_id),
        "user_id": user_id,
        "exp": expire,
    }
    return jwt.encode(payload, _settings.secret_key, algorithm=_ALGORITHM)


def decode_access_token(token: str) -> dict | None:
    """Decode and verify a JWT. Returns the payload dict or None on any failure."""
    try:
        payload = jwt.decode(token, _settings.secret_key, algorithms=[_ALGORITHM])
    except JWTError:
        return None
    if not isinstance(payload.get("user_id"), int):
        return None
    return payload


# ---------------------------------------------------------------------------
# Single-use tokens
# ---------------------------------------------------------------------------


def generate_opaque_token() -> str:
    """Return a fresh random token for reset, invite or email confirmation."""
    return str(uuid.uuid4())


def expiry_after(seconds: int) -> str:
    """Return the ISO 8601 UTC timestamp ``seconds`` from now."""
    return (datetime.now(timezone.utc) + timedelta(seconds=seconds)).isoformat()


def is_expired(expires_at: str | None) -> bool:
    """True if the ISO 8601 timestamp is missing or already in the past."""
    if not expires_at:
        return True
    moment = datetime.fromisoformat(expires_at)
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment <= datetime.now(timezone.utc)
