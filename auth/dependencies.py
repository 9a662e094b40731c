"""
auth/dependencies.py -- FastAPI Depends() helpers for caller identity.

The session token travels in the Authorization: Bearer <token> header. The
dependency only verifies the signature and extracts the user id claim; the
engine re-fetches the user from the store for every operation, so a token
for a user that no longer resolves is rejected there.

try_get_current_user_id() is the soft variant (returns None on failure).
get_current_user_id() wraps it and raises UnauthenticatedError.

Layer rule: no imports from api/.
  auth/dependencies.py may import from fastapi (for Request) because this
  module is part of the FastAPI dependency injection system.
"""

from __future__ import annotations

from fastapi import Request

from auth.errors import UnauthenticatedError
from auth.tokens import decode_access_token


def try_get_current_user_id(request: Request) -> int | None:
    """Return the user id from a valid Bearer token, or None. Never raises."""
    auth_header = request.headers.get("Authorization", "")
    if not auth_header.startswith("Bearer "):
        return None
    payload = decode_access_token(auth_header[7:])
    if payload is None:
        return None
    return payload["user_id"]


def get_current_user_id(request: Request) -> int:
    """Require a session token. Raises UnauthenticatedError (HTTP 401) otherwise.

    Use as a FastAPI dependency:
        @router.get("/protected")
        def route(user_id: int = Depends(get_current_user_id)): ...
    """
    user_id = try_get_current_user_id(request)
    if user_id is None:
        raise UnauthenticatedError()
    return user_id
