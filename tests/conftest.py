"""
tests/conftest.py -- Shared test fixtures for AccountFlow tests.

This module provides:
  - store: isolated UserStore seeded with two users (ids 1 and 2)
  - mailer: RecordingMailer capturing every message the engine sends
  - engine: AuthEngine over the seeded store and the recording mailer
  - api_client: TestClient with the real app, a patched lifespan and a JWT
    for the seeded user Kees (id 2)
  - capture_returns: spy helper that records what an adapter method returned

Design: Named shared-memory SQLite URIs (not plain :memory:) are required
because TestClient runs sync route handlers in a thread pool. Plain :memory:
DBs are per-connection and would present a blank schema to each worker
thread. Every fixture instance gets a fresh uuid-suffixed name, so each test
starts from the same seed and allocates the same ids.

DEBUG and BCRYPT_ROUNDS must be set before any auth module import:
get_settings() auto-generates SECRET_KEY in dev mode, and auth.tokens reads
the settings once at import.
"""

from __future__ import annotations

import os
import uuid
from collections.abc import Generator, Iterator
from contextlib import asynccontextmanager, contextmanager
from unittest.mock import MagicMock, patch

# CRITICAL: Set env before any auth/core import.
os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("BCRYPT_ROUNDS", "4")

import pytest
from fastapi.testclient import TestClient

from api.main import app
from auth.engine import AuthEngine
from auth.models import User
from auth.store import UserStore
from auth.tokens import create_access_token, hash_password

KEES_EMAIL = "kees@example.com"
KEES_PASSWORD = "testtest2"


class RecordingMailer:
    """Mailer double that keeps every sent message in memory."""

    def __init__(self) -> None:
        self.sent: list[tuple[str, str, dict]] = []

    def send(self, template: str, to: str, context: dict) -> None:
        self.sent.append((template, to, context))

    def last(self, template: str) -> dict:
        for sent_template, _to, context in reversed(self.sent):
            if sent_template == template:
                return context
        raise AssertionError(f"No {template!r} mail was sent")


@contextmanager
def _capture_returns(target, method_name: str) -> Iterator[tuple[MagicMock, list]]:
    """Patch target.method_name with a spy that records every return value."""
    original = getattr(target, method_name)
    results: list = []

    def _spy(*args, **kwargs):
        result = original(*args, **kwargs)
        results.append(result)
        return result

    with patch.object(target, method_name, side_effect=_spy) as mock:
        yield mock, results


# ---------------------------------------------------------------------------
# Store helpers
# ---------------------------------------------------------------------------


def _make_seeded_store() -> UserStore:
    """Create an isolated shared-memory store holding Jan (id 1) and Kees (id 2)."""
    store = UserStore(db_url=f"sqlite:///file:test_auth_{uuid.uuid4().hex}?mode=memory&cache=shared&uri=true")
    store.create_user_by_signup(
        User(email="jan@example.com", name="Jan", hashed_password=hash_password("janjanjan"), email_confirmed=True)
    )
    store.create_user_by_signup(
        User(email=KEES_EMAIL, name="Kees", hashed_password=hash_password(KEES_PASSWORD), email_confirmed=True)
    )
    return store


def _patch_lifespan(user_store: UserStore, engine: AuthEngine):
    """Return a lifespan that wires pre-built test objects into app.state."""

    @asynccontextmanager
    async def test_lifespan(app):
        app.state.user_store = user_store
        app.state.auth_engine = engine
        yield

    return test_lifespan


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def store() -> Generator[UserStore, None, None]:
    s = _make_seeded_store()
    yield s
    s.close()


@pytest.fixture
def mailer() -> RecordingMailer:
    return RecordingMailer()


@pytest.fixture
def engine(store: UserStore, mailer: RecordingMailer) -> AuthEngine:
    return AuthEngine(store, mailer=mailer, require_email_confirmation=True, mail_app_url="https://app.example.com")


@pytest.fixture
def capture_returns():
    """Return the spy context manager: with capture_returns(obj, "method") as (mock, results)."""
    return _capture_returns


@pytest.fixture
def api_client(
    store: UserStore, engine: AuthEngine
) -> Generator[tuple[TestClient, str, AuthEngine], None, None]:
    """Yield (client, token, engine) for HTTP integration tests.

    token is a valid session token for Kees (id 2).
    """
    app.router.lifespan_context = _patch_lifespan(store, engine)
    token = create_access_token(user_id=2)
    with TestClient(app, raise_server_exceptions=True) as client:
        yield client, token, engine
