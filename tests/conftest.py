"""
tests/conftest.py -- Shared test fixtures.

This module provides:
  - RecordingNotifier: captures emails instead of sending them
  - make_service(): an AuthService over an isolated in-memory store
  - service: function-scoped (AuthService, UserStore, RecordingNotifier)
  - api_client: TestClient over the real app with a patched lifespan

Design: the API fixture uses a named shared-memory SQLite URI (not plain
:memory:) because TestClient runs sync route handlers in a thread pool.
Plain :memory: DBs are per-connection and would present a blank schema to
each worker thread. The named URI format shares one in-memory instance
across all connections in the same process; a uuid suffix keeps tests apart.

DEBUG and BCRYPT_ROUNDS must be set before any core/auth/api import:
DEBUG lets get_settings() auto-generate signing keys and return action URLs,
and a cost of 4 keeps bcrypt fast.
"""

from __future__ import annotations

import os
import uuid
from collections.abc import Generator
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from urllib.parse import parse_qs, urlparse

# CRITICAL: set before any project import.
os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("BCRYPT_ROUNDS", "4")

import pytest
from fastapi.testclient import TestClient

from api.limiter import limiter
from api.main import app
from auth.errors import NotificationError
from auth.service import AuthService
from auth.store import UserStore
from auth.tokens import TokenService

ACCESS_SECRET = "a" * 64
REFRESH_SECRET = "r" * 64
FRONTEND_URL = "http://localhost:3000"

# Rate limits are exercised manually; the suite itself must never hit them.
limiter.enabled = False


@dataclass
class RecordingNotifier:
    """Notifier double. Set fail=True to make every send raise."""

    sent: list[dict] = field(default_factory=list)
    fail: bool = False

    def send_mail(self, to, subject, template, context=None):
        if self.fail:
            raise NotificationError("mail provider down")
        self.sent.append({"to": to, "subject": subject, "template": template, "context": context or {}})

    def last(self, template: str) -> dict:
        matching = [m for m in self.sent if m["template"] == template]
        assert matching, f"no {template!r} email was sent"
        return matching[-1]


def token_from_url(url: str) -> str:
    """Return the token= query value of a verification or reset link."""
    return parse_qs(urlparse(url).query)["token"][0]


def make_service(
    db_url: str = "sqlite:///:memory:",
    revoke_refresh_on_logout: bool = True,
    access_ttl: int = 900,
    refresh_ttl: int = 30 * 24 * 3600,
) -> tuple[AuthService, UserStore, RecordingNotifier]:
    store = UserStore(db_url)
    notifier = RecordingNotifier()
    service = AuthService(
        store=store,
        tokens=TokenService(ACCESS_SECRET, REFRESH_SECRET, access_ttl=access_ttl, refresh_ttl=refresh_ttl),
        notifier=notifier,
        frontend_url=FRONTEND_URL,
        bcrypt_rounds=4,
        revoke_refresh_on_logout=revoke_refresh_on_logout,
    )
    return service, store, notifier


def register_verified(service: AuthService, notifier: RecordingNotifier, email: str, password: str = "Passw0rd!") -> int:
    """Register an account and verify it. Returns the user id."""
    result = service.register(email, password, "Alice", "Smith", "English", "Spanish")
    service.verify_email(token_from_url(notifier.last("verify_email")["context"]["verification_url"]))
    return result.user_id


@pytest.fixture
def service() -> Generator[tuple[AuthService, UserStore, RecordingNotifier], None, None]:
    svc, store, notifier = make_service()
    yield svc, store, notifier
    store.close()


def _patch_lifespan(service: AuthService, store: UserStore, notifier: RecordingNotifier):
    """Return an async context manager that replaces the real lifespan.

    Wires the test collaborators into app.state so TestClient routes see an
    isolated store and a recording notifier rather than real mail delivery.
    """

    @asynccontextmanager
    async def test_lifespan(app):
        app.state.user_store = store
        app.state.notifier = notifier
        app.state.auth_service = service
        yield

    return test_lifespan


@pytest.fixture
def api_client() -> Generator[tuple[TestClient, RecordingNotifier, UserStore], None, None]:
    """Yield (client, notifier, store) for API integration tests."""
    db_url = f"sqlite:///file:test_auth_{uuid.uuid4().hex}?mode=memory&cache=shared&uri=true"
    svc, store, notifier = make_service(db_url)
    app.router.lifespan_context = _patch_lifespan(svc, store, notifier)

    with TestClient(app, raise_server_exceptions=True) as client:
        yield client, notifier, store

    store.close()
