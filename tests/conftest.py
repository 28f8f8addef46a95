"""
tests/conftest.py -- Shared test fixtures for Gatehouse.

This module provides:
  - unit fixtures: in-memory UserStore / SessionStore, a cheap hasher, a
    pre-created "alice" account and a fresh anonymous AuthSession
  - _make_test_stores(): isolated named shared-memory DBs for the app
  - _patch_lifespan(): wires test stores into app.state, bypassing real startup
  - api_client: TestClient with follow_redirects=False for API tests

Design: Named shared-memory SQLite URIs (not plain :memory:) are used for the
app because TestClient runs route handlers in a thread pool. Plain :memory:
DBs are per-connection and would present a blank schema to each worker
thread. Users and sessions get separate databases so shared-cache table
locks never cross between the two stores.

DEBUG and the Argon2 cost variables must be set before any auth/core import
so get_settings() auto-generates SECRET_KEY and the hasher stays fast.
"""

from __future__ import annotations

import asyncio
import os
import uuid
from collections.abc import Generator
from contextlib import asynccontextmanager

# CRITICAL: Set before any auth/core import.
os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("ARGON2_TIME_COST", "1")
os.environ.setdefault("ARGON2_MEMORY_COST", "1024")
os.environ.setdefault("ARGON2_PARALLELISM", "1")

import pytest
from fastapi.testclient import TestClient

from api.main import app
from auth.flows import OpenSignupPolicy
from auth.models import User
from auth.passwords import CredentialHasher, get_hasher
from auth.permissions import DEFAULT_EVALUATOR
from auth.session import AuthSession
from auth.session_store import SessionStore
from auth.store import UserStore

ALICE_PASSWORD = "correct-pw"

# ---------------------------------------------------------------------------
# Unit fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def hasher() -> CredentialHasher:
    return get_hasher()


@pytest.fixture
def user_store() -> Generator[UserStore, None, None]:
    store = UserStore("sqlite:///:memory:")
    yield store
    store.close()


@pytest.fixture
def session_store() -> Generator[SessionStore, None, None]:
    store = SessionStore("sqlite:///:memory:", ttl=3600, remember_ttl=86400)
    yield store
    store.close()


@pytest.fixture
def alice(user_store: UserStore, hasher: CredentialHasher) -> User:
    """User 'alice' whose password is ALICE_PASSWORD."""
    user_id = user_store.insert("alice", "Alice", hasher.hash(ALICE_PASSWORD))
    return user_store.get_by_id(user_id)


@pytest.fixture
def auth(session_store: SessionStore, user_store: UserStore) -> AuthSession:
    """A brand-new anonymous AuthSession."""
    return AuthSession.open(session_store, user_store, None)


# ---------------------------------------------------------------------------
# App fixtures
# ---------------------------------------------------------------------------


def _make_test_stores(db_suffix: str) -> tuple[UserStore, SessionStore]:
    """Create isolated named shared-memory SQLite stores for one test."""
    users_url = f"sqlite:///file:test_users_{db_suffix}?mode=memory&cache=shared&uri=true"
    sessions_url = f"sqlite:///file:test_sessions_{db_suffix}?mode=memory&cache=shared&uri=true"
    return UserStore(db_url=users_url), SessionStore(db_url=sessions_url, ttl=3600, remember_ttl=86400)


def _patch_lifespan(user_store: UserStore, session_store: SessionStore):
    """Return an async context manager that replaces the real lifespan.

    The purge_task is a long-sleeping coroutine (a real asyncio.Task is
    required; MagicMock would fail on .cancel()).
    """

    @asynccontextmanager
    async def test_lifespan(app):
        app.state.user_store = user_store
        app.state.session_store = session_store
        app.state.hasher = get_hasher()
        app.state.signup_policy = OpenSignupPolicy()
        app.state.evaluator = DEFAULT_EVALUATOR
        app.state.purge_task = asyncio.create_task(asyncio.sleep(99999))
        yield
        app.state.purge_task.cancel()

    return test_lifespan


@pytest.fixture
def api_client() -> Generator[tuple[TestClient, UserStore], None, None]:
    """Yield (client, user_store) against a fresh pair of databases.

    Function-scoped so every test starts with an empty cookie jar and empty
    tables. follow_redirects=False lets tests assert on Location headers.
    """
    user_store, session_store = _make_test_stores(uuid.uuid4().hex)
    app.router.lifespan_context = _patch_lifespan(user_store, session_store)

    with TestClient(app, follow_redirects=False, raise_server_exceptions=True) as client:
        yield client, user_store

    user_store.close()
    session_store.close()
