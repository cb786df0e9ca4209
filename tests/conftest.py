"""
tests/conftest.py -- Shared test fixtures for TinyAuth.

This module provides:
  - make_store(): an isolated in-memory SQLUserStore
  - store / auth: a fresh store and an AuthInstance over it, per test
  - run(): drive a coroutine to completion from a synchronous test
  - api_client: TestClient over the real FastAPI app with seeded users

Design: Named shared-memory SQLite URIs (not plain :memory:) are required
because AuthInstance runs store calls in worker threads (asyncio.to_thread)
and TestClient runs the app in its own thread. Plain :memory: DBs are
per-connection and would present a blank schema to each worker thread. The
named URI format shares one in-memory instance across all connections in the
same process.

Tests build AuthInstances through their own InstanceCell (or directly), never
through the process-wide create_auth_instance(), so one test's configuration
can not leak into another.

DEBUG and BCRYPT_ROUNDS must be set before any auth/core import:
get_settings() auto-generates SECRET_KEY in dev mode, and 4 rounds keeps
bcrypt fast enough for a test suite.
"""

from __future__ import annotations

import asyncio
import os
import uuid
from collections.abc import Generator
from contextlib import asynccontextmanager
from dataclasses import dataclass

# CRITICAL: set before any auth/core import.
os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("BCRYPT_ROUNDS", "4")

import pytest
from fastapi.testclient import TestClient

from api.limiter import limiter
from api.main import app, build_gates
from auth.instance import AuthConfig, AuthInstance, InstanceCell
from auth.store import SQLUserStore

ROLES = ["user", "admin", "owner"]
SECRET = "test-secret-key-for-tinyauth-suite"


def make_store(db_suffix: str | None = None) -> SQLUserStore:
    """Create an isolated named shared-memory SQLite store."""
    name = db_suffix or uuid.uuid4().hex
    return SQLUserStore(f"sqlite:///file:test_auth_{name}?mode=memory&cache=shared&uri=true")


def make_auth(store: SQLUserStore, roles: list[str] | None = None, secret: str = SECRET) -> AuthInstance:
    config = AuthConfig.build(store=store, roles=roles or ROLES, secret=secret, bcrypt_rounds=4)
    return InstanceCell().get_or_create(config)


def run(coro):
    return asyncio.run(coro)


@pytest.fixture
def store() -> Generator[SQLUserStore, None, None]:
    s = make_store()
    yield s
    s.close()


@pytest.fixture
def store_factory() -> Generator:
    """Hand out extra isolated stores; all are closed at teardown."""
    created: list[SQLUserStore] = []

    def factory() -> SQLUserStore:
        created.append(make_store())
        return created[-1]

    yield factory
    for s in created:
        s.close()


@pytest.fixture
def auth(store: SQLUserStore) -> AuthInstance:
    return make_auth(store)


# ---------------------------------------------------------------------------
# API fixtures
# ---------------------------------------------------------------------------


@dataclass
class ApiContext:
    client: TestClient
    auth: AuthInstance
    tokens: dict[str, str]  # role name -> bearer token of a user holding it

    def headers(self, role: str) -> dict[str, str]:
        return {"Authorization": f"Bearer {self.tokens[role]}"}


def _patch_lifespan(auth: AuthInstance):
    """Return a lifespan that wires a pre-built AuthInstance into app.state."""

    @asynccontextmanager
    async def test_lifespan(app):
        app.state.auth = auth
        app.state.gates = build_gates(auth, "admin")
        yield

    return test_lifespan


@pytest.fixture(scope="module")
def api_client() -> Generator[ApiContext, None, None]:
    """Yield an ApiContext with one seeded user per role.

    Users: user@example.com, admin@example.com, owner@example.com, all with
    password "password1". Tokens are issued through AuthInstance.log_in().
    """
    store = make_store()
    auth = make_auth(store)

    async def seed() -> dict[str, str]:
        tokens = {}
        for role in ROLES:
            email = f"{role}@example.com"
            await auth.create_user(email, "password1", {"name": role.title()})
            await auth.add_role(email, role)
            tokens[role] = (await auth.log_in(email, "password1"))["token"]
        return tokens

    tokens = run(seed())
    limiter.reset()
    app.router.lifespan_context = _patch_lifespan(auth)

    with TestClient(app, raise_server_exceptions=False) as client:
        yield ApiContext(client=client, auth=auth, tokens=tokens)

    store.close()
