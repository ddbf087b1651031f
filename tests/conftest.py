"""
Pytest fixtures for chat backend tests
"""

import os
from typing import AsyncGenerator

import pytest

# Set test environment before imports
os.environ.setdefault("JWT_SECRET", "test_jwt_secret_for_ci_testing_only")
os.environ.setdefault("STORE_BACKEND", "memory")
os.environ.setdefault("COOKIE_SECURE", "false")
os.environ.setdefault("GEMINI_API_KEY", "")
os.environ.setdefault("RATE_LIMIT_PER_MINUTE", "100000")
os.environ.setdefault("AUTH_RATE_LIMIT_PER_MINUTE", "100000")

from httpx import AsyncClient, ASGITransport

from chatty.database import set_store
from chatty.main import app
from chatty.middleware.rate_limit import auth_rate_limiter, rate_limiter
from chatty.routers.auth import create_access_token
from chatty.services.session import SessionStore
from chatty.services.telemetry import reset_counters
from chatty.store import InMemoryDocumentStore


@pytest.fixture(autouse=True)
def reset_process_state():
    """Counters, sessions and rate limiters are process-wide"""
    reset_counters()
    app.state.sessions.clear()
    rate_limiter.reset()
    auth_rate_limiter.reset()
    yield
    app.state.sessions.clear()


@pytest.fixture
def store() -> InMemoryDocumentStore:
    store = InMemoryDocumentStore()
    set_store(store)
    yield store
    set_store(None)


@pytest.fixture
async def client(store) -> AsyncGenerator[AsyncClient, None]:
    """Async HTTP client for testing endpoints."""
    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test"
    ) as ac:
        yield ac


@pytest.fixture
async def alice(store):
    return await store.create_user("alice@example.com", "Alice", "hash")


@pytest.fixture
async def bob(store):
    return await store.create_user("bob@example.com", "Bob", "hash")


@pytest.fixture
def session(alice) -> SessionStore:
    return SessionStore("session-alice", alice.id)


def auth_headers(user_id: str, name: str = "Test User", session_id: str = "session-1") -> dict:
    """Cookie header carrying a freshly minted access token"""
    token, _ = create_access_token(user_id, name, session_id)
    return {"Cookie": f"access_token={token}"}
