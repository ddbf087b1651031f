"""
Tests for authentication endpoints
"""

import pytest
from httpx import AsyncClient

from chatty.dependencies.auth import decode_access_token
from chatty.main import app
from chatty.routers.auth import create_access_token

from conftest import auth_headers


def access_cookie(response) -> str:
    for header in response.headers.get_list("set-cookie"):
        if header.startswith("access_token=") and "Path=/api" in header:
            return header.split(";", 1)[0].split("=", 1)[1]
    raise AssertionError("access_token cookie not set")


@pytest.mark.asyncio
async def test_signup_creates_profile_and_sets_cookies(client: AsyncClient, store):
    response = await client.post("/api/auth/signup", json={
        "name": "Alice",
        "email": "Alice@Example.com",
        "password": "hunter22",
    })

    assert response.status_code == 201
    data = response.json()
    assert data["user"]["display_name"] == "Alice"
    assert data["user"]["email"] == "alice@example.com"

    cookies = response.headers.get_list("set-cookie")
    assert any("Path=/api" in cookie and "HttpOnly" in cookie for cookie in cookies)
    assert any("Path=/ws" in cookie for cookie in cookies)

    user = decode_access_token(access_cookie(response))
    assert user.user_id == data["user"]["id"]
    assert user.session_id


@pytest.mark.asyncio
async def test_signup_rejects_duplicate_email(client: AsyncClient, alice):
    response = await client.post("/api/auth/signup", json={
        "name": "Alice Again",
        "email": "alice@example.com",
        "password": "hunter22",
    })

    assert response.status_code == 409
    assert response.json()["detail"]["error"] == "email_taken"


@pytest.mark.asyncio
async def test_signup_rejects_invalid_email(client: AsyncClient):
    response = await client.post("/api/auth/signup", json={
        "name": "Alice",
        "email": "not-an-email",
        "password": "hunter22",
    })

    assert response.status_code == 422


@pytest.mark.asyncio
async def test_login_round_trip(client: AsyncClient, store):
    await client.post("/api/auth/signup", json={
        "name": "Bob",
        "email": "bob@example.com",
        "password": "correct horse",
    })

    bad = await client.post("/api/auth/login", json={"email": "bob@example.com", "password": "wrong"})
    assert bad.status_code == 401
    assert bad.json()["detail"]["error"] == "invalid_credentials"

    good = await client.post("/api/auth/login", json={"email": "BOB@example.com", "password": "correct horse"})
    assert good.status_code == 200
    assert good.json()["user"]["display_name"] == "Bob"

    token = access_cookie(good)
    me = await client.get("/api/auth/me", headers={"Cookie": f"access_token={token}"})
    assert me.status_code == 200
    assert me.json()["email"] == "bob@example.com"


@pytest.mark.asyncio
async def test_login_unknown_email(client: AsyncClient):
    response = await client.post("/api/auth/login", json={"email": "ghost@example.com", "password": "whatever"})

    assert response.status_code == 401


@pytest.mark.asyncio
async def test_me_requires_token(client: AsyncClient):
    response = await client.get("/api/auth/me")

    assert response.status_code == 401
    assert response.json()["detail"]["error"] == "not_authenticated"


@pytest.mark.asyncio
async def test_me_rejects_tampered_token(client: AsyncClient, alice):
    token, _ = create_access_token(alice.id, "Alice", "s1")

    response = await client.get("/api/auth/me", headers={"Cookie": f"access_token={token}x"})

    assert response.status_code == 401
    assert response.json()["detail"]["error"] == "invalid_token"


@pytest.mark.asyncio
async def test_logout_discards_session_state(client: AsyncClient, alice):
    session = app.state.sessions.get("s-logout", alice.id)
    session.set_draft("a_b", "half-written")

    response = await client.post("/api/auth/logout", headers=auth_headers(alice.id, "Alice", "s-logout"))

    assert response.status_code == 200
    assert app.state.sessions.peek("s-logout") is None
    assert session.drafts == {}
    assert any("access_token=" in cookie for cookie in response.headers.get_list("set-cookie"))


@pytest.mark.asyncio
async def test_logout_without_token_still_clears_cookies(client: AsyncClient):
    response = await client.post("/api/auth/logout")

    assert response.status_code == 200
