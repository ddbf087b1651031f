from unittest.mock import AsyncMock

import pytest
from httpx import AsyncClient

from chatty.errors import BackendError
from chatty.main import app
from chatty.utils.identity import chat_id

from conftest import auth_headers


@pytest.mark.asyncio
async def test_send_message(client: AsyncClient, store, alice, bob):
    cid = chat_id(alice.id, bob.id)

    response = await client.post(
        "/api/messages",
        json={"conversation_id": cid, "text": "hello"},
        headers=auth_headers(alice.id, "Alice"),
    )

    assert response.status_code == 201
    data = response.json()
    assert data["sender_id"] == alice.id
    assert data["created_at"] is not None
    assert (await store.get_conversation(cid)).unread_for(bob.id) == 1


@pytest.mark.asyncio
async def test_send_failure_returns_restored_draft(client: AsyncClient, store, alice, bob, monkeypatch):
    cid = chat_id(alice.id, bob.id)
    monkeypatch.setattr(store, "add_message", AsyncMock(side_effect=BackendError("offline")))

    response = await client.post(
        "/api/messages",
        json={"conversation_id": cid, "text": "did this send?"},
        headers=auth_headers(alice.id, "Alice", "alice-session"),
    )

    assert response.status_code == 503
    detail = response.json()["detail"]
    assert detail["error"] == "send_failed"
    assert detail["draft"] == "did this send?"
    assert app.state.sessions.peek("alice-session").get_draft(cid) == "did this send?"


@pytest.mark.asyncio
async def test_send_requires_content(client: AsyncClient, alice, bob):
    response = await client.post(
        "/api/messages",
        json={"conversation_id": chat_id(alice.id, bob.id), "text": "   "},
        headers=auth_headers(alice.id, "Alice"),
    )

    assert response.status_code == 422


@pytest.mark.asyncio
async def test_send_to_foreign_conversation_is_forbidden(client: AsyncClient, alice, bob):
    response = await client.post(
        "/api/messages",
        json={"conversation_id": chat_id(bob.id, "carol"), "text": "hi"},
        headers=auth_headers(alice.id, "Alice"),
    )

    assert response.status_code == 403


@pytest.mark.asyncio
async def test_thread_snapshot_with_separators_and_read_acks(client: AsyncClient, store, alice, bob):
    cid = chat_id(alice.id, bob.id)
    await client.post(
        "/api/messages",
        json={"conversation_id": cid, "text": "first"},
        headers=auth_headers(bob.id, "Bob"),
    )
    await client.post(
        "/api/messages",
        json={"conversation_id": cid, "text": "second"},
        headers=auth_headers(bob.id, "Bob"),
    )

    response = await client.get(
        f"/api/messages/{cid}", params={"tz": "Asia/Tokyo"}, headers=auth_headers(alice.id, "Alice")
    )

    assert response.status_code == 200
    snapshot = response.json()
    kinds = [item["kind"] for item in snapshot["items"]]
    assert kinds[0] == "date_separator"
    assert kinds.count("message") == 2
    assert snapshot["scroll_to_latest"] is True
    assert [item["message"]["text"] for item in snapshot["items"] if item["kind"] == "message"] == ["first", "second"]

    assert all(message.read for message in await store.list_messages(cid))
    assert (await store.get_conversation(cid)).unread_for(alice.id) == 0


@pytest.mark.asyncio
async def test_thread_rejects_unknown_timezone(client: AsyncClient, alice, bob):
    response = await client.get(
        f"/api/messages/{chat_id(alice.id, bob.id)}",
        params={"tz": "Not/AZone"},
        headers=auth_headers(alice.id, "Alice"),
    )

    assert response.status_code == 400
    assert response.json()["detail"]["error"] == "invalid_timezone"


@pytest.mark.asyncio
async def test_thread_rejects_malformed_conversation_id(client: AsyncClient, alice):
    response = await client.get("/api/messages/not-a-chat", headers=auth_headers(alice.id, "Alice"))

    assert response.status_code == 400
    assert response.json()["detail"]["error"] == "invalid_identity"
