from datetime import datetime, timezone

import asyncpg
import pytest

from chatty.errors import BackendError, ConflictError, NotFoundError, PermissionDeniedError
from chatty.schemas.message import Message
from chatty.services.live_query import ChangeFeed
from chatty.store.postgres import CHANGE_CHANNEL, PostgresDocumentStore, translate_errors

NOW = datetime(2024, 5, 1, 9, 0, tzinfo=timezone.utc)


class FakeConnection:
    def __init__(
        self,
        *,
        fetchrow_value=None,
        fetchrow_side_effect=None,
        fetchval_side_effect=None,
        rows=None,
        execute_result="OK",
    ):
        self._fetchrow_value = fetchrow_value
        self._fetchrow_side_effect = fetchrow_side_effect
        self._fetchval_side_effect = list(fetchval_side_effect or [])
        self._rows = rows or []
        self._execute_result = execute_result
        self.fetchrow_args = None
        self.fetch_args = None
        self.execute_calls = []

    async def fetchrow(self, _query, *args):
        self.fetchrow_args = args
        if self._fetchrow_side_effect is not None:
            raise self._fetchrow_side_effect
        return self._fetchrow_value

    async def fetchval(self, _query, *_args):
        if not self._fetchval_side_effect:
            return None
        value = self._fetchval_side_effect.pop(0)
        if isinstance(value, Exception):
            raise value
        return value

    async def fetch(self, _query, *args):
        self.fetch_args = args
        return self._rows

    async def execute(self, query, *args):
        self.execute_calls.append((query, args))
        if "pg_notify" in query:
            return "SELECT 1"
        return self._execute_result

    def notified_topics(self):
        topics = []
        for query, args in self.execute_calls:
            if "pg_notify" in query:
                assert args[0] == CHANGE_CHANNEL
                topics.extend(args[1])
        return topics


class FakeAcquire:
    def __init__(self, conn, error=None):
        self.conn = conn
        self.error = error

    async def __aenter__(self):
        if self.error is not None:
            raise self.error
        return self.conn

    async def __aexit__(self, _exc_type, _exc, _tb):
        return False


class FakePool:
    def __init__(self, conn, error=None):
        self.conn = conn
        self.error = error
        self.closed = False

    def acquire(self):
        return FakeAcquire(self.conn, self.error)

    async def close(self):
        self.closed = True


def profile_row(user_id="u1", name="Alice"):
    return {
        "id": user_id,
        "display_name": name,
        "email": "alice@example.com",
        "avatar_url": None,
        "last_active": NOW,
    }


def message_row(message_id="m1"):
    return {
        "id": message_id,
        "conversation_id": "u1_u2",
        "sender_id": "u1",
        "text": "hello",
        "attachment_url": None,
        "created_at": NOW,
        "read": False,
    }


def make_store(conn, error=None):
    return PostgresDocumentStore(FakePool(conn, error), feed=ChangeFeed())


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "raised, expected",
    [
        (asyncpg.UniqueViolationError("duplicate key"), ConflictError),
        (asyncpg.InsufficientPrivilegeError("permission denied"), PermissionDeniedError),
        (asyncpg.PostgresError("boom"), BackendError),
        (OSError("connection refused"), BackendError),
    ],
)
async def test_translate_errors(raised, expected):
    with pytest.raises(expected):
        async with translate_errors():
            raise raised


@pytest.mark.asyncio
async def test_create_user_maps_duplicate_email_to_conflict():
    store = make_store(FakeConnection(fetchrow_side_effect=asyncpg.UniqueViolationError("duplicate key")))

    with pytest.raises(ConflictError) as exc:
        await store.create_user("Alice@Example.com", "Alice", "hash")

    assert exc.value.message == "This email is already in use."


@pytest.mark.asyncio
async def test_create_user_lowercases_email():
    conn = FakeConnection(fetchrow_value=profile_row())
    store = make_store(conn)

    profile = await store.create_user("Alice@Example.com", "Alice", "hash")

    assert profile.id == "u1"
    assert conn.fetchrow_args[0] == "alice@example.com"


@pytest.mark.asyncio
async def test_get_profile_not_found():
    store = make_store(FakeConnection(fetchrow_value=None))

    with pytest.raises(NotFoundError):
        await store.get_profile("missing")


@pytest.mark.asyncio
async def test_touch_user_notifies_profile_topic():
    conn = FakeConnection(execute_result="UPDATE 1")
    store = make_store(conn)

    await store.touch_user("u1")

    assert conn.notified_topics() == ["profile:u1"]


@pytest.mark.asyncio
async def test_touch_user_missing_user():
    store = make_store(FakeConnection(execute_result="UPDATE 0"))

    with pytest.raises(NotFoundError):
        await store.touch_user("ghost")


@pytest.mark.asyncio
async def test_upsert_conversation_notifies_only_on_create():
    created = FakeConnection(fetchval_side_effect=[True])
    await make_store(created).upsert_conversation("u1_u2", ["u2", "u1"])
    assert created.notified_topics() == ["conversations:u1", "conversations:u2"]

    existing = FakeConnection(fetchval_side_effect=[None])
    await make_store(existing).upsert_conversation("u1_u2", ["u1", "u2"])
    assert existing.notified_topics() == []


@pytest.mark.asyncio
async def test_record_last_message_notifies_participants():
    conn = FakeConnection(fetchval_side_effect=[["u1", "u2"]])
    message = Message(id="m1", conversation_id="u1_u2", sender_id="u1", text="hi", created_at=NOW)

    await make_store(conn).record_last_message("u1_u2", message)

    assert conn.notified_topics() == ["conversations:u1", "conversations:u2"]


@pytest.mark.asyncio
async def test_reset_unread_noop_when_already_zero():
    conn = FakeConnection(fetchval_side_effect=[None, True])

    await make_store(conn).reset_unread("u1_u2", "u1")

    assert conn.notified_topics() == []


@pytest.mark.asyncio
async def test_reset_unread_missing_conversation():
    conn = FakeConnection(fetchval_side_effect=[None, False])

    with pytest.raises(NotFoundError):
        await make_store(conn).reset_unread("u1_u2", "u1")


@pytest.mark.asyncio
async def test_add_message_to_missing_conversation():
    store = make_store(FakeConnection(fetchrow_side_effect=asyncpg.ForeignKeyViolationError("fk")))

    with pytest.raises(NotFoundError):
        await store.add_message("u1_u2", "u1", "hello")


@pytest.mark.asyncio
async def test_add_message_notifies_thread_topic():
    conn = FakeConnection(fetchrow_value=message_row())

    message = await make_store(conn).add_message("u1_u2", "u1", "hello")

    assert message.created_at == NOW
    assert conn.notified_topics() == ["messages:u1_u2"]


@pytest.mark.asyncio
async def test_mark_message_read_is_idempotent():
    conn = FakeConnection(fetchval_side_effect=[None, True])

    await make_store(conn).mark_message_read("u1_u2", "m1")

    assert conn.notified_topics() == []


@pytest.mark.asyncio
async def test_list_conversations_maps_rows():
    conn = FakeConnection(rows=[{
        "id": "u1_u2",
        "participant_ids": ["u1", "u2"],
        "unread_counts": {"u1": 2},
        "created_at": NOW,
        "last_message_id": "m1",
        "last_message_text": "hello",
        "last_message_attachment_url": None,
        "last_message_sender_id": "u2",
        "last_message_at": NOW,
    }])

    conversations = await make_store(conn).list_conversations("u1", 50)

    assert conversations[0].unread_for("u1") == 2
    assert conversations[0].last_message.sender_id == "u2"
    assert conn.fetch_args == ("u1", 50)


@pytest.mark.asyncio
async def test_unreachable_pool_is_a_backend_error():
    store = make_store(FakeConnection(), error=OSError("connection refused"))

    with pytest.raises(BackendError):
        await store.ping()


def test_notifications_publish_to_change_feed():
    store = make_store(FakeConnection())
    published = []
    store.feed.publish = published.append

    store._on_notification(None, 1, CHANGE_CHANNEL, "messages:u1_u2")

    assert published == ["messages:u1_u2"]
