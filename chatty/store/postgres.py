"""
PostgreSQL document store using asyncpg.

Writes notify the `chatty_changes` channel with the affected change topics;
a dedicated listener connection feeds those notifications into the change
feed, so live queries in every service process see every write.
"""

import asyncio
import json
import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Iterable, List, Optional, Tuple

import asyncpg

from chatty.errors import BackendError, ConflictError, NotFoundError, PermissionDeniedError
from chatty.schemas.conversation import Conversation
from chatty.schemas.message import LastMessage, Message
from chatty.schemas.user import UserProfile
from chatty.services.live_query import (
    ChangeFeed,
    conversations_topic,
    messages_topic,
    profile_topic,
)
from chatty.store.base import DocumentStore

logger = logging.getLogger("chatty.store")

CHANGE_CHANNEL = "chatty_changes"

_PROFILE_COLUMNS = "id, display_name, email, avatar_url, last_active"
_CONVERSATION_COLUMNS = """
    id, participant_ids, unread_counts, created_at,
    last_message_id, last_message_text, last_message_attachment_url,
    last_message_sender_id, last_message_at
"""
_MESSAGE_COLUMNS = "id, conversation_id, sender_id, text, attachment_url, created_at, read"


@asynccontextmanager
async def translate_errors() -> AsyncIterator[None]:
    """Map driver failures onto the chat error taxonomy"""
    try:
        yield
    except asyncpg.UniqueViolationError as exc:
        raise ConflictError("Record already exists") from exc
    except asyncpg.InsufficientPrivilegeError as exc:
        raise PermissionDeniedError("Operation rejected by the store") from exc
    except (asyncpg.PostgresError, asyncpg.InterfaceError, OSError, asyncio.TimeoutError) as exc:
        raise BackendError(f"Document store unavailable: {type(exc).__name__}") from exc


async def _init_connection(conn: asyncpg.Connection):
    await conn.set_type_codec(
        "jsonb", encoder=json.dumps, decoder=json.loads, schema="pg_catalog"
    )


async def _init_schema(conn: asyncpg.Connection):
    """Create the document tables if they do not exist yet."""
    await conn.execute("CREATE EXTENSION IF NOT EXISTS pgcrypto")

    await conn.execute(
        """
        CREATE TABLE IF NOT EXISTS users (
            id TEXT PRIMARY KEY DEFAULT gen_random_uuid()::text,
            email VARCHAR(254) UNIQUE NOT NULL,
            password_hash VARCHAR(255) NOT NULL,
            display_name VARCHAR(80) NOT NULL,
            avatar_url TEXT,
            created_at TIMESTAMP WITH TIME ZONE DEFAULT NOW(),
            last_active TIMESTAMP WITH TIME ZONE DEFAULT NOW()
        )
    """
    )

    await conn.execute(
        """
        CREATE INDEX IF NOT EXISTS idx_users_display_name
            ON users(lower(display_name))
    """
    )

    await conn.execute(
        """
        CREATE TABLE IF NOT EXISTS conversations (
            id TEXT PRIMARY KEY,
            participant_ids TEXT[] NOT NULL,
            unread_counts JSONB NOT NULL DEFAULT '{}'::jsonb,
            last_message_id TEXT,
            last_message_text TEXT,
            last_message_attachment_url TEXT,
            last_message_sender_id TEXT,
            last_message_at TIMESTAMP WITH TIME ZONE,
            created_at TIMESTAMP WITH TIME ZONE DEFAULT NOW()
        )
    """
    )

    await conn.execute(
        """
        CREATE INDEX IF NOT EXISTS idx_conversations_participants
            ON conversations USING GIN (participant_ids)
    """
    )

    await conn.execute(
        """
        CREATE TABLE IF NOT EXISTS messages (
            id TEXT PRIMARY KEY DEFAULT gen_random_uuid()::text,
            seq BIGSERIAL,
            conversation_id TEXT NOT NULL REFERENCES conversations(id) ON DELETE CASCADE,
            sender_id TEXT NOT NULL,
            text TEXT,
            attachment_url TEXT,
            created_at TIMESTAMP WITH TIME ZONE DEFAULT NOW(),
            read BOOLEAN NOT NULL DEFAULT FALSE
        )
    """
    )

    await conn.execute(
        """
        CREATE INDEX IF NOT EXISTS idx_messages_conversation_order
            ON messages(conversation_id, created_at, seq)
    """
    )


def _profile_from_row(row) -> UserProfile:
    return UserProfile(
        id=row["id"],
        display_name=row["display_name"],
        email=row["email"],
        avatar_url=row["avatar_url"],
        last_active=row["last_active"],
    )


def _conversation_from_row(row) -> Conversation:
    last_message = None
    if row["last_message_id"]:
        last_message = LastMessage(
            id=row["last_message_id"],
            text=row["last_message_text"],
            attachment_url=row["last_message_attachment_url"],
            sender_id=row["last_message_sender_id"],
            created_at=row["last_message_at"],
        )
    return Conversation(
        id=row["id"],
        participant_ids=list(row["participant_ids"]),
        last_message=last_message,
        unread_counts={key: int(value) for key, value in (row["unread_counts"] or {}).items()},
        created_at=row["created_at"],
    )


def _message_from_row(row) -> Message:
    return Message(
        id=row["id"],
        conversation_id=row["conversation_id"],
        sender_id=row["sender_id"],
        text=row["text"],
        attachment_url=row["attachment_url"],
        created_at=row["created_at"],
        read=row["read"],
    )


class PostgresDocumentStore(DocumentStore):
    def __init__(
        self,
        pool: asyncpg.Pool,
        listener: Optional[asyncpg.Connection] = None,
        feed: Optional[ChangeFeed] = None,
    ):
        super().__init__(feed)
        self._pool = pool
        self._listener = listener

    @classmethod
    async def connect(cls, dsn: str, feed: Optional[ChangeFeed] = None) -> "PostgresDocumentStore":
        """Open the pool, create the schema and start listening for changes"""
        pool = await asyncpg.create_pool(
            dsn, min_size=2, max_size=20, command_timeout=60, init=_init_connection
        )
        async with pool.acquire() as conn:
            await _init_schema(conn)

        store = cls(pool, feed=feed)
        store._listener = await asyncpg.connect(dsn)
        await store._listener.add_listener(CHANGE_CHANNEL, store._on_notification)
        logger.info("PostgreSQL document store ready")
        return store

    def _on_notification(self, _conn, _pid, _channel, payload: str) -> None:
        self.feed.publish(payload)

    @asynccontextmanager
    async def _connection(self) -> AsyncIterator[asyncpg.Connection]:
        async with translate_errors():
            async with self._pool.acquire() as conn:
                yield conn

    async def _notify(self, conn, topics: Iterable[str]) -> None:
        await conn.execute(
            "SELECT pg_notify($1, topic) FROM unnest($2::text[]) AS topic",
            CHANGE_CHANNEL,
            list(topics),
        )

    async def create_user(self, email: str, display_name: str, password_hash: str) -> UserProfile:
        try:
            async with self._connection() as conn:
                row = await conn.fetchrow(
                    f"""
                    INSERT INTO users (email, display_name, password_hash)
                    VALUES ($1, $2, $3)
                    RETURNING {_PROFILE_COLUMNS}
                    """,
                    email.lower(),
                    display_name,
                    password_hash,
                )
        except ConflictError:
            raise ConflictError("This email is already in use.")
        return _profile_from_row(row)

    async def find_credentials(self, email: str) -> Optional[Tuple[UserProfile, str]]:
        async with self._connection() as conn:
            row = await conn.fetchrow(
                f"SELECT {_PROFILE_COLUMNS}, password_hash FROM users WHERE email = $1",
                email.lower(),
            )
        if not row:
            return None
        return _profile_from_row(row), row["password_hash"]

    async def get_profile(self, user_id: str) -> UserProfile:
        async with self._connection() as conn:
            row = await conn.fetchrow(
                f"SELECT {_PROFILE_COLUMNS} FROM users WHERE id = $1",
                user_id,
            )
        if not row:
            raise NotFoundError("User not found")
        return _profile_from_row(row)

    async def search_profiles(self, prefix: str, limit: int) -> List[UserProfile]:
        async with self._connection() as conn:
            rows = await conn.fetch(
                f"""
                SELECT {_PROFILE_COLUMNS}
                FROM users
                WHERE starts_with(lower(display_name), $1)
                ORDER BY lower(display_name), id
                LIMIT $2
                """,
                prefix.lower(),
                limit,
            )
        return [_profile_from_row(row) for row in rows]

    async def update_profile(
        self,
        user_id: str,
        display_name: Optional[str] = None,
        avatar_url: Optional[str] = None,
    ) -> UserProfile:
        async with self._connection() as conn:
            row = await conn.fetchrow(
                f"""
                UPDATE users
                SET display_name = COALESCE($2, display_name),
                    avatar_url = CASE WHEN $3::text IS NULL THEN avatar_url
                                      ELSE NULLIF($3::text, '') END
                WHERE id = $1
                RETURNING {_PROFILE_COLUMNS}
                """,
                user_id,
                display_name,
                avatar_url,
            )
            if not row:
                raise NotFoundError("User not found")
            await self._notify(conn, [profile_topic(user_id)])
        return _profile_from_row(row)

    async def touch_user(self, user_id: str) -> None:
        async with self._connection() as conn:
            result = await conn.execute(
                "UPDATE users SET last_active = NOW() WHERE id = $1",
                user_id,
            )
            if result == "UPDATE 0":
                raise NotFoundError("User not found")
            await self._notify(conn, [profile_topic(user_id)])

    async def upsert_conversation(self, conversation_id: str, participant_ids: Iterable[str]) -> None:
        participants = sorted(participant_ids)
        async with self._connection() as conn:
            created = await conn.fetchval(
                """
                INSERT INTO conversations (id, participant_ids)
                VALUES ($1, $2)
                ON CONFLICT (id) DO NOTHING
                RETURNING TRUE
                """,
                conversation_id,
                participants,
            )
            if created:
                await self._notify(conn, [conversations_topic(user_id) for user_id in participants])

    async def get_conversation(self, conversation_id: str) -> Conversation:
        async with self._connection() as conn:
            row = await conn.fetchrow(
                f"SELECT {_CONVERSATION_COLUMNS} FROM conversations WHERE id = $1",
                conversation_id,
            )
        if not row:
            raise NotFoundError("Conversation not found")
        return _conversation_from_row(row)

    async def list_conversations(self, user_id: str, limit: int) -> List[Conversation]:
        async with self._connection() as conn:
            rows = await conn.fetch(
                f"""
                SELECT {_CONVERSATION_COLUMNS}
                FROM conversations
                WHERE $1 = ANY(participant_ids)
                ORDER BY COALESCE(last_message_at, created_at) DESC, id ASC
                LIMIT $2
                """,
                user_id,
                limit,
            )
        return [_conversation_from_row(row) for row in rows]

    async def record_last_message(self, conversation_id: str, message: Message) -> None:
        async with self._connection() as conn:
            participants = await conn.fetchval(
                """
                UPDATE conversations
                SET last_message_id = $2,
                    last_message_text = $3,
                    last_message_attachment_url = $4,
                    last_message_sender_id = $5,
                    last_message_at = $6,
                    unread_counts = unread_counts || COALESCE((
                        SELECT jsonb_object_agg(
                            participant,
                            COALESCE((unread_counts->>participant)::int, 0) + 1
                        )
                        FROM unnest(participant_ids) AS participant
                        WHERE participant <> $5
                    ), '{}'::jsonb)
                WHERE id = $1
                RETURNING participant_ids
                """,
                conversation_id,
                message.id,
                message.text,
                message.attachment_url,
                message.sender_id,
                message.created_at,
            )
            if participants is None:
                raise NotFoundError("Conversation not found")
            await self._notify(conn, [conversations_topic(user_id) for user_id in participants])

    async def reset_unread(self, conversation_id: str, user_id: str) -> None:
        async with self._connection() as conn:
            participants = await conn.fetchval(
                """
                UPDATE conversations
                SET unread_counts = jsonb_set(unread_counts, ARRAY[$2::text], '0'::jsonb)
                WHERE id = $1
                  AND COALESCE((unread_counts->>$2::text)::int, 0) <> 0
                RETURNING participant_ids
                """,
                conversation_id,
                user_id,
            )
            if participants is None:
                exists = await conn.fetchval(
                    "SELECT EXISTS(SELECT 1 FROM conversations WHERE id = $1)",
                    conversation_id,
                )
                if not exists:
                    raise NotFoundError("Conversation not found")
                return
            await self._notify(conn, [conversations_topic(participant) for participant in participants])

    async def add_message(
        self,
        conversation_id: str,
        sender_id: str,
        text: Optional[str],
        attachment_url: Optional[str] = None,
    ) -> Message:
        try:
            async with self._connection() as conn:
                row = await conn.fetchrow(
                    f"""
                    INSERT INTO messages (conversation_id, sender_id, text, attachment_url)
                    VALUES ($1, $2, $3, $4)
                    RETURNING {_MESSAGE_COLUMNS}
                    """,
                    conversation_id,
                    sender_id,
                    text,
                    attachment_url,
                )
                await self._notify(conn, [messages_topic(conversation_id)])
        except BackendError as exc:
            if isinstance(exc.__cause__, asyncpg.ForeignKeyViolationError):
                raise NotFoundError("Conversation not found") from exc
            raise
        return _message_from_row(row)

    async def list_messages(self, conversation_id: str) -> List[Message]:
        async with self._connection() as conn:
            rows = await conn.fetch(
                f"""
                SELECT {_MESSAGE_COLUMNS}
                FROM messages
                WHERE conversation_id = $1
                ORDER BY created_at ASC, seq ASC
                """,
                conversation_id,
            )
        return [_message_from_row(row) for row in rows]

    async def mark_message_read(self, conversation_id: str, message_id: str) -> None:
        async with self._connection() as conn:
            updated = await conn.fetchval(
                """
                UPDATE messages SET read = TRUE
                WHERE id = $1 AND conversation_id = $2 AND read = FALSE
                RETURNING id
                """,
                message_id,
                conversation_id,
            )
            if updated is None:
                exists = await conn.fetchval(
                    "SELECT EXISTS(SELECT 1 FROM messages WHERE id = $1 AND conversation_id = $2)",
                    message_id,
                    conversation_id,
                )
                if not exists:
                    raise NotFoundError("Message not found")
                return
            await self._notify(conn, [messages_topic(conversation_id)])

    async def ping(self) -> None:
        async with self._connection() as conn:
            await asyncio.wait_for(conn.fetchval("SELECT 1"), timeout=5.0)

    async def close(self) -> None:
        if self._listener is not None:
            try:
                await self._listener.remove_listener(CHANGE_CHANNEL, self._on_notification)
            finally:
                await self._listener.close()
                self._listener = None
        await self._pool.close()
