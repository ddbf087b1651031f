"""
In-process document store.

Used for local development and the test suite. Data lives for the life of
the process; change topics are published directly on the feed.
"""

from datetime import datetime, timezone
from typing import Dict, Iterable, List, Optional, Tuple
from uuid import uuid4

from chatty.errors import ConflictError, NotFoundError
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

_EPOCH = datetime.min.replace(tzinfo=timezone.utc)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class InMemoryDocumentStore(DocumentStore):
    def __init__(self, feed: Optional[ChangeFeed] = None):
        super().__init__(feed)
        self._users: Dict[str, UserProfile] = {}
        self._password_hashes: Dict[str, str] = {}
        self._emails: Dict[str, str] = {}
        self._conversations: Dict[str, Conversation] = {}
        self._messages: Dict[str, List[Message]] = {}

    def _publish_conversation(self, conversation: Conversation) -> None:
        for user_id in conversation.participant_ids:
            self.feed.publish(conversations_topic(user_id))

    async def create_user(self, email: str, display_name: str, password_hash: str) -> UserProfile:
        email = email.lower()
        if email in self._emails:
            raise ConflictError("This email is already in use.")

        profile = UserProfile(
            id=str(uuid4()),
            display_name=display_name,
            email=email,
            last_active=_utcnow(),
        )
        self._users[profile.id] = profile
        self._password_hashes[profile.id] = password_hash
        self._emails[email] = profile.id
        return profile.model_copy()

    async def find_credentials(self, email: str) -> Optional[Tuple[UserProfile, str]]:
        user_id = self._emails.get(email.lower())
        if user_id is None:
            return None
        return self._users[user_id].model_copy(), self._password_hashes[user_id]

    async def get_profile(self, user_id: str) -> UserProfile:
        profile = self._users.get(user_id)
        if profile is None:
            raise NotFoundError("User not found")
        return profile.model_copy()

    async def search_profiles(self, prefix: str, limit: int) -> List[UserProfile]:
        prefix = prefix.lower()
        matches = [
            profile for profile in self._users.values()
            if profile.display_name.lower().startswith(prefix)
        ]
        matches.sort(key=lambda profile: (profile.display_name.lower(), profile.id))
        return [profile.model_copy() for profile in matches[:limit]]

    async def update_profile(
        self,
        user_id: str,
        display_name: Optional[str] = None,
        avatar_url: Optional[str] = None,
    ) -> UserProfile:
        profile = self._users.get(user_id)
        if profile is None:
            raise NotFoundError("User not found")

        if display_name is not None:
            profile.display_name = display_name
        if avatar_url is not None:
            profile.avatar_url = avatar_url or None
        self.feed.publish(profile_topic(user_id))
        return profile.model_copy()

    async def touch_user(self, user_id: str) -> None:
        profile = self._users.get(user_id)
        if profile is None:
            raise NotFoundError("User not found")
        profile.last_active = _utcnow()
        self.feed.publish(profile_topic(user_id))

    async def upsert_conversation(self, conversation_id: str, participant_ids: Iterable[str]) -> None:
        if conversation_id in self._conversations:
            return
        conversation = Conversation(
            id=conversation_id,
            participant_ids=sorted(participant_ids),
            created_at=_utcnow(),
        )
        self._conversations[conversation_id] = conversation
        self._messages.setdefault(conversation_id, [])
        self._publish_conversation(conversation)

    async def get_conversation(self, conversation_id: str) -> Conversation:
        conversation = self._conversations.get(conversation_id)
        if conversation is None:
            raise NotFoundError("Conversation not found")
        return conversation.model_copy(deep=True)

    async def list_conversations(self, user_id: str, limit: int) -> List[Conversation]:
        owned = [
            conversation for conversation in self._conversations.values()
            if user_id in conversation.participant_ids
        ]

        def activity(conversation: Conversation) -> datetime:
            if conversation.last_message and conversation.last_message.created_at:
                return conversation.last_message.created_at
            return conversation.created_at or _EPOCH

        owned.sort(key=activity, reverse=True)
        return [conversation.model_copy(deep=True) for conversation in owned[:limit]]

    async def record_last_message(self, conversation_id: str, message: Message) -> None:
        conversation = self._conversations.get(conversation_id)
        if conversation is None:
            raise NotFoundError("Conversation not found")

        conversation.last_message = LastMessage.from_message(message)
        for user_id in conversation.participant_ids:
            if user_id != message.sender_id:
                conversation.unread_counts[user_id] = conversation.unread_for(user_id) + 1
        self._publish_conversation(conversation)

    async def reset_unread(self, conversation_id: str, user_id: str) -> None:
        conversation = self._conversations.get(conversation_id)
        if conversation is None:
            raise NotFoundError("Conversation not found")
        if conversation.unread_for(user_id) == 0:
            return
        conversation.unread_counts[user_id] = 0
        self._publish_conversation(conversation)

    async def add_message(
        self,
        conversation_id: str,
        sender_id: str,
        text: Optional[str],
        attachment_url: Optional[str] = None,
    ) -> Message:
        if conversation_id not in self._conversations:
            raise NotFoundError("Conversation not found")

        message = Message(
            id=str(uuid4()),
            conversation_id=conversation_id,
            sender_id=sender_id,
            text=text,
            attachment_url=attachment_url,
            created_at=_utcnow(),
        )
        self._messages[conversation_id].append(message)
        self.feed.publish(messages_topic(conversation_id))
        return message.model_copy()

    async def list_messages(self, conversation_id: str) -> List[Message]:
        return [message.model_copy() for message in self._messages.get(conversation_id, [])]

    async def mark_message_read(self, conversation_id: str, message_id: str) -> None:
        for message in self._messages.get(conversation_id, []):
            if message.id == message_id:
                if not message.read:
                    message.read = True
                    self.feed.publish(messages_topic(conversation_id))
                return
        raise NotFoundError("Message not found")

    async def ping(self) -> None:
        return None
