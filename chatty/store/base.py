"""Abstract document store. All backends must implement this."""

from abc import ABC, abstractmethod
from typing import Iterable, List, Optional, Tuple

from chatty.errors import NotFoundError
from chatty.schemas.conversation import Conversation
from chatty.schemas.message import Message
from chatty.schemas.user import UserProfile
from chatty.services.live_query import (
    ChangeFeed,
    LiveQuery,
    conversations_topic,
    messages_topic,
    profile_topic,
)


class DocumentStore(ABC):
    """
    Durable storage with live queries.

    Timestamps (message `created_at`, profile `last_active`) are assigned
    by the store at write time, never by the caller. Every write publishes
    the change topics it affects on `self.feed`.
    """

    def __init__(self, feed: Optional[ChangeFeed] = None):
        self.feed = feed or ChangeFeed()

    # Accounts

    @abstractmethod
    async def create_user(self, email: str, display_name: str, password_hash: str) -> UserProfile:
        """Provision an account and its profile. Raises ConflictError on duplicate email."""
        ...

    @abstractmethod
    async def find_credentials(self, email: str) -> Optional[Tuple[UserProfile, str]]:
        ...

    # Profiles

    @abstractmethod
    async def get_profile(self, user_id: str) -> UserProfile:
        """Raises NotFoundError if the profile does not exist."""
        ...

    @abstractmethod
    async def search_profiles(self, prefix: str, limit: int) -> List[UserProfile]:
        ...

    @abstractmethod
    async def update_profile(
        self,
        user_id: str,
        display_name: Optional[str] = None,
        avatar_url: Optional[str] = None,
    ) -> UserProfile:
        ...

    @abstractmethod
    async def touch_user(self, user_id: str) -> None:
        """Set the user's last-active timestamp to now."""
        ...

    # Conversations

    @abstractmethod
    async def upsert_conversation(self, conversation_id: str, participant_ids: Iterable[str]) -> None:
        """Create the conversation if absent; leave existing participant data untouched."""
        ...

    @abstractmethod
    async def get_conversation(self, conversation_id: str) -> Conversation:
        ...

    @abstractmethod
    async def list_conversations(self, user_id: str, limit: int) -> List[Conversation]:
        """Conversations the user participates in, most recent activity first."""
        ...

    @abstractmethod
    async def record_last_message(self, conversation_id: str, message: Message) -> None:
        """Point the conversation at `message` and bump every other participant's unread count."""
        ...

    @abstractmethod
    async def reset_unread(self, conversation_id: str, user_id: str) -> None:
        ...

    # Messages

    @abstractmethod
    async def add_message(
        self,
        conversation_id: str,
        sender_id: str,
        text: Optional[str],
        attachment_url: Optional[str] = None,
    ) -> Message:
        ...

    @abstractmethod
    async def list_messages(self, conversation_id: str) -> List[Message]:
        """All messages of a conversation in creation order."""
        ...

    @abstractmethod
    async def mark_message_read(self, conversation_id: str, message_id: str) -> None:
        """Idempotent: marking an already-read message is a no-op."""
        ...

    # Lifecycle

    @abstractmethod
    async def ping(self) -> None:
        ...

    async def close(self) -> None:
        return None

    # Live queries

    def subscribe_conversations(self, user_id: str, limit: int) -> LiveQuery[List[Conversation]]:
        return LiveQuery(
            self.feed,
            [conversations_topic(user_id)],
            lambda: self.list_conversations(user_id, limit),
        )

    def subscribe_conversation(self, conversation_id: str, user_id: str) -> LiveQuery[Optional[Conversation]]:
        """One conversation as seen by `user_id`; None until it exists"""

        async def fetch() -> Optional[Conversation]:
            try:
                return await self.get_conversation(conversation_id)
            except NotFoundError:
                return None

        return LiveQuery(self.feed, [conversations_topic(user_id)], fetch)

    def subscribe_messages(self, conversation_id: str) -> LiveQuery[List[Message]]:
        return LiveQuery(
            self.feed,
            [messages_topic(conversation_id)],
            lambda: self.list_messages(conversation_id),
        )

    def subscribe_profile(self, user_id: str) -> LiveQuery[UserProfile]:
        return LiveQuery(
            self.feed,
            [profile_topic(user_id)],
            lambda: self.get_profile(user_id),
        )
