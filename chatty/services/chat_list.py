"""
Chat list reconciliation.

Merges the live set of a user's conversations with counterpart profiles
and the session's drafts into the list the client renders.
"""

import asyncio
import logging
from typing import Awaitable, Callable, Dict, Iterable, List, Mapping, Optional, Set

from chatty.config import settings
from chatty.errors import BackendError, ChatError
from chatty.logging_config import log_profile_dropped
from chatty.schemas.conversation import ChatListEntry, Conversation
from chatty.schemas.message import LastMessage
from chatty.schemas.user import UserProfile
from chatty.services.live_query import LiveQuery
from chatty.services.session import SessionStore
from chatty.services.telemetry import increment_counter
from chatty.store.base import DocumentStore

logger = logging.getLogger("chatty.chat_list")

ATTACHMENT_PREVIEW = "Sent an attachment"

ChatListCallback = Callable[[List[ChatListEntry]], Awaitable[None]]


def preview_text(last_message: Optional[LastMessage]) -> Optional[str]:
    if last_message is None:
        return None
    if last_message.text:
        return last_message.text
    if last_message.attachment_url:
        return ATTACHMENT_PREVIEW
    return None


def other_participant(conversation: Conversation, user_id: str) -> Optional[str]:
    others = [participant for participant in conversation.participant_ids if participant != user_id]
    if len(others) != 1 or len(conversation.participant_ids) != 2:
        return None
    return others[0]


def build_chat_list(
    user_id: str,
    conversations: Iterable[Conversation],
    profiles: Mapping[str, UserProfile],
    drafts: Mapping[str, str],
    page_size: Optional[int] = None,
) -> List[ChatListEntry]:
    """
    Newest last message first, conversations without messages last.
    Ties keep stream order. A draft replaces the preview but never moves
    the conversation. Conversations whose counterpart is unknown are left out.
    """
    dated: List[ChatListEntry] = []
    undated: List[ChatListEntry] = []

    for conversation in conversations:
        counterpart = other_participant(conversation, user_id)
        if counterpart is None:
            continue
        profile = profiles.get(counterpart)
        if profile is None:
            continue

        draft = drafts.get(conversation.id)
        last_message = conversation.last_message
        last_message_at = last_message.created_at if last_message else None

        entry = ChatListEntry(
            conversation_id=conversation.id,
            counterpart=profile,
            last_message=last_message,
            last_message_at=last_message_at,
            preview=draft if draft else preview_text(last_message),
            has_draft=bool(draft),
            unread_count=conversation.unread_for(user_id),
        )
        if last_message_at is None:
            undated.append(entry)
        else:
            dated.append(entry)

    # reverse=True keeps equal keys in their original order
    dated.sort(key=lambda entry: entry.last_message_at, reverse=True)
    ordered = dated + undated
    if page_size is not None:
        return ordered[:page_size]
    return ordered


class ChatListReconciler:
    """
    Keeps one user's chat list current.

    `apply` never waits on profile lookups: it publishes with whatever is
    cached and re-publishes as each missing counterpart resolves.
    """

    def __init__(
        self,
        store: DocumentStore,
        session: SessionStore,
        user_id: str,
        on_change: Optional[ChatListCallback] = None,
        page_size: Optional[int] = None,
    ):
        self._store = store
        self._session = session
        self._user_id = user_id
        self._on_change = on_change
        self._page_size = page_size or settings.CHAT_LIST_PAGE_SIZE
        self._conversations: List[Conversation] = []
        self._lookups: Dict[str, asyncio.Task] = {}
        self._unresolvable: Set[str] = set()
        self._pending_publishes: Set[asyncio.Task] = set()
        self._closed = False
        self.entries: List[ChatListEntry] = []
        session.add_draft_listener(self._on_draft_changed)

    @property
    def resolving(self) -> Set[str]:
        return set(self._lookups)

    async def apply(self, conversations: Iterable[Conversation]) -> List[ChatListEntry]:
        """Take a new snapshot of the user's conversations"""
        self._conversations = list(conversations)
        self._schedule_lookups()
        await self._publish()
        return self.entries

    async def wait_resolved(self) -> List[ChatListEntry]:
        """Wait for every outstanding profile lookup (one-shot callers)"""
        while self._lookups:
            await asyncio.gather(*list(self._lookups.values()), return_exceptions=True)
        return self.entries

    async def run(self, live_query: LiveQuery[List[Conversation]]) -> None:
        """Follow a live query until it is closed or this task is cancelled"""
        try:
            async with live_query:
                async for conversations in live_query:
                    await self.apply(conversations)
        finally:
            self.close()

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._session.remove_draft_listener(self._on_draft_changed)
        for task in list(self._lookups.values()) + list(self._pending_publishes):
            task.cancel()
        self._lookups.clear()
        self._pending_publishes.clear()

    def _schedule_lookups(self) -> None:
        for conversation in self._conversations:
            counterpart = other_participant(conversation, self._user_id)
            if counterpart is None:
                continue
            if (
                counterpart in self._session.profiles
                or counterpart in self._unresolvable
                or counterpart in self._lookups
            ):
                continue
            self._lookups[counterpart] = asyncio.create_task(self._resolve(counterpart))

    async def _resolve(self, user_id: str) -> None:
        try:
            profile = await self._store.get_profile(user_id)
        except BackendError as exc:
            # Transient: retried on the next snapshot
            log_profile_dropped(user_id, exc)
            increment_counter("profile_lookup_failures_total")
            return
        except ChatError as exc:
            self._unresolvable.add(user_id)
            log_profile_dropped(user_id, exc)
            return
        finally:
            self._lookups.pop(user_id, None)

        self._session.cache_profile(profile)
        if not self._closed:
            await self._publish()

    def _on_draft_changed(self, conversation_id: str) -> None:
        if self._closed:
            return
        if not any(conversation.id == conversation_id for conversation in self._conversations):
            return
        task = asyncio.create_task(self._publish())
        self._pending_publishes.add(task)
        task.add_done_callback(self._pending_publishes.discard)

    async def _publish(self) -> None:
        self.entries = build_chat_list(
            self._user_id,
            self._conversations,
            self._session.profiles,
            self._session.drafts,
            self._page_size,
        )
        if self._on_change is not None:
            await self._on_change(self.entries)
