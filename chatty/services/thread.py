"""
Message thread reconciliation.

Turns one conversation's live message log into the rendered thread:
ordered messages, day separators, auto-scroll, and read acknowledgements
for anything the viewer has not seen yet.
"""

import asyncio
from datetime import date, datetime, timezone, tzinfo
from typing import Awaitable, Callable, Iterable, List, Optional, Set
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from chatty.config import settings
from chatty.errors import InvalidTimezoneError
from chatty.schemas.conversation import Conversation
from chatty.schemas.message import Message, ThreadItem, ThreadSnapshot
from chatty.services.live_query import LiveQuery
from chatty.services.messaging import acknowledge_read, reset_unread
from chatty.services.session import SessionStore
from chatty.store.base import DocumentStore


_EPOCH = datetime.min.replace(tzinfo=timezone.utc)

ThreadCallback = Callable[[ThreadSnapshot], Awaitable[None]]


def order_messages(messages: Iterable[Message]) -> List[Message]:
    """
    Ascending by creation time. Equal timestamps keep document order;
    messages without a committed timestamp go last, in document order.
    """
    return sorted(
        messages,
        key=lambda message: (message.created_at is None, message.created_at or _EPOCH),
    )


def resolve_timezone(name: Optional[str] = None) -> tzinfo:
    """Viewer time zone by IANA name, defaulting to DEFAULT_TIMEZONE"""
    try:
        return ZoneInfo(name or settings.DEFAULT_TIMEZONE)
    except (ZoneInfoNotFoundError, ValueError) as exc:
        raise InvalidTimezoneError(f"Unknown time zone: {name}") from exc


def local_day(moment: datetime, tz: tzinfo) -> date:
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(tz).date()


def insert_date_separators(messages: Iterable[Message], tz: tzinfo = timezone.utc) -> List[ThreadItem]:
    """
    Put a separator before the first timestamped message and before every
    message whose local day differs from the last timestamped message's day.
    Messages without a timestamp never start a separator.
    """
    items: List[ThreadItem] = []
    previous_day: Optional[date] = None

    for message in messages:
        if message.created_at is not None:
            day = local_day(message.created_at, tz)
            if day != previous_day:
                items.append(ThreadItem(kind="date_separator", day=day))
                previous_day = day
        items.append(ThreadItem(kind="message", message=message))

    return items


def unread_from_others(messages: Iterable[Message], viewer_id: str) -> List[Message]:
    return [
        message for message in messages
        if message.sender_id != viewer_id and not message.read
    ]


class MessageThreadReconciler:
    """Live view of one conversation for one viewer"""

    def __init__(
        self,
        store: DocumentStore,
        session: SessionStore,
        conversation_id: str,
        viewer_id: str,
        on_change: Optional[ThreadCallback] = None,
        tz: tzinfo = timezone.utc,
    ):
        self._store = store
        self._session = session
        self._conversation_id = conversation_id
        self._viewer_id = viewer_id
        self._on_change = on_change
        self._tz = tz
        self._tail_id: Optional[str] = None
        # Issued at most once per message for the life of the view
        self._acknowledged: Set[str] = set()
        self._tasks: Set[asyncio.Task] = set()
        self._closed = False
        self.snapshot: Optional[ThreadSnapshot] = None

    @property
    def conversation_id(self) -> str:
        return self._conversation_id

    async def apply(self, messages: Iterable[Message]) -> ThreadSnapshot:
        ordered = order_messages(messages)
        self._session.cache_messages(self._conversation_id, ordered)

        self._acknowledge(ordered)

        tail_id = ordered[-1].id if ordered else None
        scroll_to_latest = tail_id is not None and tail_id != self._tail_id
        self._tail_id = tail_id

        self.snapshot = ThreadSnapshot(
            conversation_id=self._conversation_id,
            items=insert_date_separators(ordered, self._tz),
            scroll_to_latest=scroll_to_latest,
        )
        if self._on_change is not None:
            await self._on_change(self.snapshot)
        return self.snapshot

    async def drain(self) -> None:
        """Wait for outstanding read acknowledgements"""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def run(
        self,
        live_query: LiveQuery[List[Message]],
        conversation_query: Optional[LiveQuery[Optional[Conversation]]] = None,
    ) -> None:
        """
        Follow the message log until closed or cancelled. With
        `conversation_query`, the viewer's unread counter is also held at
        zero while the view is open.
        """
        follower = None
        if conversation_query is not None:
            follower = asyncio.create_task(self._follow_unread(conversation_query))
        try:
            async with live_query:
                async for messages in live_query:
                    await self.apply(messages)
        finally:
            if follower is not None:
                follower.cancel()
                await asyncio.gather(follower, return_exceptions=True)
            self.close()

    def reconcile_unread(self, conversation: Optional[Conversation]) -> None:
        """Reset the viewer's counter when an increment lands after the read"""
        if self._closed or conversation is None:
            return
        if conversation.unread_for(self._viewer_id) > 0:
            self._spawn(reset_unread(self._store, self._conversation_id, self._viewer_id))

    async def _follow_unread(self, live_query: LiveQuery[Optional[Conversation]]) -> None:
        async with live_query:
            async for conversation in live_query:
                self.reconcile_unread(conversation)

    def close(self) -> None:
        # Acknowledgements already issued are left to finish
        self._closed = True

    def _acknowledge(self, ordered: List[Message]) -> None:
        if self._closed:
            return
        pending = [
            message for message in unread_from_others(ordered, self._viewer_id)
            if message.id not in self._acknowledged
        ]
        if not pending:
            return

        for message in pending:
            self._acknowledged.add(message.id)
            self._spawn(acknowledge_read(self._store, self._conversation_id, message.id))
        self._spawn(reset_unread(self._store, self._conversation_id, self._viewer_id))

    def _spawn(self, coro: Awaitable[None]) -> None:
        task = asyncio.ensure_future(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
