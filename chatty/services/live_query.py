"""
Live queries over the document store.

Writes publish change topics on a ChangeFeed; a LiveQuery watching any of
those topics re-runs its query and yields the full current result set.
Changes that land between two reads coalesce into a single snapshot.
"""

import asyncio
import logging
from typing import Awaitable, Callable, Dict, Generic, Iterable, Optional, Set, TypeVar

from chatty.errors import BackendError
from chatty.services.telemetry import increment_counter

logger = logging.getLogger("chatty.live_query")

T = TypeVar("T")


def conversations_topic(user_id: str) -> str:
    return f"conversations:{user_id}"


def messages_topic(conversation_id: str) -> str:
    return f"messages:{conversation_id}"


def profile_topic(user_id: str) -> str:
    return f"profile:{user_id}"


class ChangeFeed:
    """Topic -> watcher events. Not thread-safe; lives on one event loop."""

    def __init__(self):
        self._watchers: Dict[str, Set[asyncio.Event]] = {}

    def watch(self, topic: str, event: asyncio.Event) -> None:
        self._watchers.setdefault(topic, set()).add(event)

    def unwatch(self, topic: str, event: asyncio.Event) -> None:
        watchers = self._watchers.get(topic)
        if watchers is None:
            return
        watchers.discard(event)
        if not watchers:
            del self._watchers[topic]

    def publish(self, topic: str) -> None:
        for event in list(self._watchers.get(topic, ())):
            event.set()

    def watcher_count(self, topic: Optional[str] = None) -> int:
        if topic is not None:
            return len(self._watchers.get(topic, ()))
        return sum(len(watchers) for watchers in self._watchers.values())


class LiveQuery(Generic[T]):
    """
    Cancellable subscription yielding full snapshots.

    The owner acquires it when a view opens and closes it when the view
    goes away:

        async with store.subscribe_messages(conversation_id) as query:
            async for messages in query:
                ...
    """

    def __init__(
        self,
        feed: ChangeFeed,
        topics: Iterable[str],
        fetch: Callable[[], Awaitable[T]],
    ):
        self._feed = feed
        self._topics = tuple(topics)
        self._fetch = fetch
        self._changed = asyncio.Event()
        self._started = False
        self._closed = False

    @property
    def topics(self) -> tuple:
        return self._topics

    @property
    def closed(self) -> bool:
        return self._closed

    def start(self) -> "LiveQuery[T]":
        if self._started or self._closed:
            return self
        for topic in self._topics:
            self._feed.watch(topic, self._changed)
        self._started = True
        # Initial snapshot
        self._changed.set()
        return self

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        for topic in self._topics:
            self._feed.unwatch(topic, self._changed)
        # Wake a pending reader so iteration ends
        self._changed.set()

    async def __aenter__(self) -> "LiveQuery[T]":
        return self.start()

    async def __aexit__(self, _exc_type, _exc, _tb):
        self.close()
        return False

    def __aiter__(self) -> "LiveQuery[T]":
        return self.start()

    async def __anext__(self) -> T:
        while True:
            await self._changed.wait()
            if self._closed:
                raise StopAsyncIteration
            self._changed.clear()
            try:
                return await self._fetch()
            except BackendError as exc:
                # Keep the last snapshot; the next change retries the query
                logger.warning("Live query refresh failed for %s (%s)", self._topics, type(exc).__name__)
                increment_counter("live_query_refresh_failures_total")
