"""
WebSocket connection manager
Tracks live connections and the views each one has open
"""

import asyncio
from collections import deque
from typing import Awaitable, Deque, Dict, List, Optional
from dataclasses import dataclass, field
from datetime import datetime, timezone
from time import monotonic

from fastapi import WebSocket
from starlette.websockets import WebSocketState

CHAT_LIST_VIEW = "chat_list"
THREAD_VIEW = "thread"


@dataclass
class Connection:
    """Represents an active WebSocket connection"""
    websocket: WebSocket
    user_id: str
    session_id: str
    connected_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    last_activity: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    message_timestamps: Deque[float] = field(default_factory=deque)
    # At most one task per view name
    views: Dict[str, asyncio.Task] = field(default_factory=dict)


class ConnectionManager:
    """
    Manages WebSocket connections and their live views

    - A connection belongs to one user and one session
    - Each connection has at most one chat list view and one thread view
    - Closing a view or the connection cancels its live subscription
    """

    def __init__(self):
        self._connections: Dict[WebSocket, Connection] = {}
        self._lock = asyncio.Lock()

    async def connect(self, websocket: WebSocket, user_id: str, session_id: str) -> Connection:
        """Accept and register a new connection"""
        await websocket.accept()

        async with self._lock:
            connection = Connection(websocket=websocket, user_id=user_id, session_id=session_id)
            self._connections[websocket] = connection

        return connection

    async def disconnect(self, websocket: WebSocket):
        """Remove a connection and cancel its views"""
        async with self._lock:
            connection = self._connections.pop(websocket, None)

        if connection:
            await self._cancel_views(list(connection.views.values()))
            connection.views.clear()

    async def open_view(self, websocket: WebSocket, name: str, runner: Awaitable[None]) -> bool:
        """
        Start `runner` as the connection's `name` view, replacing any view
        already open under that name.
        """
        async with self._lock:
            connection = self._connections.get(websocket)
            if not connection:
                runner.close()
                return False
            previous = connection.views.pop(name, None)
            task = asyncio.create_task(runner)
            connection.views[name] = task
            connection.last_activity = datetime.now(timezone.utc)

        if previous is not None:
            await self._cancel_views([previous])
        return True

    async def close_view(self, websocket: WebSocket, name: str) -> bool:
        async with self._lock:
            connection = self._connections.get(websocket)
            if not connection:
                return False
            task = connection.views.pop(name, None)

        if task is None:
            return False
        await self._cancel_views([task])
        return True

    async def has_view(self, websocket: WebSocket, name: str) -> bool:
        async with self._lock:
            connection = self._connections.get(websocket)
            if not connection:
                return False
            task = connection.views.get(name)
            return task is not None and not task.done()

    async def close_session(self, session_id: str, code: int = 4003, reason: str = "Session ended"):
        """Close every connection that belongs to a session"""
        async with self._lock:
            sockets = [
                websocket for websocket, connection in self._connections.items()
                if connection.session_id == session_id
            ]

        for websocket in sockets:
            await self.disconnect(websocket)
            try:
                if websocket.client_state == WebSocketState.CONNECTED:
                    await websocket.close(code=code, reason=reason)
            except RuntimeError:
                # Socket already closed by the peer
                continue

    async def send_personal(self, websocket: WebSocket, message: dict):
        """Send a message to a specific connection"""
        try:
            if websocket.client_state == WebSocketState.CONNECTED:
                await websocket.send_json(message)
        except Exception:
            await self.disconnect(websocket)

    async def update_activity(self, websocket: WebSocket):
        """Update last activity timestamp for a connection"""
        async with self._lock:
            connection = self._connections.get(websocket)
            if connection:
                connection.last_activity = datetime.now(timezone.utc)

    async def get_connection(self, websocket: WebSocket) -> Optional[Connection]:
        async with self._lock:
            return self._connections.get(websocket)

    async def snapshot(self) -> List[Connection]:
        """Current connections, copied out of the lock"""
        async with self._lock:
            return list(self._connections.values())

    async def allow_incoming_message(
        self,
        websocket: WebSocket,
        *,
        max_messages: int,
        window_seconds: int,
    ) -> bool:
        """
        Sliding-window per-connection message rate guard.

        Returns True if message is allowed, False if over limit.
        """
        now = monotonic()
        cutoff = now - float(window_seconds)

        async with self._lock:
            connection = self._connections.get(websocket)
            if not connection:
                return False

            while connection.message_timestamps and connection.message_timestamps[0] < cutoff:
                connection.message_timestamps.popleft()

            if len(connection.message_timestamps) >= max_messages:
                return False

            connection.message_timestamps.append(now)
            connection.last_activity = datetime.now(timezone.utc)
            return True

    async def _cancel_views(self, tasks: List[asyncio.Task]):
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    @property
    def connection_count(self) -> int:
        """Get total number of active connections"""
        return len(self._connections)

    @property
    def connected_user_count(self) -> int:
        return len({connection.user_id for connection in self._connections.values()})

    def get_stats(self) -> dict:
        """Get connection manager statistics"""
        open_views: Dict[str, int] = {CHAT_LIST_VIEW: 0, THREAD_VIEW: 0}
        for connection in self._connections.values():
            for name, task in connection.views.items():
                if not task.done():
                    open_views[name] = open_views.get(name, 0) + 1
        return {
            "total_connections": self.connection_count,
            "connected_users": self.connected_user_count,
            "open_views": open_views,
        }


# Global connection manager instance
ws_manager = ConnectionManager()
