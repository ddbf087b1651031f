"""
Liveness loop: keeps connected users' last_active fresh, detects dead
connections and forgets state nobody can reach any more
"""

import asyncio
import logging
from typing import Optional, Set

from starlette.websockets import WebSocketState

from chatty.config import settings
from chatty.database import get_store
from chatty.errors import ChatError
from chatty.logging_config import log_follow_up_failure
from chatty.middleware.rate_limit import auth_rate_limiter, rate_limiter
from chatty.services.session import SessionRegistry
from chatty.services.telemetry import increment_counter
from chatty.services.websocket import ConnectionManager, ws_manager

logger = logging.getLogger("chatty.heartbeat")

# Idle rate-limit buckets are refilled long before this
RATE_BUCKET_MAX_AGE_SECONDS = 3600


async def run_liveness_round(manager: ConnectionManager = ws_manager) -> int:
    """
    Send one heartbeat to every connection and touch each connected user.
    Returns the number of users touched.
    """
    connections = await manager.snapshot()
    if not connections:
        return 0

    dead = []
    users: Set[str] = set()
    for connection in connections:
        ws = connection.websocket
        try:
            if ws.client_state == WebSocketState.CONNECTED:
                await ws.send_json({"type": "heartbeat"})
                users.add(connection.user_id)
            else:
                dead.append(ws)
        except Exception:
            dead.append(ws)

    if dead:
        logger.info(f"Removing {len(dead)} dead connections")

    for ws in dead:
        await manager.disconnect(ws)

    store = await get_store()
    touched = 0
    for user_id in users:
        try:
            await store.touch_user(user_id)
            touched += 1
        except ChatError as exc:
            log_follow_up_failure("liveness_update", user_id, exc)
            increment_counter("liveness_update_failures_total")

    return touched


async def sweep_idle_state(
    sessions: Optional[SessionRegistry] = None,
    manager: ConnectionManager = ws_manager,
) -> int:
    """
    Drop idle rate-limit buckets and every session whose token has expired
    or that has been unused for a token lifetime without a live connection.
    Returns the number of sessions discarded.
    """
    rate_limiter.cleanup_old_entries(RATE_BUCKET_MAX_AGE_SECONDS)
    auth_rate_limiter.cleanup_old_entries(RATE_BUCKET_MAX_AGE_SECONDS)

    if sessions is None:
        return 0

    connected = {connection.session_id for connection in await manager.snapshot()}
    swept = sessions.sweep(settings.ACCESS_TOKEN_EXPIRE_MINUTES * 60, keep=connected)
    if swept:
        logger.info(f"Swept {swept} idle sessions")
        increment_counter("sessions_swept_total", swept)
    return swept


async def send_heartbeats(
    interval_seconds: Optional[int] = None,
    sessions: Optional[SessionRegistry] = None,
):
    """Run liveness rounds forever"""
    interval = interval_seconds or settings.LIVENESS_INTERVAL_SECONDS
    while True:
        await asyncio.sleep(interval)

        try:
            await run_liveness_round()
            await sweep_idle_state(sessions)
        except Exception as e:
            logger.error(f"Liveness task error: {type(e).__name__}")


def start_liveness_task(
    interval_seconds: Optional[int] = None,
    sessions: Optional[SessionRegistry] = None,
) -> asyncio.Task:
    """Start the liveness background task"""
    task = asyncio.create_task(send_heartbeats(interval_seconds, sessions))
    logger.info("Liveness task started")
    return task
