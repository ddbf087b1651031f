"""
WebSocket endpoint for live chat views
The chat list and the open thread are pushed as full snapshots
"""

import asyncio
import logging
from typing import Optional, Set

from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from chatty.config import settings
from chatty.database import get_store
from chatty.dependencies.auth import extract_ws_token, verify_websocket_token
from chatty.errors import ChatError, SendFailedError
from chatty.limits import (
    MAX_ATTACHMENT_URL_CHARS,
    MAX_DRAFT_CHARS,
    MAX_MESSAGE_CHARS,
    MAX_WS_MESSAGES_PER_WINDOW,
    WS_RATE_WINDOW_SECONDS,
)
from chatty.services.chat_list import ChatListReconciler
from chatty.services.messaging import send_message
from chatty.services.session import SessionStore
from chatty.services.telemetry import increment_counter
from chatty.services.thread import MessageThreadReconciler, resolve_timezone
from chatty.services.websocket import CHAT_LIST_VIEW, THREAD_VIEW, ws_manager
from chatty.utils.identity import counterpart_id

router = APIRouter()
logger = logging.getLogger("chatty.websocket")

# Sends outlive the socket that issued them
_inflight_sends: Set[asyncio.Task] = set()


def build_error(code: str, message: str, **extra) -> dict:
    payload = {
        "type": "error",
        "code": code,
        "message": message,
    }
    payload.update({key: value for key, value in extra.items() if value is not None})
    return payload


@router.websocket("/ws")
async def websocket_endpoint(websocket: WebSocket):
    """
    Main WebSocket endpoint

    Connection flow:
    1. Client connects with access_token cookie
    2. Server validates JWT
    3. Client opens/closes the chat list and thread views
    4. Server pushes a full snapshot whenever a view changes

    Message types (client -> server):
    - {"type": "open_chat_list"}
    - {"type": "close_chat_list"}
    - {"type": "open_thread", "conversation_id": "...", "tz": "Europe/Paris"}
    - {"type": "close_thread"}
    - {"type": "draft", "conversation_id": "...", "text": "..."}
    - {"type": "send", "conversation_id": "...", "text": "...", "attachment_url": "...", "client_message_id": "..."}
    - {"type": "ping"}

    Message types (server -> client):
    - {"type": "chat_list", "entries": [...]}
    - {"type": "thread", "conversation_id": "...", "items": [...], "scroll_to_latest": true}
    - {"type": "message_sent", "id": "...", "conversation_id": "...", "client_message_id": "...", "created_at": "..."}
    - {"type": "error", "code": "...", "message": "...", "draft": "..."}
    - {"type": "pong"}
    - {"type": "heartbeat"}
    """

    # Extract and verify token from cookie
    token = extract_ws_token(websocket)
    if not token:
        await websocket.close(code=4001, reason="Missing token")
        return

    user = await verify_websocket_token(token)
    if not user:
        await websocket.close(code=4001, reason="Invalid token")
        return

    websocket.state.user_id = user.user_id
    websocket.state.session_id = user.session_id

    session = websocket.app.state.sessions.get(
        user.session_id, user.user_id, user.expires_at
    )

    await ws_manager.connect(websocket, user.user_id, user.session_id)
    logger.info(f"WebSocket connected. Total: {ws_manager.connection_count}")

    try:
        store = await get_store()

        while True:
            data = await websocket.receive_json()

            await ws_manager.update_activity(websocket)

            if not isinstance(data, dict):
                await ws_manager.send_personal(websocket, build_error("invalid_request", "Expected a JSON object"))
                continue

            await dispatch(websocket, data, store, session)

    except WebSocketDisconnect:
        logger.info("WebSocket disconnected normally")
    except Exception as exc:
        # Log error but don't expose details
        logger.warning(f"WebSocket error: {type(exc).__name__}")
    finally:
        await ws_manager.disconnect(websocket)
        logger.info(f"WebSocket cleaned up. Total: {ws_manager.connection_count}")


async def dispatch(websocket: WebSocket, data: dict, store, session: SessionStore):
    msg_type = data.get("type")

    if msg_type == "open_chat_list":
        await handle_open_chat_list(websocket, store, session)

    elif msg_type == "close_chat_list":
        await ws_manager.close_view(websocket, CHAT_LIST_VIEW)

    elif msg_type == "open_thread":
        await handle_open_thread(websocket, data, store, session)

    elif msg_type == "close_thread":
        await ws_manager.close_view(websocket, THREAD_VIEW)

    elif msg_type == "draft":
        await handle_draft(websocket, data, session)

    elif msg_type == "send":
        await handle_send(websocket, data, store, session)

    elif msg_type == "ping":
        await ws_manager.send_personal(websocket, {"type": "pong"})

    else:
        await ws_manager.send_personal(websocket, build_error(
            "unknown_type",
            f"Unknown message type: {msg_type}",
        ))


async def handle_open_chat_list(websocket: WebSocket, store, session: SessionStore):
    """Start (or restart) the connection's live chat list"""
    user_id = websocket.state.user_id

    async def push(entries):
        await ws_manager.send_personal(websocket, {
            "type": "chat_list",
            "entries": [entry.model_dump(mode="json") for entry in entries],
        })

    reconciler = ChatListReconciler(store, session, user_id, on_change=push)
    live_query = store.subscribe_conversations(user_id, settings.CHAT_LIST_PAGE_SIZE)
    if not await ws_manager.open_view(websocket, CHAT_LIST_VIEW, reconciler.run(live_query)):
        reconciler.close()


async def handle_open_thread(websocket: WebSocket, data: dict, store, session: SessionStore):
    """Start the connection's live thread view, replacing any open thread"""
    user_id = websocket.state.user_id
    conversation_id = data.get("conversation_id")

    if not conversation_id or not isinstance(conversation_id, str):
        await ws_manager.send_personal(websocket, build_error(
            "invalid_request",
            "Missing conversation_id",
        ))
        return

    try:
        counterpart_id(conversation_id, user_id)
        tz = resolve_timezone(data.get("tz"))
    except ChatError as exc:
        await ws_manager.send_personal(websocket, build_error(exc.code, exc.message))
        return

    async def push(snapshot):
        payload = snapshot.model_dump(mode="json")
        payload["type"] = "thread"
        await ws_manager.send_personal(websocket, payload)

    reconciler = MessageThreadReconciler(
        store, session, conversation_id, user_id, on_change=push, tz=tz
    )
    await ws_manager.open_view(
        websocket, THREAD_VIEW, reconciler.run(
            store.subscribe_messages(conversation_id),
            store.subscribe_conversation(conversation_id, user_id),
        )
    )


async def handle_draft(websocket: WebSocket, data: dict, session: SessionStore):
    """Save (or clear, when blank) the composer text for a conversation"""
    conversation_id = data.get("conversation_id")
    text = data.get("text") or ""

    if not conversation_id or not isinstance(conversation_id, str) or not isinstance(text, str):
        await ws_manager.send_personal(websocket, build_error(
            "invalid_request",
            "Missing required fields: conversation_id, text",
        ))
        return

    if len(text) > MAX_DRAFT_CHARS:
        await ws_manager.send_personal(websocket, build_error("draft_too_long", "Draft is too long"))
        return

    try:
        counterpart_id(conversation_id, websocket.state.user_id)
    except ChatError as exc:
        await ws_manager.send_personal(websocket, build_error(exc.code, exc.message))
        return

    session.set_draft(conversation_id, text)


async def handle_send(websocket: WebSocket, data: dict, store, session: SessionStore):
    """
    Validate and start a send. The write runs as its own task so a
    disconnect does not cancel it.
    """
    conversation_id = data.get("conversation_id")
    text: Optional[str] = data.get("text")
    attachment_url: Optional[str] = data.get("attachment_url")
    client_message_id = data.get("client_message_id")
    client_message_id = str(client_message_id) if client_message_id else None

    if not conversation_id or not isinstance(conversation_id, str):
        await ws_manager.send_personal(websocket, build_error(
            "invalid_request",
            "Missing conversation_id",
            client_message_id=client_message_id,
        ))
        return

    if (text is not None and not isinstance(text, str)) or (
        attachment_url is not None and not isinstance(attachment_url, str)
    ):
        await ws_manager.send_personal(websocket, build_error(
            "invalid_request",
            "text and attachment_url must be strings",
            client_message_id=client_message_id,
        ))
        return

    if (text and len(text) > MAX_MESSAGE_CHARS) or (
        attachment_url and len(attachment_url) > MAX_ATTACHMENT_URL_CHARS
    ):
        await ws_manager.send_personal(websocket, build_error(
            "message_too_long",
            "Message is too long",
            client_message_id=client_message_id,
        ))
        return

    allowed = await ws_manager.allow_incoming_message(
        websocket,
        max_messages=MAX_WS_MESSAGES_PER_WINDOW,
        window_seconds=WS_RATE_WINDOW_SECONDS,
    )
    if not allowed:
        increment_counter("ws_rate_limited_total")
        await ws_manager.send_personal(websocket, build_error(
            "rate_limited",
            "rate_limited",
            client_message_id=client_message_id,
        ))
        return

    task = asyncio.create_task(deliver_send(
        websocket,
        store,
        session,
        conversation_id,
        text,
        attachment_url,
        client_message_id,
    ))
    _inflight_sends.add(task)
    task.add_done_callback(_inflight_sends.discard)


async def deliver_send(
    websocket: WebSocket,
    store,
    session: SessionStore,
    conversation_id: str,
    text: Optional[str],
    attachment_url: Optional[str],
    client_message_id: Optional[str],
):
    try:
        message = await send_message(
            store,
            session,
            conversation_id,
            websocket.state.user_id,
            text,
            attachment_url,
        )
    except SendFailedError as exc:
        await ws_manager.send_personal(websocket, build_error(
            exc.code,
            exc.message,
            draft=exc.draft,
            conversation_id=conversation_id,
            client_message_id=client_message_id,
        ))
        return
    except ChatError as exc:
        await ws_manager.send_personal(websocket, build_error(
            exc.code,
            exc.message,
            conversation_id=conversation_id,
            client_message_id=client_message_id,
        ))
        return
    except Exception as exc:
        logger.error(f"Send task error: {type(exc).__name__}")
        increment_counter("ws_send_task_failures_total")
        await ws_manager.send_personal(websocket, build_error(
            SendFailedError.code,
            "Message could not be sent",
            draft=text,
            conversation_id=conversation_id,
            client_message_id=client_message_id,
        ))
        return

    await ws_manager.send_personal(websocket, {
        "type": "message_sent",
        "id": message.id,
        "conversation_id": conversation_id,
        "client_message_id": client_message_id,
        "created_at": message.created_at.isoformat() if message.created_at else None,
    })


async def wait_for_inflight_sends():
    """Wait for every send started by any connection"""
    while _inflight_sends:
        await asyncio.gather(*list(_inflight_sends), return_exceptions=True)
