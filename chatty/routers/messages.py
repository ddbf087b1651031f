"""
Message REST endpoints.
"""

from typing import Optional

from fastapi import APIRouter, Depends, Query, status

from chatty.database import get_store
from chatty.dependencies.auth import AuthenticatedUser, get_current_user, get_session
from chatty.errors import ChatError, to_http_exception
from chatty.schemas.message import Message, MessageCreate, ThreadSnapshot
from chatty.services.authorization import require_conversation_participant
from chatty.services.messaging import send_message
from chatty.services.thread import MessageThreadReconciler, resolve_timezone

router = APIRouter()


@router.post("/messages", response_model=Message, status_code=status.HTTP_201_CREATED)
async def create_message(
    message: MessageCreate,
    user: AuthenticatedUser = Depends(get_current_user),
    session=Depends(get_session),
    store=Depends(get_store),
):
    """
    Send a message. On a failed write the response is 503 and carries the
    restored draft so the client can offer a retry.
    """
    require_conversation_participant(message.conversation_id, user.user_id)
    try:
        return await send_message(
            store,
            session,
            message.conversation_id,
            user.user_id,
            message.text,
            message.attachment_url,
        )
    except ChatError as exc:
        raise to_http_exception(exc)


@router.get("/messages/{conversation_id}", response_model=ThreadSnapshot)
async def get_thread(
    conversation_id: str,
    tz: Optional[str] = Query(default=None, max_length=64),
    user: AuthenticatedUser = Depends(get_current_user),
    session=Depends(get_session),
    store=Depends(get_store),
):
    """
    One-shot thread snapshot with day separators in the viewer's time zone.
    Unread messages from the other participant are acknowledged.
    """
    require_conversation_participant(conversation_id, user.user_id)
    try:
        viewer_tz = resolve_timezone(tz)
        messages = await store.list_messages(conversation_id)
    except ChatError as exc:
        raise to_http_exception(exc)

    reconciler = MessageThreadReconciler(
        store, session, conversation_id, user.user_id, tz=viewer_tz
    )
    snapshot = await reconciler.apply(messages)
    await reconciler.drain()
    reconciler.close()
    return snapshot
