"""
Conversation REST endpoints: chat list, conversation lookup, drafts,
read receipts and smart replies.
"""

from typing import List

from fastapi import APIRouter, Depends, HTTPException, status

from chatty.config import settings
from chatty.database import get_store
from chatty.dependencies.auth import (
    AuthenticatedUser,
    get_current_user,
    get_session,
    get_smart_replies,
)
from chatty.errors import ChatError, NotFoundError, to_http_exception
from chatty.schemas.conversation import (
    ChatListEntry,
    ConversationIdResponse,
    DraftResponse,
    DraftUpdate,
    SmartRepliesResponse,
)
from chatty.services.authorization import require_conversation_participant
from chatty.services.chat_list import ChatListReconciler
from chatty.services.messaging import acknowledge_read, reset_unread
from chatty.services.thread import order_messages, unread_from_others
from chatty.utils.identity import chat_id

router = APIRouter()


@router.get("/conversations", response_model=List[ChatListEntry])
async def list_conversations(
    user: AuthenticatedUser = Depends(get_current_user),
    session=Depends(get_session),
    store=Depends(get_store),
):
    """One-shot chat list; live updates are delivered over /ws"""
    try:
        conversations = await store.list_conversations(user.user_id, settings.CHAT_LIST_PAGE_SIZE)
    except ChatError as exc:
        raise to_http_exception(exc)

    reconciler = ChatListReconciler(store, session, user.user_id)
    try:
        await reconciler.apply(conversations)
        return await reconciler.wait_resolved()
    finally:
        reconciler.close()


@router.get("/conversations/with/{user_id}", response_model=ConversationIdResponse)
async def conversation_with(
    user_id: str,
    user: AuthenticatedUser = Depends(get_current_user),
    session=Depends(get_session),
    store=Depends(get_store),
):
    """Resolve the conversation id shared with another user"""
    try:
        conversation_id = chat_id(user.user_id, user_id)
        session.cache_profile(await store.get_profile(user_id))
    except NotFoundError:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail={"error": "not_found", "message": "User not found"},
        )
    except ChatError as exc:
        raise to_http_exception(exc)

    return ConversationIdResponse(conversation_id=conversation_id, counterpart_id=user_id)


@router.put("/conversations/{conversation_id}/draft", response_model=DraftResponse)
async def save_draft(
    conversation_id: str,
    draft: DraftUpdate,
    user: AuthenticatedUser = Depends(get_current_user),
    session=Depends(get_session),
):
    require_conversation_participant(conversation_id, user.user_id)
    session.set_draft(conversation_id, draft.text)
    return DraftResponse(conversation_id=conversation_id, text=session.get_draft(conversation_id))


@router.get("/conversations/{conversation_id}/draft", response_model=DraftResponse)
async def get_draft(
    conversation_id: str,
    user: AuthenticatedUser = Depends(get_current_user),
    session=Depends(get_session),
):
    require_conversation_participant(conversation_id, user.user_id)
    return DraftResponse(conversation_id=conversation_id, text=session.get_draft(conversation_id))


@router.delete("/conversations/{conversation_id}/draft", response_model=DraftResponse)
async def discard_draft(
    conversation_id: str,
    user: AuthenticatedUser = Depends(get_current_user),
    session=Depends(get_session),
):
    require_conversation_participant(conversation_id, user.user_id)
    session.clear_draft(conversation_id)
    return DraftResponse(conversation_id=conversation_id, text=None)


@router.post("/conversations/{conversation_id}/read")
async def mark_read(
    conversation_id: str,
    user: AuthenticatedUser = Depends(get_current_user),
    store=Depends(get_store),
):
    """Acknowledge every unread message from the other participant"""
    require_conversation_participant(conversation_id, user.user_id)
    try:
        messages = await store.list_messages(conversation_id)
    except ChatError as exc:
        raise to_http_exception(exc)

    unread = unread_from_others(messages, user.user_id)
    for message in unread:
        await acknowledge_read(store, conversation_id, message.id)
    await reset_unread(store, conversation_id, user.user_id)

    return {"conversation_id": conversation_id, "acknowledged": len(unread)}


@router.get("/conversations/{conversation_id}/smart-replies", response_model=SmartRepliesResponse)
async def smart_replies(
    conversation_id: str,
    user: AuthenticatedUser = Depends(get_current_user),
    store=Depends(get_store),
    service=Depends(get_smart_replies),
):
    """Reply suggestions for the latest message; empty when unavailable"""
    require_conversation_participant(conversation_id, user.user_id)
    try:
        messages = order_messages(await store.list_messages(conversation_id))
    except ChatError as exc:
        raise to_http_exception(exc)

    suggestions = await service.suggest_for_thread(messages, user.user_id)
    return SmartRepliesResponse(conversation_id=conversation_id, suggestions=suggestions)
