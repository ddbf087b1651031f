"""
Message writes: send, read acknowledgement, unread reset.
"""

from typing import Awaitable, Optional

from chatty.errors import BackendError, ChatError, EmptyMessageError, SendFailedError
from chatty.logging_config import (
    log_follow_up_failure,
    log_read_ack_failure,
    log_send_failure,
)
from chatty.schemas.message import Message
from chatty.services.session import SessionStore
from chatty.services.telemetry import increment_counter
from chatty.store.base import DocumentStore
from chatty.utils.identity import counterpart_id, participants_from_chat_id


async def _best_effort(operation: str, subject: str, write: Awaitable[None]) -> bool:
    try:
        await write
    except ChatError as exc:
        log_follow_up_failure(operation, subject, exc)
        increment_counter(f"{operation}_failures_total")
        return False
    return True


async def send_message(
    store: DocumentStore,
    session: SessionStore,
    conversation_id: str,
    sender_id: str,
    text: Optional[str],
    attachment_url: Optional[str] = None,
) -> Message:
    """
    Send a message and reconcile the draft buffer.

    The draft is cleared before the write and restored to exactly `text`
    if the write fails. Display order comes from the store-assigned
    timestamp; nothing is echoed locally.

    Follow-up writes (last-message pointer, unread counter, sender
    liveness) are best-effort and only logged on failure.
    """
    if not (text and text.strip()) and not attachment_url:
        raise EmptyMessageError("A message needs text or an attachment")

    # Raises IdentityError / PermissionDeniedError before anything is written
    counterpart_id(conversation_id, sender_id)
    participants = participants_from_chat_id(conversation_id)

    session.clear_draft(conversation_id)

    try:
        await store.upsert_conversation(conversation_id, participants)
        message = await store.add_message(conversation_id, sender_id, text, attachment_url)
    except BaseException as exc:
        # Any interruption of the write, cancellation included, restores the text
        if text:
            session.set_draft(conversation_id, text)
        log_send_failure(conversation_id, exc)
        increment_counter("message_send_failures_total")
        if isinstance(exc, BackendError):
            raise SendFailedError(draft=text) from exc
        raise

    increment_counter("messages_sent_total")

    await _best_effort(
        "last_message_update",
        conversation_id,
        store.record_last_message(conversation_id, message),
    )
    await _best_effort("liveness_update", sender_id, store.touch_user(sender_id))

    return message


async def acknowledge_read(store: DocumentStore, conversation_id: str, message_id: str) -> None:
    """Fire-and-forget read acknowledgement; failures are logged, not retried"""
    try:
        await store.mark_message_read(conversation_id, message_id)
    except ChatError as exc:
        log_read_ack_failure(conversation_id, message_id, exc)
        increment_counter("read_ack_failures_total")


async def reset_unread(store: DocumentStore, conversation_id: str, user_id: str) -> None:
    await _best_effort("unread_reset", conversation_id, store.reset_unread(conversation_id, user_id))
