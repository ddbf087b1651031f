"""
Message search over the session's message cache.
"""

from datetime import datetime, timezone
from typing import List

from chatty.errors import ChatError
from chatty.limits import MIN_SEARCH_TERM_CHARS
from chatty.schemas.conversation import MessageSearchResult
from chatty.services.session import SessionStore
from chatty.utils.identity import counterpart_id

_EPOCH = datetime.min.replace(tzinfo=timezone.utc)


def search_messages(session: SessionStore, user_id: str, term: str) -> List[MessageSearchResult]:
    """
    Case-insensitive substring match over cached messages, newest first.
    Only conversations whose counterpart profile is cached are searched.
    """
    needle = term.strip().lower()
    if len(needle) < MIN_SEARCH_TERM_CHARS:
        return []

    results: List[MessageSearchResult] = []
    for conversation_id, messages in session.messages.items():
        try:
            other_id = counterpart_id(conversation_id, user_id)
        except ChatError:
            continue
        counterpart = session.cached_profile(other_id)
        if counterpart is None:
            continue

        for message in messages:
            if message.text and needle in message.text.lower():
                results.append(
                    MessageSearchResult(
                        conversation_id=conversation_id,
                        message=message,
                        counterpart=counterpart,
                    )
                )

    results.sort(
        key=lambda result: result.message.created_at or _EPOCH,
        reverse=True,
    )
    return results
