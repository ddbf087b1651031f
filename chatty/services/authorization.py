"""
Shared authorization helpers for conversation access control.
"""

from chatty.errors import ChatError, to_http_exception
from chatty.utils.identity import counterpart_id


def require_conversation_participant(conversation_id: str, user_id: str) -> str:
    """
    Ensure `user_id` is one of the two participants encoded in
    `conversation_id`. Returns the other participant's id.
    """
    try:
        return counterpart_id(conversation_id, user_id)
    except ChatError as exc:
        raise to_http_exception(exc) from exc

