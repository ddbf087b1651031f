"""
Conversation identity.

A one-to-one conversation is keyed by its two participant ids sorted
lexicographically and joined with a separator, so both participants
converge on the same key without negotiating.
"""

from typing import Tuple

from chatty.errors import IdentityError, PermissionDeniedError, SelfChatError

SEPARATOR = "_"


def _validate_participant(user_id: str) -> str:
    if not isinstance(user_id, str) or not user_id.strip():
        raise IdentityError("Participant id must be a non-empty string")
    if SEPARATOR in user_id:
        raise IdentityError(f"Participant id must not contain '{SEPARATOR}'")
    return user_id


def chat_id(user_a: str, user_b: str) -> str:
    """Return the symmetric conversation id for two distinct participants."""
    _validate_participant(user_a)
    _validate_participant(user_b)
    if user_a == user_b:
        raise SelfChatError("A conversation requires two distinct participants")
    return SEPARATOR.join(sorted((user_a, user_b)))


def participants_from_chat_id(conversation_id: str) -> Tuple[str, str]:
    """Split a conversation id back into its (sorted) participants."""
    if not isinstance(conversation_id, str):
        raise IdentityError("Conversation id must be a string")

    parts = conversation_id.split(SEPARATOR)
    if len(parts) != 2:
        raise IdentityError("Conversation id must name exactly two participants")

    first, second = parts
    # Must round-trip through chat_id, so unsorted or self keys are rejected
    if chat_id(first, second) != conversation_id:
        raise IdentityError("Conversation id participants are not in canonical order")
    return first, second


def counterpart_id(conversation_id: str, user_id: str) -> str:
    participants = participants_from_chat_id(conversation_id)
    if user_id not in participants:
        raise PermissionDeniedError("Forbidden: not a participant in this conversation")
    return participants[1] if participants[0] == user_id else participants[0]
