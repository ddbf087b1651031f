# ChattyNext Pydantic Schemas
from chatty.schemas.user import UserProfile, ProfileUpdate, UserSearchResponse
from chatty.schemas.message import (
    LastMessage,
    Message,
    MessageCreate,
    ThreadItem,
    ThreadSnapshot,
)
from chatty.schemas.conversation import (
    ChatListEntry,
    Conversation,
    ConversationIdResponse,
    DraftResponse,
    DraftUpdate,
    MessageSearchResult,
    SearchResponse,
    SmartRepliesResponse,
)
from chatty.schemas.auth import AuthSuccess, LoginRequest, SignupRequest

__all__ = [
    "UserProfile", "ProfileUpdate", "UserSearchResponse",
    "LastMessage", "Message", "MessageCreate", "ThreadItem", "ThreadSnapshot",
    "ChatListEntry",
    "Conversation",
    "ConversationIdResponse",
    "DraftResponse",
    "DraftUpdate",
    "MessageSearchResult",
    "SearchResponse",
    "SmartRepliesResponse",
    "AuthSuccess",
    "LoginRequest",
    "SignupRequest",
]
