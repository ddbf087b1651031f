"""
Conversation schemas.
"""

from datetime import datetime
from typing import Dict, List, Optional

from pydantic import BaseModel, Field

from chatty.limits import MAX_DRAFT_CHARS
from chatty.schemas.message import LastMessage, Message
from chatty.schemas.user import UserProfile


class Conversation(BaseModel):
    id: str
    participant_ids: List[str]
    last_message: Optional[LastMessage] = None
    unread_counts: Dict[str, int] = Field(default_factory=dict)
    created_at: Optional[datetime] = None

    def unread_for(self, user_id: str) -> int:
        return self.unread_counts.get(user_id, 0)


class ChatListEntry(BaseModel):
    """A conversation as shown in the chat list"""
    conversation_id: str
    counterpart: UserProfile
    last_message: Optional[LastMessage] = None
    last_message_at: Optional[datetime] = None
    preview: Optional[str] = None
    has_draft: bool = False
    unread_count: int = 0


class ConversationIdResponse(BaseModel):
    conversation_id: str
    counterpart_id: str


class DraftUpdate(BaseModel):
    text: str = Field(..., max_length=MAX_DRAFT_CHARS)


class DraftResponse(BaseModel):
    conversation_id: str
    text: Optional[str] = None


class SmartRepliesResponse(BaseModel):
    conversation_id: str
    suggestions: List[str]


class MessageSearchResult(BaseModel):
    conversation_id: str
    message: Message
    counterpart: UserProfile


class SearchResponse(BaseModel):
    users: List[UserProfile]
    messages: List[MessageSearchResult]
