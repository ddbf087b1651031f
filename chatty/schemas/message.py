"""
Message schemas
"""

from datetime import date, datetime
from typing import List, Literal, Optional

from pydantic import BaseModel, Field, model_validator

from chatty.limits import MAX_ATTACHMENT_URL_CHARS, MAX_MESSAGE_CHARS


class Message(BaseModel):
    """A message in a conversation; only `read` changes after creation"""
    id: str
    conversation_id: str
    sender_id: str
    text: Optional[str] = None
    attachment_url: Optional[str] = None
    # Assigned by the store at write time; None for uncommitted local echoes
    created_at: Optional[datetime] = None
    read: bool = False


class LastMessage(BaseModel):
    """Denormalized pointer to a conversation's most recent message"""
    id: str
    text: Optional[str] = None
    attachment_url: Optional[str] = None
    sender_id: str
    created_at: Optional[datetime] = None

    @classmethod
    def from_message(cls, message: Message) -> "LastMessage":
        return cls(
            id=message.id,
            text=message.text,
            attachment_url=message.attachment_url,
            sender_id=message.sender_id,
            created_at=message.created_at,
        )


class MessageCreate(BaseModel):
    """Compose a new message"""
    conversation_id: str = Field(..., min_length=3, max_length=300)
    text: Optional[str] = Field(default=None, max_length=MAX_MESSAGE_CHARS)
    attachment_url: Optional[str] = Field(default=None, max_length=MAX_ATTACHMENT_URL_CHARS)

    @model_validator(mode="after")
    def require_content(self) -> "MessageCreate":
        if not (self.text and self.text.strip()) and not self.attachment_url:
            raise ValueError("A message needs text or an attachment")
        return self


class ThreadItem(BaseModel):
    """One row of a rendered thread: a day separator or a message"""
    kind: Literal["date_separator", "message"]
    day: Optional[date] = None
    message: Optional[Message] = None


class ThreadSnapshot(BaseModel):
    conversation_id: str
    items: List[ThreadItem]
    scroll_to_latest: bool = False

    @property
    def messages(self) -> List[Message]:
        return [item.message for item in self.items if item.kind == "message"]
