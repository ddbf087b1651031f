"""
Smart reply suggestions via Google Gemini.

Best-effort only: any failure yields an empty list and messaging carries
on without suggestions.
"""

import logging
from typing import List, Optional, Sequence

from google import genai
from google.genai import types
from pydantic import BaseModel, Field, ValidationError

from chatty.config import Settings, settings
from chatty.limits import MAX_SMART_REPLIES, MAX_SMART_REPLY_HISTORY, MIN_SMART_REPLIES
from chatty.schemas.message import Message
from chatty.services.telemetry import increment_counter

logger = logging.getLogger("chatty.smart_reply")

SMART_REPLY_PROMPT = """You suggest quick replies in a one-to-one chat.

Recent conversation, oldest first ("Me" is the person replying):
{history}

Latest message from the other person:
{message}

Suggest between 3 and 5 short, natural replies (at most 8 words each) that
"Me" could send next. Match the tone of the conversation. Do not number them.
"""


class SmartReplySuggestions(BaseModel):
    suggestions: List[str] = Field(default_factory=list)


def render_history(messages: Sequence[Message], viewer_id: str) -> List[str]:
    """Render messages as `Me: ...` / `Them: ...` turns"""
    lines = []
    for message in messages:
        if not message.text:
            continue
        speaker = "Me" if message.sender_id == viewer_id else "Them"
        lines.append(f"{speaker}: {message.text}")
    return lines


def clean_suggestions(raw: Sequence[str]) -> List[str]:
    seen = set()
    cleaned = []
    for suggestion in raw:
        if not isinstance(suggestion, str):
            continue
        text = suggestion.strip().strip('"').strip()
        if not text or text.lower() in seen:
            continue
        seen.add(text.lower())
        cleaned.append(text)
    return cleaned[:MAX_SMART_REPLIES]


class SmartReplyService:
    def __init__(self, client: Optional[genai.Client] = None, model: str = "gemini-2.0-flash"):
        self.client = client
        self.model = model

    @classmethod
    def from_settings(cls, active_settings: Settings = settings) -> "SmartReplyService":
        client = None
        if active_settings.GEMINI_API_KEY:
            client = genai.Client(api_key=active_settings.GEMINI_API_KEY)
        return cls(client=client, model=active_settings.SMART_REPLY_MODEL)

    @property
    def enabled(self) -> bool:
        return self.client is not None

    async def suggest(self, message_content: str, chat_history: Optional[Sequence[str]] = None) -> List[str]:
        """Return 3-5 reply suggestions, or [] when none can be produced"""
        if not self.enabled or not message_content or not message_content.strip():
            return []

        history = list(chat_history or [])[-MAX_SMART_REPLY_HISTORY:]
        prompt = SMART_REPLY_PROMPT.format(
            history="\n".join(history) or "(no earlier messages)",
            message=message_content,
        )

        try:
            response = await self.client.aio.models.generate_content(
                model=self.model,
                contents=prompt,
                config=types.GenerateContentConfig(
                    response_mime_type="application/json",
                    response_schema=SmartReplySuggestions,
                    temperature=0.7,
                ),
            )
        except Exception as exc:
            logger.warning(f"Smart reply request failed: {type(exc).__name__}")
            increment_counter("smart_reply_failures_total")
            return []

        try:
            parsed = SmartReplySuggestions.model_validate_json(response.text or "")
        except (ValidationError, ValueError):
            logger.warning("Smart reply response was not valid JSON")
            increment_counter("smart_reply_failures_total")
            return []

        suggestions = clean_suggestions(parsed.suggestions)
        if len(suggestions) < MIN_SMART_REPLIES:
            logger.info(f"Smart reply returned {len(suggestions)} usable suggestions, discarding")
            return []
        return suggestions

    async def suggest_for_thread(self, messages: Sequence[Message], viewer_id: str) -> List[str]:
        """Suggest replies to the latest text message from the other participant"""
        for index in range(len(messages) - 1, -1, -1):
            message = messages[index]
            if message.sender_id != viewer_id and message.text:
                history = render_history(messages[:index], viewer_id)
                return await self.suggest(message.text, history)
        return []
