"""
Session-scoped client state.

Each authenticated session owns one SessionStore holding the counterpart
profile cache, the draft buffer and the message cache. The registry hands
them out by session id and clears them on logout, or once the token has
expired or the session has gone idle with no live connection.
"""

from datetime import datetime, timedelta, timezone
from typing import Callable, Collection, Dict, List, Optional

from chatty.logging_config import log_session_cleared
from chatty.schemas.message import Message
from chatty.schemas.user import UserProfile


DraftListener = Callable[[str], None]


class SessionStore:
    """
    State shared by every view of one session.

    Profiles are cached lazily and never evicted; the set of correspondents
    is bounded by actual contact history. Drafts are never persisted.
    """

    def __init__(self, session_id: str, user_id: str, expires_at: Optional[datetime] = None):
        self.session_id = session_id
        self.user_id = user_id
        self.expires_at = expires_at
        self.last_seen = datetime.now(timezone.utc)
        self.profiles: Dict[str, UserProfile] = {}
        self.messages: Dict[str, List[Message]] = {}
        self._drafts: Dict[str, str] = {}
        self._draft_listeners: List[DraftListener] = []

    # Drafts

    @property
    def drafts(self) -> Dict[str, str]:
        return dict(self._drafts)

    def get_draft(self, conversation_id: str) -> Optional[str]:
        return self._drafts.get(conversation_id)

    def set_draft(self, conversation_id: str, text: str) -> None:
        """Store a draft; blank text clears it"""
        if not text or not text.strip():
            self.clear_draft(conversation_id)
            return
        if self._drafts.get(conversation_id) == text:
            return
        self._drafts[conversation_id] = text
        self._notify_draft(conversation_id)

    def clear_draft(self, conversation_id: str) -> Optional[str]:
        text = self._drafts.pop(conversation_id, None)
        if text is not None:
            self._notify_draft(conversation_id)
        return text

    def add_draft_listener(self, listener: DraftListener) -> None:
        self._draft_listeners.append(listener)

    def remove_draft_listener(self, listener: DraftListener) -> None:
        if listener in self._draft_listeners:
            self._draft_listeners.remove(listener)

    def _notify_draft(self, conversation_id: str) -> None:
        for listener in list(self._draft_listeners):
            listener(conversation_id)

    # Profiles

    def cached_profile(self, user_id: str) -> Optional[UserProfile]:
        return self.profiles.get(user_id)

    def cache_profile(self, profile: UserProfile) -> None:
        self.profiles[profile.id] = profile

    # Messages

    def cache_messages(self, conversation_id: str, messages: List[Message]) -> None:
        self.messages[conversation_id] = list(messages)

    def clear(self) -> None:
        self.profiles.clear()
        self.messages.clear()
        self._drafts.clear()
        self._draft_listeners.clear()


class SessionRegistry:
    """Owns every live SessionStore, keyed by session id"""

    def __init__(self):
        self._sessions: Dict[str, SessionStore] = {}

    def get(self, session_id: str, user_id: str, expires_at: Optional[datetime] = None) -> SessionStore:
        session = self._sessions.get(session_id)
        if session is None or session.user_id != user_id:
            session = SessionStore(session_id, user_id, expires_at)
            self._sessions[session_id] = session
        else:
            session.last_seen = datetime.now(timezone.utc)
            if expires_at is not None:
                session.expires_at = expires_at
        return session

    def peek(self, session_id: str) -> Optional[SessionStore]:
        return self._sessions.get(session_id)

    def discard(self, session_id: str) -> None:
        """Clear and forget a session (logout or sweep)"""
        session = self._sessions.pop(session_id, None)
        if session is not None:
            session.clear()
            log_session_cleared(session_id)

    def sweep(
        self,
        idle_seconds: int,
        keep: Collection[str] = (),
        now: Optional[datetime] = None,
    ) -> int:
        """
        Discard sessions whose token has expired or that have been idle for
        `idle_seconds`. Sessions in `keep` (live connections) stay.
        Returns the number discarded.
        """
        now = now or datetime.now(timezone.utc)
        idle_cutoff = now - timedelta(seconds=idle_seconds)
        stale = [
            session_id for session_id, session in self._sessions.items()
            if session_id not in keep and (
                (session.expires_at is not None and session.expires_at <= now)
                or session.last_seen <= idle_cutoff
            )
        ]
        for session_id in stale:
            self.discard(session_id)
        return len(stale)

    def clear(self) -> None:
        for session_id in list(self._sessions):
            self.discard(session_id)

    def __len__(self) -> int:
        return len(self._sessions)
