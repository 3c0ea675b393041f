"""
Chat history: sessions and their messages, persisted as one JSON document under CHAT_SESSIONS_KEY.
Uses a pydantic TypeAdapter to serialize/deserialize so datetimes round-trip as ISO-8601 text.

Sessions are kept newest first. Creating a session beyond max_sessions evicts the oldest one.
"""
import logging
from typing import Any

from pydantic import TypeAdapter, ValidationError

from querychat.core.constants import (
    CHAT_SESSIONS_KEY,
    DEFAULT_SESSION_TITLE,
    MAX_MESSAGES_PER_CHAT,
    MAX_SESSIONS,
    TITLE_MAX_LENGTH,
)
from querychat.schemas.chat import ChatMessage, ChatSession, new_id
from querychat.services.storage import KeyValueStore

logger = logging.getLogger(__name__)

SessionsAdapter = TypeAdapter(list[ChatSession])

# Fields the controller may change on an existing message
UPDATABLE_MESSAGE_FIELDS = frozenset({"content", "sql", "results", "visualization", "type"})


def title_from_message(content: str) -> str:
    """Session title from the first user message, truncated for the sidebar."""
    content = content.strip()
    if len(content) > TITLE_MAX_LENGTH:
        return content[:TITLE_MAX_LENGTH] + "..."
    return content


class ChatHistoryStore:
    def __init__(
        self,
        storage: KeyValueStore,
        *,
        max_messages_per_chat: int = MAX_MESSAGES_PER_CHAT,
        max_sessions: int = MAX_SESSIONS,
    ) -> None:
        self._storage = storage
        self.max_messages_per_chat = max_messages_per_chat
        self.max_sessions = max_sessions

    # -- raw document ------------------------------------------------------

    def _load(self) -> list[ChatSession]:
        raw = self._storage.get(CHAT_SESSIONS_KEY)
        if not raw or not raw.strip():
            return []
        try:
            return SessionsAdapter.validate_json(raw.encode("utf-8"))
        except ValidationError:
            logger.warning("Stored chat sessions are unreadable; treating history as empty", exc_info=True)
            return []

    def _save(self, sessions: list[ChatSession]) -> None:
        self._storage.set(CHAT_SESSIONS_KEY, SessionsAdapter.dump_json(sessions, exclude_none=True).decode("utf-8"))

    @staticmethod
    def _index(sessions: list[ChatSession], session_id: str) -> int:
        for i, s in enumerate(sessions):
            if s.id == session_id:
                return i
        return -1

    # -- sessions ----------------------------------------------------------

    def get_all_sessions(self) -> list[ChatSession]:
        """All sessions, most recent first."""
        return self._load()

    def get_session(self, session_id: str) -> ChatSession | None:
        sessions = self._load()
        i = self._index(sessions, session_id)
        return sessions[i] if i != -1 else None

    def create_session(self, title: str = DEFAULT_SESSION_TITLE) -> ChatSession:
        """Create a session at the front of the list; the oldest beyond max_sessions is evicted."""
        session = ChatSession(id=new_id("session"), title=title)
        sessions = [session, *self._load()]
        if len(sessions) > self.max_sessions:
            evicted = sessions[self.max_sessions:]
            sessions = sessions[: self.max_sessions]
            logger.info("Evicted %d old chat session(s): %s", len(evicted), [s.id for s in evicted])
        self._save(sessions)
        return session

    def add_session(self, session: ChatSession) -> bool:
        """
        Store a complete session at the front of the list.
        Sessions without a user-authored message are not kept (returns False).
        """
        if not session.has_user_message():
            return False
        sessions = [s for s in self._load() if s.id != session.id]
        sessions.insert(0, session)
        self._save(sessions[: self.max_sessions])
        return True

    def save_session(self, session_id: str, **updates: Any) -> ChatSession | None:
        """
        Apply updates (title, messages) to a session. A session left without any
        user-authored message is dropped from history instead. Returns the saved session.
        """
        sessions = self._load()
        i = self._index(sessions, session_id)
        if i == -1:
            return None
        updated = ChatSession.model_validate({**sessions[i].model_dump(), **updates})
        if not updated.has_user_message():
            sessions.pop(i)
            self._save(sessions)
            return None
        sessions[i] = updated
        self._save(sessions)
        return updated

    def delete_session(self, session_id: str) -> bool:
        """Delete one session. Returns False if it does not exist."""
        sessions = self._load()
        remaining = [s for s in sessions if s.id != session_id]
        if len(remaining) == len(sessions):
            return False
        self._save(remaining)
        return True

    def clear_all_sessions(self) -> None:
        self._storage.delete(CHAT_SESSIONS_KEY)

    # -- messages ----------------------------------------------------------

    def has_reached_message_limit(self, session_id: str) -> bool:
        session = self.get_session(session_id)
        return session is not None and len(session.messages) >= self.max_messages_per_chat

    def add_message(self, session_id: str, message: ChatMessage) -> bool:
        """
        Append a message to a session. The first user message also sets the title.
        Returns False when the session is missing or already holds max_messages_per_chat messages.
        """
        sessions = self._load()
        i = self._index(sessions, session_id)
        if i == -1:
            logger.warning("add_message: session %s not found", session_id)
            return False
        session = sessions[i]
        if len(session.messages) >= self.max_messages_per_chat:
            logger.warning("add_message: session %s is at its message limit", session_id)
            return False
        session.messages.append(message.model_copy(deep=True))
        if message.role == "user" and sum(1 for m in session.messages if m.role == "user") == 1:
            session.title = title_from_message(message.content)
        self._save(sessions)
        return True

    def update_message_fields(self, session_id: str, message_id: str, **fields: Any) -> ChatMessage | None:
        """
        Overwrite any subset of content / sql / results / visualization / type on a stored message.
        Returns the stored message, or None if the session or message does not exist.
        """
        unknown = set(fields) - UPDATABLE_MESSAGE_FIELDS
        if unknown:
            raise ValueError(f"Cannot update message fields: {sorted(unknown)}")
        sessions = self._load()
        i = self._index(sessions, session_id)
        if i == -1:
            return None
        messages = sessions[i].messages
        for j, m in enumerate(messages):
            if m.id == message_id:
                messages[j] = ChatMessage.model_validate({**m.model_dump(), **_plain(fields)})
                self._save(sessions)
                return messages[j]
        return None


def _plain(fields: dict[str, Any]) -> dict[str, Any]:
    return {k: (v.model_dump() if hasattr(v, "model_dump") else v) for k, v in fields.items()}
