"""
Query session controller: runs one question/answer turn over the query stream and keeps the transcript consistent.

A turn goes idle -> sending -> streaming -> completed | failed -> idle. Only one turn runs at a time; a second
submission while one is in flight is rejected, not queued. Switching or closing the session cancels the
running turn, and records that arrive after that are dropped.
"""
import asyncio
import enum
import logging
from collections.abc import AsyncIterator
from dataclasses import dataclass
from typing import Any

import httpx

from querychat.core.constants import (
    CONTEXT_WINDOW,
    MSG_CONNECT_DATABASE_FIRST,
    MSG_NO_RESPONSE,
    STATUS_PROCESSING,
    TURN_MESSAGE_COUNT,
)
from querychat.core.errors import QueryStreamError, SessionNotFoundError, stream_error_message
from querychat.schemas.api import ConnectionStatus
from querychat.schemas.chat import ChatMessage, ChatSession, QueryResult, VisualizationSpec
from querychat.services.chat_history_service import ChatHistoryStore
from querychat.services.query_api.client import QueryApiClient
from querychat.services.stream_events import EventDemultiplexer, ParseError, TurnState, decode_record

logger = logging.getLogger(__name__)


class TurnPhase(str, enum.Enum):
    IDLE = "idle"
    SENDING = "sending"
    STREAMING = "streaming"
    COMPLETED = "completed"
    FAILED = "failed"


class Rejection(str, enum.Enum):
    IN_FLIGHT = "in_flight"
    MESSAGE_LIMIT = "message_limit"
    NOT_CONNECTED = "not_connected"


@dataclass
class TurnUpdate:
    """Snapshot handed to observers after every visible change of a turn."""

    phase: TurnPhase
    status: str | None
    message: ChatMessage | None = None
    rejection: Rejection | None = None

    def to_event(self) -> dict[str, Any]:
        return {
            "phase": self.phase.value,
            "status": self.status,
            "message": self.message.model_dump(mode="json", exclude_none=True) if self.message else None,
            "rejection": self.rejection.value if self.rejection else None,
        }


class QuerySessionController:
    def __init__(
        self,
        store: ChatHistoryStore,
        client: QueryApiClient,
        *,
        user_id: str | None = None,
        context_window: int = CONTEXT_WINDOW,
    ) -> None:
        self._store = store
        self._client = client
        self._demux = EventDemultiplexer()
        self._context_window = context_window
        self._cancel: asyncio.Event | None = None

        self.user_id = user_id
        self.session_id: str | None = None
        self.messages: list[ChatMessage] = []
        # Local notices such as "connect a database first"; not persisted, counted or sent as context
        self.notices: list[ChatMessage] = []
        self.phase = TurnPhase.IDLE
        self.status: str | None = None
        self.limit_reached = False
        self.connection: ConnectionStatus | None = None
        # Output of the latest results-bearing answer, for the results panel
        self.current_sql: str | None = None
        self.current_results: QueryResult | None = None
        self.current_visualization: VisualizationSpec | None = None

    # -- state -------------------------------------------------------------

    @property
    def is_connected(self) -> bool:
        return bool(self.connection and self.connection.success)

    @property
    def in_flight(self) -> bool:
        return self.phase in (TurnPhase.SENDING, TurnPhase.STREAMING)

    def _reset_current(self) -> None:
        self.current_sql = None
        self.current_results = None
        self.current_visualization = None
        self.status = None

    def _check_limit(self) -> bool:
        session = self._store.get_session(self.session_id) if self.session_id else None
        count = len(session.messages) if session else 0
        # A turn needs room for the question and the answer.
        self.limit_reached = count + TURN_MESSAGE_COUNT > self._store.max_messages_per_chat
        return self.limit_reached

    def cancel(self) -> None:
        """
        Signal the running turn (if any) to stop reading the stream and release the controller.
        The abandoned turn still finishes writing to its own session but no longer touches controller state.
        """
        if self._cancel is not None:
            self._cancel.set()
            self._cancel = None
            self.phase = TurnPhase.IDLE
            self.status = None

    def close(self) -> None:
        self.cancel()

    # -- sessions ----------------------------------------------------------

    def new_chat(self) -> ChatSession:
        self.cancel()
        session = self._store.create_session()
        self.session_id = session.id
        self.messages = []
        self.notices = []
        self._reset_current()
        self.limit_reached = False
        return session

    def select_session(self, session_id: str) -> ChatSession:
        """Make an existing session active and restore the output of its last results-bearing answer."""
        session = self._store.get_session(session_id)
        if session is None:
            raise SessionNotFoundError(session_id)
        self.cancel()
        self.session_id = session.id
        self.messages = list(session.messages)
        self.notices = []
        self._reset_current()
        for msg in reversed(session.messages):
            if msg.role == "assistant" and (msg.results or msg.visualization or msg.sql or msg.type == "results"):
                self.current_sql = msg.sql
                self.current_results = msg.results
                self.current_visualization = msg.visualization
                break
        self._check_limit()
        return session

    def delete_session(self, session_id: str) -> bool:
        deleted = self._store.delete_session(session_id)
        if deleted and session_id == self.session_id:
            self.new_chat()
        return deleted

    def ensure_session(self) -> str:
        if self.session_id is None or self._store.get_session(self.session_id) is None:
            self.new_chat()
        return self.session_id

    # -- data source -------------------------------------------------------

    async def connect(self, db_url: str, gemini_api_key: str | None = None) -> ConnectionStatus:
        """Ask the query service to connect to db_url and load its schema."""
        if not (db_url or "").strip():
            self.connection = ConnectionStatus(success=False, message="Database URL is required")
            return self.connection
        status = await self._client.get_schema(db_url.strip(), str(self.user_id or ""), gemini_api_key)
        self.connection = status
        if status.success:
            logger.info("Connected to data source (%d tables)", status.table_count)
        else:
            logger.warning("Data source connection failed: %s", status.message)
        return status

    # -- turns -------------------------------------------------------------

    def _context(self) -> list[dict[str, str]]:
        if self._context_window <= 0:
            return []
        return [{"role": m.role, "content": m.content} for m in self.messages[-self._context_window:]]

    def _persist(self, session_id: str, message: ChatMessage) -> None:
        self._store.update_message_fields(
            session_id,
            message.id,
            content=message.content,
            sql=message.sql,
            results=message.results,
            visualization=message.visualization,
            type=message.type,
        )

    def _rejected(self, reason: Rejection, message: ChatMessage | None = None) -> TurnUpdate:
        logger.info("Question rejected: %s", reason.value)
        return TurnUpdate(phase=self.phase, status=self.status, message=message, rejection=reason)

    async def submit_question(self, text: str) -> ChatMessage | None:
        """Run a whole turn. Returns the final assistant message (or the local error notice), None if rejected."""
        last: TurnUpdate | None = None
        async for update in self.iter_turn(text):
            last = update
        return last.message if last else None

    async def iter_turn(self, text: str) -> AsyncIterator[TurnUpdate]:
        """Run one turn, yielding a TurnUpdate after every visible change."""
        text = (text or "").strip()
        if not text:
            return
        if self.in_flight:
            yield self._rejected(Rejection.IN_FLIGHT)
            return
        if not self.is_connected:
            notice = ChatMessage.create("assistant", MSG_CONNECT_DATABASE_FIRST, type="error")
            self.notices.append(notice)
            yield self._rejected(Rejection.NOT_CONNECTED, notice)
            return
        session_id = self.ensure_session()
        if self._check_limit():
            yield self._rejected(Rejection.MESSAGE_LIMIT)
            return

        cancel = asyncio.Event()
        self._cancel = cancel
        self.phase = TurnPhase.SENDING
        self._reset_current()
        self.status = STATUS_PROCESSING
        context = self._context()

        question = ChatMessage.create("user", text)
        self.messages.append(question)
        self._store.add_message(session_id, question)
        # Placeholder is stored before the request so a crash mid-stream leaves a partial answer.
        reply = ChatMessage.create("assistant", "")
        self.messages.append(reply)
        self._store.add_message(session_id, reply)
        turn = TurnState(message=reply, status=self.status)

        try:
            yield TurnUpdate(phase=self.phase, status=self.status, message=reply)
            async with self._client.stream_query(text, str(self.user_id or ""), context) as lines:
                if not cancel.is_set():
                    self.phase = TurnPhase.STREAMING
                async for line in lines:
                    if cancel.is_set():
                        logger.info("Turn in session %s cancelled; dropping the rest of the stream", session_id)
                        break
                    record = decode_record(line)
                    if isinstance(record, ParseError):
                        logger.warning("Skipping stream record (%s): %s", record.reason, record.line[:200])
                        continue
                    if self._demux.dispatch(turn, record):
                        self._persist(session_id, reply)
                    self.status = turn.status
                    self.current_sql = reply.sql or self.current_sql
                    self.current_results = reply.results or self.current_results
                    self.current_visualization = reply.visualization or self.current_visualization
                    yield TurnUpdate(phase=self.phase, status=self.status, message=reply)
        except (httpx.HTTPError, httpx.StreamError, QueryStreamError) as e:
            logger.exception("Query stream failed in session %s", session_id)
            reply.content = stream_error_message(e)
            reply.type = "error"
            self._persist(session_id, reply)
            if not cancel.is_set():
                self.phase = TurnPhase.FAILED
                self.status = None
                yield TurnUpdate(phase=self.phase, status=None, message=reply)
        else:
            if not cancel.is_set():
                if not reply.content:
                    reply.content = MSG_NO_RESPONSE
                self._persist(session_id, reply)
                self.phase = TurnPhase.COMPLETED
                self.status = None
                yield TurnUpdate(phase=self.phase, status=None, message=reply)
        finally:
            if self._cancel is cancel:
                self._cancel = None
                self.phase = TurnPhase.IDLE
                self.status = None
                self._check_limit()
