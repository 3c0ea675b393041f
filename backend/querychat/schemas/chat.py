"""
Chat transcript types: sessions, messages and the query output attached to assistant messages.
Timestamps are UTC and millisecond-precise so a persist/reload round trip compares equal.
"""
import uuid
from datetime import datetime, timezone
from typing import Any, Literal

from pydantic import BaseModel, Field, model_validator

from querychat.core.constants import DEFAULT_CHART_TYPE, DEFAULT_SESSION_TITLE

Role = Literal["user", "assistant", "system"]
MessageType = Literal[
    "text",
    "error",
    "results",
    "status",
    "correction",
    "empty_results",
    "clarification",
]


def utc_now_ms() -> datetime:
    """Current UTC time truncated to milliseconds."""
    now = datetime.now(timezone.utc)
    return now.replace(microsecond=now.microsecond - now.microsecond % 1000)


def new_id(prefix: str) -> str:
    """Generate an id such as 'session-3f2a...' (UUID hex)."""
    return f"{prefix}-{uuid.uuid4().hex}"


class QueryResult(BaseModel):
    columns: list[str] = Field(default_factory=list)
    rows: list[dict[str, Any]] = Field(default_factory=list)


class VisualizationSpec(BaseModel):
    """Chart kind plus an untrusted rendering payload (text or structured data, never executed)."""

    type: str = DEFAULT_CHART_TYPE
    payload: Any = ""

    @model_validator(mode="before")
    @classmethod
    def accept_plotly_code(cls, data: Any) -> Any:
        # Stream records and older stored charts carry the payload as plotly_code.
        if isinstance(data, dict) and "payload" not in data and "plotly_code" in data:
            data = {**data, "payload": data["plotly_code"]}
        return data


class ChatMessage(BaseModel):
    id: str
    role: Role
    content: str = ""
    type: MessageType | None = None
    sql: str | None = None
    results: QueryResult | None = None
    visualization: VisualizationSpec | None = None
    timestamp: datetime = Field(default_factory=utc_now_ms)

    @classmethod
    def create(cls, role: Role, content: str = "", **fields: Any) -> "ChatMessage":
        return cls(id=new_id(f"{role}-msg"), role=role, content=content, **fields)


class ChatSession(BaseModel):
    id: str
    title: str = DEFAULT_SESSION_TITLE
    created_at: datetime = Field(default_factory=utc_now_ms)
    messages: list[ChatMessage] = Field(default_factory=list)

    def has_user_message(self) -> bool:
        return any(m.role == "user" and m.content and m.content.strip() for m in self.messages)


class SavedVisualization(VisualizationSpec):
    id: str
    title: str
    saved_at: datetime = Field(default_factory=utc_now_ms)
