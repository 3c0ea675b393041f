"""
Query stream records: decode newline-delimited JSON into typed records and fold them into the assistant message.

Every record carries a `type` tag plus a type-dependent `data` and/or `message`. Lines that are not JSON,
carry an unknown type or miss a required field decode to ParseError; callers log and skip them.
"""
import json
import logging
from dataclasses import dataclass
from typing import Annotated, Any, Callable, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError, field_validator, model_validator

from querychat.core.constants import (
    DEFAULT_CHART_TYPE,
    MSG_NO_RESULTS,
    MSG_UNKNOWN_ERROR,
    STATUS_DEFAULT,
    STATUS_EXECUTING_SQL,
)
from querychat.schemas.chat import ChatMessage, QueryResult, VisualizationSpec

logger = logging.getLogger(__name__)


def normalize_results(data: Any) -> QueryResult:
    """
    Accept {columns, rows} or a bare list of row objects.
    Columns default to the first row's keys; keys that only appear in later rows are appended.
    """
    if isinstance(data, list):
        rows, columns = data, None
    elif isinstance(data, dict) and ("rows" in data or "columns" in data):
        rows, columns = data.get("rows") or [], data.get("columns")
    else:
        raise ValueError(f"results payload must be an object with rows or a list of rows, got {type(data).__name__}")
    if not isinstance(rows, list) or not all(isinstance(r, dict) for r in rows):
        raise ValueError("results rows must be a list of objects")
    if columns is not None and not isinstance(columns, list):
        raise ValueError("results columns must be a list")
    ordered: dict[str, None] = {}
    for c in columns if columns is not None else (list(rows[0]) if rows else []):
        ordered.setdefault(str(c), None)
    for row in rows:
        for k in row:
            ordered.setdefault(str(k), None)
    return QueryResult(columns=list(ordered), rows=[{str(k): v for k, v in r.items()} for r in rows])


def results_summary(results: QueryResult) -> str:
    n = len(results.rows)
    if n == 0:
        return MSG_NO_RESULTS
    return f"Found {n} {'result' if n == 1 else 'results'}. You can see the data below."


def visualization_summary(spec: VisualizationSpec) -> str:
    return f"I've created a {spec.type} chart to visualize this data."


# ---------------------------------------------------------------------------
# Records (one variant per type tag)
# ---------------------------------------------------------------------------


class _Record(BaseModel):
    model_config = ConfigDict(extra="ignore")

    data: Any = None
    message: str | None = None

    def text(self, default: str = "") -> str:
        """message, else data when it is text, else default."""
        if self.message:
            return self.message
        if isinstance(self.data, str) and self.data:
            return self.data
        return default


class StatusRecord(_Record):
    type: Literal["status"]


class MessageRecord(_Record):
    type: Literal["message", "chat"]

    def delta(self) -> str:
        if isinstance(self.data, str) and self.data:
            return self.data
        return self.message or ""


class SqlRecord(_Record):
    type: Literal["sql"]
    data: str


class ResultsRecord(_Record):
    type: Literal["results"]
    data: QueryResult

    @field_validator("data", mode="before")
    @classmethod
    def normalize(cls, v: Any) -> QueryResult:
        return normalize_results(v)


class VisualizationRecord(_Record):
    type: Literal["visualization"]

    def spec(self) -> VisualizationSpec:
        data = self.data if isinstance(self.data, dict) else {}
        return VisualizationSpec(
            type=data.get("type") or DEFAULT_CHART_TYPE,
            payload=data.get("payload", data.get("plotly_code")) or "",
        )


class CorrectionRecord(_Record):
    type: Literal["correction"]
    sql: str = ""
    explanation: str = ""

    @model_validator(mode="after")
    def split_payload(self) -> "CorrectionRecord":
        if isinstance(self.data, str):
            self.sql = self.data
            self.explanation = self.message or ""
        elif isinstance(self.data, dict):
            self.sql = self.data.get("corrected_sql") or self.data.get("sql") or ""
            self.explanation = self.data.get("explanation") or self.message or ""
        if not self.sql:
            raise ValueError("correction record has no corrected SQL")
        return self


class ClarificationRecord(_Record):
    type: Literal["clarification"]

    @model_validator(mode="after")
    def has_question(self) -> "ClarificationRecord":
        if not self.question():
            raise ValueError("clarification record has no question")
        return self

    def question(self) -> str:
        if isinstance(self.data, dict):
            return self.data.get("question") or self.message or ""
        return self.text()


class EmptyResultsRecord(_Record):
    type: Literal["empty_results"]

    def explanation(self) -> str:
        if isinstance(self.data, dict):
            return self.data.get("explanation") or self.data.get("message") or self.message or MSG_NO_RESULTS
        return self.text(MSG_NO_RESULTS)


class ErrorRecord(_Record):
    type: Literal["error"]

    def detail(self) -> str:
        if isinstance(self.data, dict):
            text = self.data.get("message") or self.data.get("detail") or self.data.get("error")
            if isinstance(text, str) and text:
                return text
        return self.text(MSG_UNKNOWN_ERROR)


StreamRecord = Annotated[
    Union[
        StatusRecord,
        MessageRecord,
        SqlRecord,
        ResultsRecord,
        VisualizationRecord,
        CorrectionRecord,
        ClarificationRecord,
        EmptyResultsRecord,
        ErrorRecord,
    ],
    Field(discriminator="type"),
]
RecordAdapter = TypeAdapter(StreamRecord)


@dataclass(frozen=True)
class ParseError:
    line: str
    reason: str


def decode_record(line: str) -> Any:
    """Decode one stream line into a record, or ParseError. Never raises."""
    try:
        obj = json.loads(line)
    except json.JSONDecodeError as e:
        return ParseError(line, f"invalid JSON: {e.msg}")
    if not isinstance(obj, dict) or "type" not in obj:
        return ParseError(line, "record is not an object with a type")
    try:
        return RecordAdapter.validate_python(obj)
    except ValidationError as e:
        return ParseError(line, f"invalid {obj.get('type')!r} record: {e.errors()[0].get('msg')}")


# ---------------------------------------------------------------------------
# Dispatch
# ---------------------------------------------------------------------------


@dataclass
class TurnState:
    """The assistant message being built for one turn, plus the transient status line."""

    message: ChatMessage
    status: str | None = None

    def append(self, text: str) -> None:
        self.message.content = f"{self.message.content}\n\n{text}" if self.message.content else text


class EventDemultiplexer:
    """
    Apply records to a TurnState in arrival order. dispatch() returns True when the message changed
    and should be persisted; status-only records return False.
    """

    def __init__(self) -> None:
        self._handlers: dict[type, Callable[[TurnState, Any], bool]] = {
            StatusRecord: self._on_status,
            MessageRecord: self._on_message,
            SqlRecord: self._on_sql,
            ResultsRecord: self._on_results,
            VisualizationRecord: self._on_visualization,
            CorrectionRecord: self._on_correction,
            ClarificationRecord: self._on_clarification,
            EmptyResultsRecord: self._on_empty_results,
            ErrorRecord: self._on_error,
        }

    def dispatch(self, turn: TurnState, record: Any) -> bool:
        handler = self._handlers.get(type(record))
        if handler is None:
            logger.warning("No handler for stream record %r", record)
            return False
        return handler(turn, record)

    def _on_status(self, turn: TurnState, record: StatusRecord) -> bool:
        turn.status = record.text(STATUS_DEFAULT)
        return False

    def _on_message(self, turn: TurnState, record: MessageRecord) -> bool:
        delta = record.delta()
        if not delta:
            return False
        turn.message.content += delta
        return True

    def _on_sql(self, turn: TurnState, record: SqlRecord) -> bool:
        turn.message.sql = record.data
        turn.status = STATUS_EXECUTING_SQL
        return True

    def _on_results(self, turn: TurnState, record: ResultsRecord) -> bool:
        turn.message.results = record.data
        turn.message.type = "results"
        turn.append(results_summary(record.data))
        return True

    def _on_visualization(self, turn: TurnState, record: VisualizationRecord) -> bool:
        spec = record.spec()
        turn.message.visualization = spec
        turn.append(visualization_summary(spec))
        return True

    def _on_correction(self, turn: TurnState, record: CorrectionRecord) -> bool:
        turn.message.sql = record.sql
        turn.message.type = "correction"
        if record.explanation:
            turn.append(record.explanation)
        return True

    def _on_clarification(self, turn: TurnState, record: ClarificationRecord) -> bool:
        turn.message.content = record.question()
        turn.message.type = "clarification"
        return True

    def _on_empty_results(self, turn: TurnState, record: EmptyResultsRecord) -> bool:
        turn.message.content = record.explanation()
        turn.message.type = "empty_results"
        return True

    def _on_error(self, turn: TurnState, record: ErrorRecord) -> bool:
        turn.message.content = record.detail()
        turn.message.type = "error"
        turn.status = None
        return True
