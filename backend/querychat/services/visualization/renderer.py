"""
Visualization renderer: turn a VisualizationSpec (plus the turn's query results) into a declarative Figure.

The payload comes from the query service and is treated as data only. Fenced JSON, JSON text and structured
payloads are read; any other text (e.g. chart-drawing code) is never evaluated. Whenever the payload is missing,
malformed or of an unknown chart kind the renderer falls back to a fixed figure, so the output is deterministic.
"""
import json
import logging
import re
from datetime import datetime
from typing import Any

from querychat.core.constants import (
    DEFAULT_CHART_TYPE,
    TABLE_CELL_MAX_LENGTH,
    TABLE_MAX_COLUMNS,
    TABLE_MAX_ROWS,
    TABLE_PRIORITY_COLUMNS,
)
from querychat.schemas.chat import QueryResult, VisualizationSpec
from querychat.services.stream_events import normalize_results
from querychat.services.visualization.charts import Figure, TableView, Trace

logger = logging.getLogger(__name__)

_FENCED_JSON = re.compile(r"```json\s*([\s\S]*?)\s*```")
_TRACE_FIELDS = ("x", "y", "labels", "values")
_TRACE_MODES = {"lines", "markers", "lines+markers"}
_SCALARS = (str, int, float, bool, type(None))


def parse_payload(payload: Any) -> Any:
    """Structured data from a payload, or None when it holds no data (plain text, code, empty)."""
    if isinstance(payload, (dict, list)):
        return payload
    if not isinstance(payload, str) or not payload.strip():
        return None
    text = payload.strip()
    m = _FENCED_JSON.search(text)
    candidate = m.group(1) if m else text
    try:
        return json.loads(candidate)
    except ValueError:
        logger.debug("Visualization payload is not JSON data; ignoring it")
        return None


def _number(v: Any) -> float | None:
    try:
        return float(v)
    except (TypeError, ValueError):
        return None


def _label(v: Any) -> str:
    return "" if v is None else str(v)


def _cell(column: str, value: Any) -> str:
    text = _label(value)
    if len(text) > TABLE_CELL_MAX_LENGTH:
        text = text[: TABLE_CELL_MAX_LENGTH - 3] + "..."
    if "date" in column and text:
        try:
            text = datetime.fromisoformat(text).date().isoformat()
        except ValueError:
            pass
    return text


def _display_columns(columns: list[str]) -> list[str]:
    if len(columns) <= TABLE_MAX_COLUMNS:
        return columns
    found = [c for c in TABLE_PRIORITY_COLUMNS if c in columns]
    return found if len(found) >= 3 else columns[:TABLE_MAX_COLUMNS]


def _table_figure(result: QueryResult) -> Figure:
    columns = _display_columns(result.columns)
    rows = [[_cell(c, row.get(c)) for c in columns] for row in result.rows[:TABLE_MAX_ROWS]]
    notes = []
    if len(result.rows) > TABLE_MAX_ROWS:
        notes.append(f"Showing {TABLE_MAX_ROWS} of {len(result.rows)} rows")
    if len(result.columns) > len(columns):
        notes.append(f"Displaying {len(columns)} of {len(result.columns)} columns")
    table = TableView(columns=columns, rows=rows, total_rows=len(result.rows), total_columns=len(result.columns))
    return Figure(kind="table", chart_type="table", title="Table Results", table=table, notes=notes)


def _figure_from_result(kind: str, result: QueryResult) -> Figure | None:
    cols = result.columns
    if kind in ("text", "table") and len(cols) == 1 and len(result.rows) == 1:
        return Figure(kind="single_value", chart_type=kind, title=cols[0], text=_label(result.rows[0].get(cols[0])))
    if kind == "table":
        return _table_figure(result)
    if len(cols) < 2:
        return None
    xs = [_label(row.get(cols[0])) for row in result.rows]
    ys = [_number(row.get(cols[1])) for row in result.rows]
    if kind == "bar":
        trace = Trace(type="bar", x=xs, y=ys)
        title = f"{cols[1]} by {cols[0]}"
    elif kind in ("line", "scatter"):
        trace = Trace(type="scatter", x=xs, y=ys, mode="lines" if kind == "line" else "markers")
        title = f"{cols[1]} by {cols[0]}"
    elif kind == "pie":
        return Figure(
            kind="chart",
            chart_type="pie",
            title=f"Distribution of {cols[1]} by {cols[0]}",
            traces=[Trace(type="pie", labels=xs, values=ys)],
        )
    else:
        return None
    return Figure(kind="chart", chart_type=kind, title=title, x_title=cols[0], y_title=cols[1], traces=[trace])


def _title_text(value: Any) -> str | None:
    if isinstance(value, str):
        return value
    if isinstance(value, dict) and isinstance(value.get("text"), str):
        return value["text"]
    return None


def _trace_from_dict(kind: str, raw: Any) -> Trace | None:
    """Copy whitelisted fields of one figure trace. Anything else in the payload is dropped."""
    if not isinstance(raw, dict):
        return None
    trace_type = raw.get("type") or ("pie" if kind == "pie" else "bar" if kind == "bar" else "scatter")
    if trace_type not in ("bar", "scatter", "pie"):
        return None
    fields: dict[str, Any] = {}
    for name in _TRACE_FIELDS:
        values = raw.get(name)
        if isinstance(values, list) and all(isinstance(v, _SCALARS) for v in values):
            fields[name] = values
    if not fields:
        return None
    mode = raw.get("mode")
    if mode not in _TRACE_MODES:
        mode = "lines" if kind == "line" and trace_type == "scatter" else None
    name = raw.get("name") if isinstance(raw.get("name"), str) else None
    return Trace(type=trace_type, mode=mode, name=name, **fields)


def _figure_from_traces(kind: str, data: dict[str, Any]) -> Figure | None:
    traces = [t for t in (_trace_from_dict(kind, raw) for raw in data.get("data") or []) if t is not None]
    if not traces:
        return None
    layout = data.get("layout") if isinstance(data.get("layout"), dict) else {}
    xaxis = layout.get("xaxis") if isinstance(layout.get("xaxis"), dict) else {}
    yaxis = layout.get("yaxis") if isinstance(layout.get("yaxis"), dict) else {}
    return Figure(
        kind="chart",
        chart_type=kind,
        title=_title_text(layout.get("title")),
        x_title=_title_text(xaxis.get("title")),
        y_title=_title_text(yaxis.get("title")),
        traces=traces,
    )


def _embedded_result(data: Any) -> QueryResult | None:
    if isinstance(data, list) or (isinstance(data, dict) and "rows" in data):
        try:
            return normalize_results(data)
        except ValueError:
            logger.warning("Visualization payload has rows in an unexpected shape")
    return None


def fallback_figure(spec: VisualizationSpec) -> Figure:
    kind = (spec.type or DEFAULT_CHART_TYPE).lower()
    if kind == "bar":
        return Figure(
            kind="chart",
            chart_type=kind,
            title="Sample Bar Chart",
            traces=[Trace(type="bar", x=["Sample A", "Sample B", "Sample C", "Sample D"], y=[10, 15, 13, 17])],
            sample=True,
        )
    if kind in ("line", "scatter"):
        return Figure(
            kind="chart",
            chart_type=kind,
            title=f"Sample {kind.capitalize()} Chart",
            traces=[
                Trace(type="scatter", x=[1, 2, 3, 4, 5], y=[10, 15, 13, 17, 20], mode="lines" if kind == "line" else "markers")
            ],
            sample=True,
        )
    if kind == "pie":
        return Figure(
            kind="chart",
            chart_type=kind,
            title="Sample Pie Chart",
            traces=[
                Trace(
                    type="pie",
                    values=[30, 20, 15, 35],
                    labels=["Category A", "Category B", "Category C", "Category D"],
                )
            ],
            sample=True,
        )
    if kind in ("text", "table"):
        text = spec.payload if isinstance(spec.payload, str) and spec.payload.strip() else "No data available"
        return Figure(kind="text", chart_type=kind, text=text)
    return Figure(
        kind="placeholder",
        chart_type=kind,
        text=f'Chart type "{spec.type}" not directly supported',
        notes=["Try asking for a bar, line, or pie chart"],
    )


def render_visualization(spec: VisualizationSpec, results: QueryResult | None = None) -> Figure:
    """
    Figure for a chart: figure-shaped payload first, then rows embedded in the payload,
    then the turn's query results, then the fallback for the chart kind.
    """
    kind = (spec.type or DEFAULT_CHART_TYPE).lower()
    data = parse_payload(spec.payload)
    if isinstance(data, dict) and isinstance(data.get("data"), list):
        figure = _figure_from_traces(kind, data)
        if figure is not None:
            return figure
    source = _embedded_result(data)
    if source is None and results is not None and results.rows:
        source = results
    if source is not None:
        figure = _figure_from_result(kind, source)
        if figure is not None:
            return figure
    return fallback_figure(spec)
