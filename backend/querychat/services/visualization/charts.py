"""
Declarative figures: the only thing the renderer produces. A closed set of kinds, plain data throughout.
to_plotly() gives the {data, layout} shape a browser charting library can draw directly.
"""
from typing import Any, Literal

from pydantic import BaseModel, Field

FigureKind = Literal["chart", "table", "single_value", "text", "placeholder"]
TraceType = Literal["bar", "scatter", "pie"]
TraceMode = Literal["lines", "markers", "lines+markers"]

Scalar = str | int | float | bool | None


class Trace(BaseModel):
    type: TraceType
    x: list[Scalar] | None = None
    y: list[Scalar] | None = None
    labels: list[Scalar] | None = None
    values: list[Scalar] | None = None
    name: str | None = None
    mode: TraceMode | None = None


class TableView(BaseModel):
    columns: list[str]
    rows: list[list[str]]
    total_rows: int
    total_columns: int


class Figure(BaseModel):
    kind: FigureKind
    chart_type: str
    title: str | None = None
    x_title: str | None = None
    y_title: str | None = None
    traces: list[Trace] = Field(default_factory=list)
    table: TableView | None = None
    text: str | None = None
    notes: list[str] = Field(default_factory=list)
    # True when drawn from built-in sample data because the payload had none
    sample: bool = False

    def to_plotly(self) -> dict[str, Any]:
        layout: dict[str, Any] = {}
        if self.title:
            layout["title"] = self.title
        if self.x_title:
            layout["xaxis"] = {"title": self.x_title}
        if self.y_title:
            layout["yaxis"] = {"title": self.y_title}
        return {"data": [t.model_dump(exclude_none=True) for t in self.traces], "layout": layout}
