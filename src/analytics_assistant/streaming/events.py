"""
Stream frames sent to the caller as newline-delimited JSON.
"""

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

EventType = Literal["thinking", "progress", "complete", "error"]
TERMINAL_TYPES: frozenset[str] = frozenset({"complete", "error"})


class StreamData(BaseModel):
    """Rendering hints attached to a complete frame."""

    model_config = ConfigDict(populate_by_name=True)

    has_visualization: bool = Field(default=False, alias="hasVisualization")
    chart_type: str | None = Field(default=None, alias="chartType")
    rows: list[Any] | None = None
    response_type: Literal["chart", "text", "metric"] = Field(default="text", alias="responseType")
    metric_value: float | int | str | None = Field(default=None, alias="metricValue")
    metric_label: str | None = Field(default=None, alias="metricLabel")


class StreamEvent(BaseModel):
    type: EventType
    content: str
    data: StreamData | None = None
    sequence: int = 0

    @property
    def is_terminal(self) -> bool:
        return self.type in TERMINAL_TYPES

    def to_line(self) -> str:
        """Wire form: one JSON object followed by a newline."""
        return self.model_dump_json(by_alias=True, exclude_none=True, exclude={"sequence"}) + "\n"
