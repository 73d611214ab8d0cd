"""
Derive rendering hints for the complete frame from an agent's final answer.

Agents embed charts as JSON components on their own line, for example::

    {"type":"line-chart","title":"Traffic","data":{"x":["2024-01-01"],"pageviews":[100]}}

The first chart component found becomes a chart response. Otherwise a query
result with exactly one row and one value becomes a metric response.
"""

import json
from typing import Any, Iterable

from ..tools.base import ToolResult
from .events import StreamData

CHART_TYPES = {
    "line-chart": "line",
    "bar-chart": "bar",
    "area-chart": "area",
    "stacked-bar-chart": "stacked_bar",
    "pie-chart": "pie",
    "donut-chart": "pie",
}


def find_chart_component(content: str) -> dict[str, Any] | None:
    for line in content.splitlines():
        line = line.strip()
        if not (line.startswith("{") and line.endswith("}")):
            continue
        try:
            component = json.loads(line)
        except json.JSONDecodeError:
            continue
        if isinstance(component, dict) and component.get("type") in CHART_TYPES:
            return component
    return None


def chart_rows(data: dict[str, Any]) -> tuple[list[dict[str, Any]], int]:
    """Convert columnar chart data to rows. Returns the rows and the series count."""
    if "labels" in data and "values" in data:
        rows = [
            {"label": label, "value": value}
            for label, value in zip(data.get("labels") or [], data.get("values") or [])
        ]
        return rows, 1

    x_values = data.get("x") or []
    series = {k: v for k, v in data.items() if k != "x" and isinstance(v, list)}
    rows = []
    for index, x in enumerate(x_values):
        row: dict[str, Any] = {"x": x}
        for name, values in series.items():
            row[name] = values[index] if index < len(values) else None
        rows.append(row)
    return rows, len(series)


def _single_value(results: Iterable[ToolResult]) -> tuple[str, Any] | None:
    """The lone value of the last single-row, single-column query result."""
    for result in reversed(list(results)):
        if not result.success or result.kind != "read" or not isinstance(result.data, dict):
            continue
        rows = result.data.get("rows")
        if isinstance(rows, list) and len(rows) == 1 and isinstance(rows[0], dict) and len(rows[0]) == 1:
            ((label, value),) = rows[0].items()
            if isinstance(value, (int, float, str)):
                return label, value
        return None
    return None


def build_response_data(content: str, tool_results: Iterable[ToolResult] = ()) -> StreamData:
    """Rendering hints for the final answer of a run."""
    component = find_chart_component(content)
    if component is not None:
        rows, series_count = chart_rows(component.get("data") or {})
        chart_type = CHART_TYPES[component["type"]]
        if chart_type == "line" and series_count > 1:
            chart_type = "multi_line"
        return StreamData(
            has_visualization=True,
            chart_type=chart_type,
            rows=rows,
            response_type="chart",
        )

    single = _single_value(tool_results)
    if single is not None:
        label, value = single
        return StreamData(
            response_type="metric",
            metric_value=value,
            metric_label=label.replace("_", " ").capitalize(),
        )

    return StreamData(response_type="text")
