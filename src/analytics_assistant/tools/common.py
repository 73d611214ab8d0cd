"""
Input pieces and helpers shared by the dashboard tools.
"""

from datetime import date, datetime
from typing import Any, Literal

from pydantic import BaseModel, Field

FilterOperator = Literal["equals", "contains", "not_equals", "in", "not_in"]
StepType = Literal["PAGE_VIEW", "EVENT", "CUSTOM"]


class TargetFilter(BaseModel):
    """Filter applied to a goal or funnel."""

    field: str = Field(description="Filter field name")
    operator: FilterOperator = Field(description="Filter operator")
    value: str | list[str] = Field(description="Filter value (string or array of strings)")


def is_iso_date(value: str | None) -> bool:
    """True for a YYYY-MM-DD calendar date."""
    if not value:
        return False
    try:
        date.fromisoformat(value)
    except ValueError:
        return False
    return len(value) == 10


def is_iso_datetime(value: str | None) -> bool:
    """True for an ISO 8601 date or datetime, with or without a trailing Z."""
    if not value:
        return False
    try:
        datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return False
    return True


def date_range_problems(start: str | None, end: str | None) -> list[str]:
    problems = []
    if start is not None and not is_iso_date(start):
        problems.append("start_date must be in YYYY-MM-DD format")
    if end is not None and not is_iso_date(end):
        problems.append("end_date must be in YYYY-MM-DD format")
    if not problems and start and end and start > end:
        problems.append("start_date must not be after end_date")
    return problems


def format_filters(filters: list[TargetFilter] | None) -> str:
    if not filters:
        return "None"
    lines = []
    for f in filters:
        value = ", ".join(f.value) if isinstance(f.value, list) else f.value
        lines.append(f"- {f.field} {f.operator} {value}")
    return "\n".join(lines)


def dump_filters(filters: list[TargetFilter] | None) -> list[dict[str, Any]] | None:
    if filters is None:
        return None
    return [f.model_dump() for f in filters]


def describe_changes(
    current: dict[str, Any],
    updates: dict[str, Any],
    labels: dict[str, str],
) -> list[str]:
    """Human-readable list of fields whose value would change.

    ``updates`` maps backend field names to new values; None means unchanged.
    """
    changes = []
    for key, label in labels.items():
        new = updates.get(key)
        if new is None:
            continue
        old = current.get(key)
        if new != old:
            changes.append(f"{label}: {_display(old)} → {_display(new)}")
    return changes


def _display(value: Any) -> str:
    if value is None or value == "" or value == []:
        return "(none)"
    if isinstance(value, bool):
        return "yes" if value else "no"
    if isinstance(value, list):
        return ", ".join(str(v) for v in value)
    return f'"{value}"' if isinstance(value, str) else str(value)
