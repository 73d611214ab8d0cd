"""
Annotation tools: notes pinned to points, lines or ranges on a chart.
"""

import re
from typing import Any, Literal

from pydantic import BaseModel, Field

from ..backend.client import BoundBackend
from .base import ConfirmableInput, MutatingTool, Tool, ToolInput
from .common import date_range_problems, is_iso_datetime
from .confirmation import Commit, Preview

DEFAULT_COLOR = "#3B82F6"
HEX_COLOR = re.compile(r"^#(?:[0-9a-fA-F]{3}|[0-9a-fA-F]{6})$")


class DateRange(BaseModel):
    start_date: str = Field(description="Start date in YYYY-MM-DD format")
    end_date: str = Field(description="End date in YYYY-MM-DD format")
    granularity: Literal["hourly", "daily", "weekly", "monthly"] = Field(description="Time granularity")


class ChartFilter(BaseModel):
    field: str = Field(description="Filter field name")
    operator: Literal["eq", "ne", "gt", "lt", "contains"] = Field(description="Filter operator")
    value: str = Field(description="Filter value")


class ChartContext(BaseModel):
    date_range: DateRange = Field(description="Date range shown by the chart")
    filters: list[ChartFilter] | None = Field(default=None, description="Filters applied to the chart")
    metrics: list[str] | None = Field(default=None, description="Metric names shown on the chart")
    tab_id: str | None = Field(default=None, description="Optional tab ID for the chart")

    def to_backend(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"dateRange": self.date_range.model_dump()}
        if self.filters is not None:
            payload["filters"] = [f.model_dump() for f in self.filters]
        if self.metrics is not None:
            payload["metrics"] = self.metrics
        if self.tab_id is not None:
            payload["tabId"] = self.tab_id
        return payload


class ListAnnotationsInput(ToolInput):
    chart_type: Literal["metrics"] = Field(default="metrics", description="Chart type (only 'metrics')")
    chart_context: ChartContext = Field(description="Date range, filters and metrics of the chart")


class AnnotationIdInput(ToolInput):
    id: str = Field(min_length=1, description="The annotation ID")


class CreateAnnotationInput(ConfirmableInput):
    chart_type: Literal["metrics"] = Field(default="metrics", description="Chart type (only 'metrics')")
    chart_context: ChartContext = Field(description="Date range, filters and metrics of the chart")
    annotation_type: Literal["point", "line", "range"] = Field(
        description="'point' for a single moment, 'line' for a vertical line, 'range' for a time period"
    )
    x_value: str = Field(description="Timestamp in ISO 8601 format (e.g. '2024-01-15T10:30:00Z')")
    x_end_value: str | None = Field(default=None, description="End timestamp, required for 'range'")
    y_value: float | None = Field(default=None, description="Optional Y-axis value for point annotations")
    text: str = Field(min_length=1, max_length=500, description="Annotation text (1-500 characters)")
    tags: list[str] | None = Field(default=None, description="Optional tags")
    color: str = Field(default=DEFAULT_COLOR, description="Hex color, e.g. '#3B82F6'")
    is_public: bool = Field(default=False, description="Visible to all team members")


class UpdateAnnotationInput(ConfirmableInput):
    id: str = Field(min_length=1, description="The annotation ID to update")
    text: str | None = Field(default=None, min_length=1, max_length=500, description="Updated text")
    tags: list[str] | None = Field(default=None, description="Updated tags")
    color: str | None = Field(default=None, description="Updated hex color")
    is_public: bool | None = Field(default=None, description="Updated visibility")


class DeleteAnnotationInput(ConfirmableInput):
    id: str = Field(min_length=1, description="The annotation ID to delete")


def validate_create(params: CreateAnnotationInput) -> list[str]:
    problems = date_range_problems(
        params.chart_context.date_range.start_date,
        params.chart_context.date_range.end_date,
    )
    if not is_iso_datetime(params.x_value):
        problems.append("x_value must be a valid ISO 8601 date string (e.g. '2024-01-15T10:30:00Z')")
    if params.x_end_value is not None and not is_iso_datetime(params.x_end_value):
        problems.append("x_end_value must be a valid ISO 8601 date string (e.g. '2024-01-15T10:30:00Z')")
    if params.annotation_type == "range" and not params.x_end_value:
        problems.append("Range annotations require an x_end_value to define the end of the time period")
    if not HEX_COLOR.match(params.color):
        problems.append("color must be a hex color such as '#3B82F6'")
    return problems


def validate_update(params: UpdateAnnotationInput) -> list[str]:
    if params.color is not None and not HEX_COLOR.match(params.color):
        return ["color must be a hex color such as '#3B82F6'"]
    return []


def annotation_changes(current: dict[str, Any], params: UpdateAnnotationInput) -> list[str]:
    changes = []
    if params.text is not None and params.text != current.get("text"):
        changes.append(f'Text: "{current.get("text")}" → "{params.text}"')
    if params.tags is not None:
        current_tags = current.get("tags") or []
        if sorted(current_tags) != sorted(params.tags):
            changes.append(
                f"Tags: [{', '.join(current_tags) or 'none'}] → [{', '.join(params.tags) or 'none'}]"
            )
    if params.color is not None and params.color != current.get("color"):
        changes.append(f"Color: {current.get('color')} → {params.color}")
    if params.is_public is not None and params.is_public != current.get("isPublic"):
        before = "public" if current.get("isPublic") else "private"
        after = "public" if params.is_public else "private"
        changes.append(f"Visibility: {before} → {after}")
    return changes


def create_annotation_tools(backend: BoundBackend) -> list[Tool]:
    """Annotation tools bound to the run's website."""
    website_id = backend.ctx.resource_id

    async def list_annotations(params: ListAnnotationsInput) -> Any:
        result = await backend.call("annotations.list", {
            "websiteId": website_id,
            "chartType": params.chart_type,
            "chartContext": params.chart_context.to_backend(),
        })
        return {"annotations": result, "count": len(result) if isinstance(result, list) else 0}

    async def get_annotation(params: AnnotationIdInput) -> Any:
        return await backend.call("annotations.getById", {"id": params.id})

    async def preview_create(params: CreateAnnotationInput) -> Preview:
        date_range = params.chart_context.date_range
        if params.annotation_type == "range":
            timing = f"{params.x_value} to {params.x_end_value}"
        else:
            timing = params.x_value
        return Preview(
            tool_name="create_annotation",
            message="Please review the annotation details below and confirm if you want to create it:",
            fields={
                "text": params.text,
                "type": params.annotation_type,
                "timing": timing,
                "chart": f"{date_range.start_date} to {date_range.end_date} ({date_range.granularity})",
                "tags": ", ".join(params.tags) if params.tags else "None",
                "color": params.color,
                "visibility": "public" if params.is_public else "private",
            },
        )

    async def commit_create(params: CreateAnnotationInput) -> Commit:
        payload: dict[str, Any] = {
            "websiteId": website_id,
            "chartType": params.chart_type,
            "chartContext": params.chart_context.to_backend(),
            "annotationType": params.annotation_type,
            "xValue": params.x_value,
            "text": params.text,
            "tags": params.tags or [],
            "color": params.color,
            "isPublic": params.is_public,
        }
        if params.x_end_value:
            payload["xEndValue"] = params.x_end_value
        if params.y_value is not None:
            payload["yValue"] = params.y_value

        result = await backend.call("annotations.create", payload)
        return Commit(
            tool_name="create_annotation",
            message=f'Annotation "{params.text}" created successfully',
            payload=result,
        )

    async def preview_update(params: UpdateAnnotationInput) -> Preview:
        current = await backend.call("annotations.getById", {"id": params.id}) or {}
        changes = annotation_changes(current, params)
        summary = {
            "text": current.get("text"),
            "tags": current.get("tags") or [],
            "color": current.get("color"),
            "isPublic": current.get("isPublic"),
        }
        if not changes:
            return Preview(
                tool_name="update_annotation",
                message="No changes detected. The annotation will remain unchanged.",
                fields=summary,
                confirmation_required=False,
            )
        return Preview(
            tool_name="update_annotation",
            message="Please review the changes below and confirm if you want to update the annotation:",
            fields=summary,
            changes=changes,
        )

    async def commit_update(params: UpdateAnnotationInput) -> Commit:
        payload: dict[str, Any] = {"id": params.id}
        if params.text is not None:
            payload["text"] = params.text
        if params.tags is not None:
            payload["tags"] = params.tags
        if params.color is not None:
            payload["color"] = params.color
        if params.is_public is not None:
            payload["isPublic"] = params.is_public

        result = await backend.call("annotations.update", payload)
        return Commit(tool_name="update_annotation", message="Annotation updated successfully", payload=result)

    async def preview_delete(params: DeleteAnnotationInput) -> Preview:
        current = await backend.call("annotations.getById", {"id": params.id}) or {}
        return Preview(
            tool_name="delete_annotation",
            message="Please confirm if you want to delete this annotation:",
            fields={
                "id": params.id,
                "text": current.get("text"),
                "type": current.get("annotationType"),
            },
        )

    async def commit_delete(params: DeleteAnnotationInput) -> Commit:
        await backend.call("annotations.delete", {"id": params.id})
        return Commit(
            tool_name="delete_annotation",
            message="Annotation deleted successfully",
            payload={"id": params.id},
        )

    return [
        Tool(
            name="list_annotations",
            description=(
                "List annotations for the current website and chart context, with their "
                "text, tags and timing."
            ),
            input_model=ListAnnotationsInput,
            handler=list_annotations,
            validator=lambda p: date_range_problems(
                p.chart_context.date_range.start_date,
                p.chart_context.date_range.end_date,
            ),
        ),
        Tool(
            name="get_annotation_by_id",
            description="Get a specific annotation by ID.",
            input_model=AnnotationIdInput,
            handler=get_annotation,
        ),
        MutatingTool(
            name="create_annotation",
            description=(
                "Create a new annotation on a chart to mark an event or period. REQUIRES "
                "EXPLICIT USER CONFIRMATION: call with confirmed=false first to get a preview."
            ),
            input_model=CreateAnnotationInput,
            preview=preview_create,
            commit=commit_create,
            validator=validate_create,
        ),
        MutatingTool(
            name="update_annotation",
            description=(
                "Update the text, tags, color or visibility of an annotation. REQUIRES EXPLICIT "
                "USER CONFIRMATION: call with confirmed=false first to see the changes."
            ),
            input_model=UpdateAnnotationInput,
            preview=preview_update,
            commit=commit_update,
            validator=validate_update,
        ),
        MutatingTool(
            name="delete_annotation",
            description=(
                "Delete an annotation. REQUIRES EXPLICIT USER CONFIRMATION: call with "
                "confirmed=false first."
            ),
            input_model=DeleteAnnotationInput,
            preview=preview_delete,
            commit=commit_delete,
        ),
    ]
