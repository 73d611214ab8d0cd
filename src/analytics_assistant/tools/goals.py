"""
Goal tools: single-step conversion targets for the current website.
"""

from typing import Any

from pydantic import Field

from ..backend.client import BoundBackend
from .base import ConfirmableInput, MutatingTool, Tool, ToolInput
from .common import (
    StepType,
    TargetFilter,
    date_range_problems,
    describe_changes,
    dump_filters,
    format_filters,
)
from .confirmation import Commit, Preview


class ListGoalsInput(ToolInput):
    pass


class GoalIdInput(ToolInput):
    id: str = Field(min_length=1, description="The goal ID")


class GoalAnalyticsInput(ToolInput):
    goal_id: str = Field(min_length=1, description="The goal ID")
    start_date: str | None = Field(default=None, description="Start date (YYYY-MM-DD). Defaults to 30 days ago.")
    end_date: str | None = Field(default=None, description="End date (YYYY-MM-DD). Defaults to today.")


class CreateGoalInput(ConfirmableInput):
    name: str = Field(min_length=1, max_length=100, description="The goal name (1-100 characters)")
    description: str | None = Field(default=None, description="Optional description of the goal")
    type: StepType = Field(description="PAGE_VIEW for page paths, EVENT for custom events")
    target: str = Field(
        min_length=1,
        description="Page path (e.g. '/thank-you') or event name (e.g. 'purchase_complete')",
    )
    filters: list[TargetFilter] | None = Field(default=None, description="Optional filters")
    ignore_historic_data: bool = Field(default=False, description="Ignore data before the goal was created")


class UpdateGoalInput(ConfirmableInput):
    id: str = Field(min_length=1, description="The goal ID to update")
    name: str | None = Field(default=None, min_length=1, max_length=100, description="New goal name")
    description: str | None = Field(default=None, description="New goal description")
    type: StepType | None = Field(default=None, description="New goal type")
    target: str | None = Field(default=None, min_length=1, description="New goal target")
    filters: list[TargetFilter] | None = Field(default=None, description="New goal filters")
    ignore_historic_data: bool | None = None


class DeleteGoalInput(ConfirmableInput):
    id: str = Field(min_length=1, description="The goal ID to delete")


GOAL_LABELS = {
    "name": "Name",
    "description": "Description",
    "type": "Type",
    "target": "Target",
    "ignoreHistoricData": "Ignore historic data",
}


def create_goal_tools(backend: BoundBackend) -> list[Tool]:
    """Goal tools bound to the run's website."""
    website_id = backend.ctx.resource_id

    async def list_goals(params: ListGoalsInput) -> Any:
        return await backend.call("goals.list", {"websiteId": website_id})

    async def get_goal(params: GoalIdInput) -> Any:
        return await backend.call("goals.getById", {"id": params.id, "websiteId": website_id})

    async def get_goal_analytics(params: GoalAnalyticsInput) -> Any:
        payload: dict[str, Any] = {"goalId": params.goal_id, "websiteId": website_id}
        if params.start_date:
            payload["startDate"] = params.start_date
        if params.end_date:
            payload["endDate"] = params.end_date
        return await backend.call("goals.getAnalytics", payload)

    async def preview_create(params: CreateGoalInput) -> Preview:
        return Preview(
            tool_name="create_goal",
            message="Please review the goal details below and confirm if you want to create it:",
            fields={
                "name": params.name,
                "description": params.description,
                "type": params.type,
                "target": params.target,
                "filters": format_filters(params.filters),
                "ignoreHistoricData": params.ignore_historic_data,
            },
        )

    async def commit_create(params: CreateGoalInput) -> Commit:
        result = await backend.call("goals.create", {
            "websiteId": website_id,
            "name": params.name,
            "description": params.description,
            "type": params.type,
            "target": params.target,
            "filters": dump_filters(params.filters),
            "ignoreHistoricData": params.ignore_historic_data,
        })
        return Commit(tool_name="create_goal", message=f'Goal "{params.name}" created successfully', payload=result)

    def _updates(params: UpdateGoalInput) -> dict[str, Any]:
        return {
            "name": params.name,
            "description": params.description,
            "type": params.type,
            "target": params.target,
            "filters": dump_filters(params.filters),
            "ignoreHistoricData": params.ignore_historic_data,
        }

    async def preview_update(params: UpdateGoalInput) -> Preview:
        current = await backend.call("goals.getById", {"id": params.id, "websiteId": website_id}) or {}
        updates = _updates(params)
        changes = describe_changes(current, updates, GOAL_LABELS)
        if updates["filters"] is not None and updates["filters"] != current.get("filters"):
            changes.append("Filters: updated")

        if not changes:
            return Preview(
                tool_name="update_goal",
                message="No changes detected. The goal already has these values.",
                fields={"id": params.id, "name": current.get("name")},
                confirmation_required=False,
            )
        return Preview(
            tool_name="update_goal",
            message=f'Please review the changes to goal "{current.get("name", params.id)}" and confirm:',
            fields={"id": params.id, "name": current.get("name")},
            changes=changes,
        )

    async def commit_update(params: UpdateGoalInput) -> Commit:
        await backend.call("goals.getById", {"id": params.id, "websiteId": website_id})
        payload = {k: v for k, v in _updates(params).items() if v is not None}
        result = await backend.call("goals.update", {"id": params.id, **payload})
        return Commit(tool_name="update_goal", message="Goal updated successfully", payload=result)

    async def preview_delete(params: DeleteGoalInput) -> Preview:
        current = await backend.call("goals.getById", {"id": params.id, "websiteId": website_id}) or {}
        return Preview(
            tool_name="delete_goal",
            message="Are you sure you want to delete this goal? This cannot be undone.",
            fields={"id": params.id, "name": current.get("name"), "target": current.get("target")},
        )

    async def commit_delete(params: DeleteGoalInput) -> Commit:
        await backend.call("goals.delete", {"id": params.id})
        return Commit(tool_name="delete_goal", message="Goal deleted successfully", payload={"id": params.id})

    return [
        Tool(
            name="list_goals",
            description="List all conversion goals for the current website.",
            input_model=ListGoalsInput,
            handler=list_goals,
        ),
        Tool(
            name="get_goal_by_id",
            description="Get a single goal by its ID.",
            input_model=GoalIdInput,
            handler=get_goal,
        ),
        Tool(
            name="get_goal_analytics",
            description="Get conversion analytics for a goal over a date range.",
            input_model=GoalAnalyticsInput,
            handler=get_goal_analytics,
            validator=lambda p: date_range_problems(p.start_date, p.end_date),
        ),
        MutatingTool(
            name="create_goal",
            description=(
                "Create a new goal to track single-step conversions. REQUIRES EXPLICIT USER "
                "CONFIRMATION: call with confirmed=false first to get a preview."
            ),
            input_model=CreateGoalInput,
            preview=preview_create,
            commit=commit_create,
        ),
        MutatingTool(
            name="update_goal",
            description=(
                "Update an existing goal. Only provided fields change. REQUIRES EXPLICIT USER "
                "CONFIRMATION: call with confirmed=false first to see the changes."
            ),
            input_model=UpdateGoalInput,
            preview=preview_update,
            commit=commit_update,
        ),
        MutatingTool(
            name="delete_goal",
            description=(
                "Delete a goal. REQUIRES EXPLICIT USER CONFIRMATION: call with confirmed=false first."
            ),
            input_model=DeleteGoalInput,
            preview=preview_delete,
            commit=commit_delete,
        ),
    ]
