"""
Funnel tools: multi-step user journeys for the current website.
"""

from typing import Any

from pydantic import BaseModel, Field

from ..backend.client import BoundBackend
from .base import ConfirmableInput, MutatingTool, Tool, ToolInput
from .common import StepType, TargetFilter, date_range_problems, dump_filters, format_filters
from .confirmation import Commit, Preview

MIN_FUNNEL_STEPS = 2
MAX_FUNNEL_STEPS = 10


class FunnelStep(BaseModel):
    type: StepType = Field(description="PAGE_VIEW for page paths, EVENT for custom events")
    target: str = Field(min_length=1, description="Page path (e.g. '/signup') or event name (e.g. 'button_click')")
    name: str = Field(min_length=1, description="Human-readable step name (e.g. 'Sign Up Page')")
    conditions: dict[str, Any] | None = Field(default=None, description="Optional conditions for the step")


class ListFunnelsInput(ToolInput):
    pass


class FunnelIdInput(ToolInput):
    id: str = Field(min_length=1, description="The funnel ID")


class FunnelAnalyticsInput(ToolInput):
    funnel_id: str = Field(min_length=1, description="The funnel ID")
    start_date: str | None = Field(default=None, description="Start date (YYYY-MM-DD). Defaults to 30 days ago.")
    end_date: str | None = Field(default=None, description="End date (YYYY-MM-DD). Defaults to today.")


class CreateFunnelInput(ConfirmableInput):
    name: str = Field(min_length=1, max_length=100, description="The funnel name (1-100 characters)")
    description: str | None = Field(default=None, description="Optional description of the funnel")
    steps: list[FunnelStep] = Field(
        description="Funnel steps in order (minimum 2, maximum 10). Steps define the user journey path."
    )
    filters: list[TargetFilter] | None = Field(default=None, description="Optional filters")
    ignore_historic_data: bool = Field(default=False, description="Ignore data before the funnel was created")


def validate_funnel(params: CreateFunnelInput) -> list[str]:
    problems = []
    if len(params.steps) < MIN_FUNNEL_STEPS:
        problems.append(f"A funnel needs at least {MIN_FUNNEL_STEPS} steps (got {len(params.steps)})")
    if len(params.steps) > MAX_FUNNEL_STEPS:
        problems.append(f"A funnel can have at most {MAX_FUNNEL_STEPS} steps (got {len(params.steps)})")
    return problems


def format_steps(steps: list[FunnelStep]) -> str:
    return "\n".join(
        f"{index}. {step.name} ({step.type}: {step.target})"
        for index, step in enumerate(steps, start=1)
    )


def create_funnel_tools(backend: BoundBackend) -> list[Tool]:
    """Funnel tools bound to the run's website."""
    website_id = backend.ctx.resource_id

    def _analytics_payload(params: FunnelAnalyticsInput) -> dict[str, Any]:
        payload: dict[str, Any] = {"funnelId": params.funnel_id, "websiteId": website_id}
        if params.start_date:
            payload["startDate"] = params.start_date
        if params.end_date:
            payload["endDate"] = params.end_date
        return payload

    async def list_funnels(params: ListFunnelsInput) -> Any:
        return await backend.call("funnels.list", {"websiteId": website_id})

    async def get_funnel(params: FunnelIdInput) -> Any:
        return await backend.call("funnels.getById", {"id": params.id, "websiteId": website_id})

    async def get_funnel_analytics(params: FunnelAnalyticsInput) -> Any:
        return await backend.call("funnels.getAnalytics", _analytics_payload(params))

    async def get_funnel_analytics_by_referrer(params: FunnelAnalyticsInput) -> Any:
        return await backend.call("funnels.getAnalyticsByReferrer", _analytics_payload(params))

    async def preview_create(params: CreateFunnelInput) -> Preview:
        return Preview(
            tool_name="create_funnel",
            message="Please review the funnel details below and confirm if you want to create it:",
            fields={
                "name": params.name,
                "description": params.description or "No description",
                "steps": format_steps(params.steps),
                "filters": format_filters(params.filters),
                "ignoreHistoricData": params.ignore_historic_data,
            },
        )

    async def commit_create(params: CreateFunnelInput) -> Commit:
        result = await backend.call("funnels.create", {
            "websiteId": website_id,
            "name": params.name,
            "description": params.description,
            "steps": [step.model_dump(exclude_none=True) for step in params.steps],
            "filters": dump_filters(params.filters),
            "ignoreHistoricData": params.ignore_historic_data,
        })
        return Commit(
            tool_name="create_funnel",
            message=f'Funnel "{params.name}" created successfully',
            payload=result,
        )

    def date_check(params: FunnelAnalyticsInput) -> list[str]:
        return date_range_problems(params.start_date, params.end_date)

    return [
        Tool(
            name="list_funnels",
            description="List all funnels for the current website, with their steps and filters.",
            input_model=ListFunnelsInput,
            handler=list_funnels,
        ),
        Tool(
            name="get_funnel_by_id",
            description="Get a specific funnel by ID, including steps, filters and configuration.",
            input_model=FunnelIdInput,
            handler=get_funnel,
        ),
        Tool(
            name="get_funnel_analytics",
            description=(
                "Get conversion analytics for a funnel: conversion rate, drop-off per step "
                "and time between steps."
            ),
            input_model=FunnelAnalyticsInput,
            handler=get_funnel_analytics,
            validator=date_check,
        ),
        Tool(
            name="get_funnel_analytics_by_referrer",
            description="Get funnel conversion broken down by traffic source (referrer).",
            input_model=FunnelAnalyticsInput,
            handler=get_funnel_analytics_by_referrer,
            validator=date_check,
        ),
        MutatingTool(
            name="create_funnel",
            description=(
                "Create a new funnel to track a user journey. REQUIRES EXPLICIT USER "
                "CONFIRMATION: call with confirmed=false first to get a preview."
            ),
            input_model=CreateFunnelInput,
            preview=preview_create,
            commit=commit_create,
            validator=validate_funnel,
        ),
    ]
