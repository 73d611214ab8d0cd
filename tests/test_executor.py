"""
Tests for the tool executor and the preview/commit protocol.
"""

import asyncio

import pytest

from analytics_assistant.backend import BoundBackend
from analytics_assistant.errors import AuthError, GENERIC_ERROR_MESSAGE, NotFoundError, TransportError
from analytics_assistant.llm import ToolCall
from analytics_assistant.tools import (
    create_annotation_tools,
    create_funnel_tools,
    create_goal_tools,
)

from conftest import GatedBackend, RecordingBackend

ANNOTATION = {
    "chart_context": {
        "date_range": {"start_date": "2024-05-01", "end_date": "2024-05-31", "granularity": "daily"},
    },
    "annotation_type": "point",
    "x_value": "2024-05-15T10:00:00Z",
    "text": "Launched new pricing page",
}

FUNNEL = {
    "name": "Signup flow",
    "steps": [
        {"type": "PAGE_VIEW", "target": "/", "name": "Home"},
        {"type": "PAGE_VIEW", "target": "/signup", "name": "Signup"},
    ],
}


def _toolset(tools):
    return {tool.name: tool for tool in tools}


@pytest.mark.asyncio
async def test_preview_has_no_side_effect(executor, bound, backend, tool_by_name):
    """Calling a mutating tool without confirmation only previews."""
    tool = tool_by_name(create_annotation_tools(bound), "create_annotation")

    result = await executor.execute(tool, dict(ANNOTATION))

    assert result.success
    assert result.kind == "preview"
    assert result.data["confirmationRequired"] is True
    assert result.data["fields"]["text"] == "Launched new pricing page"
    assert backend.calls == []


@pytest.mark.asyncio
async def test_confirmed_call_commits_exactly_once(executor, bound, backend, tool_by_name):
    backend.responses["annotations.create"] = {"id": "ann_1"}
    tool = tool_by_name(create_annotation_tools(bound), "create_annotation")

    await executor.execute(tool, dict(ANNOTATION))
    result = await executor.execute(tool, {**ANNOTATION, "confirmed": True})

    assert result.success
    assert result.kind == "commit"
    assert result.data == {
        "success": True,
        "message": 'Annotation "Launched new pricing page" created successfully',
        "result": {"id": "ann_1"},
    }
    assert backend.count("annotations.create") == 1
    procedure, payload = backend.calls[0]
    assert payload["websiteId"] == "site_1"
    assert payload["xValue"] == "2024-05-15T10:00:00Z"
    assert payload["chartContext"]["dateRange"]["start_date"] == "2024-05-01"


@pytest.mark.asyncio
async def test_confirmed_without_preview_returns_preview(executor, bound, backend, tool_by_name):
    """A confirmed flag is not trusted unless a matching preview was shown."""
    tool = tool_by_name(create_annotation_tools(bound), "create_annotation")

    result = await executor.execute(tool, {**ANNOTATION, "confirmed": True})

    assert result.kind == "preview"
    assert backend.calls == []


@pytest.mark.asyncio
async def test_replayed_confirmation_cannot_commit_twice(executor, bound, backend, tool_by_name):
    backend.responses["annotations.create"] = {"id": "ann_1"}
    tool = tool_by_name(create_annotation_tools(bound), "create_annotation")

    await executor.execute(tool, dict(ANNOTATION))
    first = await executor.execute(tool, {**ANNOTATION, "confirmed": True})
    replay = await executor.execute(tool, {**ANNOTATION, "confirmed": True})

    assert first.kind == "commit"
    assert replay.kind == "preview"
    assert backend.count("annotations.create") == 1


@pytest.mark.asyncio
async def test_confirmation_with_changed_arguments_previews_again(executor, bound, backend, tool_by_name):
    tool = tool_by_name(create_annotation_tools(bound), "create_annotation")

    await executor.execute(tool, dict(ANNOTATION))
    result = await executor.execute(tool, {**ANNOTATION, "text": "Something else", "confirmed": True})

    assert result.kind == "preview"
    assert backend.count("annotations.create") == 0


@pytest.mark.asyncio
async def test_single_step_funnel_fails_validation_before_backend(executor, bound, backend, tool_by_name):
    tool = tool_by_name(create_funnel_tools(bound), "create_funnel")
    arguments = {**FUNNEL, "steps": FUNNEL["steps"][:1], "confirmed": True}

    result = await executor.execute(tool, arguments)

    assert not result.success
    assert result.kind == "error"
    assert "at least 2 steps" in result.error
    assert result.error.startswith("Invalid input:")
    assert backend.calls == []


@pytest.mark.asyncio
async def test_schema_errors_are_reported(executor, bound, backend, tool_by_name):
    tool = tool_by_name(create_funnel_tools(bound), "create_funnel")

    result = await executor.execute(tool, {"name": "", "steps": "not a list"})

    assert not result.success
    assert "name" in result.error
    assert "steps" in result.error
    assert backend.calls == []


@pytest.mark.asyncio
async def test_commit_revalidates_input(executor, bound, backend, tool_by_name):
    """Confirmation never bypasses validation."""
    tool = tool_by_name(create_annotation_tools(bound), "create_annotation")
    bad = {**ANNOTATION, "annotation_type": "range"}

    preview = await executor.execute(tool, bad)
    commit = await executor.execute(tool, {**bad, "confirmed": True})

    assert not preview.success
    assert not commit.success
    assert "x_end_value" in commit.error
    assert backend.calls == []


@pytest.mark.asyncio
async def test_unauthorized_read_becomes_user_message(executor, bound, backend, tool_by_name):
    backend.responses["funnels.getById"] = AuthError("session expired")
    tool = tool_by_name(create_funnel_tools(bound), "get_funnel_by_id")

    result = await executor.execute(tool, {"id": "f1"})

    assert not result.success
    assert result.error == "You don't have permission to perform this action."
    assert result.for_model() == "Error: You don't have permission to perform this action."


@pytest.mark.asyncio
async def test_not_found_read(executor, bound, backend, tool_by_name):
    backend.responses["goals.getById"] = NotFoundError()
    tool = tool_by_name(create_goal_tools(bound), "get_goal_by_id")

    result = await executor.execute(tool, {"id": "missing"})

    assert result.error == "The requested resource was not found."


@pytest.mark.asyncio
async def test_read_is_retried_once_on_transport_error(executor, bound, backend, tool_by_name):
    backend.responses["funnels.list"] = [TransportError("connection reset"), [{"id": "f1"}]]
    tool = tool_by_name(create_funnel_tools(bound), "list_funnels")

    result = await executor.execute(tool, {})

    assert result.success
    assert result.data == [{"id": "f1"}]
    assert backend.count("funnels.list") == 2


@pytest.mark.asyncio
async def test_read_retry_gives_up_after_one_retry(executor, bound, backend, tool_by_name):
    backend.responses["funnels.list"] = [TransportError("down"), TransportError("still down"), []]
    tool = tool_by_name(create_funnel_tools(bound), "list_funnels")

    result = await executor.execute(tool, {})

    assert not result.success
    assert result.error == GENERIC_ERROR_MESSAGE
    assert backend.count("funnels.list") == 2


@pytest.mark.asyncio
async def test_mutation_is_never_retried(executor, bound, backend, tool_by_name):
    backend.responses["funnels.create"] = [TransportError("timeout"), {"id": "f1"}]
    tool = tool_by_name(create_funnel_tools(bound), "create_funnel")

    await executor.execute(tool, dict(FUNNEL))
    result = await executor.execute(tool, {**FUNNEL, "confirmed": True})

    assert not result.success
    assert result.error == GENERIC_ERROR_MESSAGE
    assert backend.count("funnels.create") == 1


@pytest.mark.asyncio
async def test_update_preview_fetches_current_state_but_does_not_mutate(executor, bound, backend, tool_by_name):
    backend.responses["annotations.getById"] = {
        "id": "a1", "text": "Old", "tags": ["x"], "color": "#3B82F6", "isPublic": False,
    }
    backend.responses["annotations.update"] = {"id": "a1"}
    tool = tool_by_name(create_annotation_tools(bound), "update_annotation")

    preview = await executor.execute(tool, {"id": "a1", "text": "New"})
    commit = await executor.execute(tool, {"id": "a1", "text": "New", "confirmed": True})

    assert preview.data["changes"] == ['Text: "Old" → "New"']
    assert commit.kind == "commit"
    assert backend.procedures() == ["annotations.getById", "annotations.update"]


@pytest.mark.asyncio
async def test_update_without_changes_needs_no_confirmation(executor, bound, backend, tool_by_name):
    backend.responses["annotations.getById"] = {"id": "a1", "text": "Same"}
    tool = tool_by_name(create_annotation_tools(bound), "update_annotation")

    preview = await executor.execute(tool, {"id": "a1", "text": "Same"})
    confirmed = await executor.execute(tool, {"id": "a1", "text": "Same", "confirmed": True})

    assert preview.data["confirmationRequired"] is False
    assert confirmed.kind == "preview"
    assert backend.count("annotations.update") == 0


@pytest.mark.asyncio
async def test_model_cannot_override_website(executor, bound, backend, tool_by_name):
    """Tools are bound to the run's website; extra arguments are ignored."""
    backend.responses["funnels.list"] = []
    tool = tool_by_name(create_funnel_tools(bound), "list_funnels")

    await executor.execute(tool, {"websiteId": "someone_elses_site"})

    assert backend.calls == [("funnels.list", {"websiteId": "site_1"})]
    assert backend.headers == [{"authorization": "Bearer token"}]


@pytest.mark.asyncio
async def test_batch_keeps_call_order_and_reports_unknown_tools(executor, bound, backend):
    backend.responses.update({"goals.list": [[{"id": "g1"}]], "funnels.list": [[{"id": "f1"}]]})
    toolset = _toolset(create_goal_tools(bound) + create_funnel_tools(bound))
    calls = [
        ToolCall(id="1", name="list_funnels", arguments={}),
        ToolCall(id="2", name="drop_database", arguments={}),
        ToolCall(id="3", name="list_goals", arguments={}),
    ]

    results = await executor.execute_batch(calls, toolset)

    assert [r.tool_name for r in results] == ["list_funnels", "drop_database", "list_goals"]
    assert results[0].data == [{"id": "f1"}]
    assert results[1].error == "Tool 'drop_database' is not available."
    assert results[2].data == [{"id": "g1"}]


class RendezvousBackend(RecordingBackend):
    """Each call waits until ``expected`` calls are in flight at once."""

    def __init__(self, expected: int, responses=None):
        super().__init__(responses)
        self.expected = expected
        self.arrived = 0
        self.all_arrived = asyncio.Event()

    async def call(self, procedure, payload=None, headers=None, correlation_id=None):
        self.arrived += 1
        if self.arrived >= self.expected:
            self.all_arrived.set()
        await self.all_arrived.wait()
        return await super().call(procedure, payload, headers, correlation_id)


@pytest.mark.asyncio
async def test_batch_runs_reads_concurrently(executor, ctx):
    backend = RendezvousBackend(expected=2, responses={"goals.list": {"ok": 1}, "funnels.list": {"ok": 2}})
    bound = BoundBackend(backend, ctx)
    toolset = _toolset(create_goal_tools(bound) + create_funnel_tools(bound))
    calls = [
        ToolCall(id="1", name="list_goals", arguments={}),
        ToolCall(id="2", name="list_funnels", arguments={}),
    ]

    results = await asyncio.wait_for(executor.execute_batch(calls, toolset), timeout=2)

    assert [r.data for r in results] == [{"ok": 1}, {"ok": 2}]


@pytest.mark.asyncio
async def test_batch_runs_mutations_one_at_a_time(executor, ctx):
    backend = GatedBackend("goals.delete")
    bound = BoundBackend(backend, ctx)
    toolset = _toolset(create_goal_tools(bound))
    calls = [
        ToolCall(id="1", name="delete_goal", arguments={"id": "g1", "confirmed": True}),
        ToolCall(id="2", name="create_goal", arguments={"name": "A", "type": "EVENT", "target": "buy"}),
    ]
    executor.ledger.record(executor.ctx.conversation_id, "delete_goal", {"id": "g1", "confirmed": False})

    task = asyncio.create_task(executor.execute_batch(calls, toolset))
    await backend.started.wait()
    await asyncio.sleep(0)

    # The second mutation has not started while the first is in flight
    assert executor.ledger.list_pending(executor.ctx.conversation_id) == []

    backend.gate.set()
    results = await task

    assert [r.kind for r in results] == ["commit", "preview"]
    assert len(executor.ledger.list_pending(executor.ctx.conversation_id)) == 1


@pytest.mark.asyncio
async def test_cancelled_commit_runs_to_completion(executor, ctx):
    backend = GatedBackend("funnels.create", responses={"funnels.create": {"id": "f1"}})
    tool = next(t for t in create_funnel_tools(BoundBackend(backend, ctx)) if t.name == "create_funnel")

    await executor.execute(tool, dict(FUNNEL))
    task = asyncio.create_task(executor.execute(tool, {**FUNNEL, "confirmed": True}))
    await backend.started.wait()

    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task

    assert executor.inflight_count == 1
    backend.gate.set()
    await executor.drain()

    assert backend.count("funnels.create") == 1
    assert executor.inflight_count == 0


@pytest.mark.asyncio
async def test_cancelling_drain_does_not_cancel_commit(executor, ctx):
    backend = GatedBackend("funnels.create", responses={"funnels.create": {"id": "f1"}})
    tool = next(t for t in create_funnel_tools(BoundBackend(backend, ctx)) if t.name == "create_funnel")

    await executor.execute(tool, dict(FUNNEL))
    run = asyncio.create_task(executor.execute(tool, {**FUNNEL, "confirmed": True}))
    await backend.started.wait()
    run.cancel()
    with pytest.raises(asyncio.CancelledError):
        await run

    commit_task = next(iter(executor._inflight))
    drain = asyncio.create_task(executor.drain())
    await asyncio.sleep(0)
    drain.cancel()
    await asyncio.sleep(0)

    # Drain keeps waiting while the commit is still open
    assert not drain.done()
    assert not commit_task.cancelled()

    backend.gate.set()
    with pytest.raises(asyncio.CancelledError):
        await drain

    assert commit_task.done() and not commit_task.cancelled()
    assert commit_task.result().tool_name == "create_funnel"
    assert backend.count("funnels.create") == 1
    assert executor.inflight_count == 0
