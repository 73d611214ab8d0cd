"""
Tests for agent module.
"""

import asyncio
import json

import pytest

from conftest import FakePool, GatedBackend, ScriptedLLM, text, tool_calls

from analytics_assistant.agent import (
    ANALYTICS,
    FUNNELS,
    REFLECTION,
    REFLECTION_MAX,
    TRIAGE,
    AgentDefinition,
    AgentRunner,
    ChatRun,
    build_agents,
    entry_agent_for,
    stream_chat,
)
from analytics_assistant.agent.run import TIMEOUT_MESSAGE
from analytics_assistant.backend import BoundBackend
from analytics_assistant.errors import GENERIC_ERROR_MESSAGE, AuthError, BudgetExceededError
from analytics_assistant.memory import HistoryMessage, InMemoryHistoryStore
from analytics_assistant.streaming import StreamEmitter
from analytics_assistant.tools import create_funnel_tools, create_goal_tools

SIGNUP_GOAL = {"name": "Signup", "type": "PAGE_VIEW", "target": "/thanks"}
SIGNUP_FUNNEL = {
    "name": "Signup flow",
    "steps": [
        {"type": "PAGE_VIEW", "target": "/", "name": "Home"},
        {"type": "PAGE_VIEW", "target": "/signup", "name": "Signup"},
    ],
}


class ExplodingLLM(ScriptedLLM):
    async def generate(self, messages, **kwargs):
        raise RuntimeError("upstream 500 for key sk-secret")


class SlowLLM(ScriptedLLM):
    def __init__(self):
        super().__init__(name="slow")
        self.cancelled = False

    async def generate(self, messages, **kwargs):
        try:
            await asyncio.sleep(10)
        except asyncio.CancelledError:
            self.cancelled = True
            raise
        return text("too late")


async def _frames(emitter: StreamEmitter) -> list:
    emitter.close()
    return [event async for event in emitter.frames()]


def _names(definitions) -> list[str]:
    return [d.name for d in definitions]


# Definitions

def test_entry_agent_by_model_tier():
    """Test the caller's model tier picks the entry agent."""
    assert entry_agent_for("chat") == TRIAGE
    assert entry_agent_for("agent") == REFLECTION
    assert entry_agent_for("agent-max") == REFLECTION_MAX
    assert entry_agent_for(None) == TRIAGE
    assert entry_agent_for("unknown") == TRIAGE


def test_agent_toolsets(ctx, backend):
    """Test each agent gets its own tools."""
    agents = build_agents(ctx, backend, FakePool())

    assert _names(agents[TRIAGE].tool_definitions()) == ["handoff"]
    assert agents[TRIAGE].handoff.targets == [ANALYTICS, FUNNELS, REFLECTION]
    assert _names(agents[REFLECTION].tool_definitions()) == ["handoff"]
    assert agents[REFLECTION_MAX].handoff.targets == [ANALYTICS, FUNNELS]

    analytics = agents[ANALYTICS].toolset
    funnels = agents[FUNNELS].toolset
    assert "execute_sql_query" in analytics
    assert "create_link" in analytics
    assert "create_funnel" not in analytics
    assert "create_funnel" in funnels
    assert "create_link" not in funnels
    assert agents[ANALYTICS].handoff is None


# Router

@pytest.mark.asyncio
async def test_router_makes_one_call_with_only_handoff(ctx, backend, executor):
    """Test the router decides in a single call and is offered only the handoff tool."""
    router = ScriptedLLM([tool_calls(("handoff", {"agent": "funnels", "instruction": "checkout conversion"}))])
    agents = build_agents(ctx, backend, FakePool(router=router))
    runner = AgentRunner(agents, executor)

    decision = await runner.route(agents[TRIAGE], "How is checkout converting?", [])

    assert decision.is_handoff
    assert decision.target == FUNNELS
    assert decision.instruction == "checkout conversion"
    assert len(router.calls) == 1
    assert _names(router.calls[0]["tools"]) == ["handoff"]
    assert router.calls[0]["tool_choice"] == "auto"
    assert "example.com" in router.calls[0]["system_prompt"]


@pytest.mark.asyncio
async def test_router_empty_reply_uses_analytics(ctx, backend, executor):
    """Test an ambiguous request falls back to the analytics specialist."""
    router = ScriptedLLM([text("")])
    agents = build_agents(ctx, backend, FakePool(router=router))

    decision = await AgentRunner(agents, executor).route(agents[TRIAGE], "hmm", [])

    assert decision.target == ANALYTICS


@pytest.mark.asyncio
async def test_router_non_handoff_tool_uses_analytics(ctx, backend, executor):
    """Test a router calling any other tool is treated as a fallback, not executed."""
    router = ScriptedLLM([tool_calls(("list_goals", {}))])
    agents = build_agents(ctx, backend, FakePool(router=router))

    decision = await AgentRunner(agents, executor).route(agents[TRIAGE], "What goals do I have?", [])

    assert decision.target == ANALYTICS
    assert backend.calls == []


@pytest.mark.asyncio
async def test_router_invalid_target_uses_analytics(ctx, backend, executor):
    """Test an unknown handoff target falls back."""
    router = ScriptedLLM([tool_calls(("handoff", {"agent": "admin"}))])
    agents = build_agents(ctx, backend, FakePool(router=router))

    decision = await AgentRunner(agents, executor).route(agents[TRIAGE], "Delete my account", [])

    assert decision.target == ANALYTICS


@pytest.mark.asyncio
async def test_router_direct_answer(ctx, backend, executor):
    """Test the router may answer without handing off."""
    router = ScriptedLLM([text("Hi! Ask me anything about your traffic.")])
    agents = build_agents(ctx, backend, FakePool(router=router))

    decision = await AgentRunner(agents, executor).route(agents[TRIAGE], "hello", [])

    assert not decision.is_handoff
    assert decision.answer == "Hi! Ask me anything about your traffic."


@pytest.mark.asyncio
async def test_router_sees_last_exchange_with_pending_preview(ctx, backend, executor):
    """Test the router's minimal memory still shows a pending confirmation."""
    router = ScriptedLLM([tool_calls(("handoff", {"agent": "analytics"}))])
    agents = build_agents(ctx, backend, FakePool(router=router))
    history = [
        HistoryMessage(role="user", content="How many visitors?"),
        HistoryMessage(role="assistant", content="1,200 visitors.", agent="analytics"),
        HistoryMessage(role="user", content="Create a signup goal"),
        HistoryMessage(
            role="assistant",
            content="Please confirm the goal.",
            agent="analytics",
            previews=[{"tool": "create_goal", "arguments": SIGNUP_GOAL}],
        ),
    ]

    await AgentRunner(agents, executor).route(agents[TRIAGE], "yes", history)

    messages = router.calls[0]["messages"]
    assert [m.role for m in messages] == ["user", "assistant", "user"]
    assert messages[1].content.startswith("[answered by analytics]")
    assert "Pending confirmation for" in messages[1].content
    assert messages[2].content == "yes"


# Specialists

@pytest.mark.asyncio
async def test_specialist_tool_loop(ctx, backend, executor):
    """Test a specialist calls tools until it answers."""
    backend.responses["goals.list"] = [[{"id": "g1", "name": "Signup"}]]
    specialist = ScriptedLLM([tool_calls(("list_goals", {})), text("You have one goal: Signup.")])
    agents = build_agents(ctx, backend, FakePool(specialist=specialist))
    emitter = StreamEmitter()

    result = await AgentRunner(agents, executor, emitter).run_agent(agents[ANALYTICS], "What goals do I have?", [])

    assert result.content == "You have one goal: Signup."
    assert result.turns == 2
    assert result.steps == 1
    assert backend.calls == [("goals.list", {"websiteId": "site_1"})]

    tool_message = specialist.calls[1]["messages"][-1]
    assert tool_message.role == "tool"
    assert tool_message.tool_call_id == "call_0"
    assert json.loads(tool_message.content) == [{"id": "g1", "name": "Signup"}]

    assert [e.content for e in await _frames(emitter)] == ["Running list goals"]


@pytest.mark.asyncio
async def test_handoff_note_is_added_to_instructions(ctx, backend, executor):
    """Test the router's instruction reaches the specialist as a note."""
    specialist = ScriptedLLM([text("Conversion is 4%.")])
    agents = build_agents(ctx, backend, FakePool(specialist=specialist))

    await AgentRunner(agents, executor).run_agent(
        agents[FUNNELS], "How is checkout?", [], note="checkout conversion",
    )

    call = specialist.calls[0]
    assert call["system_prompt"].endswith("<handoff-note>\ncheckout conversion\n</handoff-note>")
    assert call["messages"][-1].content == "How is checkout?"
    assert call["temperature"] == 0.3


@pytest.mark.asyncio
async def test_tool_error_does_not_stop_the_run(ctx, backend, executor):
    """Test an unauthorized tool call becomes an error result for the model."""
    backend.responses["goals.list"] = AuthError()
    specialist = ScriptedLLM([tool_calls(("list_goals", {})), text("I can't access your goals.")])
    agents = build_agents(ctx, backend, FakePool(specialist=specialist))

    result = await AgentRunner(agents, executor).run_agent(agents[ANALYTICS], "Goals?", [])

    assert result.content == "I can't access your goals."
    assert specialist.calls[1]["messages"][-1].content == "Error: You don't have permission to perform this action."
    assert not result.tool_results[0].success


@pytest.mark.asyncio
async def test_turn_budget_stops_before_executing(ctx, bound, backend, executor):
    """Test tools requested on the last permitted turn are not executed."""
    backend.responses["goals.list"] = lambda payload: []
    llm = ScriptedLLM([tool_calls(("list_goals", {})), tool_calls(("list_goals", {}))])
    agent = AgentDefinition(
        name="analytics",
        llm=llm,
        temperature=0.3,
        instructions=lambda ctx: "Answer questions.",
        tools=create_goal_tools(bound),
        max_turns=2,
        max_steps=10,
    )

    with pytest.raises(BudgetExceededError) as info:
        await AgentRunner({agent.name: agent}, executor).run_agent(agent, "Goals?", [])

    assert info.value.limit == "turn"
    assert info.value.ceiling == 2
    assert backend.count("goals.list") == 1


@pytest.mark.asyncio
async def test_step_budget_stops_before_executing(ctx, bound, backend, executor):
    """Test a turn that would exceed the step ceiling runs none of its tools."""
    llm = ScriptedLLM([tool_calls(("list_goals", {}), ("list_goals", {}), ("list_goals", {}))])
    agent = AgentDefinition(
        name="analytics",
        llm=llm,
        temperature=0.3,
        instructions=lambda ctx: "Answer questions.",
        tools=create_goal_tools(bound),
        max_turns=5,
        max_steps=2,
    )

    with pytest.raises(BudgetExceededError) as info:
        await AgentRunner({agent.name: agent}, executor).run_agent(agent, "Goals?", [])

    assert info.value.limit == "step"
    assert backend.calls == []


# Orchestrators

@pytest.mark.asyncio
async def test_reflection_delegates_as_one_step(ctx, backend, executor):
    """Test a delegation runs the specialist as a sub-run and counts as one step."""
    backend.responses["goals.list"] = [[{"id": "g1"}]]
    orchestrator = ScriptedLLM([
        tool_calls(("handoff", {"agent": "analytics", "instruction": "Count the goals"})),
        text("Summary: you track one goal."),
    ])
    specialist = ScriptedLLM([tool_calls(("list_goals", {})), text("One goal.")])
    agents = build_agents(ctx, backend, FakePool(orchestrator=orchestrator, specialist=specialist))
    emitter = StreamEmitter()

    result = await AgentRunner(agents, executor, emitter).run_agent(agents[REFLECTION], "Audit my setup", [])

    assert result.content == "Summary: you track one goal."
    assert result.steps == 1
    assert result.turns == 2
    assert [r.tool_name for r in result.tool_results] == ["list_goals"]
    assert specialist.calls[0]["messages"][-1].content == "Count the goals"

    delegation = orchestrator.calls[1]["messages"][-1]
    assert delegation.role == "tool"
    assert delegation.content == "One goal."

    assert [e.content for e in await _frames(emitter)] == [
        "Asking the analytics agent: Count the goals",
        "Running list goals",
    ]


@pytest.mark.asyncio
async def test_delegation_without_instruction_uses_user_message(ctx, backend, executor):
    orchestrator = ScriptedLLM([tool_calls(("handoff", {"agent": "funnels"})), text("Done.")])
    specialist = ScriptedLLM([text("No funnels yet.")])
    agents = build_agents(ctx, backend, FakePool(orchestrator_max=orchestrator, specialist=specialist))

    await AgentRunner(agents, executor).run_agent(agents[REFLECTION_MAX], "Review my funnels", [])

    assert specialist.calls[0]["messages"][-1].content == "Review my funnels"


@pytest.mark.asyncio
async def test_invalid_delegation_is_reported_to_orchestrator(ctx, backend, executor):
    orchestrator = ScriptedLLM([tool_calls(("handoff", {"agent": "triage"})), text("Sorry.")])
    agents = build_agents(ctx, backend, FakePool(orchestrator=orchestrator))

    result = await AgentRunner(agents, executor).run_agent(agents[REFLECTION], "Audit", [])

    assert result.content == "Sorry."
    assert orchestrator.calls[1]["messages"][-1].content.startswith("Error: Invalid input: Unknown agent 'triage'")


# Runs

@pytest.mark.asyncio
async def test_run_streams_frames_and_remembers_previews(ctx, backend, executor, ledger):
    """Test a preview run, then the confirming run that commits exactly once."""
    backend.responses["goals.create"] = {"id": "g1", "name": "Signup"}
    router = ScriptedLLM([
        tool_calls(("handoff", {"agent": "analytics"})),
        tool_calls(("handoff", {"agent": "analytics"})),
    ])
    specialist = ScriptedLLM([
        tool_calls(("create_goal", SIGNUP_GOAL)),
        text("Please confirm the Signup goal."),
        tool_calls(("create_goal", {**SIGNUP_GOAL, "confirmed": True})),
        text("Goal created."),
    ])
    agents = build_agents(ctx, backend, FakePool(router=router, specialist=specialist))
    store = InMemoryHistoryStore()
    run = ChatRun(ctx, agents, store, executor)

    emitter = StreamEmitter()
    await run.execute("Create a signup goal for /thanks", emitter)
    events = await _frames(emitter)

    assert [e.type for e in events] == ["thinking", "progress", "progress", "complete"]
    assert events[1].content == "Handing off to the analytics agent"
    assert events[2].content == "Running create goal"
    assert events[3].content == "Please confirm the Signup goal."
    assert events[3].data.response_type == "text"
    assert backend.count("goals.create") == 0
    assert len(ledger.list_pending("conv_1")) == 1

    history = await store.read("conv_1", 10)
    assert [m.role for m in history] == ["user", "assistant"]
    assert history[1].agent == ANALYTICS
    assert history[1].previews[0]["tool"] == "create_goal"
    assert history[1].previews[0]["arguments"]["name"] == "Signup"
    assert "confirmed" not in history[1].previews[0]["arguments"]

    emitter = StreamEmitter()
    result = await run.execute("Yes, create it", emitter)
    events = await _frames(emitter)

    assert events[-1].type == "complete"
    assert result.content == "Goal created."
    assert result.previews == []
    assert backend.count("goals.create") == 1
    assert "Pending confirmation for" in router.calls[1]["messages"][1].content

    history = await store.read("conv_1", 10)
    assert len(history) == 4
    assert history[3].previews == []


@pytest.mark.asyncio
async def test_direct_entry_skips_router(ctx, backend, executor):
    router = ScriptedLLM()
    orchestrator = ScriptedLLM([text("Everything looks healthy.")])
    agents = build_agents(ctx, backend, FakePool(router=router, orchestrator=orchestrator))
    run = ChatRun(ctx, agents, InMemoryHistoryStore(), executor, entry_agent=REFLECTION)

    result = await run.execute("Audit my site", StreamEmitter())

    assert result.agent == REFLECTION
    assert router.calls == []


@pytest.mark.asyncio
async def test_budget_error_frame(ctx, backend, executor):
    """Test a budget stop ends the stream with an error frame and saves nothing."""
    router = ScriptedLLM([tool_calls(("handoff", {"agent": "analytics"}))])
    specialist = ScriptedLLM([tool_calls(("list_goals", {}))])
    agents = build_agents(ctx, backend, FakePool(router=router, specialist=specialist))
    agents[ANALYTICS].max_turns = 1
    store = InMemoryHistoryStore()
    emitter = StreamEmitter()

    result = await ChatRun(ctx, agents, store, executor).execute("Goals?", emitter)
    events = await _frames(emitter)

    assert result is None
    assert [e.type for e in events] == ["thinking", "progress", "error"]
    assert events[-1].content == BudgetExceededError("analytics", "turn", 1).user_message
    assert backend.calls == []
    assert await store.read("conv_1", 10) == []


@pytest.mark.asyncio
async def test_unexpected_error_frame_hides_details(ctx, backend, executor):
    """Test an unexpected failure yields the generic message only."""
    agents = build_agents(ctx, backend, FakePool(router=ExplodingLLM()))
    emitter = StreamEmitter()

    await ChatRun(ctx, agents, InMemoryHistoryStore(), executor).execute("hello", emitter)
    events = await _frames(emitter)

    assert [e.type for e in events] == ["thinking", "error"]
    assert events[-1].content == GENERIC_ERROR_MESSAGE
    assert "sk-secret" not in events[-1].content


@pytest.mark.asyncio
async def test_stream_chat_yields_ndjson(ctx, backend, executor):
    router = ScriptedLLM([text("Hello! Ask me about your site.")])
    agents = build_agents(ctx, backend, FakePool(router=router))
    store = InMemoryHistoryStore()
    run = ChatRun(ctx, agents, store, executor)

    lines = [line async for line in stream_chat(run, "hi")]

    assert all(line.endswith("\n") for line in lines)
    frames = [json.loads(line) for line in lines]
    assert [f["type"] for f in frames] == ["thinking", "complete"]
    assert frames[-1]["content"] == "Hello! Ask me about your site."
    assert frames[-1]["data"]["responseType"] == "text"

    history = await store.read("conv_1", 10)
    assert history[1].agent == TRIAGE


@pytest.mark.asyncio
async def test_stream_chat_timeout(ctx, backend, executor):
    agents = build_agents(ctx, backend, FakePool(router=SlowLLM()))
    run = ChatRun(ctx, agents, InMemoryHistoryStore(), executor)

    frames = [json.loads(line) async for line in stream_chat(run, "hi", timeout=0.05)]

    assert [f["type"] for f in frames] == ["thinking", "error"]
    assert frames[-1]["content"] == TIMEOUT_MESSAGE


@pytest.mark.asyncio
async def test_stream_chat_cancels_run_when_client_leaves(ctx, backend, executor):
    """Test closing the stream early cancels the model call."""
    slow = SlowLLM()
    agents = build_agents(ctx, backend, FakePool(router=slow))
    store = InMemoryHistoryStore()
    stream = stream_chat(ChatRun(ctx, agents, store, executor), "hi")

    first = json.loads(await stream.__anext__())
    await asyncio.sleep(0)
    await stream.aclose()

    assert first["type"] == "thinking"
    assert slow.cancelled
    assert await store.read("conv_1", 10) == []


@pytest.mark.asyncio
async def test_stream_chat_client_leaves_during_commit(ctx, executor):
    """Test a commit in flight when the client leaves still completes, and nothing follows the close."""
    backend = GatedBackend("funnels.create", responses={"funnels.create": {"id": "f1"}})
    create_funnel = next(t for t in create_funnel_tools(BoundBackend(backend, ctx)) if t.name == "create_funnel")
    await executor.execute(create_funnel, dict(SIGNUP_FUNNEL))

    specialist = ScriptedLLM([
        tool_calls(("create_funnel", {**SIGNUP_FUNNEL, "confirmed": True})),
        text("Funnel created."),
    ])
    agents = build_agents(ctx, backend, FakePool(specialist=specialist))
    store = InMemoryHistoryStore()
    stream = stream_chat(ChatRun(ctx, agents, store, executor, entry_agent=FUNNELS), "Yes, create it")

    first = json.loads(await stream.__anext__())
    await backend.started.wait()

    closing = asyncio.create_task(stream.aclose())
    await asyncio.sleep(0)
    await asyncio.sleep(0)
    assert not closing.done()
    assert backend.count("funnels.create") == 0

    backend.gate.set()
    await asyncio.wait_for(closing, timeout=2)

    assert first["type"] == "thinking"
    assert backend.count("funnels.create") == 1
    assert executor.inflight_count == 0
    assert executor.ledger.list_pending("conv_1") == []
    assert len(specialist.calls) == 1
    assert await store.read("conv_1", 10) == []
    with pytest.raises(StopAsyncIteration):
        await stream.__anext__()
