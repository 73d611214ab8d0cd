"""
Agent definitions.

Agents are built per request: their tools are closed over the request's
SessionContext so every backend call is scoped to the caller's tenant and
website. The model clients come from the process-wide ModelPool.
"""

from dataclasses import dataclass, field
from typing import Callable

from ..backend import BackendClient, BoundBackend
from ..context import SessionContext
from ..llm import BaseLLM, ModelPool
from ..llm.base import ToolChoice, ToolDefinition
from ..memory import MemoryTier, resolve_memory_tier
from ..tools import (
    HandoffTool,
    Tool,
    create_analytics_tools,
    create_annotation_tools,
    create_funnel_tools,
    create_goal_tools,
    create_link_tools,
)
from .prompts import (
    build_analytics_instructions,
    build_funnels_instructions,
    build_reflection_instructions,
    build_triage_instructions,
)

TRIAGE = "triage"
ANALYTICS = "analytics"
FUNNELS = "funnels"
REFLECTION = "reflection"
REFLECTION_MAX = "reflection_max"

DEFAULT_SPECIALIST = ANALYTICS

# Model tier requested by the caller -> entry agent
ENTRY_AGENTS = {
    "chat": TRIAGE,
    "agent": REFLECTION,
    "agent-max": REFLECTION_MAX,
}


@dataclass
class AgentDefinition:
    """A bounded conversational unit."""

    name: str
    llm: BaseLLM
    temperature: float
    instructions: Callable[[SessionContext], str]
    tools: list[Tool] = field(default_factory=list)
    memory_tier: MemoryTier = field(default_factory=lambda: resolve_memory_tier(""))
    max_turns: int = 10
    max_steps: int = 30
    handoff_targets: list[str] = field(default_factory=list)
    tool_choice: ToolChoice = "auto"

    def __post_init__(self):
        self.handoff = HandoffTool(targets=self.handoff_targets) if self.handoff_targets else None

    @property
    def toolset(self) -> dict[str, Tool]:
        return {tool.name: tool for tool in self.tools}

    def tool_definitions(self) -> list[ToolDefinition]:
        definitions = [tool.to_definition() for tool in self.tools]
        if self.handoff is not None:
            definitions.append(self.handoff.to_definition())
        return definitions


def entry_agent_for(model_tier: str | None) -> str:
    return ENTRY_AGENTS.get(model_tier or "chat", TRIAGE)


def build_agents(
    ctx: SessionContext,
    backend: BackendClient,
    pool: ModelPool,
) -> dict[str, AgentDefinition]:
    """Build every agent for one request."""
    bound = BoundBackend(backend, ctx)

    analytics_tools = create_analytics_tools(bound)
    goal_tools = create_goal_tools(bound)

    specialist_tools = {
        ANALYTICS: [
            *analytics_tools,
            *create_annotation_tools(bound),
            *goal_tools,
            *create_link_tools(bound),
        ],
        FUNNELS: [
            *create_funnel_tools(bound),
            *goal_tools,
            *analytics_tools,
        ],
    }

    agents = [
        AgentDefinition(
            name=TRIAGE,
            llm=pool.get("router"),
            temperature=0.1,
            instructions=build_triage_instructions,
            memory_tier=resolve_memory_tier(TRIAGE),
            max_turns=1,
            max_steps=1,
            handoff_targets=[ANALYTICS, FUNNELS, REFLECTION],
        ),
        AgentDefinition(
            name=ANALYTICS,
            llm=pool.get("specialist"),
            temperature=0.3,
            instructions=build_analytics_instructions,
            tools=specialist_tools[ANALYTICS],
            memory_tier=resolve_memory_tier(ANALYTICS),
            max_turns=10,
            max_steps=30,
        ),
        AgentDefinition(
            name=FUNNELS,
            llm=pool.get("specialist"),
            temperature=0.3,
            instructions=build_funnels_instructions,
            tools=specialist_tools[FUNNELS],
            memory_tier=resolve_memory_tier(FUNNELS),
            max_turns=8,
            max_steps=24,
        ),
        AgentDefinition(
            name=REFLECTION,
            llm=pool.get("orchestrator"),
            temperature=0.2,
            instructions=build_reflection_instructions,
            memory_tier=resolve_memory_tier(REFLECTION),
            max_turns=10,
            max_steps=20,
            handoff_targets=[ANALYTICS, FUNNELS],
        ),
        AgentDefinition(
            name=REFLECTION_MAX,
            llm=pool.get("orchestrator_max"),
            temperature=0.2,
            instructions=build_reflection_instructions,
            memory_tier=resolve_memory_tier(REFLECTION_MAX),
            max_turns=20,
            max_steps=40,
            handoff_targets=[ANALYTICS, FUNNELS],
        ),
    ]
    return {agent.name: agent for agent in agents}
