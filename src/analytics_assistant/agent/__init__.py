"""
Agent module: definitions, the agent runner and the per-request run.
"""

from .core import AgentResult, AgentRunner, RouterDecision
from .definitions import (
    ANALYTICS,
    DEFAULT_SPECIALIST,
    FUNNELS,
    REFLECTION,
    REFLECTION_MAX,
    TRIAGE,
    AgentDefinition,
    build_agents,
    entry_agent_for,
)
from .run import ChatRun, stream_chat

__all__ = [
    "AgentResult",
    "AgentRunner",
    "RouterDecision",
    "ANALYTICS",
    "DEFAULT_SPECIALIST",
    "FUNNELS",
    "REFLECTION",
    "REFLECTION_MAX",
    "TRIAGE",
    "AgentDefinition",
    "build_agents",
    "entry_agent_for",
    "ChatRun",
    "stream_chat",
]
