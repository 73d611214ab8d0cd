"""
Memory tiers: how much conversation history each agent sees.
"""

from dataclasses import dataclass
from enum import Enum


@dataclass(frozen=True)
class MemoryTier:
    """History configuration for one agent. A turn is one user/assistant exchange."""

    history_enabled: bool
    turn_limit: int

    @property
    def message_limit(self) -> int:
        return self.turn_limit * 2 if self.history_enabled else 0


class MemoryTierName(str, Enum):
    MINIMAL = "minimal"
    STANDARD = "standard"
    EXTENDED = "extended"
    MAXIMUM = "maximum"


MEMORY_TIERS: dict[MemoryTierName, MemoryTier] = {
    # Enough for the router to see a pending confirmation from the last turn
    MemoryTierName.MINIMAL: MemoryTier(history_enabled=True, turn_limit=1),
    MemoryTierName.STANDARD: MemoryTier(history_enabled=True, turn_limit=10),
    MemoryTierName.EXTENDED: MemoryTier(history_enabled=True, turn_limit=20),
    MemoryTierName.MAXIMUM: MemoryTier(history_enabled=True, turn_limit=40),
}

AGENT_TIERS: dict[str, MemoryTierName] = {
    "triage": MemoryTierName.MINIMAL,
    "analytics": MemoryTierName.STANDARD,
    "funnels": MemoryTierName.STANDARD,
    "reflection": MemoryTierName.EXTENDED,
    "reflection_max": MemoryTierName.MAXIMUM,
}


def get_memory_tier(name: MemoryTierName | str) -> MemoryTier:
    return MEMORY_TIERS[MemoryTierName(name)]


def resolve_memory_tier(agent_name: str) -> MemoryTier:
    """Memory tier for an agent. Unknown agents get the standard tier."""
    return MEMORY_TIERS[AGENT_TIERS.get(agent_name, MemoryTierName.STANDARD)]
