"""
Memory: per-agent history tiers and the conversation history store.
"""

from .history import HistoryMessage, HistoryStore, InMemoryHistoryStore, SqlHistoryStore
from .tiers import MEMORY_TIERS, MemoryTier, MemoryTierName, get_memory_tier, resolve_memory_tier

__all__ = [
    "HistoryMessage",
    "HistoryStore",
    "InMemoryHistoryStore",
    "SqlHistoryStore",
    "MEMORY_TIERS",
    "MemoryTier",
    "MemoryTierName",
    "get_memory_tier",
    "resolve_memory_tier",
]
