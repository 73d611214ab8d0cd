"""
Tools available to the assistant agents.
"""

from .base import (
    ConfirmableInput,
    HandoffRequest,
    HandoffTool,
    MutatingTool,
    Tool,
    ToolInput,
    ToolResult,
)
from .confirmation import Commit, ConfirmationLedger, PendingPreview, Preview
from .executor import ToolExecutor
from .analytics import create_analytics_tools
from .annotations import create_annotation_tools
from .funnels import create_funnel_tools
from .goals import create_goal_tools
from .links import create_link_tools

__all__ = [
    "ConfirmableInput",
    "HandoffRequest",
    "HandoffTool",
    "MutatingTool",
    "Tool",
    "ToolInput",
    "ToolResult",
    "Commit",
    "ConfirmationLedger",
    "PendingPreview",
    "Preview",
    "ToolExecutor",
    "create_analytics_tools",
    "create_annotation_tools",
    "create_funnel_tools",
    "create_goal_tools",
    "create_link_tools",
]
