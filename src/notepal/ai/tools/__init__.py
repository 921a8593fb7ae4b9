"""Assistant tools and the registry that dispatches them."""

from __future__ import annotations

from typing import Iterable

from .base import BaseTool, Tool, ToolCommand, ToolContext, ToolExecutionResult, ToolResult
from .errors import DuplicateToolError, ErrorCode, ToolError
from .registry import ToolRegistry
from .thought import ThoughtTool
from .user_feedback import GetUserFeedbackTool


def build_default_registry(extra_tools: Iterable[Tool] = ()) -> ToolRegistry:
    """Return a registry holding the bundled tools plus ``extra_tools``."""

    registry = ToolRegistry()
    registry.register(ThoughtTool())
    registry.register(GetUserFeedbackTool())
    for tool in extra_tools:
        registry.register(tool)
    return registry


__all__ = [
    "BaseTool",
    "DuplicateToolError",
    "ErrorCode",
    "GetUserFeedbackTool",
    "ThoughtTool",
    "Tool",
    "ToolCommand",
    "ToolContext",
    "ToolError",
    "ToolExecutionResult",
    "ToolRegistry",
    "ToolResult",
    "build_default_registry",
]
